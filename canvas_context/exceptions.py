"""
Custom Exceptions for Canvas Context

Provides specific exception types for different error conditions.
"""


class CanvasContextError(Exception):
    """Base exception for all Canvas Context errors."""
    pass


class ConfigurationError(CanvasContextError):
    """Raised when configuration is missing or invalid."""
    pass


class ValidationError(CanvasContextError):
    """Raised when input validation fails."""
    pass


class AuthenticationError(CanvasContextError):
    """Raised when the Canvas access token is invalid or expired (HTTP 401)."""
    pass


class PermissionDeniedError(CanvasContextError):
    """Raised when the token lacks permission for a resource (HTTP 403)."""
    pass


class ResourceNotFoundError(CanvasContextError):
    """Raised when a Canvas resource (course, file, etc.) is not found or not accessible."""

    def __init__(self, resource_type: str, identifier: str, message: str = None):
        self.resource_type = resource_type
        self.identifier = identifier
        self.message = message or f"{resource_type} not found: {identifier}"
        super().__init__(self.message)


class ResourceDisabledError(ResourceNotFoundError):
    """Raised when Canvas reports a 404 because the tool is disabled for the course."""

    def __init__(self, resource_type: str, identifier: str, message: str = None):
        message = message or f"{resource_type} has been disabled for this context: {identifier}"
        super().__init__(resource_type, identifier, message)


class APIError(CanvasContextError):
    """Raised when Canvas API returns an error."""

    def __init__(self, message: str, status_code: int = None, response: str = None):
        self.status_code = status_code
        self.response = response
        super().__init__(message)


class StorageError(CanvasContextError):
    """Raised when the local index database cannot be read or written."""

    def __init__(self, operation: str, path: str, cause: Exception = None):
        self.operation = operation
        self.path = path
        self.cause = cause
        message = f"Failed to {operation} index database: {path}"
        if cause:
            message += f" ({cause})"
        super().__init__(message)
