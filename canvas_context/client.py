"""
Canvas API Client

Provides a singleton Canvas REST client initialized from environment variables.
List endpoints are fetched completely by following the ``Link: <...>; rel="next"``
pagination header.
"""

import os
import re
import logging
from typing import Any, Dict, Iterator, List, Optional, Tuple

import requests

from . import __version__
from .config import DEFAULT_MAX_PAGES, DEFAULT_REQUEST_TIMEOUT, Settings
from .exceptions import (
    APIError,
    AuthenticationError,
    ConfigurationError,
    PermissionDeniedError,
    ResourceDisabledError,
    ResourceNotFoundError,
    ValidationError,
)

logger = logging.getLogger("canvas_context.client")

# Global client instance cache
_canvas_client: Optional["CanvasClient"] = None

# Valid domain pattern (optional port)
DOMAIN_PATTERN = re.compile(r'^[a-zA-Z0-9][a-zA-Z0-9\-\.]*[a-zA-Z0-9](:\d+)?$')

# Canvas returns 404 with one of these phrases when a course tool is turned off.
# Matched case-insensitively against the response body.
DISABLED_PHRASES = (
    "disabled",
    "تم تعطيل",
    "deshabilitad",
    "désactivé",
    "desativad",
    "deaktiviert",
)

ACCEPT_HEADER = "application/json+canvas-string-ids"
USER_AGENT = f"canvas-context/{__version__}"


def _normalize_domain(domain: Optional[str]) -> Optional[str]:
    """Strip scheme and trailing slashes so a full base URL is accepted as a domain."""
    if not domain:
        return domain
    domain = re.sub(r'^https?://', '', domain.strip())
    return domain.rstrip('/')


def _validate_domain(domain: str) -> None:
    """Validate Canvas domain format."""
    if not domain:
        raise ConfigurationError(
            "CANVAS_DOMAIN not set.\n"
            "Set it in your .env file or environment:\n"
            "  CANVAS_DOMAIN=canvas.instructure.com"
        )
    if not DOMAIN_PATTERN.match(domain):
        raise ValidationError(f"Invalid Canvas domain format: {domain}")


def _validate_token(token: str) -> None:
    """Validate Canvas API token."""
    if not token:
        raise ConfigurationError(
            "CANVAS_API_TOKEN not set.\n"
            "Set it in your .env file or environment:\n"
            "  CANVAS_API_TOKEN=your_token_here\n"
            "Generate a token at: https://<your-domain>/profile/settings"
        )


def build_query(params: Optional[Dict[str, Any]]) -> List[Tuple[str, str]]:
    """
    Serialize query parameters the way Canvas expects them.

    Sequence values become repeated ``key[]=value`` entries, booleans become
    ``true``/``false`` and ``None`` values are dropped.

    Examples:
        >>> build_query({"include": ["term", "concluded"], "per_page": 100})
        [('include[]', 'term'), ('include[]', 'concluded'), ('per_page', '100')]
    """
    query: List[Tuple[str, str]] = []
    if not params:
        return query

    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple, set)):
            array_key = key if key.endswith("[]") else f"{key}[]"
            for item in value:
                query.append((array_key, _format_value(item)))
        else:
            query.append((key, _format_value(value)))
    return query


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def raise_for_canvas_status(response: requests.Response, resource: str = "resource") -> None:
    """
    Map a non-2xx Canvas response to a typed exception.

    Args:
        response: Response to check
        resource: Path or name of the requested resource, used in messages

    Raises:
        AuthenticationError: 401
        PermissionDeniedError: 403
        ResourceDisabledError: 404 whose body says the tool is disabled
        ResourceNotFoundError: any other 404
        APIError: any other non-2xx status
    """
    status = response.status_code
    if 200 <= status < 300:
        return

    body = response.text or ""

    if status == 401:
        raise AuthenticationError("Canvas API Error (401): Invalid or expired access token")

    if status == 403:
        raise PermissionDeniedError("Canvas API Error (403): Access denied - insufficient permissions")

    if status == 404:
        lowered = body.lower()
        if any(phrase in lowered for phrase in DISABLED_PHRASES):
            raise ResourceDisabledError(
                "resource", resource,
                f"Canvas API Error (404): The requested resource has been disabled for this course ({resource})"
            )
        raise ResourceNotFoundError(
            "resource", resource,
            f"Canvas API Error (404): The requested resource was not found or is not accessible ({resource})"
        )

    raise APIError(f"Canvas API Error ({status}): {body}", status_code=status, response=body)


class CanvasClient:
    """Thin wrapper around a requests.Session bound to one Canvas instance."""

    def __init__(
        self,
        domain: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        max_pages: Optional[int] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize Canvas client.

        Args:
            domain: Canvas domain (e.g., 'canvas.instructure.com'); a full base URL is accepted
            token: Canvas API token
            timeout: Per-request timeout in seconds
            max_pages: Upper bound on pages followed by get_paginated
            session: Optional pre-built requests.Session (used by tests)

        If not provided, reads from CANVAS_DOMAIN and CANVAS_API_TOKEN environment variables.
        Credentials are validated lazily on the first request.
        """
        self.domain = _normalize_domain(domain or os.getenv("CANVAS_DOMAIN"))
        self.token = token or os.getenv("CANVAS_API_TOKEN")
        self.timeout = timeout or DEFAULT_REQUEST_TIMEOUT
        self.max_pages = max_pages or DEFAULT_MAX_PAGES
        self._session: Optional[requests.Session] = session

    @classmethod
    def from_settings(cls, settings: Settings) -> "CanvasClient":
        """Create a client from loaded Settings."""
        return cls(
            domain=settings.domain,
            token=settings.token,
            timeout=settings.request_timeout,
            max_pages=settings.max_pages,
        )

    @property
    def base_url(self) -> str:
        return f"https://{self.domain}"

    @property
    def session(self) -> requests.Session:
        """
        Get or create the HTTP session.

        Raises:
            ConfigurationError: If credentials are missing
            ValidationError: If domain format is invalid
        """
        if self._session is None:
            _validate_domain(self.domain)
            _validate_token(self.token)

            session = requests.Session()
            session.headers.update({
                "Authorization": f"Bearer {self.token}",
                "Accept": ACCEPT_HEADER,
                "User-Agent": USER_AGENT,
            })
            self._session = session
            logger.info(f"Canvas API client initialized with domain: {self.domain}")

        return self._session

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        if not path.startswith("/"):
            path = "/" + path
        return f"{self.base_url}{path}"

    def _get(self, url: str, query: Optional[List[Tuple[str, str]]] = None, resource: str = None) -> requests.Response:
        logger.debug(f"GET {url} {query or ''}")
        response = self.session.get(url, params=query or None, timeout=self.timeout)
        raise_for_canvas_status(response, resource or url)
        return response

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Issue a single GET and return the decoded JSON body.

        Args:
            path: API path (e.g., '/api/v1/courses/123') or absolute URL
            params: Query parameters (see build_query)
        """
        response = self._get(self._url(path), build_query(params), resource=path)
        return response.json()

    def iter_pages(self, path: str, params: Optional[Dict[str, Any]] = None) -> Iterator[Any]:
        """
        Yield each decoded page of a paginated endpoint.

        Follows the rel="next" Link header until it is absent, the same URL is
        offered twice, or max_pages pages have been fetched.
        """
        url: Optional[str] = self._url(path)
        query: Optional[List[Tuple[str, str]]] = build_query(params)
        seen = set()
        pages = 0

        while url:
            if pages >= self.max_pages:
                logger.warning(f"Stopped paginating {path} after {pages} pages (max_pages={self.max_pages})")
                return

            response = self._get(url, query, resource=path)
            seen.add(url)
            pages += 1
            yield response.json()

            next_url = response.links.get("next", {}).get("url")
            if next_url and next_url in seen:
                logger.warning(f"Pagination for {path} returned an already-visited next link; stopping")
                return

            # The next link already carries the query string
            url = next_url
            query = None

    def get_paginated(self, path: str, params: Optional[Dict[str, Any]] = None) -> List[Any]:
        """
        Fetch every page of a list endpoint and concatenate the items.

        Args:
            path: API path (e.g., '/api/v1/courses')
            params: Query parameters (see build_query)

        Returns:
            List of items across all pages; an empty list is a valid result
        """
        results: List[Any] = []
        for page in self.iter_pages(path, params):
            if isinstance(page, list):
                results.extend(page)
            elif page is not None:
                results.append(page)

        logger.debug(f"Fetched {len(results)} items from {path}")
        return results

    def download(self, url: str) -> requests.Response:
        """
        GET an absolute URL (e.g., a file download link), following redirects.

        Returns:
            The requests.Response with the body loaded
        """
        logger.debug(f"Downloading {url}")
        response = self.session.get(url, timeout=self.timeout, allow_redirects=True)
        raise_for_canvas_status(response, url)
        return response


def get_canvas_client(domain: Optional[str] = None, token: Optional[str] = None) -> CanvasClient:
    """
    Get the global Canvas client instance.

    Args:
        domain: Optional Canvas domain override
        token: Optional Canvas API token override

    Returns:
        CanvasClient instance
    """
    global _canvas_client

    # If new credentials provided, create new client
    if domain or token:
        return CanvasClient(domain=domain, token=token)

    # Return cached global client
    if _canvas_client is None:
        _canvas_client = CanvasClient()

    return _canvas_client
