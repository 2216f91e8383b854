"""
Canvas Context - local index and course context for Canvas LMS.

Keeps a SQLite cache of a user's active courses (syllabi, assignments, files)
with text embeddings for semantic search, and classifies which enrollments
are actually in session. Exposed as an MCP server and a CLI.
"""

__version__ = "0.1.0"

from .client import get_canvas_client, CanvasClient
from .config import Settings, load_settings
from .course_context import (
    Course,
    AcademicTerm,
    CurrencyVerdict,
    CourseContextResult,
    classify_course_currency,
    categorize_courses,
    current_term,
    term_surface_forms,
    extract_term_info,
)
from .embeddings import split_into_chunks, cosine_similarity, EmbeddingProvider, get_embedder
from .storage import IndexStore, IndexStats
from .indexer import Indexer, IndexerFetchers, IndexRunReport, ItemOutcome
from .server import mcp, main
from .exceptions import (
    CanvasContextError,
    ConfigurationError,
    ValidationError,
    AuthenticationError,
    PermissionDeniedError,
    ResourceNotFoundError,
    ResourceDisabledError,
    APIError,
    StorageError,
)
