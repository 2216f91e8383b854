"""
Canvas Context MCP Server

FastMCP server that keeps a local, searchable index of the user's Canvas
courses and tells an assistant which courses are actually in session.
"""

import json
import logging
import threading
from typing import Optional

from mcp.server import FastMCP

from .client import CanvasClient
from .config import Settings, configure_logging, load_settings
from .course_context import categorize_courses, current_term
from .courses import list_courses_with_dates
from .datetime_utils import utc_now
from .embeddings import EmbeddingProvider, get_embedder
from .exceptions import ResourceNotFoundError, ValidationError
from .indexer import STATUS_BUSY, Indexer, is_indexing
from .storage import IndexStore

logger = logging.getLogger("canvas_context.server")

# Initialize MCP server
mcp = FastMCP(
    name="canvas-context",
    instructions="""Tools for finding a student's current Canvas courses and searching
their syllabi, assignments and files. Course content is cached locally and refreshed
when it is older than the staleness window.""",
)

_settings: Optional[Settings] = None
_client: Optional[CanvasClient] = None
_store: Optional[IndexStore] = None
_embedder: Optional[EmbeddingProvider] = None
_indexer: Optional[Indexer] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def get_client() -> CanvasClient:
    global _client
    if _client is None:
        _client = CanvasClient.from_settings(get_settings())
    return _client


def get_store() -> IndexStore:
    global _store
    if _store is None:
        _store = IndexStore(get_settings().db_path)
        _store.init_schema()
    return _store


def get_server_embedder() -> EmbeddingProvider:
    global _embedder
    if _embedder is None:
        _embedder = get_embedder(get_settings())
    return _embedder


def get_indexer() -> Indexer:
    global _indexer
    if _indexer is None:
        _indexer = Indexer(get_client(), get_store(), get_server_embedder(), settings=get_settings())
    return _indexer


# =============================================================================
# Indexing Tools
# =============================================================================

@mcp.tool()
def run_indexer(force_refresh: bool = True, max_age_hours: Optional[float] = None) -> str:
    """
    Index syllabi, assignments and files of all active courses.

    Args:
        force_refresh: Re-index every course even if its cache is fresh (default: true)
        max_age_hours: Treat cached courses older than this as stale (default: 6)

    Returns:
        JSON run report with status, per-item failures and before/after stats
    """
    try:
        report = get_indexer().run(force_refresh=force_refresh, max_age_hours=max_age_hours)
        result = report.to_dict()
        if report.status == STATUS_BUSY:
            result["message"] = "Indexing is already in progress. Please try again later."
        return json.dumps(result, indent=2)
    except Exception as e:
        return json.dumps({"error": str(e)})


@mcp.tool()
def index_status() -> str:
    """
    Show what the local index holds.

    Returns:
        JSON with row counts, last index time and whether a run is in progress
    """
    try:
        result = get_store().stats().to_dict()
        result["indexing"] = is_indexing()
        return json.dumps(result, indent=2)
    except Exception as e:
        return json.dumps({"error": str(e)})


# =============================================================================
# Course Tools
# =============================================================================

@mcp.tool()
def list_current_courses(include_upcoming: bool = False, include_recently_completed: bool = False) -> str:
    """
    List the courses that are in session now, best evidence first.

    Canvas keeps old enrollments active, so courses are classified using
    their concluded flag, dates, term dates and term names.

    Args:
        include_upcoming: Also list courses starting within 4 weeks
        include_recently_completed: Also list courses that ended within 4 weeks

    Returns:
        JSON with current courses (each with a confidence_score) and counts
    """
    try:
        now = utc_now()
        courses = list_courses_with_dates(client=get_client())
        context = categorize_courses(courses, now)

        result = context.to_dict()
        result["current_term"] = current_term(now).label
        if not include_upcoming:
            result.pop("upcoming")
        if not include_recently_completed:
            result.pop("recently_completed")
        return json.dumps(result, indent=2)
    except Exception as e:
        return json.dumps({"error": str(e)})


# =============================================================================
# Search Tools
# =============================================================================

@mcp.tool()
def search_course_content(query: str, course_id: Optional[str] = None, limit: int = 5) -> str:
    """
    Semantic search over indexed syllabi, assignment descriptions and files.

    Args:
        query: What to look for
        course_id: Restrict to one course
        limit: Maximum number of matching chunks (default: 5)

    Returns:
        JSON list of chunks with course_id, source_type, source_id and score
    """
    try:
        if not query or not query.strip():
            raise ValidationError("query must not be empty")
        vector = get_server_embedder().embed_text(query)
        result = get_store().search_embeddings(vector, course_id=course_id, limit=limit)
        return json.dumps(result, indent=2)
    except Exception as e:
        return json.dumps({"error": str(e)})


@mcp.tool()
def get_course_knowledge(course_id: str) -> str:
    """
    Get everything cached for a course: syllabus, assignments and files.

    Args:
        course_id: Canvas course ID

    Returns:
        JSON with course, syllabus, assignments, files and embedding_count
    """
    try:
        result = get_store().get_course_knowledge(course_id)
        if result is None:
            raise ResourceNotFoundError(
                "course", course_id,
                f"Course {course_id} has not been indexed yet. Run run_indexer first."
            )
        return json.dumps(result, indent=2)
    except Exception as e:
        return json.dumps({"error": str(e)})


@mcp.tool()
def clear_course_cache(course_id: str) -> str:
    """
    Remove a course and all of its cached content and embeddings from the index.

    The course is fetched again on the next index run if it is still active.

    Args:
        course_id: Canvas course ID

    Returns:
        JSON with the cleared course_id and whether it was indexed
    """
    try:
        if is_indexing():
            raise ValidationError("Indexing is in progress; try again later")
        existed = get_store().clear_course(course_id)
        return json.dumps({"course_id": course_id, "cleared": existed}, indent=2)
    except Exception as e:
        return json.dumps({"error": str(e)})


def _startup_index() -> None:
    try:
        report = get_indexer().run(force_refresh=False)
        logger.info(f"Startup index finished: {report.status}")
    except Exception as e:
        logger.error(f"Startup index failed: {e}")


def start_background_index() -> threading.Thread:
    """Run a non-forced index on a daemon thread so the server can start serving immediately."""
    thread = threading.Thread(target=_startup_index, name="canvas-context-index", daemon=True)
    thread.start()
    return thread


def main():
    """Run the Canvas Context MCP server."""
    settings = get_settings()
    configure_logging(settings.log_level)

    logger.info("Starting Canvas Context MCP Server...")
    logger.info("Tools: run_indexer, index_status, list_current_courses, "
                "search_course_content, get_course_knowledge, clear_course_cache")

    if settings.index_on_startup:
        start_background_index()

    mcp.run()


if __name__ == "__main__":
    main()
