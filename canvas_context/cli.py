#!/usr/bin/env python3
"""
Canvas Context CLI

Command-line interface for building and querying the local Canvas index.

Usage:
    canvas-context index [--force] [--max-age-hours H]   # Index active courses
    canvas-context status                                # Show index statistics
    canvas-context current-courses [--upcoming] [--recent]
    canvas-context search QUERY [--course-id ID] [--limit N]
    canvas-context clear COURSE_ID                       # Drop a course from the index
    canvas-context serve                                 # Run the MCP server

Configuration is read from the environment or a .env file:
    CANVAS_DOMAIN=canvas.instructure.com
    CANVAS_API_TOKEN=your_token_here
    CANVAS_CACHE_DB=~/.canvas-context/canvas_cache.db
"""

import argparse
import json
import sys

import requests

from .client import CanvasClient
from .config import Settings, configure_logging, load_settings
from .course_context import categorize_courses, current_term, extract_term_info
from .courses import list_courses_with_dates
from .datetime_utils import utc_now
from .embeddings import get_embedder
from .exceptions import CanvasContextError
from .indexer import STATUS_BUSY, Indexer
from .storage import IndexStore


def _store(settings: Settings) -> IndexStore:
    store = IndexStore(settings.db_path)
    store.init_schema()
    return store


def cmd_index(args: argparse.Namespace, settings: Settings) -> int:
    """Index syllabi, assignments and files of active courses."""
    indexer = Indexer(
        CanvasClient.from_settings(settings),
        _store(settings),
        get_embedder(settings),
        settings=settings,
    )

    try:
        report = indexer.run(force_refresh=args.force, max_age_hours=args.max_age_hours)
    except (CanvasContextError, requests.RequestException) as e:
        print(f"Error: {e}")
        return 1

    if report.status == STATUS_BUSY:
        print("Indexing is already in progress. Try again later.")
        return 1

    print(f"Index run {report.status}: {report.courses_updated} of {report.courses_total} courses updated")
    if report.stats_after:
        stats = report.stats_after
        print(f"  {stats.courses} courses, {stats.assignments} assignments, "
              f"{stats.files} files, {stats.syllabi} syllabi, {stats.embeddings} embeddings")

    if report.failed:
        print(f"\n{len(report.failed)} items failed:")
        for outcome in report.failed:
            print(f"  {outcome.kind:>11}  {outcome.item_id or '-':>10}  (course {outcome.course_id}): {outcome.reason}")
        return 1

    return 0


def cmd_status(args: argparse.Namespace, settings: Settings) -> int:
    """Show local index statistics."""
    try:
        stats = _store(settings).stats()
    except CanvasContextError as e:
        print(f"Error: {e}")
        return 1

    print(f"Index: {settings.db_path}")
    print(f"  Courses:     {stats.courses}")
    print(f"  Syllabi:     {stats.syllabi}")
    print(f"  Assignments: {stats.assignments}")
    print(f"  Files:       {stats.files}")
    print(f"  Embeddings:  {stats.embeddings}")
    print(f"  Last indexed: {stats.last_indexed.isoformat() if stats.last_indexed else 'never'}")
    return 0


def cmd_current_courses(args: argparse.Namespace, settings: Settings) -> int:
    """List courses that are in session now."""
    now = utc_now()
    try:
        courses = list_courses_with_dates(client=CanvasClient.from_settings(settings))
    except (CanvasContextError, requests.RequestException) as e:
        print(f"Error: {e}")
        return 1

    context = categorize_courses(courses, now)
    print(f"Current term: {current_term(now).label}\n")

    if not context.current:
        print("No current courses found")
    else:
        print(f"Current courses ({len(context.current)}):")
        for course in context.current:
            term = extract_term_info(course.name, course.course_code)["label"] or course.term_name or ""
            print(f"  {course.id:>10}  {course.name}  [{context.confidence[course.id]}]  {term}")

    if args.upcoming:
        print(f"\nUpcoming courses ({len(context.upcoming)}):")
        for course in context.upcoming:
            print(f"  {course.id:>10}  {course.name}  starts {course.start_at or course.term_start_at}")

    if args.recent:
        print(f"\nRecently completed ({len(context.recently_completed)}):")
        for course in context.recently_completed:
            print(f"  {course.id:>10}  {course.name}  ended {course.end_at or course.term_end_at}")

    hidden = len(context.all_active) - len(context.current)
    if hidden > 0:
        print(f"\n{hidden} other active enrollments are not in session")

    return 0


def cmd_search(args: argparse.Namespace, settings: Settings) -> int:
    """Semantic search over the local index."""
    try:
        vector = get_embedder(settings).embed_text(args.query)
        results = _store(settings).search_embeddings(vector, course_id=args.course_id, limit=args.limit)
    except CanvasContextError as e:
        print(f"Error: {e}")
        return 1

    if args.json:
        print(json.dumps(results, indent=2))
        return 0

    if not results:
        print("No matches (has the index been built? run 'canvas-context index')")
        return 0

    for result in results:
        snippet = " ".join(result["chunk_text"].split())[:160]
        print(f"[{result['score']:.3f}] course {result['course_id']} {result['source_type']} {result['source_id']}")
        print(f"    {snippet}")
    return 0


def cmd_clear(args: argparse.Namespace, settings: Settings) -> int:
    """Remove one course and its cached content from the index."""
    try:
        existed = _store(settings).clear_course(args.course_id)
    except CanvasContextError as e:
        print(f"Error: {e}")
        return 1

    if not existed:
        print(f"Course {args.course_id} was not in the index")
        return 0

    print(f"Cleared course {args.course_id}; it will be re-indexed on the next run")
    return 0


def main() -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Canvas Context - Local index and course context for Canvas LMS",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # index command
    index_parser = subparsers.add_parser("index", help="Index active courses")
    index_parser.add_argument("--force", "-f", action="store_true", help="Re-index every course")
    index_parser.add_argument("--max-age-hours", type=float, default=None,
                              help="Staleness window in hours (default: CANVAS_INDEX_MAX_AGE_HOURS or 6)")

    # status command
    subparsers.add_parser("status", help="Show index statistics")

    # current-courses command
    current_parser = subparsers.add_parser("current-courses", help="List courses in session now")
    current_parser.add_argument("--upcoming", action="store_true", help="Also list courses starting soon")
    current_parser.add_argument("--recent", action="store_true", help="Also list recently completed courses")

    # search command
    search_parser = subparsers.add_parser("search", help="Search indexed course content")
    search_parser.add_argument("query", help="Search text")
    search_parser.add_argument("--course-id", default=None, help="Restrict to one course")
    search_parser.add_argument("--limit", "-n", type=int, default=5, help="Maximum results (default: 5)")
    search_parser.add_argument("--json", action="store_true", help="Print results as JSON")

    # clear command
    clear_parser = subparsers.add_parser("clear", help="Remove a course from the index")
    clear_parser.add_argument("course_id", help="Canvas course ID")

    # serve command (for MCP)
    subparsers.add_parser("serve", help="Run MCP server")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return 0

    try:
        settings = load_settings()
    except CanvasContextError as e:
        print(f"Error: {e}")
        return 1

    configure_logging("DEBUG" if args.verbose else settings.log_level)

    if args.command == "index":
        return cmd_index(args, settings)
    elif args.command == "status":
        return cmd_status(args, settings)
    elif args.command == "current-courses":
        return cmd_current_courses(args, settings)
    elif args.command == "search":
        return cmd_search(args, settings)
    elif args.command == "clear":
        return cmd_clear(args, settings)
    elif args.command == "serve":
        from .server import main as server_main
        server_main()
        return 0

    return 0


if __name__ == "__main__":
    sys.exit(main())
