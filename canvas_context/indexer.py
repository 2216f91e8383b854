"""
Indexer Module

Synchronizes the local index with Canvas for every active course.

A run:

1. skips entirely if the cache was refreshed within the staleness window
   (unless forced), without contacting Canvas
2. fetches active courses and keeps only those whose cached row is stale
3. deletes the embeddings of those courses
4. re-fetches each course's syllabus, assignments and files, upserting them
   and embedding their text in overlapping chunks

Failures of one syllabus, assignment listing, assignment or file are recorded
as failed outcomes and do not stop the run. Only one run may be active per
process; a second caller gets a ``busy`` report back immediately.
"""

import sys
import time
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from tqdm import tqdm

from .assignments import list_assignments
from .client import CanvasClient
from .config import Settings
from .courses import get_course_syllabus, list_courses
from .datetime_utils import to_iso8601, utc_now
from .embeddings import EmbeddingProvider, split_into_chunks
from .files import get_file_content, html_to_text, list_files
from .storage import IndexStats, IndexStore

logger = logging.getLogger("canvas_context.indexer")

# Held for the duration of a run; acquired without blocking
_run_lock = threading.Lock()

STATUS_COMPLETED = "completed"
STATUS_SKIPPED = "skipped"
STATUS_UP_TO_DATE = "up_to_date"
STATUS_BUSY = "busy"
STATUS_TIMED_OUT = "timed_out"
STATUS_CANCELLED = "cancelled"

OUTCOME_SUCCESS = "success"
OUTCOME_SKIPPED = "skipped"
OUTCOME_FAILED = "failed"


@dataclass
class IndexerFetchers:
    """Canvas fetch functions used by the indexer. Each accepts a ``client`` keyword."""

    list_courses: Callable[..., List[Dict[str, Any]]] = list_courses
    get_syllabus: Callable[..., Dict[str, Any]] = get_course_syllabus
    list_assignments: Callable[..., List[Dict[str, Any]]] = list_assignments
    list_files: Callable[..., List[Dict[str, Any]]] = list_files
    get_file_content: Callable[..., Dict[str, Any]] = get_file_content


@dataclass
class ItemOutcome:
    """What happened to one unit of work (a course, syllabus, assignment, file or listing)."""

    kind: str
    item_id: Optional[str]
    course_id: Optional[str]
    status: str
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "item_id": self.item_id,
            "course_id": self.course_id,
            "status": self.status,
            "reason": self.reason,
        }


@dataclass
class IndexRunReport:
    """Result of one Indexer.run call."""

    status: str
    forced: bool = False
    courses_total: int = 0
    courses_updated: int = 0
    outcomes: List[ItemOutcome] = field(default_factory=list)
    stats_before: Optional[IndexStats] = None
    stats_after: Optional[IndexStats] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def failed(self) -> List[ItemOutcome]:
        return [o for o in self.outcomes if o.status == OUTCOME_FAILED]

    @property
    def succeeded(self) -> List[ItemOutcome]:
        return [o for o in self.outcomes if o.status == OUTCOME_SUCCESS]

    @property
    def degraded(self) -> bool:
        """True if the run finished but some items failed."""
        return bool(self.failed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "forced": self.forced,
            "degraded": self.degraded,
            "courses_total": self.courses_total,
            "courses_updated": self.courses_updated,
            "succeeded": len(self.succeeded),
            "failed": [o.to_dict() for o in self.failed],
            "skipped": len([o for o in self.outcomes if o.status == OUTCOME_SKIPPED]),
            "stats_before": self.stats_before.to_dict() if self.stats_before else None,
            "stats_after": self.stats_after.to_dict() if self.stats_after else None,
            "started_at": to_iso8601(self.started_at) if self.started_at else None,
            "finished_at": to_iso8601(self.finished_at) if self.finished_at else None,
        }


class _RunStopped(Exception):
    def __init__(self, status: str):
        self.status = status
        super().__init__(status)


def _short(name: str, width: int = 30) -> str:
    return name if len(name) <= width else name[:width - 3] + "..."


class Indexer:
    """
    Incremental Canvas indexer.

    Args:
        client: CanvasClient passed to every fetcher
        store: IndexStore to write to
        embedder: EmbeddingProvider used for text chunks
        settings: Settings (staleness window, chunking, progress, deadline)
        fetchers: Fetch functions (defaults to the Canvas fetchers)
        clock: Callable returning the current UTC datetime
    """

    def __init__(
        self,
        client: Optional[CanvasClient],
        store: IndexStore,
        embedder: EmbeddingProvider,
        *,
        settings: Optional[Settings] = None,
        fetchers: Optional[IndexerFetchers] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.client = client
        self.store = store
        self.embedder = embedder
        self.settings = settings or Settings()
        self.fetchers = fetchers or IndexerFetchers()
        self.clock = clock or utc_now

    def run(
        self,
        force_refresh: bool = False,
        max_age_hours: Optional[float] = None,
        deadline_seconds: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> IndexRunReport:
        """
        Run one indexing pass.

        Args:
            force_refresh: Re-index every active course regardless of freshness
            max_age_hours: Staleness window (default from settings)
            deadline_seconds: Stop starting new work after this many seconds
            cancel_event: Stop starting new work once this event is set

        Returns:
            IndexRunReport; status is 'busy' if another run holds the lock
        """
        if not _run_lock.acquire(blocking=False):
            logger.info("Indexing is already in progress; try again later")
            return IndexRunReport(status=STATUS_BUSY, forced=force_refresh, started_at=self.clock(),
                                  finished_at=self.clock())

        try:
            return self._run(
                force_refresh,
                self.settings.max_age_hours if max_age_hours is None else max_age_hours,
                self.settings.index_timeout_seconds if deadline_seconds is None else deadline_seconds,
                cancel_event,
            )
        finally:
            _run_lock.release()

    def _run(
        self,
        force_refresh: bool,
        max_age_hours: float,
        deadline_seconds: Optional[float],
        cancel_event: Optional[threading.Event],
    ) -> IndexRunReport:
        now = self.clock()
        report = IndexRunReport(status=STATUS_COMPLETED, forced=force_refresh, started_at=now)
        started = time.monotonic()

        def check_stop() -> None:
            if cancel_event is not None and cancel_event.is_set():
                raise _RunStopped(STATUS_CANCELLED)
            if deadline_seconds is not None and time.monotonic() - started >= deadline_seconds:
                raise _RunStopped(STATUS_TIMED_OUT)

        self.store.init_schema()
        report.stats_before = self.store.stats()
        stats = report.stats_before

        if not force_refresh and stats.courses > 0 and stats.last_indexed:
            age = now - stats.last_indexed
            if age < timedelta(hours=max_age_hours):
                logger.info(
                    f"Index is fresh (last indexed {age.total_seconds() / 3600:.1f} hours ago): "
                    f"{stats.courses} courses, {stats.assignments} assignments, "
                    f"{stats.files} files, {stats.syllabi} syllabi. Use force_refresh to override."
                )
                report.status = STATUS_SKIPPED
                report.stats_after = stats
                report.finished_at = self.clock()
                return report

        if force_refresh:
            logger.info("Starting index run (force refresh)")
        else:
            logger.info(f"Starting index run for content older than {max_age_hours} hours")

        courses = self.fetchers.list_courses(client=self.client)
        report.courses_total = len(courses)
        logger.info(f"Found {len(courses)} active courses")

        if force_refresh:
            to_update = list(courses)
        else:
            to_update = [c for c in courses if not self.store.is_course_fresh(c["id"], max_age_hours, now)]
            for course in courses:
                if course not in to_update:
                    report.outcomes.append(ItemOutcome("course", course["id"], course["id"], OUTCOME_SKIPPED, "fresh"))

        if not to_update:
            logger.info("All course data is up to date; nothing to index")
            report.status = STATUS_UP_TO_DATE
            report.stats_after = self.store.stats()
            report.finished_at = self.clock()
            return report

        logger.info(f"Updating {len(to_update)} of {len(courses)} courses")
        self.store.delete_embeddings_for_courses([c["id"] for c in to_update])

        pending = list(to_update)
        try:
            listings = self._list_content(to_update, report, check_stop)
            total = len(to_update) + sum(len(e["assignments"] or []) + len(e["files"] or []) for e in listings.values())

            with tqdm(total=total, desc="Indexing", unit="item", file=sys.stderr,
                      disable=not self.settings.show_progress) as progress:
                for course in to_update:
                    check_stop()
                    if self._index_course(course, listings[course["id"]], report, progress, check_stop):
                        report.courses_updated += 1
                    pending.remove(course)
        except _RunStopped as stop:
            report.status = stop.status
            logger.warning(f"Index run stopped ({stop.status}); {len(pending)} courses left for the next run")
            for course in pending:
                report.outcomes.append(ItemOutcome("course", course["id"], course["id"], OUTCOME_SKIPPED, stop.status))

        report.stats_after = self.store.stats()
        report.finished_at = self.clock()

        after = report.stats_after
        logger.info(
            f"Index run {report.status}: updated {report.courses_updated} courses, "
            f"{len(report.failed)} failures. Stats: {after.courses} courses, {after.assignments} assignments, "
            f"{after.files} files, {after.syllabi} syllabi, {after.embeddings} embeddings"
        )
        return report

    def _list_content(self, courses, report: IndexRunReport, check_stop) -> Dict[str, Dict[str, Any]]:
        """Fetch assignment and file listings up front so the progress total is known."""
        listings = {}
        for course in courses:
            check_stop()
            course_id = course["id"]
            entry: Dict[str, Any] = {"assignments": None, "files": None}

            try:
                entry["assignments"] = self.fetchers.list_assignments(course_id, client=self.client)
            except Exception as e:
                logger.warning(f"Failed to list assignments for course {course_id}: {e}")
                report.outcomes.append(ItemOutcome("assignments", None, course_id, OUTCOME_FAILED, str(e)))

            try:
                entry["files"] = self.fetchers.list_files(course_id, client=self.client)
            except Exception as e:
                logger.warning(f"Failed to list files for course {course_id}: {e}")
                report.outcomes.append(ItemOutcome("files", None, course_id, OUTCOME_FAILED, str(e)))

            listings[course_id] = entry
        return listings

    def _index_course(self, course, listing, report: IndexRunReport, progress, check_stop) -> bool:
        course_id = course["id"]
        name = course.get("name") or course_id
        assignments = list(listing["assignments"] or [])
        files = list(listing["files"] or [])

        try:
            self.store.upsert_course(course, indexed_at=self.clock())
        except Exception as e:
            logger.warning(f"Failed to store course {course_id}: {e}")
            report.outcomes.append(ItemOutcome("course", course_id, course_id, OUTCOME_FAILED, str(e)))
            progress.update(1 + len(assignments) + len(files))
            return False

        try:
            progress.set_postfix_str(f"Syllabus: {_short(name, 20)}")
            report.outcomes.append(self._index_syllabus(course_id))
            progress.update(1)

            while assignments:
                check_stop()
                assignment = assignments[0]
                progress.set_postfix_str(f"Assignment: {_short(assignment.get('name') or '')}")
                report.outcomes.append(self._index_assignment(course_id, assignment))
                assignments.pop(0)
                progress.update(1)

            while files:
                check_stop()
                file_record = files[0]
                progress.set_postfix_str(f"File: {_short(file_record.get('name') or '', 25)}")
                report.outcomes.append(self._index_file(course_id, file_record))
                files.pop(0)
                progress.update(1)
        except _RunStopped as stop:
            # Partially synced; must not pass the freshness check next run
            self.store.mark_course_stale(course_id)
            for assignment in assignments:
                report.outcomes.append(
                    ItemOutcome("assignment", str(assignment.get("id")), course_id, OUTCOME_SKIPPED, stop.status)
                )
            for file_record in files:
                report.outcomes.append(
                    ItemOutcome("file", str(file_record.get("id")), course_id, OUTCOME_SKIPPED, stop.status)
                )
            raise

        report.outcomes.append(ItemOutcome("course", course_id, course_id, OUTCOME_SUCCESS))
        return True

    def _index_syllabus(self, course_id: str) -> ItemOutcome:
        try:
            syllabus = self.fetchers.get_syllabus(course_id, client=self.client)
            self.store.upsert_syllabus(course_id, syllabus.get("body"), syllabus.get("url"), indexed_at=self.clock())
            chunks = self._embed(course_id, course_id, "syllabus", html_to_text(syllabus.get("body")))
        except Exception as e:
            logger.warning(f"Failed to index syllabus for course {course_id}: {e}")
            return ItemOutcome("syllabus", course_id, course_id, OUTCOME_FAILED, str(e))

        if not chunks:
            return ItemOutcome("syllabus", course_id, course_id, OUTCOME_SKIPPED, "empty")
        return ItemOutcome("syllabus", course_id, course_id, OUTCOME_SUCCESS)

    def _index_assignment(self, course_id: str, assignment: Dict[str, Any]) -> ItemOutcome:
        assignment_id = str(assignment.get("id"))
        try:
            record = dict(assignment, course_id=course_id)
            self.store.upsert_assignment(record, indexed_at=self.clock())
            self._embed(course_id, assignment_id, "assignment", html_to_text(assignment.get("description")))
        except Exception as e:
            logger.warning(f"Failed to index assignment {assignment_id} in course {course_id}: {e}")
            return ItemOutcome("assignment", assignment_id, course_id, OUTCOME_FAILED, str(e))
        return ItemOutcome("assignment", assignment_id, course_id, OUTCOME_SUCCESS)

    def _index_file(self, course_id: str, file_record: Dict[str, Any]) -> ItemOutcome:
        file_id = str(file_record.get("id"))
        try:
            with_content = self.fetchers.get_file_content(course_id, file_id, client=self.client)
            record = dict(file_record)
            # Listing values (e.g. the module a file came from) win; fetched metadata only fills gaps
            record.update({
                k: v for k, v in with_content.items()
                if k != "content" and v is not None and record.get(k) is None
            })
            record["course_id"] = course_id
            content = with_content.get("content") or ""
            self.store.upsert_file(record, content, indexed_at=self.clock())
            self._embed(course_id, file_id, "file", content)
        except Exception as e:
            logger.warning(f"Failed to index file {file_id} in course {course_id}: {e}")
            return ItemOutcome("file", file_id, course_id, OUTCOME_FAILED, str(e))
        return ItemOutcome("file", file_id, course_id, OUTCOME_SUCCESS)

    def _embed(self, course_id: str, source_id: str, source_type: str, text: Optional[str]) -> int:
        """Chunk text and store one embedding per chunk. Returns the number of chunks."""
        chunks = split_into_chunks(text, self.settings.chunk_size, self.settings.chunk_overlap)
        for chunk, vector in zip(chunks, self.embedder.embed_batch(chunks)):
            self.store.add_embedding(course_id, source_id, source_type, chunk, vector)
        return len(chunks)


def is_indexing() -> bool:
    """True while a run holds the indexer lock."""
    return _run_lock.locked()
