"""
Index Storage Module

SQLite-backed cache of Canvas courses, syllabi, assignments and files, plus the
embedding chunks generated from their text.

Every cached row carries ``last_indexed`` (UTC ISO 8601) so the indexer can
tell fresh courses from stale ones. Writes are upserts keyed by Canvas ID.
"""

import json
import hashlib
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import numpy as np

from .datetime_utils import parse_canvas_datetime, to_iso8601, utc_now
from .embeddings import cosine_similarities
from .exceptions import StorageError, ValidationError

logger = logging.getLogger("canvas_context.storage")

SOURCE_TYPES = ("syllabus", "assignment", "file")

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS courses (
        id TEXT PRIMARY KEY,
        name TEXT,
        course_code TEXT,
        data TEXT,
        last_indexed TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS assignments (
        id TEXT PRIMARY KEY,
        course_id TEXT,
        name TEXT,
        data TEXT,
        last_indexed TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS files (
        id TEXT PRIMARY KEY,
        course_id TEXT,
        name TEXT,
        updated_at TEXT,
        data TEXT,
        content TEXT,
        last_indexed TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS syllabus (
        course_id TEXT PRIMARY KEY,
        body TEXT,
        url TEXT,
        content_hash TEXT,
        last_indexed TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS embeddings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        course_id TEXT,
        source_id TEXT,
        source_type TEXT,
        chunk_text TEXT,
        embedding TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_embeddings_course ON embeddings(course_id)",
    "CREATE INDEX IF NOT EXISTS idx_assignments_course ON assignments(course_id)",
    "CREATE INDEX IF NOT EXISTS idx_files_course ON files(course_id)",
]


@dataclass
class IndexStats:
    """Row counts of the cache plus the newest course last_indexed time."""

    courses: int = 0
    assignments: int = 0
    files: int = 0
    syllabi: int = 0
    embeddings: int = 0
    last_indexed: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["last_indexed"] = to_iso8601(self.last_indexed) if self.last_indexed else None
        return data


def _timestamp(value: Optional[datetime] = None) -> str:
    # Whole seconds keep stored values lexically comparable
    return to_iso8601((value or utc_now()).replace(microsecond=0))


class IndexStore:
    """
    Local SQLite cache.

    A connection is opened per operation, so one store can be shared by the
    indexer thread and the tools that read from it.
    """

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path)

    @contextmanager
    def _connect(self):
        try:
            if str(self.db_path) != ":memory:":
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            con = sqlite3.connect(str(self.db_path))
        except (OSError, sqlite3.Error) as e:
            raise StorageError("open", str(self.db_path), e)

        con.row_factory = sqlite3.Row
        try:
            yield con
            con.commit()
        except sqlite3.Error as e:
            con.rollback()
            raise StorageError("write", str(self.db_path), e)
        finally:
            con.close()

    def _exec(self, sql: str, params: Iterable = ()) -> sqlite3.Cursor:
        with self._connect() as con:
            return con.execute(sql, tuple(params))

    def _query(self, sql: str, params: Iterable = ()) -> List[sqlite3.Row]:
        with self._connect() as con:
            return con.execute(sql, tuple(params)).fetchall()

    def init_schema(self) -> None:
        """Create tables and indexes if they don't exist."""
        with self._connect() as con:
            for statement in SCHEMA:
                con.execute(statement)
        logger.debug(f"Index schema ready at {self.db_path}")

    # -------------------------------------------------------------------------
    # Upserts
    # -------------------------------------------------------------------------

    def upsert_course(self, course: Dict[str, Any], indexed_at: Optional[datetime] = None) -> None:
        self._exec(
            """
            INSERT INTO courses (id, name, course_code, data, last_indexed)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                course_code = excluded.course_code,
                data = excluded.data,
                last_indexed = excluded.last_indexed
            """,
            [str(course["id"]), course.get("name"), course.get("course_code"),
             json.dumps(course, default=str), _timestamp(indexed_at)]
        )

    def upsert_syllabus(
        self,
        course_id: str,
        body: Optional[str],
        url: Optional[str] = None,
        indexed_at: Optional[datetime] = None
    ) -> None:
        content_hash = hashlib.sha256((body or "").encode("utf-8")).hexdigest()
        self._exec(
            """
            INSERT INTO syllabus (course_id, body, url, content_hash, last_indexed)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(course_id) DO UPDATE SET
                body = excluded.body,
                url = excluded.url,
                content_hash = excluded.content_hash,
                last_indexed = excluded.last_indexed
            """,
            [str(course_id), body, url, content_hash, _timestamp(indexed_at)]
        )

    def upsert_assignment(self, assignment: Dict[str, Any], indexed_at: Optional[datetime] = None) -> None:
        self._exec(
            """
            INSERT INTO assignments (id, course_id, name, data, last_indexed)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                course_id = excluded.course_id,
                name = excluded.name,
                data = excluded.data,
                last_indexed = excluded.last_indexed
            """,
            [str(assignment["id"]), str(assignment["course_id"]), assignment.get("name"),
             json.dumps(assignment, default=str), _timestamp(indexed_at)]
        )

    def upsert_file(
        self,
        file_record: Dict[str, Any],
        content: Optional[str] = None,
        indexed_at: Optional[datetime] = None
    ) -> None:
        data = {k: v for k, v in file_record.items() if k != "content"}
        self._exec(
            """
            INSERT INTO files (id, course_id, name, updated_at, data, content, last_indexed)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                course_id = excluded.course_id,
                name = excluded.name,
                updated_at = excluded.updated_at,
                data = excluded.data,
                content = excluded.content,
                last_indexed = excluded.last_indexed
            """,
            [str(file_record["id"]), str(file_record["course_id"]), file_record.get("name"),
             file_record.get("updated_at"), json.dumps(data, default=str), content,
             _timestamp(indexed_at)]
        )

    # -------------------------------------------------------------------------
    # Freshness
    # -------------------------------------------------------------------------

    def stats(self) -> IndexStats:
        """Count cached rows and find the most recent course index time."""
        with self._connect() as con:
            def count(table: str) -> int:
                return con.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

            newest = con.execute("SELECT MAX(last_indexed) FROM courses").fetchone()[0]
            return IndexStats(
                courses=count("courses"),
                assignments=count("assignments"),
                files=count("files"),
                syllabi=count("syllabus"),
                embeddings=count("embeddings"),
                last_indexed=parse_canvas_datetime(newest),
            )

    def course_last_indexed(self, course_id: str) -> Optional[datetime]:
        rows = self._query("SELECT last_indexed FROM courses WHERE id = ?", [str(course_id)])
        if not rows:
            return None
        return parse_canvas_datetime(rows[0]["last_indexed"])

    def mark_course_stale(self, course_id: str) -> None:
        """Clear a course's last_indexed so the next run picks it up again."""
        self._exec("UPDATE courses SET last_indexed = NULL WHERE id = ?", [str(course_id)])

    def is_course_fresh(self, course_id: str, max_age_hours: float, now: Optional[datetime] = None) -> bool:
        """True if the course was indexed less than max_age_hours before now."""
        last = self.course_last_indexed(course_id)
        if last is None:
            return False
        return (now or utc_now()) - last < timedelta(hours=max_age_hours)

    # -------------------------------------------------------------------------
    # Embeddings
    # -------------------------------------------------------------------------

    def delete_embeddings_for_courses(self, course_ids: Sequence[str]) -> int:
        """
        Delete every embedding chunk belonging to the given courses.

        Returns:
            Number of rows deleted
        """
        ids = [str(c) for c in course_ids]
        if not ids:
            return 0
        placeholders = ",".join("?" for _ in ids)
        cursor = self._exec(f"DELETE FROM embeddings WHERE course_id IN ({placeholders})", ids)
        logger.debug(f"Deleted {cursor.rowcount} embeddings for {len(ids)} courses")
        return cursor.rowcount

    def add_embedding(
        self,
        course_id: str,
        source_id: str,
        source_type: str,
        chunk_text: str,
        vector: Sequence[float]
    ) -> int:
        """Store one chunk and its vector. Returns the new row id."""
        if source_type not in SOURCE_TYPES:
            raise ValidationError(f"Unknown source type: {source_type}")
        cursor = self._exec(
            """
            INSERT INTO embeddings (course_id, source_id, source_type, chunk_text, embedding)
            VALUES (?, ?, ?, ?, ?)
            """,
            [str(course_id), str(source_id), source_type, chunk_text, json.dumps([float(v) for v in vector])]
        )
        return cursor.lastrowid

    def list_embeddings(self, course_id: Optional[str] = None) -> List[Dict[str, Any]]:
        if course_id is None:
            rows = self._query("SELECT * FROM embeddings ORDER BY id")
        else:
            rows = self._query("SELECT * FROM embeddings WHERE course_id = ? ORDER BY id", [str(course_id)])
        return [
            {
                "id": row["id"],
                "course_id": row["course_id"],
                "source_id": row["source_id"],
                "source_type": row["source_type"],
                "chunk_text": row["chunk_text"],
                "embedding": json.loads(row["embedding"]),
            }
            for row in rows
        ]

    def search_embeddings(
        self,
        query_vector: Sequence[float],
        course_id: Optional[str] = None,
        limit: int = 5
    ) -> List[Dict[str, Any]]:
        """
        Rank stored chunks by cosine similarity to a query vector.

        Args:
            query_vector: Embedding of the search query
            course_id: Restrict to one course
            limit: Maximum number of results

        Returns:
            Chunk dicts (without the vector) with a 'score', best first
        """
        chunks = self.list_embeddings(course_id)
        query = np.asarray(query_vector, dtype=float)
        chunks = [c for c in chunks if len(c["embedding"]) == query.shape[0]]
        if not chunks or limit <= 0:
            return []

        scores = cosine_similarities([c["embedding"] for c in chunks], query)

        order = np.argsort(-scores, kind="stable")[:limit]
        results = []
        for i in order:
            chunk = dict(chunks[i])
            chunk.pop("embedding")
            chunk["score"] = round(float(scores[i]), 4)
            results.append(chunk)
        return results

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_course_knowledge(self, course_id: str) -> Optional[Dict[str, Any]]:
        """
        Everything cached about a course.

        Returns:
            Dict with course, syllabus, assignments, files and embedding_count,
            or None if the course has never been indexed
        """
        course_id = str(course_id)
        course_rows = self._query("SELECT * FROM courses WHERE id = ?", [course_id])
        if not course_rows:
            return None

        course = json.loads(course_rows[0]["data"] or "{}")
        course["last_indexed"] = course_rows[0]["last_indexed"]

        syllabus_rows = self._query("SELECT * FROM syllabus WHERE course_id = ?", [course_id])
        syllabus = None
        if syllabus_rows:
            row = syllabus_rows[0]
            syllabus = {"body": row["body"], "url": row["url"], "last_indexed": row["last_indexed"]}

        assignments = [
            json.loads(row["data"] or "{}")
            for row in self._query("SELECT data FROM assignments WHERE course_id = ? ORDER BY name", [course_id])
        ]

        files = []
        for row in self._query("SELECT data, content FROM files WHERE course_id = ? ORDER BY name", [course_id]):
            record = json.loads(row["data"] or "{}")
            record["has_content"] = bool(row["content"])
            files.append(record)

        embedding_count = self._query("SELECT COUNT(*) AS n FROM embeddings WHERE course_id = ?", [course_id])[0]["n"]

        return {
            "course": course,
            "syllabus": syllabus,
            "assignments": assignments,
            "files": files,
            "embedding_count": embedding_count,
        }

    def clear_course(self, course_id: str) -> bool:
        """
        Remove a course and everything cached for it.

        Returns:
            True if the course was in the index
        """
        course_id = str(course_id)
        with self._connect() as con:
            con.execute("DELETE FROM embeddings WHERE course_id = ?", [course_id])
            con.execute("DELETE FROM files WHERE course_id = ?", [course_id])
            con.execute("DELETE FROM assignments WHERE course_id = ?", [course_id])
            con.execute("DELETE FROM syllabus WHERE course_id = ?", [course_id])
            cursor = con.execute("DELETE FROM courses WHERE id = ?", [course_id])
            existed = cursor.rowcount > 0
        logger.info(f"Cleared cached data for course {course_id}")
        return existed
