"""
Pytest fixtures for canvas_context tests.
"""

import json
import hashlib
from datetime import datetime, timezone

import pytest
from unittest.mock import MagicMock

from canvas_context.client import CanvasClient
from canvas_context.config import Settings
from canvas_context.embeddings import EmbeddingProvider
from canvas_context.indexer import IndexerFetchers
from canvas_context.storage import IndexStore


class FakeResponse:
    """Stand-in for requests.Response."""

    def __init__(self, payload=None, status_code=200, text=None, next_url=None,
                 headers=None, content=b"", url=None):
        self._payload = payload
        self.status_code = status_code
        self.text = text if text is not None else (json.dumps(payload) if payload is not None else "")
        self.links = {"next": {"url": next_url, "rel": "next"}} if next_url else {}
        self.headers = headers or {}
        self.content = content
        self.url = url

    def json(self):
        return self._payload


def make_client(*responses, max_pages=None):
    """CanvasClient whose session returns the given responses in order."""
    session = MagicMock()
    session.get.side_effect = list(responses)
    client = CanvasClient(domain="canvas.test.edu", token="test-token", max_pages=max_pages, session=session)
    return client, session


class FakeEmbedder(EmbeddingProvider):
    """Deterministic 8-dimension embedder that records every call."""

    def __init__(self):
        self.calls = []

    @property
    def model_name(self):
        return "fake"

    @property
    def dimensions(self):
        return 8

    def embed_text(self, text):
        self.calls.append(text)
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [b / 255.0 for b in digest[:8]]


class FakeCanvas:
    """
    In-memory Canvas data behind IndexerFetchers-compatible functions.

    Every fetch is recorded in ``calls`` as (name, args). Set
    ``failures[(name, course_id)]`` to an exception to make that fetch raise.
    """

    def __init__(self):
        self.courses = []
        self.syllabi = {}
        self.assignments = {}
        self.files = {}
        self.file_content = {}
        self.failures = {}
        self.calls = []

    def add_course(self, course_id, name=None, syllabus=None, assignments=None, files=None):
        course_id = str(course_id)
        self.courses.append({"id": course_id, "name": name or f"Course {course_id}", "course_code": f"C{course_id}"})
        self.syllabi[course_id] = syllabus
        self.assignments[course_id] = [
            dict(a, id=str(a["id"]), course_id=course_id) for a in (assignments or [])
        ]
        self.files[course_id] = []
        for f in files or []:
            file_id = str(f["id"])
            self.files[course_id].append({"id": file_id, "course_id": course_id, "name": f.get("name", f"file{file_id}.txt")})
            self.file_content[file_id] = f.get("content", "")

    def _check(self, name, key):
        self.calls.append((name, key))
        error = self.failures.get((name, key))
        if error:
            raise error

    def list_courses(self, client=None):
        self._check("list_courses", None)
        return [dict(c) for c in self.courses]

    def get_syllabus(self, course_id, client=None):
        self._check("get_syllabus", course_id)
        return {"course_id": course_id, "body": self.syllabi.get(course_id), "url": f"https://canvas.test.edu/courses/{course_id}/assignments/syllabus"}

    def list_assignments(self, course_id, client=None):
        self._check("list_assignments", course_id)
        return [dict(a) for a in self.assignments.get(course_id, [])]

    def list_files(self, course_id, client=None):
        self._check("list_files", course_id)
        return [dict(f) for f in self.files.get(course_id, [])]

    def get_file_content(self, course_id, file_id, client=None):
        self._check("get_file_content", file_id)
        record = next(f for f in self.files[course_id] if f["id"] == file_id)
        return dict(record, content=self.file_content.get(file_id, ""))

    def fetchers(self):
        return IndexerFetchers(
            list_courses=self.list_courses,
            get_syllabus=self.get_syllabus,
            list_assignments=self.list_assignments,
            list_files=self.list_files,
            get_file_content=self.get_file_content,
        )

    def calls_named(self, name):
        return [key for call, key in self.calls if call == name]


@pytest.fixture
def now():
    """Fixed reference time in the fall term of 2025."""
    return datetime(2025, 10, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store(tmp_path):
    """Initialized IndexStore in a temporary directory."""
    index_store = IndexStore(tmp_path / "index" / "canvas_cache.db")
    index_store.init_schema()
    return index_store


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def fake_canvas():
    return FakeCanvas()


@pytest.fixture
def settings(tmp_path):
    """Settings with small chunks and progress output disabled."""
    return Settings(
        domain="canvas.test.edu",
        token="test-token",
        db_path=tmp_path / "index" / "canvas_cache.db",
        chunk_size=20,
        chunk_overlap=5,
        show_progress=False,
    )
