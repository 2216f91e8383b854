"""
Tests for the SQLite index store.
"""

from datetime import datetime, timedelta, timezone

import pytest

from canvas_context.exceptions import StorageError, ValidationError
from canvas_context.storage import IndexStore


class TestSchema:
    """Tests for schema creation."""

    def test_init_schema_is_idempotent(self, store):
        store.init_schema()
        store.init_schema()

        assert store.stats().courses == 0

    def test_creates_parent_directory(self, tmp_path):
        db_path = tmp_path / "nested" / "dir" / "cache.db"

        IndexStore(db_path).init_schema()

        assert db_path.exists()

    def test_unopenable_path_raises_storage_error(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")

        with pytest.raises(StorageError):
            IndexStore(blocker / "cache.db").init_schema()


class TestUpserts:
    """Tests for insert-or-update writes."""

    def test_course_upsert_is_idempotent(self, store):
        store.upsert_course({"id": "1", "name": "Biology", "course_code": "BIO"})
        store.upsert_course({"id": "1", "name": "Biology II", "course_code": "BIO"})

        assert store.stats().courses == 1
        assert store.get_course_knowledge("1")["course"]["name"] == "Biology II"

    def test_syllabus_upsert(self, store):
        store.upsert_course({"id": "1", "name": "Biology"})
        store.upsert_syllabus("1", "<p>Week 1</p>", "https://canvas.test.edu/courses/1/assignments/syllabus")
        store.upsert_syllabus("1", "<p>Week 2</p>")

        knowledge = store.get_course_knowledge("1")
        assert store.stats().syllabi == 1
        assert knowledge["syllabus"]["body"] == "<p>Week 2</p>"

    def test_assignment_and_file_upserts(self, store):
        store.upsert_course({"id": "1", "name": "Biology"})
        store.upsert_assignment({"id": "10", "course_id": "1", "name": "Lab 1", "description": "<p>Do it</p>"})
        store.upsert_assignment({"id": "10", "course_id": "1", "name": "Lab 1 (revised)"})
        store.upsert_file({"id": "20", "course_id": "1", "name": "notes.txt", "updated_at": "2025-10-01T00:00:00Z"}, "notes")

        knowledge = store.get_course_knowledge("1")
        stats = store.stats()
        assert stats.assignments == 1
        assert stats.files == 1
        assert knowledge["assignments"][0]["name"] == "Lab 1 (revised)"
        assert knowledge["files"][0]["name"] == "notes.txt"
        assert knowledge["files"][0]["has_content"] is True


class TestFreshness:
    """Tests for last_indexed tracking."""

    def test_stats_last_indexed_is_newest_course(self, store):
        older = datetime(2025, 10, 1, 8, 0, tzinfo=timezone.utc)
        newer = datetime(2025, 10, 2, 9, 30, tzinfo=timezone.utc)
        store.upsert_course({"id": "1", "name": "A"}, indexed_at=older)
        store.upsert_course({"id": "2", "name": "B"}, indexed_at=newer)

        assert store.stats().last_indexed == newer

    def test_empty_store_has_no_last_indexed(self, store):
        assert store.stats().last_indexed is None

    def test_is_course_fresh(self, store, now):
        store.upsert_course({"id": "1", "name": "A"}, indexed_at=now - timedelta(hours=1))
        store.upsert_course({"id": "2", "name": "B"}, indexed_at=now - timedelta(hours=7))

        assert store.is_course_fresh("1", 6, now) is True
        assert store.is_course_fresh("2", 6, now) is False
        assert store.is_course_fresh("3", 6, now) is False

    def test_mark_course_stale(self, store, now):
        store.upsert_course({"id": "1", "name": "A"}, indexed_at=now - timedelta(hours=1))
        store.upsert_course({"id": "2", "name": "B"}, indexed_at=now - timedelta(hours=2))

        store.mark_course_stale("1")

        assert store.is_course_fresh("1", 6, now) is False
        assert store.course_last_indexed("1") is None
        assert store.stats().last_indexed == now - timedelta(hours=2)
        assert store.stats().courses == 2

    def test_stats_to_dict(self, store, now):
        store.upsert_course({"id": "1", "name": "A"}, indexed_at=now)

        data = store.stats().to_dict()

        assert data["courses"] == 1
        assert data["last_indexed"] == "2025-10-15T12:00:00Z"


class TestEmbeddings:
    """Tests for embedding chunk storage and search."""

    def test_add_and_list(self, store):
        row_id = store.add_embedding("1", "10", "assignment", "chunk text", [0.1, 0.2])

        chunks = store.list_embeddings("1")
        assert chunks == [{
            "id": row_id,
            "course_id": "1",
            "source_id": "10",
            "source_type": "assignment",
            "chunk_text": "chunk text",
            "embedding": [0.1, 0.2],
        }]

    def test_unknown_source_type(self, store):
        with pytest.raises(ValidationError):
            store.add_embedding("1", "10", "quiz", "text", [1.0])

    def test_delete_for_courses_only_touches_those_courses(self, store):
        store.add_embedding("A", "A", "syllabus", "a1", [1.0, 0.0])
        store.add_embedding("A", "5", "assignment", "a2", [1.0, 0.0])
        store.add_embedding("B", "B", "syllabus", "b1", [0.0, 1.0])
        store.add_embedding("C", "C", "syllabus", "c1", [0.0, 1.0])

        deleted = store.delete_embeddings_for_courses(["A", "C"])

        assert deleted == 3
        assert [c["course_id"] for c in store.list_embeddings()] == ["B"]

    def test_delete_with_no_courses(self, store):
        store.add_embedding("A", "A", "syllabus", "a1", [1.0])

        assert store.delete_embeddings_for_courses([]) == 0
        assert len(store.list_embeddings()) == 1

    def test_search_ranks_by_similarity(self, store):
        store.add_embedding("1", "1", "syllabus", "exact", [1.0, 0.0, 0.0])
        store.add_embedding("1", "10", "assignment", "close", [0.9, 0.1, 0.0])
        store.add_embedding("2", "20", "file", "far", [0.0, 0.0, 1.0])

        results = store.search_embeddings([1.0, 0.0, 0.0], limit=2)

        assert [r["chunk_text"] for r in results] == ["exact", "close"]
        assert results[0]["score"] == pytest.approx(1.0)
        assert "embedding" not in results[0]

    def test_search_filters_by_course(self, store):
        store.add_embedding("1", "1", "syllabus", "one", [1.0, 0.0])
        store.add_embedding("2", "2", "syllabus", "two", [1.0, 0.0])

        results = store.search_embeddings([1.0, 0.0], course_id="2")

        assert [r["course_id"] for r in results] == ["2"]

    def test_search_empty_store(self, store):
        assert store.search_embeddings([1.0, 0.0]) == []


class TestCourseKnowledge:
    """Tests for reading back a course."""

    def test_unknown_course(self, store):
        assert store.get_course_knowledge("missing") is None

    def test_clear_course(self, store):
        store.upsert_course({"id": "1", "name": "A"})
        store.upsert_syllabus("1", "body")
        store.upsert_assignment({"id": "10", "course_id": "1", "name": "Lab"})
        store.add_embedding("1", "10", "assignment", "text", [1.0])
        store.upsert_course({"id": "2", "name": "B"})

        assert store.clear_course("1") is True

        stats = store.stats()
        assert store.get_course_knowledge("1") is None
        assert stats.courses == 1
        assert stats.assignments == 0
        assert stats.syllabi == 0
        assert stats.embeddings == 0

    def test_clear_unknown_course(self, store):
        assert store.clear_course("99") is False
