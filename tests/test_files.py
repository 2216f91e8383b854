"""
Tests for file listing and text extraction.
"""

import io

import pytest
from pypdf import PdfWriter

from canvas_context.files import extract_text, get_file_content, html_to_text, list_files

from conftest import FakeResponse, make_client


class TestHtmlToText:
    """Tests for html_to_text."""

    def test_strips_markup(self):
        html = "<h1>Week 1</h1><p>Read <b>chapter 1</b>.</p><script>alert('x')</script>"

        assert html_to_text(html) == "Week 1\nRead\nchapter 1\n."

    def test_empty(self):
        assert html_to_text(None) == ""
        assert html_to_text("") == ""


class TestExtractText:
    """Tests for extract_text."""

    def test_plain_text(self):
        assert extract_text(b"  lecture notes \n", "text/plain; charset=utf-8") == "lecture notes"

    def test_html(self):
        assert extract_text(b"<p>Hello</p>", "text/html") == "Hello"

    def test_guess_from_filename(self):
        assert extract_text(b'{"a": 1}', None, "data.json") == '{"a": 1}'

    def test_unsupported_type(self):
        assert extract_text(b"\x89PNG", "image/png", "diagram.png") == ""

    def test_empty_data(self):
        assert extract_text(b"", "text/plain") == ""

    def test_pdf_without_text(self):
        writer = PdfWriter()
        writer.add_blank_page(width=200, height=200)
        buffer = io.BytesIO()
        writer.write(buffer)

        assert extract_text(buffer.getvalue(), "application/pdf", "blank.pdf") == ""


class TestListFiles:
    """Tests for list_files."""

    def test_combines_files_tab_and_modules(self):
        client, session = make_client(
            FakeResponse([
                {"id": "1", "display_name": "syllabus.pdf", "content-type": "application/pdf", "size": 100},
            ]),
            FakeResponse([
                {"id": "7", "name": "Week 1", "items": [
                    {"type": "File", "content_id": "1", "title": "syllabus.pdf"},
                    {"type": "File", "content_id": "2", "title": "slides.pdf"},
                    {"type": "Page", "page_url": "intro", "title": "Intro"},
                ]},
            ]),
        )

        files = list_files("42", client=client)

        assert [f["id"] for f in files] == ["1", "2"]
        assert files[0]["module_name"] == "Course Files"
        assert files[1]["module_name"] == "Week 1"
        assert all(f["course_id"] == "42" for f in files)

    def test_hidden_files_tab_is_not_an_error(self):
        client, session = make_client(
            FakeResponse(status_code=403, text="forbidden"),
            FakeResponse([
                {"id": "7", "name": "Week 1", "items": [{"type": "File", "content_id": "3", "title": "reading.txt"}]},
            ]),
        )

        files = list_files("42", client=client)

        assert [f["id"] for f in files] == ["3"]

    def test_disabled_modules_is_not_an_error(self):
        client, session = make_client(
            FakeResponse([{"id": "1", "display_name": "a.txt"}]),
            FakeResponse(status_code=404, text="The modules tool has been disabled"),
        )

        assert [f["id"] for f in list_files("42", client=client)] == ["1"]


class TestGetFileContent:
    """Tests for get_file_content."""

    def test_downloads_and_extracts(self):
        client, session = make_client(
            FakeResponse({
                "id": "5", "display_name": "notes.txt", "url": "https://files.test.edu/notes",
                "content-type": "text/plain", "size": 12,
            }),
            FakeResponse(content=b"Photosynthesis", headers={"Content-Type": "text/plain"}),
        )

        record = get_file_content("42", "5", client=client)

        assert record["content"] == "Photosynthesis"
        assert record["name"] == "notes.txt"
        assert session.get.call_count == 2

    def test_large_file_not_downloaded(self):
        client, session = make_client(
            FakeResponse({
                "id": "6", "display_name": "lecture.mp4", "url": "https://files.test.edu/video",
                "content-type": "video/mp4", "size": 500 * 1024 * 1024,
            }),
        )

        record = get_file_content("42", "6", client=client)

        assert record["content"] == ""
        assert session.get.call_count == 1
