"""
Files Module

Lists the files of a Canvas course (Files tab plus files linked from modules)
and extracts plain text from downloaded files for indexing.

Large files (>10MB by default) are listed but their content is not downloaded.
"""

import io
import logging
import mimetypes
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup
from pypdf import PdfReader

from .client import get_canvas_client, CanvasClient
from .exceptions import PermissionDeniedError, ResourceNotFoundError

logger = logging.getLogger("canvas_context.files")

# Default size threshold for content download (10MB)
DEFAULT_SIZE_THRESHOLD = 10 * 1024 * 1024

TEXT_CONTENT_TYPES = {
    "application/json",
    "application/xml",
    "application/x-yaml",
}

HTML_CONTENT_TYPES = {"text/html", "application/xhtml+xml"}

PDF_CONTENT_TYPE = "application/pdf"


def html_to_text(html: Optional[str]) -> str:
    """Strip markup from an HTML fragment, keeping block boundaries as newlines."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    lines = (line.strip() for line in soup.get_text("\n").splitlines())
    return "\n".join(line for line in lines if line)


def _guess_content_type(content_type: Optional[str], filename: Optional[str]) -> str:
    if content_type:
        return content_type.split(";")[0].strip().lower()
    guessed, _ = mimetypes.guess_type(filename or "")
    return (guessed or "application/octet-stream").lower()


def extract_text(data: bytes, content_type: Optional[str] = None, filename: Optional[str] = None) -> str:
    """
    Extract plain text from file bytes.

    Supports text/*, JSON/XML/YAML, HTML and PDF. Other types return an empty
    string, which the indexer treats as "nothing to embed".

    Args:
        data: Raw file content
        content_type: MIME type reported by Canvas
        filename: File name, used to guess the type when content_type is missing

    Returns:
        Extracted text (may be empty)
    """
    if not data:
        return ""

    kind = _guess_content_type(content_type, filename)

    if kind in HTML_CONTENT_TYPES:
        return html_to_text(data.decode("utf-8", errors="replace"))

    if kind.startswith("text/") or kind in TEXT_CONTENT_TYPES:
        return data.decode("utf-8", errors="replace").strip()

    if kind == PDF_CONTENT_TYPE:
        reader = PdfReader(io.BytesIO(data))
        pages = [(page.extract_text() or "").strip() for page in reader.pages]
        return "\n\n".join(p for p in pages if p)

    logger.debug(f"No text extractor for {filename or 'file'} ({kind})")
    return ""


def normalize_file(file_obj: Dict[str, Any], course_id: str, module_name: Optional[str] = None) -> Dict[str, Any]:
    """Reduce a raw Canvas file payload to the fields the index stores."""
    file_id = str(file_obj.get("id"))
    return {
        "id": file_id,
        "course_id": str(course_id),
        "name": file_obj.get("display_name") or file_obj.get("filename") or f"File {file_id}",
        "url": file_obj.get("url"),
        "content_type": file_obj.get("content-type") or file_obj.get("content_type"),
        "size": file_obj.get("size"),
        "updated_at": file_obj.get("updated_at"),
        "module_name": module_name or "Course Files",
    }


def list_files(
    course_id: str,
    client: Optional[CanvasClient] = None
) -> List[Dict[str, Any]]:
    """
    List files in a course from the Files tab and from module items.

    The Files tab is often hidden from students, so a 403/404 there is not an
    error; files reachable through modules are still returned.

    Args:
        course_id: Canvas course ID
        client: Optional CanvasClient instance

    Returns:
        List of file dicts, de-duplicated by file ID
    """
    canvas = client or get_canvas_client()
    files: Dict[str, Dict[str, Any]] = {}

    try:
        for file_obj in canvas.get_paginated(f"/api/v1/courses/{course_id}/files", {"per_page": 100}):
            record = normalize_file(file_obj, course_id)
            files[record["id"]] = record
    except (ResourceNotFoundError, PermissionDeniedError) as e:
        logger.debug(f"Files tab unavailable for course {course_id}: {e}")

    try:
        modules = canvas.get_paginated(
            f"/api/v1/courses/{course_id}/modules",
            {"include": ["items"], "per_page": 100},
        )
    except (ResourceNotFoundError, PermissionDeniedError) as e:
        logger.debug(f"Modules unavailable for course {course_id}: {e}")
        modules = []

    for module in modules:
        for item in module.get("items") or []:
            if item.get("type") != "File" or item.get("content_id") is None:
                continue
            file_id = str(item["content_id"])
            if file_id in files:
                continue
            files[file_id] = {
                "id": file_id,
                "course_id": str(course_id),
                "name": item.get("title") or f"File {file_id}",
                "url": None,
                "content_type": None,
                "size": None,
                "updated_at": item.get("updated_at"),
                "module_name": module.get("name"),
            }

    result = list(files.values())
    logger.info(f"Listed {len(result)} files for course {course_id}")
    return result


def get_file_content(
    course_id: str,
    file_id: str,
    client: Optional[CanvasClient] = None,
    size_threshold: int = DEFAULT_SIZE_THRESHOLD
) -> Dict[str, Any]:
    """
    Fetch a file's metadata and extract its text content.

    Args:
        course_id: Canvas course ID
        file_id: Canvas file ID
        client: Optional CanvasClient instance
        size_threshold: Files larger than this are not downloaded

    Returns:
        File dict with an added 'content' key (empty string if not extractable)
    """
    canvas = client or get_canvas_client()
    file_obj = canvas.get(f"/api/v1/courses/{course_id}/files/{file_id}")
    record = normalize_file(file_obj, course_id)

    size = record.get("size") or 0
    if size > size_threshold:
        logger.info(f"Skipping content of {record['name']} ({size:,} bytes exceeds threshold)")
        record["content"] = ""
        return record

    if not record.get("url"):
        record["content"] = ""
        return record

    response = canvas.download(record["url"])
    content_type = record.get("content_type") or response.headers.get("Content-Type")
    record["content"] = extract_text(response.content, content_type, record["name"])
    return record
