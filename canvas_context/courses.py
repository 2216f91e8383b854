"""
Courses Module

Fetchers for the current user's Canvas courses and course syllabi.
"""

import logging
from typing import Any, Dict, List, Optional

from .client import get_canvas_client, CanvasClient
from .course_context import Course

logger = logging.getLogger("canvas_context.courses")

# Extra course data needed by the currency classifier
COURSE_CONTEXT_INCLUDES = ["term", "concluded", "sections"]


def normalize_course(course: Dict[str, Any]) -> Dict[str, Any]:
    """Reduce a raw Canvas course payload to the fields the index stores."""
    course_id = str(course.get("id"))
    return {
        "id": course_id,
        "name": course.get("name") or course.get("course_code") or f"Course {course_id}",
        "course_code": course.get("course_code", ""),
        "enrollment_state": course.get("enrollment_state"),
        "workflow_state": course.get("workflow_state"),
        "start_at": course.get("start_at"),
        "end_at": course.get("end_at"),
        "nickname": course.get("nickname"),
    }


def list_courses(
    enrollment_state: str = "active",
    client: Optional[CanvasClient] = None
) -> List[Dict[str, Any]]:
    """
    List courses for the current user.

    Args:
        enrollment_state: Filter by state ('active', 'completed', 'all')
        client: Optional CanvasClient instance

    Returns:
        List of course dicts sorted by name
    """
    canvas = client or get_canvas_client()

    params: Dict[str, Any] = {"per_page": 100}
    if enrollment_state != "all":
        params["enrollment_state"] = enrollment_state

    raw_courses = canvas.get_paginated("/api/v1/courses", params)
    courses = [normalize_course(c) for c in raw_courses if c.get("id") is not None]
    courses.sort(key=lambda c: c["name"].lower())

    logger.info(f"Listed {len(courses)} courses (enrollment_state={enrollment_state})")
    return courses


def list_courses_with_dates(
    enrollment_state: str = "active",
    client: Optional[CanvasClient] = None
) -> List[Course]:
    """
    List courses with term, concluded and section data for currency classification.

    Args:
        enrollment_state: Filter by enrollment state (default 'active')
        client: Optional CanvasClient instance

    Returns:
        List of Course objects
    """
    canvas = client or get_canvas_client()

    raw_courses = canvas.get_paginated("/api/v1/courses", {
        "enrollment_state": enrollment_state,
        "include": COURSE_CONTEXT_INCLUDES,
        "per_page": 100,
    })

    courses = [Course.from_api(c, enrollment_state=enrollment_state) for c in raw_courses if c.get("id") is not None]
    logger.info(f"Fetched {len(courses)} courses with date metadata")
    return courses


def get_course_syllabus(
    course_id: str,
    client: Optional[CanvasClient] = None
) -> Dict[str, Any]:
    """
    Get a course's syllabus body.

    Args:
        course_id: Canvas course ID
        client: Optional CanvasClient instance

    Returns:
        Dict with course_id, body (HTML or None) and url
    """
    canvas = client or get_canvas_client()
    course = canvas.get(f"/api/v1/courses/{course_id}", {"include": ["syllabus_body"]})

    return {
        "course_id": str(course_id),
        "body": course.get("syllabus_body") or None,
        "url": f"{canvas.base_url}/courses/{course_id}/assignments/syllabus",
    }
