"""
Assignments Module

Fetcher for the assignments of a Canvas course.
"""

import logging
from typing import List, Dict, Any, Optional

from .client import get_canvas_client, CanvasClient

logger = logging.getLogger("canvas_context.assignments")

# Fields to include in assignment records
ASSIGNMENT_FIELDS = [
    "name", "description", "due_at", "unlock_at", "lock_at",
    "points_possible", "grading_type", "submission_types", "published",
    "html_url", "has_submitted_submissions", "workflow_state",
    "assignment_group_id", "updated_at",
]


def normalize_assignment(assignment: Dict[str, Any], course_id: str) -> Dict[str, Any]:
    """Reduce a raw Canvas assignment payload to the fields the index stores."""
    result = {"id": str(assignment.get("id")), "course_id": str(course_id)}
    for field in ASSIGNMENT_FIELDS:
        if field in assignment:
            result[field] = assignment[field]
    if not result.get("name"):
        result["name"] = f"Assignment {result['id']}"
    return result


def list_assignments(
    course_id: str,
    client: Optional[CanvasClient] = None
) -> List[Dict[str, Any]]:
    """
    List all assignments in a course.

    Args:
        course_id: Canvas course ID
        client: Optional CanvasClient instance

    Returns:
        List of assignment dicts (description is the raw HTML body)
    """
    canvas = client or get_canvas_client()
    raw = canvas.get_paginated(f"/api/v1/courses/{course_id}/assignments", {"per_page": 100})

    result = [normalize_assignment(a, course_id) for a in raw]
    logger.info(f"Listed {len(result)} assignments for course {course_id}")
    return result
