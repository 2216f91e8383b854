"""
Course Context Module

Decides which of a user's Canvas enrollments are "current", "upcoming" or
"recently completed".

Canvas keeps every past enrollment active unless an admin concludes it, so the
plain ``enrollment_state=active`` list is full of old courses. Classification
combines, in priority order:

1. the authoritative ``concluded`` flag and ``workflow_state``
2. term names embedded in the course name/code (e.g. "CS101 Sp25")
3. explicit course start/end dates
4. term dates, with per-enrollment-type overrides
5. a permissive fallback for courses with no date metadata at all

Every "current" verdict carries a confidence score (0-100) that reflects which
kind of evidence decided it. All functions are pure: they take an explicit
``now`` and never modify the course.
"""

import re
import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from .datetime_utils import add_months, parse_canvas_datetime, utc_now

logger = logging.getLogger("canvas_context.course_context")

SEASONS = ("spring", "summer", "fall")

# Short and long spellings of each season as they appear in course names
SEASON_TOKENS = {
    "spring": ("sp", "spring"),
    "summer": ("su", "summer"),
    "fall": ("fa", "fall"),
}

TERM_SEPARATORS = ("", " ", "-", "_")

# Look-ahead / look-back window for upcoming and recently completed courses
TRANSITION_WINDOW = timedelta(days=28)

CONFIDENCE_COURSE_DATES = 50
CONFIDENCE_TERM_DATES = 40
CONFIDENCE_NAME_PATTERN = 35
CONFIDENCE_NO_METADATA = 15

INACTIVE_WORKFLOW_STATES = ("completed", "unpublished")


@dataclass(frozen=True)
class AcademicTerm:
    """A season of a calendar year, e.g. fall 2025."""

    season: str
    year: int

    @property
    def short_year(self) -> str:
        return f"{self.year % 100:02d}"

    @property
    def label(self) -> str:
        return f"{self.season.capitalize()} {self.year}"


@dataclass
class Course:
    """Snapshot of a Canvas course with the metadata used for classification."""

    id: str
    name: str
    course_code: Optional[str] = None
    enrollment_state: Optional[str] = None
    enrollment_type: str = "student"
    start_at: Optional[str] = None
    end_at: Optional[str] = None
    term_name: Optional[str] = None
    term_start_at: Optional[str] = None
    term_end_at: Optional[str] = None
    term_overrides: Optional[Dict[str, Dict[str, Any]]] = None
    concluded: bool = False
    workflow_state: Optional[str] = None

    @property
    def search_text(self) -> str:
        """Lowercased name and course code, the text term patterns are matched against."""
        return f"{self.name or ''} {self.course_code or ''}".lower()

    @property
    def has_date_metadata(self) -> bool:
        return bool(self.start_at or self.end_at or self.term_start_at or self.term_end_at)

    @classmethod
    def from_api(cls, payload: Dict[str, Any], enrollment_state: Optional[str] = None) -> "Course":
        """
        Build a Course from a /api/v1/courses item requested with
        include[]=term, include[]=concluded and include[]=sections.
        """
        term = payload.get("term") or {}
        enrollments = payload.get("enrollments") or []

        if enrollment_state is None and enrollments:
            enrollment_state = enrollments[0].get("enrollment_state")

        return cls(
            id=str(payload.get("id")),
            name=payload.get("name") or payload.get("course_code") or f"Course {payload.get('id')}",
            course_code=payload.get("course_code"),
            enrollment_state=enrollment_state,
            enrollment_type=_enrollment_type(payload),
            start_at=payload.get("start_at"),
            end_at=payload.get("end_at"),
            term_name=term.get("name"),
            term_start_at=term.get("start_at"),
            term_end_at=term.get("end_at"),
            term_overrides=term.get("overrides"),
            concluded=bool(payload.get("concluded")),
            workflow_state=payload.get("workflow_state"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _enrollment_type(payload: Dict[str, Any]) -> str:
    """Derive the user's role from sections[0].enrollment_role, falling back to enrollments[0].type."""
    role = ""
    sections = payload.get("sections") or []
    if sections and sections[0].get("enrollment_role"):
        role = sections[0]["enrollment_role"]
    else:
        enrollments = payload.get("enrollments") or []
        if enrollments:
            role = enrollments[0].get("type") or enrollments[0].get("role") or ""

    role = role.lower()
    if "teacher" in role:
        return "teacher"
    if "ta" in role:
        return "ta"
    if "designer" in role:
        return "designer"
    if "observer" in role:
        return "observer"
    return "student"


@dataclass(frozen=True)
class CurrencyVerdict:
    """Result of classifying one course against a reference time."""

    is_current: bool
    confidence: int = 0
    reason: str = "undetermined"


@dataclass
class CourseContextResult:
    """Courses bucketed by currency. all_active overlaps the other buckets."""

    current: List[Course] = field(default_factory=list)
    upcoming: List[Course] = field(default_factory=list)
    recently_completed: List[Course] = field(default_factory=list)
    all_active: List[Course] = field(default_factory=list)
    confidence: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        def with_confidence(course: Course) -> Dict[str, Any]:
            data = course.to_dict()
            if course.id in self.confidence:
                data["confidence_score"] = self.confidence[course.id]
            data["term_info"] = extract_term_info(course.name, course.course_code)
            return data

        return {
            "current": [with_confidence(c) for c in self.current],
            "upcoming": [c.to_dict() for c in self.upcoming],
            "recently_completed": [c.to_dict() for c in self.recently_completed],
            "all_active_count": len(self.all_active),
            "other_active_count": max(len(self.all_active) - len(self.current), 0),
        }


# =============================================================================
# Term patterns
# =============================================================================

def current_term(now: datetime) -> AcademicTerm:
    """
    Map a date to its academic term.

    January-May is spring, June-August summer, September-December fall.
    """
    if now.month <= 5:
        season = "spring"
    elif now.month <= 8:
        season = "summer"
    else:
        season = "fall"
    return AcademicTerm(season=season, year=now.year)


def term_surface_forms(term: AcademicTerm) -> List[str]:
    """
    Every lowercase spelling of a term that may appear in a course name.

    Combines the short and long season token with the two- and four-digit
    year, in both orders, with each separator in TERM_SEPARATORS.

    Examples:
        >>> forms = term_surface_forms(AcademicTerm("spring", 2025))
        >>> all(f in forms for f in ["25sp", "sp25", "sp 25", "25 sp", "spring-2025"])
        True
    """
    forms: List[str] = []
    for season_token in SEASON_TOKENS[term.season]:
        for year_token in (term.short_year, str(term.year)):
            for sep in TERM_SEPARATORS:
                for form in (f"{season_token}{sep}{year_token}", f"{year_token}{sep}{season_token}"):
                    if form not in forms:
                        forms.append(form)
    return forms


def included_term_patterns(now: datetime) -> List[str]:
    """Surface forms naming the current term."""
    return term_surface_forms(current_term(now))


def excluded_term_patterns(now: datetime) -> List[str]:
    """Surface forms naming the other terms of the current year."""
    term = current_term(now)
    patterns: List[str] = []
    for season in SEASONS:
        if season != term.season:
            patterns.extend(term_surface_forms(AcademicTerm(season, term.year)))
    return patterns


def _surface_form_regex(form: str) -> str:
    # A season token must not run into other letters, a year into other digits
    before = r"(?<![a-z])" if form[0].isalpha() else r"(?<![0-9])"
    after = r"(?![a-z])" if form[-1].isalpha() else r"(?![0-9])"
    return before + re.escape(form) + after


def _first_match(text: str, patterns: Iterable[str]) -> Optional[str]:
    for pattern in patterns:
        if re.search(_surface_form_regex(pattern), text):
            return pattern
    return None


# =============================================================================
# Classification
# =============================================================================

def _term_window(course: Course):
    """Term start/end for the course, with the enrollment-type override applied."""
    term_start = parse_canvas_datetime(course.term_start_at)
    term_end = parse_canvas_datetime(course.term_end_at)

    if course.term_overrides and course.enrollment_type:
        key = f"{course.enrollment_type[:1].upper()}{course.enrollment_type[1:]}Enrollment"
        override = course.term_overrides.get(key)
        if override:
            term_start = parse_canvas_datetime(override.get("start_at")) or term_start
            term_end = parse_canvas_datetime(override.get("end_at")) or term_end

    return term_start, term_end


def classify_course_currency(course: Course, now: Optional[datetime] = None) -> CurrencyVerdict:
    """
    Decide whether a course is currently running.

    Rules are checked in order and the first that applies decides:

    1. concluded flag -> not current
    2. workflow_state completed/unpublished -> not current
    3. name/code names another term of this year -> not current
    4. ended more than one calendar month ago -> not current
    5. now within course start/end -> current (50)
    6. now within term start/end (enrollment override applied) -> current (40)
    7. name/code names the current term -> current (35)
    8. no date metadata at all and workflow_state available -> current (15)
    9. otherwise not current

    Args:
        course: Course snapshot
        now: Reference time (default: current UTC time)

    Returns:
        CurrencyVerdict
    """
    now = now or utc_now()

    if course.concluded:
        return CurrencyVerdict(False, reason="concluded")

    if course.workflow_state in INACTIVE_WORKFLOW_STATES:
        return CurrencyVerdict(False, reason=f"workflow_state:{course.workflow_state}")

    text = course.search_text
    excluded = _first_match(text, excluded_term_patterns(now))
    if excluded:
        return CurrencyVerdict(False, reason=f"other_term_in_name:{excluded}")

    start = parse_canvas_datetime(course.start_at)
    end = parse_canvas_datetime(course.end_at)

    if end and end < add_months(now, -1):
        return CurrencyVerdict(False, reason="ended")

    if start and end and start <= now <= end:
        return CurrencyVerdict(True, CONFIDENCE_COURSE_DATES, "course_dates")

    if course.term_start_at and course.term_end_at:
        term_start, term_end = _term_window(course)
        if term_start and term_end and term_start <= now <= term_end:
            return CurrencyVerdict(True, CONFIDENCE_TERM_DATES, "term_dates")

    included = _first_match(text, included_term_patterns(now))
    if included:
        return CurrencyVerdict(True, CONFIDENCE_NAME_PATTERN, f"term_in_name:{included}")

    if not course.has_date_metadata:
        if course.workflow_state == "available":
            return CurrencyVerdict(True, CONFIDENCE_NO_METADATA, "no_metadata")
        return CurrencyVerdict(False, reason="no_metadata")

    return CurrencyVerdict(False)


def is_course_currently_active(course: Course, now: Optional[datetime] = None) -> bool:
    """True if classify_course_currency considers the course current."""
    return classify_course_currency(course, now).is_current


def is_course_upcoming(course: Course, now: Optional[datetime] = None) -> bool:
    """True if the course (or, lacking course dates, its term) starts within the next 28 days."""
    now = now or utc_now()
    start = parse_canvas_datetime(course.start_at) or parse_canvas_datetime(course.term_start_at)
    if start is None:
        return False
    return now < start <= now + TRANSITION_WINDOW


def is_course_recently_completed(course: Course, now: Optional[datetime] = None) -> bool:
    """True if the course (or, lacking course dates, its term) ended within the last 28 days."""
    now = now or utc_now()
    end = parse_canvas_datetime(course.end_at) or parse_canvas_datetime(course.term_end_at)
    if end is None:
        return False
    return now - TRANSITION_WINDOW <= end < now


def categorize_courses(courses: Iterable[Course], now: Optional[datetime] = None) -> CourseContextResult:
    """
    Partition courses into current, upcoming and recently completed buckets.

    Each course lands in at most one of those three (checked in that order).
    all_active additionally lists every course whose enrollment state is
    'active'. Current courses are ordered by confidence, highest first.

    Args:
        courses: Courses to categorize
        now: Reference time shared by every check (default: current UTC time)

    Returns:
        CourseContextResult
    """
    now = now or utc_now()
    result = CourseContextResult()

    for course in courses:
        if course.enrollment_state == "active":
            result.all_active.append(course)

        verdict = classify_course_currency(course, now)
        if verdict.is_current:
            result.current.append(course)
            result.confidence[course.id] = verdict.confidence
        elif is_course_upcoming(course, now):
            result.upcoming.append(course)
        elif is_course_recently_completed(course, now):
            result.recently_completed.append(course)

    result.current.sort(key=lambda c: result.confidence.get(c.id, 0), reverse=True)

    logger.debug(
        f"Categorized courses: {len(result.current)} current, {len(result.upcoming)} upcoming, "
        f"{len(result.recently_completed)} recently completed, {len(result.all_active)} active"
    )
    return result


# =============================================================================
# Display helpers
# =============================================================================

_YEAR4 = re.compile(r"20\d{2}")
_YEAR2_WITH_SEASON = re.compile(r"(?<!\d)(\d{2})[\s\-_]?(fa|sp|su)(?![a-z])|(?<![a-z])(fa|sp|su)[\s\-_]?(\d{2})(?!\d)")


def extract_term_info(course_name: str, course_code: Optional[str] = None) -> Dict[str, Any]:
    """
    Best-effort parse of the term named in a course title.

    Returns:
        Dict with 'year', 'season' and 'label' (each None if not found)

    Examples:
        >>> extract_term_info("Intro to Art", "ART113 FA25")
        {'year': 2025, 'season': 'fall', 'label': 'Fall 2025'}
    """
    text = f"{course_name or ''} {course_code or ''}".lower()
    short_to_season = {tokens[0]: season for season, tokens in SEASON_TOKENS.items()}

    year = None
    season = None

    short_match = _YEAR2_WITH_SEASON.search(text)
    if short_match:
        yy = short_match.group(1) or short_match.group(4)
        token = short_match.group(2) or short_match.group(3)
        year = 2000 + int(yy)
        season = short_to_season[token]

    year4 = _YEAR4.search(text)
    if year4:
        year = int(year4.group(0))

    if season is None:
        for name in SEASONS:
            if re.search(rf"\b{name}\b", text):
                season = name
                break

    label = f"{season.capitalize()} {year}" if season and year else None
    return {"year": year, "season": season, "label": label}
