"""
Search, filter, sort and paginate the students list.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

PAGE_SIZE = 10
ALL = "all"

# Columns the list page needs
LIST_FIELDS = [
    "id",
    "student_code",
    "legal_first_name",
    "legal_last_name",
    "preferred_name",
    "email",
    "phone",
    "program",
    "course_placement",
    "enrollment_status",
]


@dataclass
class StudentPage:
    students: List[Dict[str, Any]]
    page: int
    total_pages: int
    total_count: int
    matched_count: int


def display_name(student: Dict[str, Any]) -> str:
    """Preferred name (else legal first name) followed by the last name."""
    first = student.get("preferred_name") or student.get("legal_first_name") or ""
    last = student.get("legal_last_name") or ""
    return f"{first} {last}".strip()


def filter_students(
    students: List[Dict[str, Any]],
    search: str = "",
    program: Optional[str] = ALL,
    course: Optional[str] = ALL,
) -> List[Dict[str, Any]]:
    term = (search or "").strip().lower()
    matched = []
    for student in students:
        if term and term not in display_name(student).lower() and term not in (student.get("email") or "").lower():
            continue
        if program and program != ALL and student.get("program") != program:
            continue
        if course and course != ALL and student.get("course_placement") != course:
            continue
        matched.append(student)
    return matched


def sort_students(students: List[Dict[str, Any]], order: str = "asc") -> List[Dict[str, Any]]:
    return sorted(students, key=lambda s: display_name(s).lower(), reverse=(order == "desc"))


def paginate(students: List[Dict[str, Any]], page: int = 1, page_size: int = PAGE_SIZE) -> List[Dict[str, Any]]:
    start = (page - 1) * page_size
    return students[start:start + page_size]


def build_student_page(
    students: List[Dict[str, Any]],
    search: str = "",
    program: Optional[str] = ALL,
    course: Optional[str] = ALL,
    order: str = "asc",
    page: int = 1,
) -> StudentPage:
    """One page of the students list; out-of-range pages are clamped."""
    matched = sort_students(filter_students(students, search, program, course), order)
    total_pages = max(1, math.ceil(len(matched) / PAGE_SIZE))
    page = min(max(1, page), total_pages)
    return StudentPage(
        students=paginate(matched, page),
        page=page,
        total_pages=total_pages,
        total_count=len(students),
        matched_count=len(matched),
    )
