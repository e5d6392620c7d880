"""
Validation module: data-quality checks on classified import rows.

Every check returns ErrorDetail entries instead of raising, so a single pass
can report all problems in the file at once. Any entry produced here stops
the import before it writes anything.
"""

from collections import defaultdict
from typing import Dict, List, Optional

from roster.schema import (
    COURSE_PLACEMENTS,
    EMAIL_PATTERN,
    ErrorDetail,
    ErrorType,
    ImportRow,
    InvalidRow,
    Program,
)


def make_error(row: ImportRow, error_type: ErrorType, message: str) -> ErrorDetail:
    """Build an ErrorDetail carrying the row's name and code."""
    return ErrorDetail(
        row_number=row.row_number,
        student_name=row.display_name,
        student_code=row.student_code,
        error_type=error_type,
        message=message,
    )


def invalid_rows_to_errors(invalid_rows: List[InvalidRow]) -> List[ErrorDetail]:
    return [make_error(invalid.row, invalid.error_type, invalid.error) for invalid in invalid_rows]


def validate_placement(row: ImportRow) -> Optional[ErrorDetail]:
    """Every row needs a placement from the enum; HCP rows get None when it could not be derived."""
    placement = row.data.get("course_placement")
    if placement in COURSE_PLACEMENTS:
        return None
    if row.data.get("program") == Program.HCP.value:
        return make_error(
            row,
            ErrorType.VALIDATION_ERROR,
            "Placement Decision is missing or does not match an HCP course",
        )
    return make_error(row, ErrorType.VALIDATION_ERROR, f"Invalid course placement: {placement}")


def validate_new_student(row: ImportRow) -> List[ErrorDetail]:
    """
    Required fields for a new student:
        - first or last name
        - a well-formed email (used for duplicate detection)
        - a valid course placement
    """
    errors = []
    data = row.data

    if not data.get("legal_first_name") and not data.get("legal_last_name"):
        errors.append(make_error(row, ErrorType.MISSING_NAME, "Missing both first and last name"))

    email = data.get("email")
    if not email:
        errors.append(make_error(row, ErrorType.MISSING_EMAIL, "Missing email"))
    elif not EMAIL_PATTERN.match(email):
        errors.append(make_error(row, ErrorType.INVALID_EMAIL, f"Invalid email address: {email}"))

    placement_error = validate_placement(row)
    if placement_error:
        errors.append(placement_error)

    return errors


def validate_returning_student(row: ImportRow) -> List[ErrorDetail]:
    """Returning rows are matched by code; only the placement and an optional email are checked."""
    errors = []
    email = row.data.get("email")
    if email and not EMAIL_PATTERN.match(email):
        errors.append(make_error(row, ErrorType.INVALID_EMAIL, f"Invalid email address: {email}"))
    placement_error = validate_placement(row)
    if placement_error:
        errors.append(placement_error)
    return errors


def _rows_sharing(rows: List[ImportRow], key_name: str) -> Dict[str, List[ImportRow]]:
    groups: Dict[str, List[ImportRow]] = defaultdict(list)
    for row in rows:
        value = row.data.get(key_name)
        if isinstance(value, str) and value.strip():
            groups[value.strip().lower()].append(row)
    return {key: group for key, group in groups.items() if len(group) > 1}


def find_duplicates_in_csv(rows: List[ImportRow], key_name: str, label: str) -> List[ErrorDetail]:
    """
    Report every row whose ``key_name`` value appears on another row.
    Each message names the other rows so the admin can fix the sheet directly.
    """
    errors = []
    for value, group in _rows_sharing(rows, key_name).items():
        for row in group:
            others = ", ".join(str(other.row_number) for other in group if other is not row)
            errors.append(
                make_error(
                    row,
                    ErrorType.DUPLICATE_IN_CSV,
                    f"Duplicate {label} {value} also appears in row(s) {others}",
                )
            )
    return sorted(errors, key=lambda e: e.row_number)
