"""
Classification: splits mapped rows into new, returning and invalid students.
Runs before any lookup so malformed rows never reach the database.
"""

from dataclasses import dataclass, field
from typing import Any, List, Tuple

from roster.schema import ErrorType, ImportRow, InvalidRow, STUDENT_CODE_PATTERN


@dataclass
class ClassificationResult:
    """Disjoint buckets; every input row lands in exactly one."""
    new_students: List[ImportRow] = field(default_factory=list)
    returning_students: List[ImportRow] = field(default_factory=list)
    invalid_students: List[InvalidRow] = field(default_factory=list)


def validate_is_returning(is_returning: Any) -> Tuple[bool, str]:
    """
    Returns (valid, normalized_or_error).
    """
    if is_returning is None or is_returning == "":
        return False, "Missing is_returning field"
    if isinstance(is_returning, str) and is_returning.lower() in ("yes", "no"):
        return True, is_returning.lower()
    return False, f'Invalid is_returning value: {is_returning}. Must be "yes" or "no"'


def validate_student_code(student_code: Any) -> Tuple[bool, str]:
    """
    Returns (valid, normalized_or_error).
    """
    if student_code is None or student_code == "":
        return False, "Missing student_code"
    if not isinstance(student_code, str):
        return False, f"Invalid student_code type: {type(student_code).__name__}"
    normalized = student_code.strip().upper()
    if STUDENT_CODE_PATTERN.match(normalized):
        return True, normalized
    return False, f"Invalid student_code format: {student_code}. Must be STU-XXXXX (1-5 digits)"


def split_students_by_returning_status(rows: List[ImportRow]) -> ClassificationResult:
    """
    Sort rows by their declared returning status.

    - missing / unrecognized is_returning -> invalid (VALIDATION_ERROR)
    - "yes" without a well-formed code -> invalid (MISSING_STUDENT_CODE)
    - "yes" with a code -> returning
    - "no" -> new, with any stray code removed (the store issues codes)
    """
    result = ClassificationResult()

    for row in rows:
        valid, normalized = validate_is_returning(row.data.get("is_returning"))
        if not valid:
            result.invalid_students.append(
                InvalidRow(row=row, error=normalized, error_type=ErrorType.VALIDATION_ERROR)
            )
            continue

        if normalized == "yes":
            code_ok, code = validate_student_code(row.data.get("student_code"))
            if not code_ok:
                result.invalid_students.append(
                    InvalidRow(row=row, error=code, error_type=ErrorType.MISSING_STUDENT_CODE)
                )
                continue
            data = dict(row.data)
            data["student_code"] = code
            result.returning_students.append(ImportRow(row_number=row.row_number, data=data))
        else:
            data = dict(row.data)
            data.pop("student_code", None)
            result.new_students.append(ImportRow(row_number=row.row_number, data=data))

    return result
