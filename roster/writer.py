"""
Write phase of an import: insert new students, update returning ones.

Failures here are infrastructure failures. They are recorded per row and the
remaining rows still go through.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from roster import supabase_db
from roster.lookup import lookup_existing_new_students, row_lookup_key
from roster.schema import ErrorDetail, ErrorType, ImportRow, PROTECTED_COLUMNS, STUDENT_COLUMNS
from roster.supabase_db import StoreError
from roster.validate import make_error

logger = logging.getLogger(__name__)


@dataclass
class NewStudentsResult:
    new_count: int = 0
    skipped_count: int = 0
    success: bool = True
    inserted: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[ErrorDetail] = field(default_factory=list)


@dataclass
class ReturningUpdateResult:
    updated_count: int = 0
    unchanged_count: int = 0
    errors: List[ErrorDetail] = field(default_factory=list)


def student_columns(data: Dict[str, Any]) -> Dict[str, Any]:
    """Only the values the students table accepts from an import."""
    return {
        key: value for key, value in data.items()
        if key in STUDENT_COLUMNS and key not in PROTECTED_COLUMNS
    }


def _same_value(csv_value: Any, db_value: Any) -> bool:
    if isinstance(csv_value, list) or isinstance(db_value, list):
        # NULL and an empty list both mean "no values"
        csv_value = [] if csv_value is None else csv_value
        db_value = [] if db_value is None else db_value
        if not isinstance(csv_value, list) or not isinstance(db_value, list):
            return False
        return sorted(str(v) for v in csv_value) == sorted(str(v) for v in db_value)
    return csv_value == db_value


def get_changed_fields(existing: Dict[str, Any], csv_data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Fields of ``csv_data`` whose value differs from the stored record.

    List fields (race) compare by sorted content. id, created_at, created_by,
    student_code and is_returning are never returned.
    """
    changes = {}
    for key, csv_value in student_columns(csv_data).items():
        if not _same_value(csv_value, existing.get(key)):
            changes[key] = csv_value
    return changes


def _existing_description(stored: Dict[str, Any]) -> str:
    name = f"{stored.get('legal_first_name') or ''} {stored.get('legal_last_name') or ''}".strip()
    code = stored.get("student_code") or stored.get("id")
    parts = [p for p in (name, stored.get("email")) if p]
    return f"{code} ({', '.join(parts)})" if parts else str(code)


def duplicate_student_error(row: ImportRow, stored: Dict[str, Any]) -> ErrorDetail:
    return make_error(
        row,
        ErrorType.DUPLICATE_STUDENT,
        f"Student already exists as {_existing_description(stored)}. "
        f"Mark the row as returning with that student code to update it.",
    )


def import_new_students(
    client,
    rows: List[ImportRow],
    created_by: Optional[str] = None,
) -> NewStudentsResult:
    """
    Insert new students in one batch.

    Duplicates are re-checked first because another admin may have added the
    same student since validation ran; those rows are skipped. If the re-check
    itself fails it is reported once as LOOKUP_FAILED and the insert goes ahead.
    A failed insert marks every row in the batch INSERT_FAILED.
    """
    result = NewStudentsResult()
    if not rows:
        return result

    to_insert = list(rows)
    try:
        existing = lookup_existing_new_students(client, rows)
    except StoreError as e:
        logger.warning(f"⚠️ Duplicate re-check failed, inserting without it: {e.message}")
        result.errors.append(
            ErrorDetail(
                row_number=0,
                student_name="Unknown",
                error_type=ErrorType.LOOKUP_FAILED,
                message=f"Could not re-check for duplicates before inserting: {e.message}",
            )
        )
        existing = {}

    if existing:
        to_insert = []
        for row in rows:
            stored = existing.get(row_lookup_key(row))
            if stored is not None:
                result.errors.append(duplicate_student_error(row, stored))
                result.skipped_count += 1
            else:
                to_insert.append(row)

    if not to_insert:
        return result

    try:
        inserted = supabase_db.insert_students(
            client, [student_columns(row.data) for row in to_insert], created_by=created_by
        )
    except StoreError as e:
        result.success = False
        for row in to_insert:
            result.errors.append(
                make_error(row, ErrorType.INSERT_FAILED, f"Failed to insert student: {e.message}")
            )
        return result

    result.inserted = inserted
    result.new_count = len(inserted) if inserted else len(to_insert)
    return result


def update_returning_students(
    client,
    rows: List[ImportRow],
    db_students: Dict[str, Dict[str, Any]],
    updated_by: Optional[str] = None,
) -> ReturningUpdateResult:
    """
    Write only the fields that changed for each returning student.

    A row identical to its stored record is a successful no-op, so running the
    same CSV twice performs no writes the second time.
    """
    result = ReturningUpdateResult()
    for row in rows:
        code = row.student_code
        stored = db_students.get(code) if code else None
        if stored is None:
            result.errors.append(
                make_error(row, ErrorType.STUDENT_CODE_NOT_FOUND, f"No student found with code {code}")
            )
            continue

        changes = get_changed_fields(stored, row.data)
        if not changes:
            result.unchanged_count += 1
            continue

        try:
            updated = supabase_db.update_student(client, stored["id"], changes, updated_by=updated_by)
        except StoreError as e:
            result.errors.append(
                make_error(row, ErrorType.UPDATE_FAILED, f"Failed to update student: {e.message}")
            )
            continue

        # Later rows for the same code diff against the new state
        db_students[code] = {**stored, **changes, **(updated or {})}
        result.updated_count += 1
    return result
