"""
Error report helpers for a finished import: grouping, filtering, CSV/clipboard
export and the summary line shown after an import.
"""

import csv
import io
from datetime import date
from typing import Dict, List, Optional, Tuple

from roster.schema import ErrorDetail, ImportBatchResult, SYSTEM_ERROR_TYPES

OTHER = "OTHER"
ALL = "all"

CSV_HEADERS = ["Row Number", "Student Name", "Student Code", "Error Type", "Error Message"]
CLIPBOARD_HEADERS = ["Row", "Student Name", "Student Code", "Error Type", "Error Message"]


def error_type_name(error: ErrorDetail) -> str:
    return error.error_type.value if error.error_type else OTHER


def error_type_label(type_name: str) -> str:
    """'DUPLICATE_IN_CSV' -> 'DUPLICATE IN CSV'"""
    return type_name.replace("_", " ")


def group_errors_by_type(errors: List[ErrorDetail]) -> Dict[str, List[ErrorDetail]]:
    """Errors keyed by type name, keys in sorted order. Untyped errors go under OTHER."""
    groups: Dict[str, List[ErrorDetail]] = {}
    for error in errors:
        groups.setdefault(error_type_name(error), []).append(error)
    return {key: groups[key] for key in sorted(groups)}


def filter_errors(errors: List[ErrorDetail], error_type: Optional[str] = ALL) -> List[ErrorDetail]:
    if not error_type or error_type == ALL:
        return list(errors)
    return [error for error in errors if error_type_name(error) == error_type]


def is_system_error(error: ErrorDetail) -> bool:
    return error.error_type in SYSTEM_ERROR_TYPES


def split_errors(errors: List[ErrorDetail]) -> Tuple[List[ErrorDetail], List[ErrorDetail]]:
    """Returns (system errors, student-specific errors), each in original order."""
    system = [error for error in errors if is_system_error(error)]
    student = [error for error in errors if not is_system_error(error)]
    return system, student


def _error_cells(error: ErrorDetail) -> List[str]:
    return [
        str(error.row_number),
        error.student_name,
        error.student_code or "",
        error_type_name(error),
        error.message,
    ]


def errors_to_csv(errors: List[ErrorDetail]) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(CSV_HEADERS)
    for error in errors:
        writer.writerow(_error_cells(error))
    return output.getvalue()


def error_csv_filename(today: Optional[date] = None) -> str:
    return f"import-errors-{(today or date.today()).isoformat()}.csv"


def errors_to_clipboard_text(errors: List[ErrorDetail]) -> str:
    """Tab-separated lines that paste cleanly into a spreadsheet."""
    lines = ["\t".join(CLIPBOARD_HEADERS)]
    for error in errors:
        cells = [cell.replace("\t", " ").replace("\n", " ") for cell in _error_cells(error)]
        lines.append("\t".join(cells))
    return "\n".join(lines)


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}{'' if count == 1 else 's'}"


def summary_message(result: ImportBatchResult) -> str:
    """
    One-line summary of a finished import.

    All rows written -> "Successfully imported 2 new students and updated 1 returning student!"
    Otherwise        -> "Import completed: 2 new, 1 skipped, 1 failed. Click to view errors."
    """
    if result.failed_count == 0 and result.skipped_count == 0 and not result.errors:
        return (
            f"Successfully imported {_plural(result.new_count, 'new student')} "
            f"and updated {_plural(result.updated_count, 'returning student')}!"
        )

    parts = []
    if result.new_count:
        parts.append(f"{result.new_count} new")
    if result.updated_count:
        parts.append(f"{result.updated_count} updated")
    if result.unchanged_count:
        parts.append(f"{result.unchanged_count} unchanged")
    if result.skipped_count:
        parts.append(f"{result.skipped_count} skipped")
    if result.failed_count:
        parts.append(f"{result.failed_count} failed")
    if not parts:
        parts.append("no changes")

    message = f"Import completed: {', '.join(parts)}."
    if result.failed_count or any(is_system_error(error) for error in result.errors):
        message += " Click to view errors."
    return message


def aborted_message(result: ImportBatchResult) -> str:
    return (
        f"Import aborted: {_plural(len(result.errors), 'error')} found in the file. "
        f"No students were imported or updated. Fix the file and upload it again."
    )


def awaiting_message(mismatch_count: int, result: ImportBatchResult) -> str:
    written = []
    if result.new_count:
        written.append(f"{result.new_count} new")
    if result.updated_count:
        written.append(f"{result.updated_count} updated")
    prefix = f"Imported {', '.join(written)}. " if written else ""
    return (
        f"{prefix}{_plural(mismatch_count, 'returning student')} "
        f"{'has' if mismatch_count == 1 else 'have'} a name that differs from the stored record. "
        f"Review before those rows are written."
    )
