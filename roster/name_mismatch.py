"""
Name-mismatch detection for returning students.

A returning row is matched to its stored record by student code. If the names
disagree the row is held back until an admin approves the CSV name, supplies a
corrected one, or skips the row.
"""

from typing import Any, Dict, List, Optional

from roster.schema import ImportRow, NameMismatch, NameMismatchDecision


def _clean(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def names_match(csv_first: Any, csv_last: Any, db_first: Any, db_last: Any) -> bool:
    """Case-insensitive comparison after trimming."""
    return (
        _clean(csv_first).lower() == _clean(db_first).lower()
        and _clean(csv_last).lower() == _clean(db_last).lower()
    )


def detect_name_mismatches(
    returning_rows: List[ImportRow],
    db_students: Dict[str, Dict[str, Any]],
) -> List[NameMismatch]:
    """
    Compare each returning row's name with the stored record for its code.
    Rows whose code has no stored record are skipped; they are reported as
    STUDENT_CODE_NOT_FOUND elsewhere.
    """
    mismatches = []
    for row in returning_rows:
        code = row.student_code
        if not code:
            continue
        stored = db_students.get(code)
        if stored is None:
            continue

        csv_first = row.data.get("legal_first_name")
        csv_last = row.data.get("legal_last_name")
        db_first = stored.get("legal_first_name")
        db_last = stored.get("legal_last_name")

        if not names_match(csv_first, csv_last, db_first, db_last):
            mismatches.append(
                NameMismatch(
                    student_code=code,
                    db_first_name=_clean(db_first),
                    db_last_name=_clean(db_last),
                    csv_first_name=_clean(csv_first),
                    csv_last_name=_clean(csv_last),
                    csv_row=row.data,
                    row_number=row.row_number,
                )
            )
    return mismatches


def resolve_decisions(
    mismatches: List[NameMismatch],
    decisions: List[NameMismatchDecision],
) -> Dict[str, NameMismatchDecision]:
    """
    One decision per mismatched code. Codes the admin left alone default to skip;
    decisions for codes that are not pending are ignored.
    """
    given = {decision.student_code: decision for decision in decisions}
    resolved = {}
    for mismatch in mismatches:
        resolved[mismatch.student_code] = given.get(
            mismatch.student_code,
            NameMismatchDecision(student_code=mismatch.student_code, action="skip"),
        )
    return resolved


def apply_decision(row: ImportRow, decision: Optional[NameMismatchDecision]) -> Optional[ImportRow]:
    """
    Row to write after the admin's decision, or None when it is skipped.

    approve -> CSV names unchanged
    edit    -> admin-supplied names replace the CSV names
    skip    -> None
    """
    if decision is None or decision.action == "skip":
        return None
    if decision.action == "approve":
        return row
    data = dict(row.data)
    # A blank replacement keeps the CSV value for that half of the name
    if decision.first_name:
        data["legal_first_name"] = decision.first_name
    if decision.last_name:
        data["legal_last_name"] = decision.last_name
    return ImportRow(row_number=row.row_number, data=data)
