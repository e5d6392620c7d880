"""
Import runner: orchestrates a CSV import from upload to final report.

Runs read → classify → validate new → validate returning → write new →
write returning, and pauses for admin decisions when returning students'
names differ from the stored records.

Two-phase protocol:
    start_import   - phase 1; writes everything that needs no decision and
                     returns the pending name mismatches (if any)
    resume_import  - phase 2; applies the admin's decisions to the paused rows
    cancel_import  - abandons the paused rows; phase 1 writes stay
"""

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from roster import import_store
from roster.classify import split_students_by_returning_status
from roster.csv_mapper import CSVParseError, build_import_rows, parse_csv_records
from roster.error_report import aborted_message, awaiting_message, summary_message
from roster.import_store import ImportReport, PendingImport
from roster.lookup import lookup_existing_new_students, lookup_returning_students, row_lookup_key
from roster.name_mismatch import apply_decision, detect_name_mismatches, resolve_decisions
from roster.schema import (
    ErrorDetail,
    ErrorType,
    ImportBatchResult,
    ImportOutcome,
    ImportRow,
    ImportStatus,
    NameMismatch,
    NameMismatchDecision,
    Program,
)
from roster.supabase_db import StoreError
from roster.validate import (
    find_duplicates_in_csv,
    invalid_rows_to_errors,
    make_error,
    validate_new_student,
    validate_returning_student,
)
from roster.writer import (
    duplicate_student_error,
    import_new_students,
    update_returning_students,
)

logger = logging.getLogger(__name__)


class ImportState(str, Enum):
    READING = "READING"
    VALIDATING_NEW = "VALIDATING_NEW"
    VALIDATING_RETURNING = "VALIDATING_RETURNING"
    ABORTED = "ABORTED"
    WRITING_NEW = "WRITING_NEW"
    WRITING_RETURNING = "WRITING_RETURNING"
    AWAITING_DECISIONS = "AWAITING_DECISIONS"
    DONE = "DONE"
    CANCELLED = "CANCELLED"


class ImportNotFound(Exception):
    """No paused or finished import with this id belongs to the caller."""


@dataclass
class _Totals:
    """Running counts for one import across both phases."""
    new_count: int = 0
    updated_count: int = 0
    unchanged_count: int = 0
    skipped_count: int = 0
    errors: List[ErrorDetail] = field(default_factory=list)
    skipped_rows: Set[int] = field(default_factory=set)

    @classmethod
    def from_pending(cls, pending: PendingImport) -> "_Totals":
        partial = pending.partial
        return cls(
            new_count=partial.new_count,
            updated_count=partial.updated_count,
            unchanged_count=partial.unchanged_count,
            skipped_count=partial.skipped_count,
            errors=list(partial.errors),
            skipped_rows=set(pending.skipped_rows),
        )

    def skip(self, error: ErrorDetail) -> None:
        self.errors.append(error)
        self.skipped_count += 1
        self.skipped_rows.add(error.row_number)

    def failed_count(self) -> int:
        # Row 0 marks errors about the whole batch rather than one row
        rows = {
            error.row_number for error in self.errors
            if error.error_type != ErrorType.NAME_MISMATCH_SKIPPED and error.row_number > 0
        }
        return len(rows - self.skipped_rows)

    def to_result(self) -> ImportBatchResult:
        return ImportBatchResult(
            new_count=self.new_count,
            updated_count=self.updated_count,
            unchanged_count=self.unchanged_count,
            skipped_count=self.skipped_count,
            failed_count=self.failed_count(),
            errors=sorted(self.errors, key=lambda e: e.row_number),
        )


def _enter(import_id: str, state: ImportState) -> None:
    logger.info(f"🔄 Import {import_id}: {state.value}")


def _run_error(message: str, error_type: ErrorType) -> ErrorDetail:
    return ErrorDetail(row_number=0, student_name="Unknown", error_type=error_type, message=message)


def _finish(
    import_id: str,
    owner_id: Optional[str],
    status: ImportStatus,
    totals: _Totals,
) -> ImportOutcome:
    result = totals.to_result()
    import_store.save_report(
        ImportReport(import_id=import_id, owner_id=owner_id, status=status, result=result)
    )
    message = aborted_message(result) if status == ImportStatus.ABORTED else summary_message(result)
    logger.info(
        f"✅ Import {import_id} {status.value}: {result.new_count} new, {result.updated_count} updated, "
        f"{result.unchanged_count} unchanged, {result.skipped_count} skipped, {result.failed_count} failed"
    )
    return ImportOutcome(import_id=import_id, status=status, result=result, message=message)


def validate_new_rows(client, rows: List[ImportRow]) -> List[ErrorDetail]:
    """
    Data-quality checks for new students, including duplicates inside the
    file and against stored students. A failed lookup is reported once.
    """
    errors: List[ErrorDetail] = []
    for row in rows:
        errors.extend(validate_new_student(row))
    errors.extend(find_duplicates_in_csv(rows, "email", "email"))
    if not rows:
        return errors

    try:
        existing = lookup_existing_new_students(client, rows)
    except StoreError as e:
        errors.append(_run_error(f"Could not check for existing students: {e.message}", ErrorType.LOOKUP_FAILED))
        return errors

    for row in rows:
        stored = existing.get(row_lookup_key(row))
        if stored is not None:
            errors.append(duplicate_student_error(row, stored))
    return errors


def validate_returning_rows(client, rows: List[ImportRow]):
    """
    Data-quality checks for returning students.

    Returns:
        (errors, {student_code: stored record}, name mismatches)
    """
    errors: List[ErrorDetail] = []
    for row in rows:
        errors.extend(validate_returning_student(row))
    errors.extend(find_duplicates_in_csv(rows, "student_code", "student code"))
    if not rows:
        return errors, {}, []

    try:
        db_students = lookup_returning_students(client, [row.student_code for row in rows])
    except StoreError as e:
        errors.append(_run_error(f"Could not look up returning students: {e.message}", ErrorType.LOOKUP_FAILED))
        return errors, {}, []

    for row in rows:
        if row.student_code not in db_students:
            errors.append(
                make_error(row, ErrorType.STUDENT_CODE_NOT_FOUND, f"No student found with code {row.student_code}")
            )

    return errors, db_students, detect_name_mismatches(rows, db_students)


def start_import(
    client,
    file_bytes: bytes,
    program: Program,
    course_placement: Optional[str] = None,
    user_id: Optional[str] = None,
) -> ImportOutcome:
    """
    Phase 1 of an import.

    Nothing is written unless every row passes validation. Rows that need no
    decision are then written; returning rows with a name mismatch are held
    in the import store and reported back as ``awaiting_decisions``.

    Raises:
        CSVParseError: if the file is unreadable or has no data rows.
    """
    import_id = uuid.uuid4().hex
    totals = _Totals()

    # Stage 1: Read and map
    _enter(import_id, ImportState.READING)
    records = parse_csv_records(file_bytes)
    if not records:
        raise CSVParseError("CSV file has no data rows")
    rows = build_import_rows(
        [row for _, row in records], program, course_placement, [number for number, _ in records]
    )
    logger.info(f"📥 Import {import_id}: {len(rows)} row(s) for {Program(program).value} by {user_id}")

    writing = False
    try:
        classified = split_students_by_returning_status(rows)

        # Stage 2: Validate new students
        _enter(import_id, ImportState.VALIDATING_NEW)
        errors = invalid_rows_to_errors(classified.invalid_students)
        errors.extend(validate_new_rows(client, classified.new_students))

        # Stage 3: Validate returning students
        _enter(import_id, ImportState.VALIDATING_RETURNING)
        returning_errors, db_students, mismatches = validate_returning_rows(client, classified.returning_students)
        errors.extend(returning_errors)

        if errors:
            _enter(import_id, ImportState.ABORTED)
            totals.errors = errors
            return _finish(import_id, user_id, ImportStatus.ABORTED, totals)

        # Stage 4: Insert new students
        writing = True
        _enter(import_id, ImportState.WRITING_NEW)
        inserted = import_new_students(client, classified.new_students, created_by=user_id)
        totals.new_count += inserted.new_count
        for error in inserted.errors:
            if error.error_type == ErrorType.DUPLICATE_STUDENT:
                totals.skip(error)
            else:
                totals.errors.append(error)

        # Stage 5: Update returning students whose names agree
        _enter(import_id, ImportState.WRITING_RETURNING)
        held_codes = {mismatch.student_code for mismatch in mismatches}
        ready = [row for row in classified.returning_students if row.student_code not in held_codes]
        held = [row for row in classified.returning_students if row.student_code in held_codes]
        updated = update_returning_students(client, ready, db_students, updated_by=user_id)
        totals.updated_count += updated.updated_count
        totals.unchanged_count += updated.unchanged_count
        totals.errors.extend(updated.errors)

    except Exception as e:
        logger.exception(f"❌ Import {import_id} failed unexpectedly: {e}")
        totals.errors.append(_run_error(f"Unexpected error during import: {e}", ErrorType.UNKNOWN_ERROR))
        status = ImportStatus.COMPLETED if writing else ImportStatus.ABORTED
        _enter(import_id, ImportState.DONE if writing else ImportState.ABORTED)
        return _finish(import_id, user_id, status, totals)

    if held:
        _enter(import_id, ImportState.AWAITING_DECISIONS)
        pending = PendingImport(
            import_id=import_id,
            owner_id=user_id,
            program=Program(program).value,
            rows=held,
            mismatches=mismatches,
            db_students={code: db_students[code] for code in held_codes},
            partial=totals.to_result(),
            skipped_rows=sorted(totals.skipped_rows),
        )
        import_store.save_pending(pending)
        return ImportOutcome(
            import_id=import_id,
            status=ImportStatus.AWAITING_DECISIONS,
            result=pending.partial,
            mismatches=mismatches,
            message=awaiting_message(len(mismatches), pending.partial),
        )

    _enter(import_id, ImportState.DONE)
    return _finish(import_id, user_id, ImportStatus.COMPLETED, totals)


def _load_owned_pending(import_id: str, user_id: Optional[str]) -> PendingImport:
    pending = import_store.load_pending(import_id)
    if pending is None or pending.owner_id != user_id:
        raise ImportNotFound(import_id)
    return pending


def resume_import(
    client,
    import_id: str,
    decisions: List[NameMismatchDecision],
    user_id: Optional[str] = None,
) -> ImportOutcome:
    """
    Phase 2: write the paused rows according to the admin's decisions.

    A mismatch with no decision is skipped. Counts in the returned result
    cover both phases.

    Raises:
        ImportNotFound: unknown id, already finished, or started by someone else.
    """
    pending = _load_owned_pending(import_id, user_id)
    totals = _Totals.from_pending(pending)
    resolved = resolve_decisions(pending.mismatches, decisions)

    _enter(import_id, ImportState.WRITING_RETURNING)
    try:
        to_write: List[ImportRow] = []
        for row in pending.rows:
            decision = resolved.get(row.student_code)
            decided = apply_decision(row, decision)
            if decided is None:
                totals.skip(
                    make_error(row, ErrorType.NAME_MISMATCH_SKIPPED, _skipped_message(row, pending.mismatches))
                )
            else:
                to_write.append(decided)

        updated = update_returning_students(client, to_write, dict(pending.db_students), updated_by=user_id)
        totals.updated_count += updated.updated_count
        totals.unchanged_count += updated.unchanged_count
        totals.errors.extend(updated.errors)
    except Exception as e:
        logger.exception(f"❌ Import {import_id} failed unexpectedly while resuming: {e}")
        totals.errors.append(_run_error(f"Unexpected error during import: {e}", ErrorType.UNKNOWN_ERROR))

    import_store.delete_pending(import_id)
    _enter(import_id, ImportState.DONE)
    return _finish(import_id, user_id, ImportStatus.COMPLETED, totals)


def cancel_import(import_id: str, user_id: Optional[str] = None) -> ImportOutcome:
    """
    Abandon the paused rows. Students written in phase 1 stay written.

    Raises:
        ImportNotFound: unknown id, already finished, or started by someone else.
    """
    pending = _load_owned_pending(import_id, user_id)
    totals = _Totals.from_pending(pending)
    for row in pending.rows:
        totals.skip(
            make_error(row, ErrorType.NAME_MISMATCH_SKIPPED, "Import cancelled before a name decision was made")
        )

    import_store.delete_pending(import_id)
    _enter(import_id, ImportState.CANCELLED)
    return _finish(import_id, user_id, ImportStatus.CANCELLED, totals)


def get_import_report(import_id: str, user_id: Optional[str] = None) -> ImportReport:
    """
    Report of a finished import, or the partial report of a paused one.

    Raises:
        ImportNotFound: unknown id or started by someone else.
    """
    report = import_store.load_report(import_id)
    if report is None:
        pending = import_store.load_pending(import_id)
        if pending is not None:
            report = ImportReport(
                import_id=import_id,
                owner_id=pending.owner_id,
                status=ImportStatus.AWAITING_DECISIONS,
                result=pending.partial,
            )
    if report is None or report.owner_id != user_id:
        raise ImportNotFound(import_id)
    return report


def dismiss_import_report(import_id: str, user_id: Optional[str] = None) -> None:
    get_import_report(import_id, user_id)
    import_store.delete_report(import_id)


def _skipped_message(row: ImportRow, mismatches: List[NameMismatch]) -> str:
    for mismatch in mismatches:
        if mismatch.student_code == row.student_code:
            db_name = f"{mismatch.db_first_name} {mismatch.db_last_name}".strip()
            csv_name = f"{mismatch.csv_first_name} {mismatch.csv_last_name}".strip()
            return f"Skipped by admin: CSV name \"{csv_name}\" does not match stored name \"{db_name}\""
    return "Skipped by admin"


def outcome_payload(outcome: ImportOutcome) -> Dict[str, Any]:
    """JSON-ready outcome for the import endpoints."""
    return outcome.model_dump(mode="json")
