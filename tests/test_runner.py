"""
End-to-end import runs against the fake Supabase client:
abort on validation errors, partial success, and the name-mismatch pause.
"""

import pytest

from roster import runner
from roster.csv_mapper import CSVParseError
from roster.runner import (
    ImportNotFound,
    cancel_import,
    dismiss_import_report,
    get_import_report,
    outcome_payload,
    resume_import,
    start_import,
)
from roster.schema import ErrorType, ImportStatus, NameMismatchDecision, Program
from tests.fake_supabase import FakeSupabase

PLACEMENT = "ESOL L2 part 1"
HEADER = "First Name,Last Name,Email,is_returning,Student Code\n"

STORED = [
    {"id": "s1", "student_code": "STU-1", "legal_first_name": "Bo", "legal_last_name": "Li",
     "email": "bo@x.com", "program": "ESOL", "course_placement": PLACEMENT},
    {"id": "s42", "student_code": "STU-42", "legal_first_name": "Anna", "legal_last_name": "Diaz",
     "email": "anna@x.com", "program": "ESOL", "course_placement": PLACEMENT},
]


def _csv(*lines):
    return (HEADER + "\n".join(lines) + "\n").encode("utf-8")


@pytest.fixture
def db():
    return FakeSupabase({"students": STORED})


def _run(db, data, program=Program.ESOL, placement=PLACEMENT, user_id="admin-1"):
    return start_import(db, data, program, placement, user_id=user_id)


class TestStartImport:
    def test_new_student_is_inserted(self, db):
        outcome = _run(db, _csv("Ana,Diaz,ana@x.com,no,"))
        assert outcome.status == ImportStatus.COMPLETED
        assert outcome.result.new_count == 1
        assert outcome.result.errors == []
        assert outcome.message.startswith("Successfully imported 1 new student")
        inserted = db.writes("students", "insert")[0][0]
        assert inserted["legal_first_name"] == "Ana"
        assert inserted["course_placement"] == PLACEMENT
        assert inserted["created_by"] == "admin-1"

    def test_matching_returning_student_is_updated(self, db):
        outcome = _run(db, _csv("Bo,Li,bo.new@x.com,yes,stu-1"))
        assert outcome.result.updated_count == 1
        assert db.writes("students", "update")[0]["email"] == "bo.new@x.com"

    def test_rerun_writes_nothing(self, db):
        data = _csv("Bo,Li,bo.new@x.com,yes,STU-1")
        _run(db, data)
        again = _run(db, data)
        assert (again.result.updated_count, again.result.unchanged_count) == (0, 1)
        assert len(db.writes("students", "update")) == 1

    def test_validation_errors_abort_without_writes(self, db):
        outcome = _run(db, _csv(
            "Ana,Diaz,same@x.com,no,",
            "Cy,Ng,same@x.com,no,",
            "Di,Ro,di@x.com,yes,",
        ))
        assert outcome.status == ImportStatus.ABORTED
        types = [e.error_type for e in outcome.result.errors]
        assert types.count(ErrorType.DUPLICATE_IN_CSV) == 2
        assert ErrorType.MISSING_STUDENT_CODE in types
        assert db.writes("students", "insert") == []
        assert db.writes("students", "update") == []
        assert outcome.message.startswith("Import aborted: 3 errors")

    def test_errors_name_the_spreadsheet_row(self, db):
        data = (HEADER + "Ana,Diaz,ana@x.com,no,\n,,,,\n\nCy,Ng,not-an-email,no,\n").encode("utf-8")
        outcome = _run(db, data)
        assert [(e.row_number, e.error_type) for e in outcome.result.errors] == [(5, ErrorType.INVALID_EMAIL)]

    def test_existing_student_submitted_as_new_aborts(self, db):
        outcome = _run(db, _csv("Anna,Diaz,anna@x.com,no,"))
        assert outcome.status == ImportStatus.ABORTED
        assert outcome.result.errors[0].error_type == ErrorType.DUPLICATE_STUDENT
        assert "STU-42" in outcome.result.errors[0].message

    def test_unknown_code_aborts(self, db):
        outcome = _run(db, _csv("Ana,Diaz,,yes,STU-999"))
        assert [e.error_type for e in outcome.result.errors] == [ErrorType.STUDENT_CODE_NOT_FOUND]

    def test_hcp_row_without_known_placement_aborts(self, db):
        data = b"First Name,Last Name,Email,is_returning,Placement Decision\nAna,Diaz,ana@x.com,no,Welding - Spring 2025\n"
        outcome = _run(db, data, program=Program.HCP, placement=None)
        assert outcome.status == ImportStatus.ABORTED
        assert outcome.result.errors[0].error_type == ErrorType.VALIDATION_ERROR

    def test_lookup_failure_aborts_with_one_error(self, db):
        db.fail("students", "select", "network down")
        outcome = _run(db, _csv("Ana,Diaz,ana@x.com,no,", "Cy,Ng,cy@x.com,no,"))
        assert outcome.status == ImportStatus.ABORTED
        assert [e.error_type for e in outcome.result.errors] == [ErrorType.LOOKUP_FAILED]
        assert outcome.result.errors[0].row_number == 0

    def test_insert_failure_still_updates_returning_rows(self, db):
        db.fail("students", "insert", "timeout")
        outcome = _run(db, _csv("Ana,Diaz,ana@x.com,no,", "Bo,Li,bo.new@x.com,yes,STU-1"))
        assert outcome.status == ImportStatus.COMPLETED
        assert outcome.result.new_count == 0
        assert outcome.result.updated_count == 1
        assert outcome.result.failed_count == 1
        assert outcome.result.errors[0].error_type == ErrorType.INSERT_FAILED
        assert outcome.message.endswith("Click to view errors.")

    def test_unexpected_error_is_reported(self, db, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(runner, "import_new_students", explode)
        outcome = _run(db, _csv("Ana,Diaz,ana@x.com,no,"))
        assert outcome.status == ImportStatus.COMPLETED
        assert outcome.result.errors[-1].error_type == ErrorType.UNKNOWN_ERROR
        assert "boom" in outcome.result.errors[-1].message

    def test_file_without_rows_is_rejected(self, db):
        with pytest.raises(CSVParseError):
            _run(db, HEADER.encode("utf-8"))

    def test_report_is_kept_for_its_owner(self, db):
        outcome = _run(db, _csv("Ana,Diaz,ana@x.com,no,"))
        report = get_import_report(outcome.import_id, "admin-1")
        assert report.result.new_count == 1
        with pytest.raises(ImportNotFound):
            get_import_report(outcome.import_id, "someone-else")
        dismiss_import_report(outcome.import_id, "admin-1")
        with pytest.raises(ImportNotFound):
            get_import_report(outcome.import_id, "admin-1")


class TestNameMismatchPause:
    @pytest.fixture
    def paused(self, db):
        outcome = _run(db, _csv("Ana,Diaz,ana.d@x.com,yes,STU-42", "Cy,Ng,cy@x.com,no,"))
        assert outcome.status == ImportStatus.AWAITING_DECISIONS
        return outcome

    def test_pause_writes_everything_except_held_rows(self, db, paused):
        assert paused.result.new_count == 1
        assert db.writes("students", "update") == []
        mismatch = paused.mismatches[0]
        assert (mismatch.student_code, mismatch.db_first_name, mismatch.csv_first_name) == ("STU-42", "Anna", "Ana")
        report = get_import_report(paused.import_id, "admin-1")
        assert report.status == ImportStatus.AWAITING_DECISIONS

    def test_approve_writes_csv_name(self, db, paused):
        decisions = [NameMismatchDecision(student_code="STU-42", action="approve")]
        outcome = resume_import(db, paused.import_id, decisions, user_id="admin-1")
        assert outcome.status == ImportStatus.COMPLETED
        assert (outcome.result.new_count, outcome.result.updated_count) == (1, 1)
        update = db.writes("students", "update")[0]
        assert update["legal_first_name"] == "Ana"
        assert update["email"] == "ana.d@x.com"

    def test_edit_writes_given_name(self, db, paused):
        decisions = [NameMismatchDecision(student_code="STU-42", action="edit", first_name="Anna")]
        resume_import(db, paused.import_id, decisions, user_id="admin-1")
        update = db.writes("students", "update")[0]
        assert "legal_first_name" not in update
        assert update["email"] == "ana.d@x.com"

    def test_skip_writes_nothing_and_counts_skipped(self, db, paused):
        decisions = [NameMismatchDecision(student_code="STU-42", action="skip")]
        outcome = resume_import(db, paused.import_id, decisions, user_id="admin-1")
        assert db.writes("students", "update") == []
        assert outcome.result.skipped_count == 1
        assert outcome.result.failed_count == 0
        assert outcome.result.errors[0].error_type == ErrorType.NAME_MISMATCH_SKIPPED

    def test_missing_decision_is_a_skip(self, db, paused):
        outcome = resume_import(db, paused.import_id, [], user_id="admin-1")
        assert outcome.result.skipped_count == 1
        assert db.writes("students", "update") == []

    def test_resume_only_once(self, db, paused):
        resume_import(db, paused.import_id, [], user_id="admin-1")
        with pytest.raises(ImportNotFound):
            resume_import(db, paused.import_id, [], user_id="admin-1")

    def test_other_user_cannot_resume(self, db, paused):
        with pytest.raises(ImportNotFound):
            resume_import(db, paused.import_id, [], user_id="admin-2")

    def test_cancel_keeps_phase_one_writes(self, db, paused):
        outcome = cancel_import(paused.import_id, user_id="admin-1")
        assert outcome.status == ImportStatus.CANCELLED
        assert (outcome.result.new_count, outcome.result.skipped_count) == (1, 1)
        assert len(db.writes("students", "insert")) == 1
        assert db.writes("students", "update") == []
        with pytest.raises(ImportNotFound):
            cancel_import(paused.import_id, user_id="admin-1")

    def test_payload_is_json_ready(self, paused):
        payload = outcome_payload(paused)
        assert payload["status"] == "awaiting_decisions"
        assert payload["mismatches"][0]["student_code"] == "STU-42"
