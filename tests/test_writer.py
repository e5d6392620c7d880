"""
Write-phase tests: batched insert and diff-based updates.
"""

import pytest

from roster.schema import ErrorType, ImportRow
from roster.writer import get_changed_fields, import_new_students, update_returning_students
from tests.fake_supabase import FakeSupabase


def _row(n, **data):
    return ImportRow(row_number=n, data=data)


@pytest.fixture
def stored():
    return {
        "id": "s42",
        "student_code": "STU-42",
        "legal_first_name": "Anna",
        "legal_last_name": "Diaz",
        "email": "anna@x.com",
        "race": ["White", "Asian"],
        "course_placement": "ESOL L2 part 1",
        "created_by": "someone",
    }


class TestGetChangedFields:
    def test_only_differences_are_returned(self, stored):
        changes = get_changed_fields(stored, {"legal_first_name": "Anna", "email": "new@x.com"})
        assert changes == {"email": "new@x.com"}

    def test_lists_compare_by_sorted_content(self, stored):
        assert get_changed_fields(stored, {"race": ["Asian", "White"]}) == {}
        assert get_changed_fields(stored, {"race": ["Asian"]}) == {"race": ["Asian"]}

    def test_protected_and_import_only_fields_are_never_written(self, stored):
        changes = get_changed_fields(
            stored,
            {"id": "other", "student_code": "STU-1", "created_by": "me", "is_returning": "yes"},
        )
        assert changes == {}

    def test_null_and_empty_list_are_equal(self):
        assert get_changed_fields({"race": None}, {"race": []}) == {}


class TestImportNewStudents:
    def test_single_batched_insert_stamped_with_creator(self):
        db = FakeSupabase({"students": []})
        rows = [
            _row(1, legal_first_name="Ana", legal_last_name="Diaz", email="ana@x.com", is_returning="no"),
            _row(2, legal_first_name="Bo", legal_last_name="Li", email="bo@x.com", is_returning="no"),
        ]
        result = import_new_students(db, rows, created_by="admin-1")
        assert result.success is True
        assert result.new_count == 2
        inserts = db.writes("students", "insert")
        assert len(inserts) == 1
        assert all(r["created_by"] == "admin-1" for r in inserts[0])
        assert all("is_returning" not in r for r in inserts[0])

    def test_rows_that_now_exist_are_skipped(self):
        db = FakeSupabase({"students": [
            {"id": "s1", "student_code": "STU-1", "legal_first_name": "Ana", "legal_last_name": "Diaz", "email": "ana@x.com"}
        ]})
        rows = [
            _row(1, legal_first_name="Ana", legal_last_name="Diaz", email="ana@x.com"),
            _row(2, legal_first_name="Bo", legal_last_name="Li", email="bo@x.com"),
        ]
        result = import_new_students(db, rows)
        assert result.new_count == 1
        assert result.skipped_count == 1
        assert result.errors[0].error_type == ErrorType.DUPLICATE_STUDENT
        assert "STU-1" in result.errors[0].message

    def test_insert_failure_marks_every_row(self):
        db = FakeSupabase({"students": []})
        db.fail("students", "insert", "timeout")
        rows = [_row(1, email="a@x.com"), _row(2, email="b@x.com")]
        result = import_new_students(db, rows)
        assert result.success is False
        assert result.new_count == 0
        assert [e.error_type for e in result.errors] == [ErrorType.INSERT_FAILED] * 2
        assert "timeout" in result.errors[0].message

    def test_recheck_failure_is_reported_once_and_insert_proceeds(self):
        db = FakeSupabase({"students": []})
        db.fail("students", "select")
        result = import_new_students(db, [_row(1, email="a@x.com")])
        assert result.new_count == 1
        assert [e.error_type for e in result.errors] == [ErrorType.LOOKUP_FAILED]
        assert result.errors[0].row_number == 0


class TestUpdateReturningStudents:
    def test_changed_fields_only_and_idempotent(self, stored):
        db = FakeSupabase({"students": [dict(stored)]})
        row = _row(1, student_code="STU-42", legal_first_name="Anna", legal_last_name="Diaz",
                   email="anna.new@x.com", is_returning="yes")

        first = update_returning_students(db, [row], {"STU-42": dict(stored)}, updated_by="admin-1")
        assert (first.updated_count, first.unchanged_count, first.errors) == (1, 0, [])
        update = db.writes("students", "update")[0]
        assert update["email"] == "anna.new@x.com"
        assert update["updated_by"] == "admin-1"
        assert "legal_first_name" not in update

        fresh = {s["student_code"]: s for s in db.tables["students"]}
        second = update_returning_students(db, [row], fresh, updated_by="admin-1")
        assert (second.updated_count, second.unchanged_count, second.errors) == (0, 1, [])
        assert len(db.writes("students", "update")) == 1

    def test_update_failure_does_not_stop_other_rows(self, stored):
        other = dict(stored, id="s7", student_code="STU-7")
        db = FakeSupabase({"students": [dict(stored), other]})
        db.fail("students", "update", "deadlock")
        rows = [_row(1, student_code="STU-42", email="x@x.com"), _row(2, student_code="STU-7", email="y@x.com")]
        result = update_returning_students(db, rows, {"STU-42": stored, "STU-7": other})
        assert [e.error_type for e in result.errors] == [ErrorType.UPDATE_FAILED] * 2
        assert result.updated_count == 0

    def test_unknown_code(self, stored):
        db = FakeSupabase({"students": []})
        result = update_returning_students(db, [_row(1, student_code="STU-9")], {})
        assert result.errors[0].error_type == ErrorType.STUDENT_CODE_NOT_FOUND
