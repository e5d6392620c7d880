"""
Row validation tests: required fields, placements and in-file duplicates.
"""

from roster.schema import ErrorType, ImportRow
from roster.validate import find_duplicates_in_csv, validate_new_student, validate_returning_student


def _row(n=1, **overrides):
    data = {
        "legal_first_name": "Ana",
        "legal_last_name": "Diaz",
        "email": "ana@x.com",
        "program": "ESOL",
        "course_placement": "ESOL L2 part 1",
    }
    data.update(overrides)
    return ImportRow(row_number=n, data={k: v for k, v in data.items() if v is not None})


def _types(errors):
    return [e.error_type for e in errors]


def test_complete_new_student_passes():
    assert validate_new_student(_row()) == []


def test_missing_both_names():
    errors = validate_new_student(_row(legal_first_name=None, legal_last_name=None))
    assert _types(errors) == [ErrorType.MISSING_NAME]
    assert errors[0].student_name == "Unknown"


def test_one_name_is_enough():
    assert validate_new_student(_row(legal_first_name=None)) == []


def test_missing_and_invalid_email():
    assert _types(validate_new_student(_row(email=None))) == [ErrorType.MISSING_EMAIL]
    assert _types(validate_new_student(_row(email="not-an-email"))) == [ErrorType.INVALID_EMAIL]


def test_hcp_without_derived_placement():
    errors = validate_new_student(_row(program="HCP", course_placement=None))
    assert _types(errors) == [ErrorType.VALIDATION_ERROR]
    assert "Placement Decision" in errors[0].message


def test_returning_student_email_is_optional():
    row = _row(email=None, student_code="STU-42")
    assert validate_returning_student(row) == []
    assert _types(validate_returning_student(_row(email="bad", student_code="STU-42"))) == [ErrorType.INVALID_EMAIL]


def test_duplicate_emails_reference_each_other():
    rows = [_row(1), _row(2, email="bo@x.com"), _row(3, email="ANA@x.com")]
    errors = find_duplicates_in_csv(rows, "email", "email")
    assert [e.row_number for e in errors] == [1, 3]
    assert all(e.error_type == ErrorType.DUPLICATE_IN_CSV for e in errors)
    assert "row(s) 3" in errors[0].message
    assert "row(s) 1" in errors[1].message


def test_no_duplicates():
    assert find_duplicates_in_csv([_row(1), _row(2, email="bo@x.com")], "email", "email") == []
