"""
Error report tests: grouping, filtering, downloads and summary lines.
"""

import csv
import io
from datetime import date

from roster.error_report import (
    CSV_HEADERS,
    OTHER,
    aborted_message,
    error_csv_filename,
    errors_to_clipboard_text,
    errors_to_csv,
    filter_errors,
    group_errors_by_type,
    split_errors,
    summary_message,
)
from roster.schema import ErrorDetail, ErrorType, ImportBatchResult

ERRORS = [
    ErrorDetail(row_number=2, student_name="Ana Diaz", error_type=ErrorType.INVALID_EMAIL, message="Invalid email address: x"),
    ErrorDetail(row_number=0, error_type=ErrorType.LOOKUP_FAILED, message="Could not check, network down"),
    ErrorDetail(row_number=5, student_name="Bo Li", student_code="STU-1", message="Something\tstrange\nhappened"),
    ErrorDetail(row_number=7, student_name="Cy Ng", error_type=ErrorType.INVALID_EMAIL, message="Invalid email address: y"),
]


def test_grouping_puts_untyped_errors_under_other():
    groups = group_errors_by_type(ERRORS)
    assert list(groups) == ["INVALID_EMAIL", "LOOKUP_FAILED", OTHER]
    assert [e.row_number for e in groups["INVALID_EMAIL"]] == [2, 7]


def test_filter_by_type_and_all():
    assert [e.row_number for e in filter_errors(ERRORS, "INVALID_EMAIL")] == [2, 7]
    assert filter_errors(ERRORS, OTHER)[0].row_number == 5
    assert len(filter_errors(ERRORS, "all")) == 4
    assert len(filter_errors(ERRORS, None)) == 4


def test_system_errors_are_split_out():
    system, student = split_errors(ERRORS)
    assert [e.error_type for e in system] == [ErrorType.LOOKUP_FAILED]
    assert len(student) == 3


def test_csv_download_quotes_commas():
    rows = list(csv.reader(io.StringIO(errors_to_csv(ERRORS))))
    assert rows[0] == CSV_HEADERS
    assert rows[2] == ["0", "Unknown", "", "LOOKUP_FAILED", "Could not check, network down"]
    assert rows[3][3] == OTHER


def test_clipboard_text_is_one_line_per_error():
    lines = errors_to_clipboard_text(ERRORS).split("\n")
    assert lines[0].startswith("Row\tStudent Name")
    assert len(lines) == 5
    assert lines[3] == "5\tBo Li\tSTU-1\tOTHER\tSomething strange happened"


def test_error_csv_filename():
    assert error_csv_filename(date(2025, 3, 9)) == "import-errors-2025-03-09.csv"


class TestSummaryMessage:
    def test_full_success(self):
        result = ImportBatchResult(new_count=2, updated_count=1)
        assert summary_message(result) == "Successfully imported 2 new students and updated 1 returning student!"

    def test_partial_success_points_at_errors(self):
        errors = [ErrorDetail(row_number=1, error_type=ErrorType.INSERT_FAILED, message="timeout")]
        result = ImportBatchResult(new_count=0, updated_count=1, failed_count=1, errors=errors)
        assert summary_message(result) == "Import completed: 1 updated, 1 failed. Click to view errors."

    def test_skipped_only(self):
        errors = [ErrorDetail(row_number=1, error_type=ErrorType.NAME_MISMATCH_SKIPPED, message="Skipped by admin")]
        result = ImportBatchResult(new_count=1, skipped_count=1, errors=errors)
        assert summary_message(result) == "Import completed: 1 new, 1 skipped."

    def test_nothing_changed(self):
        result = ImportBatchResult(unchanged_count=0, errors=[ERRORS[1]])
        assert summary_message(result) == "Import completed: no changes. Click to view errors."


def test_aborted_message_counts_errors():
    result = ImportBatchResult(errors=ERRORS[:1])
    assert aborted_message(result).startswith("Import aborted: 1 error found in the file.")
