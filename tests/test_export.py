import csv
import io
from datetime import date

from roster.export import CSV_HEADERS, export_filename, format_cell, students_to_csv


def test_format_cell():
    assert format_cell(None) == ""
    assert format_cell(True) == "Yes"
    assert format_cell(False) == "No"
    assert format_cell(["White", "Asian"]) == "White; Asian"
    assert format_cell(34) == "34"


def test_students_to_csv_uses_fixed_headers():
    students = [{
        "student_code": "STU-1",
        "legal_first_name": "Ana",
        "legal_last_name": "Diaz, Jr",
        "race": ["White"],
        "ethnicity_hispanic_latino": True,
        "unexpected": "ignored",
    }]
    rows = list(csv.reader(io.StringIO(students_to_csv(students))))
    assert rows[0] == CSV_HEADERS
    record = dict(zip(rows[0], rows[1]))
    assert record["Legal Last Name"] == "Diaz, Jr"
    assert record["Race"] == "White"
    assert record["Hispanic or Latino"] == "Yes"
    assert record["Email"] == ""
    assert "ignored" not in rows[1]


def test_empty_export_still_has_headers():
    assert students_to_csv([]).splitlines() == [",".join(CSV_HEADERS)]


def test_export_filename():
    assert export_filename(date(2025, 1, 2)) == "students-2025-01-02.csv"
