"""
Export module: students as a downloadable CSV.
"""

import csv
import io
from datetime import date
from typing import Any, Dict, List, Optional

# Frozen export headers -> student column
EXPORT_COLUMNS = [
    ("Student Code", "student_code"),
    ("Legal First Name", "legal_first_name"),
    ("Legal Last Name", "legal_last_name"),
    ("Preferred Name", "preferred_name"),
    ("Email", "email"),
    ("Phone", "phone"),
    ("Street Address", "address_street"),
    ("City", "address_city"),
    ("State", "address_state"),
    ("Zip Code", "address_zip"),
    ("Age", "age"),
    ("Gender", "gender"),
    ("Hispanic or Latino", "ethnicity_hispanic_latino"),
    ("Race", "race"),
    ("Country of Birth", "country_of_birth"),
    ("Native Language", "native_language"),
    ("Highest Education", "highest_education"),
    ("Employment", "employment"),
    ("Computer Access", "computer_access"),
    ("Healthcare Certification", "healthcare_certification"),
    ("Taken TEAS Before", "teas_taken_before"),
    ("Program", "program"),
    ("Course Placement", "course_placement"),
    ("Enrollment Status", "enrollment_status"),
]

CSV_HEADERS = [header for header, _ in EXPORT_COLUMNS]


def format_cell(value: Any) -> str:
    """
    Lists -> "a; b", booleans -> Yes/No, None -> "".
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, (list, tuple)):
        return "; ".join(format_cell(v) for v in value if v is not None)
    return str(value)


def students_to_csv(students: List[Dict[str, Any]]) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(CSV_HEADERS)
    for student in students:
        writer.writerow([format_cell(student.get(column)) for _, column in EXPORT_COLUMNS])
    return output.getvalue()


def export_filename(today: Optional[date] = None) -> str:
    return f"students-{(today or date.today()).isoformat()}.csv"
