"""
CSV mapper: turns spreadsheet rows into normalized student data.
Pure functions; nothing here talks to the database.
"""

import csv
import io
import re
from typing import Any, Dict, List, Optional, Tuple

from roster.field_mapping import get_column_mapping
from roster.schema import COURSE_PLACEMENTS, ImportRow, Program, STUDENT_CODE_PATTERN, StudentData

CSVRow = Dict[str, Optional[str]]

YES_VALUES = {"yes", "y", "true", "1"}
NO_VALUES = {"no", "n", "false", "0"}

# "English TEAS - Spring 2025" -> "English TEAS"
SEMESTER_SUFFIX = re.compile(r"\s*-\s*(spring|summer|fall|autumn|winter)\s+\d{4}\s*$", re.IGNORECASE)
LEADING_INT = re.compile(r"^[+-]?\d+")


class CSVParseError(ValueError):
    """The uploaded file is not a usable CSV."""


def parse_csv_records(file_bytes: bytes) -> List[Tuple[int, CSVRow]]:
    """
    Parse an uploaded CSV into (sheet row number, header-keyed row) pairs.

    The first non-blank row holds the headers and is sheet row 1 when it is
    the first line. Blank rows are skipped but still counted, so the numbers
    match the row the admin sees in the spreadsheet. A UTF-8 BOM
    (Excel / Google Sheets exports) is tolerated.

    Raises:
        CSVParseError: if the file cannot be decoded or has no header row.
    """
    try:
        text = file_bytes.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise CSVParseError(f"File is not UTF-8 encoded text: {e}") from e

    headers: Optional[List[str]] = None
    records = []
    # csv.reader yields [] for an empty line, so every sheet row is counted
    for row_number, values in enumerate(csv.reader(io.StringIO(text, newline="")), start=1):
        blank = not any(value.strip() for value in values)
        if headers is None:
            if not blank:
                headers = values
            continue
        # Rows where every cell is blank are Sheets padding
        if blank:
            continue
        records.append(
            (row_number, {header: values[i] if i < len(values) else None for i, header in enumerate(headers)})
        )

    if headers is None:
        raise CSVParseError("CSV file has no header row")
    return records


def normalize_yes_no(value: str) -> Optional[bool]:
    """yes/y/true/1 -> True, no/n/false/0 -> False, anything else -> None."""
    lower = value.strip().lower()
    if lower in YES_VALUES:
        return True
    if lower in NO_VALUES:
        return False
    return None


def normalize_is_returning(value: str) -> str:
    """Collapse yes/no variants to "yes"/"no"; leave anything else for validation to reject."""
    flag = normalize_yes_no(value)
    if flag is True:
        return "yes"
    if flag is False:
        return "no"
    return value


def normalize_student_code(value: str) -> str:
    """Uppercase a well-formed code; return malformed codes unchanged."""
    normalized = value.strip().upper()
    if STUDENT_CODE_PATTERN.match(normalized):
        return normalized
    return value


def derive_hcp_placement(placement_decision: Optional[str]) -> Optional[str]:
    """
    Map an HCP "Placement Decision" answer onto a course placement.

    Strips the trailing "- <Semester> <Year>" and prefixes "HCP ".
    Returns None when the result is not an allowed placement.
    """
    if not placement_decision:
        return None
    course = SEMESTER_SUFFIX.sub("", placement_decision.strip()).strip()
    if not course:
        return None
    if not course.upper().startswith("HCP "):
        course = f"HCP {course}"
    # Forms are inconsistent about case ("english teas")
    for placement in COURSE_PLACEMENTS:
        if placement.lower() == course.lower() and placement.startswith("HCP "):
            return placement
    return None


def transform_value(column_name: str, value: str) -> Any:
    """Convert a raw cell to the type stored in ``column_name``."""
    trimmed = value.strip()

    if column_name == "email":
        return trimmed.lower()

    if column_name == "phone":
        return re.sub(r"\D", "", trimmed)

    if column_name == "age":
        match = LEADING_INT.match(trimmed)
        return int(match.group()) if match else None

    if column_name == "race":
        return [part.strip() for part in trimmed.split(",") if part.strip()]

    if column_name == "ethnicity_hispanic_latino":
        return "yes" in trimmed.lower()

    if column_name in ("healthcare_certification", "teas_taken_before"):
        return normalize_yes_no(trimmed)

    if column_name == "computer_access":
        lower = trimmed.lower()
        if "yes" in lower:
            return "yes"
        if "no" in lower:
            return "no"
        if "maybe" in lower:
            return "maybe"
        return trimmed

    if column_name == "is_returning":
        return normalize_is_returning(trimmed)

    if column_name == "student_code":
        return normalize_student_code(trimmed)

    return trimmed


def map_csv_row(csv_row: CSVRow, program: Program) -> StudentData:
    """
    Map one CSV row onto student columns for ``program``.

    Unknown headers and empty cells are dropped.
    """
    mapping = get_column_mapping(program)
    mapped: StudentData = {}
    for header, value in csv_row.items():
        column = mapping.get(header)
        if column is None or value is None or not str(value).strip():
            continue
        mapped[column] = transform_value(column, str(value))
    return mapped


# Sheet row of the first data row when the headers are on row 1
FIRST_DATA_ROW = 2


def build_import_rows(
    csv_rows: List[CSVRow],
    program: Program,
    course_placement: Optional[str] = None,
    row_numbers: Optional[List[int]] = None,
) -> List[ImportRow]:
    """
    Map every CSV row and stamp program / placement on it.

    ``row_numbers`` are the sheet rows from parse_csv_records; without them
    rows are numbered consecutively from FIRST_DATA_ROW.

    ESOL rows all get the placement chosen in the import form. HCP rows get
    the placement derived from their own "Placement Decision" answer, which
    may be None (the validator reports those rows).
    """
    program = Program(program)
    rows = []
    for index, csv_row in enumerate(csv_rows):
        data = map_csv_row(csv_row, program)
        data["program"] = program.value
        if program == Program.HCP:
            data["course_placement"] = derive_hcp_placement(data.pop("placement_decision", None))
        else:
            data.pop("placement_decision", None)
            data["course_placement"] = course_placement
        row_number = row_numbers[index] if row_numbers else FIRST_DATA_ROW + index
        rows.append(ImportRow(row_number=row_number, data=data))
    return rows
