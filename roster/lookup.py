"""
Existing-record lookup for import rows.

Maps are built fresh for each import run from batched queries; nothing is
cached between runs.
"""

from typing import Any, Dict, List, Optional

from roster import supabase_db
from roster.schema import ImportRow


def name_key(first: Optional[str], last: Optional[str]) -> str:
    """Case- and whitespace-insensitive key for a first/last name pair."""
    return f"{(first or '').strip().lower()}|{(last or '').strip().lower()}"


def row_lookup_key(row: ImportRow) -> Optional[str]:
    """
    Identifier a new-student row is resolved by: its email, else its name pair.
    None when the row has neither.
    """
    email = row.data.get("email")
    if isinstance(email, str) and email.strip():
        return f"email:{email.strip().lower()}"
    first = row.data.get("legal_first_name")
    last = row.data.get("legal_last_name")
    if first or last:
        return f"name:{name_key(first, last)}"
    return None


def lookup_existing_new_students(client, rows: List[ImportRow]) -> Dict[str, Dict[str, Any]]:
    """
    Find stored students that a batch of new-student rows would duplicate.

    First one query by all emails; rows not resolved that way are then matched
    by first/last name against one query on their last names.

    Returns:
        {row_lookup_key(row): stored student} for every row with a match.

    Raises:
        StoreError: if either query fails.
    """
    matches: Dict[str, Dict[str, Any]] = {}

    emails = [row.data.get("email") for row in rows if row.data.get("email")]
    by_email = {
        (student.get("email") or "").strip().lower(): student
        for student in supabase_db.find_students_by_emails(client, emails)
    }

    unresolved = []
    for row in rows:
        key = row_lookup_key(row)
        if key is None:
            continue
        email = (row.data.get("email") or "").strip().lower()
        if email and email in by_email:
            matches[key] = by_email[email]
        else:
            unresolved.append((key, row))

    named = [(key, row) for key, row in unresolved
             if row.data.get("legal_first_name") or row.data.get("legal_last_name")]
    if not named:
        return matches

    last_names = [row.data.get("legal_last_name") or "" for _, row in named]
    by_name: Dict[str, Dict[str, Any]] = {}
    for student in supabase_db.find_students_by_last_names(client, [n for n in last_names if n]):
        by_name.setdefault(name_key(student.get("legal_first_name"), student.get("legal_last_name")), student)

    for key, row in named:
        stored = by_name.get(name_key(row.data.get("legal_first_name"), row.data.get("legal_last_name")))
        if stored is not None:
            matches[key] = stored

    return matches


def lookup_returning_students(client, codes: List[str]) -> Dict[str, Dict[str, Any]]:
    """
    Returns {student_code: stored student} for the codes that exist.

    Raises:
        StoreError: if the query fails.
    """
    return {
        student["student_code"]: student
        for student in supabase_db.find_students_by_codes(client, codes)
        if student.get("student_code")
    }
