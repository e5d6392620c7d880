"""
Supabase PostgreSQL access for the students table.

Functions take an already-built Supabase client so one import run uses one
client (and one user session) for all of its calls. Calls the importer depends
on raise StoreError; the page helpers log and return empty results.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

STUDENTS_TABLE = "students"
PROFILES_TABLE = "profiles"


class StoreError(Exception):
    """A Supabase call failed. ``code`` is the PostgREST/Postgres error code when known."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code


def _store_error(action: str, e: Exception) -> StoreError:
    code = getattr(e, "code", None)
    message = getattr(e, "message", None) or str(e)
    logger.error(f"❌ Supabase {action} failed: {message}")
    return StoreError(message, code=code)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _unique(values: Iterable[Optional[str]]) -> List[str]:
    return sorted({v for v in values if isinstance(v, str) and v})


def _quote(value: str) -> str:
    """Quote a value for a PostgREST or=() filter."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def init_database(client) -> bool:
    """Verify the Supabase connection and that the students table is reachable."""
    if client is None:
        logger.warning("⚠️ Warning: Supabase is not configured (SUPABASE_URL / SUPABASE_ANON_KEY)")
        return False
    try:
        client.table(STUDENTS_TABLE).select("id").limit(1).execute()
        return True
    except Exception as e:
        logger.warning(f"⚠️ Warning: Could not connect to Supabase: {e}")
        return False


def list_students(client, select_fields: Optional[List[str]] = None) -> List[Dict[str, Any]]:
    """All students ordered by last name. Returns [] on failure."""
    try:
        select_expr = ", ".join(select_fields) if select_fields else "*"
        result = client.table(STUDENTS_TABLE).select(select_expr).order("legal_last_name").execute()
        return result.data or []
    except Exception as e:
        logger.error(f"❌ Error getting students from Supabase: {e}")
        return []


def get_student_by_id(client, student_id: str) -> Optional[Dict[str, Any]]:
    try:
        result = client.table(STUDENTS_TABLE).select("*").eq("id", student_id).limit(1).execute()
        return result.data[0] if result.data else None
    except Exception as e:
        logger.error(f"❌ Error getting student {student_id} from Supabase: {e}")
        return None


def find_students_by_emails(client, emails: Iterable[str]) -> List[Dict[str, Any]]:
    """One round trip for every email in the batch."""
    emails = _unique(e.strip().lower() for e in emails if e)
    if not emails:
        return []
    try:
        result = client.table(STUDENTS_TABLE).select("*").in_("email", emails).execute()
        return result.data or []
    except Exception as e:
        raise _store_error("lookup by email", e) from e


def find_students_by_last_names(client, last_names: Iterable[str]) -> List[Dict[str, Any]]:
    """
    Case-insensitive match on last name; callers compare full names in memory.
    """
    last_names = _unique(n.strip() for n in last_names if n)
    if not last_names:
        return []
    try:
        clauses = ",".join(f"legal_last_name.ilike.{_quote(name)}" for name in last_names)
        result = client.table(STUDENTS_TABLE).select("*").or_(clauses).execute()
        return result.data or []
    except Exception as e:
        raise _store_error("lookup by name", e) from e


def find_students_by_codes(client, codes: Iterable[str]) -> List[Dict[str, Any]]:
    codes = _unique(codes)
    if not codes:
        return []
    try:
        result = client.table(STUDENTS_TABLE).select("*").in_("student_code", codes).execute()
        return result.data or []
    except Exception as e:
        raise _store_error("lookup by student code", e) from e


def insert_students(client, rows: List[Dict[str, Any]], created_by: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Insert all rows in a single request. Returns the stored rows (with ids and codes).
    """
    if not rows:
        return []
    payload = []
    for row in rows:
        record = dict(row)
        if created_by:
            record["created_by"] = created_by
        payload.append(record)
    try:
        result = client.table(STUDENTS_TABLE).insert(payload).execute()
    except Exception as e:
        raise _store_error("insert", e) from e
    logger.info(f"✅ Inserted {len(result.data or [])} student(s) into Supabase")
    return result.data or []


def update_student(
    client,
    student_id: str,
    updates: Dict[str, Any],
    updated_by: Optional[str] = None,
) -> Dict[str, Any]:
    """Update one student by id and return the stored row."""
    values = dict(updates)
    values["updated_at"] = _now()
    if updated_by:
        values["updated_by"] = updated_by
    try:
        result = client.table(STUDENTS_TABLE).update(values).eq("id", student_id).execute()
    except Exception as e:
        raise _store_error("update", e) from e
    if not result.data:
        # RLS hides rows the caller may not touch; PostgREST then updates nothing
        raise StoreError(f"Update matched no student with id {student_id}")
    logger.info(f"🔄 Updated student {student_id} ({', '.join(sorted(updates))})")
    return result.data[0]


def get_profile(client, user_id: str) -> Optional[Dict[str, Any]]:
    """The signed-in user's profile row, or None."""
    try:
        result = client.table(PROFILES_TABLE).select("*").eq("id", user_id).limit(1).execute()
        return result.data[0] if result.data else None
    except Exception as e:
        raise _store_error("profile lookup", e) from e


def update_profile(client, user_id: str, updates: Dict[str, Any]) -> bool:
    try:
        result = client.table(PROFILES_TABLE).update(updates).eq("id", user_id).execute()
        return bool(result.data)
    except Exception as e:
        logger.error(f"❌ Error updating profile {user_id}: {e}")
        return False
