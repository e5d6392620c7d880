"""
Email allowlist: who may sign in, and the admin operations that manage it.

Operations raise AllowlistError carrying the HTTP status the API answers with.
"""

import logging
from typing import Any, Dict, List, Optional

from roster.schema import Role

logger = logging.getLogger(__name__)

ALLOWED_EMAILS_TABLE = "allowed_emails"
PROFILES_TABLE = "profiles"

UNIQUE_VIOLATION = "23505"
UNDEFINED_COLUMN = "42703"


class AllowlistError(Exception):
    def __init__(self, message: str, status: int = 500):
        super().__init__(message)
        self.message = message
        self.status = status


def _error_message(e: Exception) -> str:
    return getattr(e, "message", None) or str(e)


def normalize_email(email: Any) -> str:
    return email.strip().lower() if isinstance(email, str) else ""


def parse_role(role: Any) -> Optional[str]:
    """'admin' or 'teacher', else None."""
    return role if role in (Role.ADMIN.value, Role.TEACHER.value) else None


def require_admin(client, user_id: Optional[str]) -> Dict[str, Any]:
    """
    The caller's profile if they are an admin.

    Raises:
        AllowlistError: 401 without a signed-in user, 403 when the profile
            cannot be read or its role is not admin.
    """
    if not user_id:
        raise AllowlistError("Unauthorized", 401)
    try:
        result = client.table(PROFILES_TABLE).select("email, role").eq("id", user_id).limit(1).execute()
    except Exception as e:
        raise AllowlistError(_error_message(e), 403) from e
    profile = result.data[0] if result.data else None
    if not profile or profile.get("role") != Role.ADMIN.value:
        raise AllowlistError("Forbidden", 403)
    return profile


def list_allowed_emails(client) -> List[Dict[str, Any]]:
    """Newest first."""
    try:
        result = client.table(ALLOWED_EMAILS_TABLE).select("*").order("created_at", desc=True).execute()
    except Exception as e:
        raise AllowlistError(_error_message(e), 500) from e
    return result.data or []


def _insert_status(e: Exception) -> int:
    return 409 if getattr(e, "code", None) == UNIQUE_VIOLATION else 500


def _sync_profile_role(client, email: str, role: str) -> None:
    """Give an existing profile with this email the same role."""
    try:
        result = client.table(PROFILES_TABLE).select("id").eq("email", email).limit(1).execute()
        if result.data:
            client.table(PROFILES_TABLE).update({"role": role}).eq("id", result.data[0]["id"]).execute()
    except Exception as e:
        logger.warning(f"⚠️ Could not update profile role for {email}: {_error_message(e)}")


def add_allowed_email(client, email: Any, role: Any, created_by: Optional[str]) -> Dict[str, str]:
    """
    Add an email to the allowlist (role defaults to teacher).

    Older databases have no role column on allowed_emails; the insert is then
    retried without it.

    Raises:
        AllowlistError: 400 for a blank email, 409 if already listed, 500 otherwise.
    """
    email = normalize_email(email)
    role = parse_role(role) or Role.TEACHER.value
    if not email:
        raise AllowlistError("Email is required", 400)

    record = {"email": email, "created_by": created_by, "role": role}
    try:
        client.table(ALLOWED_EMAILS_TABLE).insert(record).execute()
    except Exception as e:
        message = _error_message(e)
        if getattr(e, "code", None) != UNDEFINED_COLUMN and "role" not in message:
            raise AllowlistError(message, _insert_status(e)) from e
        logger.warning("⚠️ allowed_emails has no role column, inserting without it")
        try:
            client.table(ALLOWED_EMAILS_TABLE).insert({"email": email, "created_by": created_by}).execute()
        except Exception as retry_error:
            raise AllowlistError(_error_message(retry_error), _insert_status(retry_error)) from retry_error

    _sync_profile_role(client, email, role)
    logger.info(f"✅ Added {email} to the allowlist as {role}")
    return {"email": email, "role": role}


def update_allowed_email_role(client, email: Any, role: Any) -> Dict[str, str]:
    """
    Raises:
        AllowlistError: 400 when email or role is missing.
    """
    email = normalize_email(email)
    role = parse_role(role)
    if not email:
        raise AllowlistError("Email is required", 400)
    if not role:
        raise AllowlistError("Role is required", 400)

    try:
        client.table(ALLOWED_EMAILS_TABLE).update({"role": role}).eq("email", email).execute()
    except Exception as e:
        # Databases without the role column keep roles on profiles only
        logger.warning(f"⚠️ Could not update allowlist role for {email}: {_error_message(e)}")

    _sync_profile_role(client, email, role)
    return {"email": email, "role": role}


def remove_allowed_email(client, email: Any, caller_email: Optional[str]) -> Dict[str, str]:
    """
    Raises:
        AllowlistError: 400 for a blank email or the caller's own email, 500 on failure.
    """
    email = normalize_email(email)
    if not email:
        raise AllowlistError("Email is required", 400)
    if normalize_email(caller_email) == email:
        raise AllowlistError("Cannot remove your own email", 400)

    try:
        client.table(ALLOWED_EMAILS_TABLE).delete().eq("email", email).execute()
    except Exception as e:
        raise AllowlistError(_error_message(e), 500) from e
    logger.info(f"✅ Removed {email} from the allowlist")
    return {"email": email}


def is_email_allowed(client, email: Optional[str]) -> bool:
    """
    True when the allowlist is empty or contains ``email``.

    If the allowlist cannot be read the user is admitted, matching how sign-in
    behaves before any allowlist exists.
    """
    try:
        any_entry = client.table(ALLOWED_EMAILS_TABLE).select("email").limit(1).execute()
    except Exception as e:
        logger.warning(f"⚠️ Could not read allowlist, admitting {email}: {_error_message(e)}")
        return True
    if not any_entry.data:
        return True

    email = normalize_email(email)
    if not email:
        return False
    try:
        match = client.table(ALLOWED_EMAILS_TABLE).select("email").eq("email", email).limit(1).execute()
    except Exception as e:
        logger.warning(f"⚠️ Allowlist lookup failed for {email}: {_error_message(e)}")
        return False
    return bool(match.data)
