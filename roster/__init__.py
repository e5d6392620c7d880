"""
Roster package: student records and the CSV import that reconciles them.
"""

from roster import supabase_db
from roster.runner import cancel_import, resume_import, start_import

__all__ = ["cancel_import", "resume_import", "start_import", "supabase_db"]
