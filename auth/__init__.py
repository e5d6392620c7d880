"""
Auth package: Supabase client construction and the sign-in allowlist.
"""

__all__ = ["allowlist", "supabase_client"]
