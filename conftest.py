"""Pytest hooks for Lamplight Students. Tests never talk to a real Supabase or Redis."""

import pytest


def pytest_configure(config):
    """Keep local .env credentials from leaking into the test run."""
    import os
    for key in ("SUPABASE_URL", "SUPABASE_ANON_KEY", "SUPABASE_SERVICE_ROLE_KEY", "REDIS_URL"):
        os.environ[key] = ""


@pytest.fixture(autouse=True)
def clean_import_store():
    """Paused imports and reports live in module state between tests."""
    from roster import import_store
    import_store.clear_local_store()
    yield
    import_store.clear_local_store()
