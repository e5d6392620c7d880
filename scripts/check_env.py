#!/usr/bin/env python3
"""
Check that required environment variables are set.
Loads .env from project root. Use before starting the app or in CI.
Usage: python scripts/check_env.py
"""

import os
import sys
from pathlib import Path

from dotenv import load_dotenv

# Project root (parent of scripts/)
PROJECT_ROOT = Path(__file__).resolve().parents[1]
ENV_PATH = PROJECT_ROOT / ".env"

# Required to build the user-scoped Supabase client
REQUIRED = [
    "SUPABASE_URL",
    "SUPABASE_ANON_KEY",
]

# Optional but recommended
OPTIONAL = [
    "SUPABASE_SERVICE_ROLE_KEY",
    "FLASK_SECRET_KEY",
    "REDIS_URL",
    "IMPORT_REPORT_TTL_SECONDS",
    "MAX_IMPORT_FILE_MB",
    "PORT",
]


def _load_dotenv():
    if ENV_PATH.exists():
        load_dotenv(ENV_PATH)
    else:
        load_dotenv()


def _is_set(key: str) -> bool:
    val = os.environ.get(key)
    return val is not None and str(val).strip() != ""


def missing_required() -> list:
    return [key for key in REQUIRED if not _is_set(key)]


def main() -> int:
    _load_dotenv()
    missing = missing_required()

    print("Environment check (from .env or shell)")
    print("-" * 50)
    for key in REQUIRED:
        status = "OK" if _is_set(key) else "MISSING"
        print(f"  {key}: {status}")
    for key in OPTIONAL:
        status = "set" if _is_set(key) else "not set"
        print(f"  {key} (optional): {status}")
    if not _is_set("FLASK_SECRET_KEY"):
        print("  Note: without FLASK_SECRET_KEY sessions reset whenever the app restarts.")
    if not _is_set("REDIS_URL"):
        print("  Note: without REDIS_URL paused imports live in one process's memory.")
    print("-" * 50)

    if missing:
        print("Missing required:", ", ".join(missing))
        print("Copy .env.example to .env and fill in values.")
        return 1
    print("All required keys are set.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
