"""
Storage for import runs between HTTP requests.

A run paused for name-mismatch decisions is kept as a PendingImport until it
is resumed or cancelled; paused runs never expire. A finished run's report is
kept so its errors can be downloaded, until the UI dismisses it or
REPORT_TTL_SECONDS pass. Both live in Redis when REDIS_URL is reachable and
always in a process-local dict as well. The local dict holds at most
MAX_LOCAL_REPORTS reports; the oldest are dropped first.
"""

import logging
import os
import time
from typing import Any, Dict, List, Optional

import redis
from pydantic import BaseModel, Field

from roster.schema import ImportBatchResult, ImportRow, ImportStatus, NameMismatch

logger = logging.getLogger(__name__)

PENDING_PREFIX = "roster:import:pending:"
REPORT_PREFIX = "roster:import:report:"

REPORT_TTL_SECONDS = int(os.environ.get("IMPORT_REPORT_TTL_SECONDS", str(24 * 60 * 60)))
MAX_LOCAL_REPORTS = 100

_redis_client: Optional[redis.Redis] = None
# key -> {"ts": written at, "ttl": seconds or None, "value": JSON}
_local_store: Dict[str, Dict[str, Any]] = {}


class PendingImport(BaseModel):
    """Checkpoint of a run waiting for name-mismatch decisions."""
    import_id: str
    owner_id: Optional[str] = None
    program: Optional[str] = None
    rows: List[ImportRow] = Field(default_factory=list)
    mismatches: List[NameMismatch] = Field(default_factory=list)
    db_students: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    partial: ImportBatchResult = Field(default_factory=ImportBatchResult)
    skipped_rows: List[int] = Field(default_factory=list)


class ImportReport(BaseModel):
    """Final outcome of a run, kept for error downloads."""
    import_id: str
    owner_id: Optional[str] = None
    status: ImportStatus
    result: ImportBatchResult


def get_redis_client() -> Optional[redis.Redis]:
    """Return a shared Redis client, or None if REDIS_URL is unset or unreachable."""
    global _redis_client
    if _redis_client is not None:
        return _redis_client

    redis_url = os.environ.get("REDIS_URL")
    if not redis_url:
        return None

    try:
        client = redis.Redis.from_url(redis_url, decode_responses=True)
        client.ping()
        _redis_client = client
        return client
    except Exception as e:
        logger.warning(f"⚠️ Warning: Redis unavailable, keeping imports in memory: {e}")
        return None


def _expired(entry: Dict[str, Any], now: float) -> bool:
    return entry["ttl"] is not None and (now - entry["ts"]) >= entry["ttl"]


def _prune_local_reports(now: float) -> None:
    """Drop expired reports, then the oldest ones past MAX_LOCAL_REPORTS."""
    for key in [k for k, entry in _local_store.items() if _expired(entry, now)]:
        del _local_store[key]
    # Dict order is write order
    reports = [key for key in _local_store if key.startswith(REPORT_PREFIX)]
    for key in reports[:max(0, len(reports) - MAX_LOCAL_REPORTS)]:
        del _local_store[key]


def _put(key: str, value: str, ttl: Optional[int] = None) -> None:
    now = time.time()
    _local_store.pop(key, None)
    _local_store[key] = {"ts": now, "ttl": ttl, "value": value}
    if key.startswith(REPORT_PREFIX):
        _prune_local_reports(now)
    redis_client = get_redis_client()
    if redis_client:
        try:
            if ttl is None:
                redis_client.set(key, value)
            else:
                redis_client.setex(key, ttl, value)
        except Exception as e:
            logger.warning(f"⚠️ Warning: Redis write failed for {key}: {e}")


def _get(key: str) -> Optional[str]:
    redis_client = get_redis_client()
    if redis_client:
        try:
            value = redis_client.get(key)
            if value:
                return value
        except Exception as e:
            logger.warning(f"⚠️ Warning: Redis read failed for {key}: {e}")

    entry = _local_store.get(key)
    if entry is None:
        return None
    if _expired(entry, time.time()):
        del _local_store[key]
        return None
    return entry["value"]


def _delete(key: str) -> None:
    _local_store.pop(key, None)
    redis_client = get_redis_client()
    if redis_client:
        try:
            redis_client.delete(key)
        except Exception as e:
            logger.warning(f"⚠️ Warning: Redis delete failed for {key}: {e}")


def save_pending(pending: PendingImport) -> None:
    _put(PENDING_PREFIX + pending.import_id, pending.model_dump_json())


def load_pending(import_id: str) -> Optional[PendingImport]:
    raw = _get(PENDING_PREFIX + import_id)
    return PendingImport.model_validate_json(raw) if raw else None


def delete_pending(import_id: str) -> None:
    _delete(PENDING_PREFIX + import_id)


def save_report(report: ImportReport) -> None:
    _put(REPORT_PREFIX + report.import_id, report.model_dump_json(), ttl=REPORT_TTL_SECONDS)


def load_report(import_id: str) -> Optional[ImportReport]:
    raw = _get(REPORT_PREFIX + import_id)
    return ImportReport.model_validate_json(raw) if raw else None


def delete_report(import_id: str) -> None:
    _delete(REPORT_PREFIX + import_id)


def clear_local_store() -> None:
    """Drop every in-process entry (Redis is left alone)."""
    _local_store.clear()
