"""
Tests for how long import runs and reports are kept.
"""

from unittest.mock import MagicMock

import pytest

from roster import import_store
from roster.import_store import ImportReport, PendingImport
from roster.schema import ImportBatchResult, ImportStatus


def _report(import_id):
    return ImportReport(import_id=import_id, owner_id="admin-1", status=ImportStatus.COMPLETED,
                        result=ImportBatchResult(new_count=1))


@pytest.fixture
def clock(monkeypatch):
    now = [1_000_000.0]
    monkeypatch.setattr(import_store.time, "time", lambda: now[0])
    return now


def test_reports_expire(clock):
    import_store.save_report(_report("r1"))
    clock[0] += import_store.REPORT_TTL_SECONDS - 1
    assert import_store.load_report("r1").result.new_count == 1
    clock[0] += 1
    assert import_store.load_report("r1") is None
    assert import_store.REPORT_PREFIX + "r1" not in import_store._local_store


def test_paused_imports_do_not_expire(clock):
    import_store.save_pending(PendingImport(import_id="p1", owner_id="admin-1"))
    clock[0] += import_store.REPORT_TTL_SECONDS * 30
    import_store.save_report(_report("r1"))
    assert import_store.load_pending("p1").owner_id == "admin-1"


def test_local_reports_are_bounded(clock, monkeypatch):
    monkeypatch.setattr(import_store, "MAX_LOCAL_REPORTS", 3)
    import_store.save_pending(PendingImport(import_id="p1"))
    for number in range(5):
        clock[0] += 1
        import_store.save_report(_report(f"r{number}"))

    assert import_store.load_report("r0") is None
    assert import_store.load_report("r1") is None
    assert [import_store.load_report(f"r{n}").import_id for n in (2, 3, 4)] == ["r2", "r3", "r4"]
    assert import_store.load_pending("p1") is not None


def test_rewriting_a_report_keeps_it_newest(clock, monkeypatch):
    monkeypatch.setattr(import_store, "MAX_LOCAL_REPORTS", 2)
    import_store.save_report(_report("r0"))
    import_store.save_report(_report("r1"))
    import_store.save_report(_report("r0"))
    import_store.save_report(_report("r2"))
    assert import_store.load_report("r1") is None
    assert import_store.load_report("r0") is not None


def test_dismissed_report_is_gone():
    import_store.save_report(_report("r1"))
    import_store.delete_report("r1")
    assert import_store.load_report("r1") is None


def test_redis_gets_report_ttl(monkeypatch):
    redis_client = MagicMock()
    monkeypatch.setattr(import_store, "_redis_client", redis_client)

    report = _report("r1")
    import_store.save_report(report)
    redis_client.setex.assert_called_once_with(
        import_store.REPORT_PREFIX + "r1", import_store.REPORT_TTL_SECONDS, report.model_dump_json()
    )

    pending = PendingImport(import_id="p1")
    import_store.save_pending(pending)
    redis_client.set.assert_called_once_with(import_store.PENDING_PREFIX + "p1", pending.model_dump_json())
