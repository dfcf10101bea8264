from __future__ import annotations

import itertools
from unittest.mock import MagicMock

import pytest

from audit_log.audit import AuditLog
from audit_log.config import CleanupSettings
from audit_log.errors import StoreOperationError
from audit_log.models import LessThan
from audit_log.schema import COLLECTION
from audit_log.store.base import DocumentStore


def _write_at(audit_log: AuditLog, clock, when: int, user_id: str = "user-1") -> None:
    clock.now = when
    audit_log.log(user_id, "event", None, "ua", "10.0.0.1", None)


def test_cleanup_removes_only_older_records(audit_log, clock) -> None:
    for when in (100, 200, 300):
        _write_at(audit_log, clock, when)

    assert audit_log.cleanup(250) is True

    remaining = audit_log.get_logs_by_user("user-1")
    assert [record.time for record in remaining] == [300]

    # Re-running removes nothing further and still succeeds.
    assert audit_log.cleanup(250) is True
    assert audit_log.get_logs_by_user_count("user-1") == 1


def test_cleanup_boundary_is_exclusive(audit_log, clock) -> None:
    _write_at(audit_log, clock, 250)

    assert audit_log.cleanup(250) is True
    assert audit_log.get_logs_by_user_count("user-1") == 1


def test_cleanup_runs_multiple_batches(store, clock) -> None:
    audit_log = AuditLog(store, clock=clock, cleanup_settings=CleanupSettings(batch_size=25))
    audit_log.setup()
    for index in range(60):
        _write_at(audit_log, clock, 1_000 + index)
    _write_at(audit_log, clock, 5_000)

    assert audit_log.cleanup(2_000) is True
    assert audit_log.get_logs_by_user_count("user-1") == 1


def test_cleanup_stops_at_batch_limit_and_resumes(store, clock) -> None:
    settings = CleanupSettings(batch_size=25, max_batches=2)
    audit_log = AuditLog(store, clock=clock, cleanup_settings=settings)
    audit_log.setup()
    for index in range(60):
        _write_at(audit_log, clock, 1_000 + index)

    assert audit_log.cleanup(2_000) is False
    assert audit_log.get_logs_by_user_count("user-1") == 10

    assert audit_log.cleanup(2_000) is True
    assert audit_log.get_logs_by_user_count("user-1") == 0


def test_cleanup_time_budget_still_deletes_a_batch(store, clock) -> None:
    ticks = itertools.count(0, 10)
    audit_log = AuditLog(
        store,
        clock=clock,
        cleanup_settings=CleanupSettings(batch_size=25, max_seconds=5),
        monotonic=lambda: float(next(ticks)),
    )
    audit_log.setup()
    for _ in range(30):
        _write_at(audit_log, clock, 100)

    # Budget is already spent before the second batch.
    assert audit_log.cleanup(250) is False
    assert audit_log.get_logs_by_user_count("user-1") == 5

    assert audit_log.cleanup(250) is True
    assert audit_log.get_logs_by_user_count("user-1") == 0


def test_cleanup_on_empty_collection_makes_one_query() -> None:
    store = MagicMock(spec=DocumentStore)
    store.find.return_value = []

    assert AuditLog(store).cleanup(250) is True

    store.find.assert_called_once()
    args = store.find.call_args
    assert args.args == (COLLECTION, [LessThan("time", 250)])
    assert args.kwargs["limit"] == CleanupSettings().batch_size
    store.delete_document.assert_not_called()


def test_cleanup_propagates_delete_failure() -> None:
    store = MagicMock(spec=DocumentStore)
    store.find.return_value = [{"$id": "a"}, {"$id": "b"}, {"$id": "c"}]
    store.delete_document.side_effect = [True, StoreOperationError("disk I/O error")]

    with pytest.raises(StoreOperationError, match="disk I/O error"):
        AuditLog(store).cleanup(250)

    assert store.delete_document.call_count == 2


def test_cleanup_tolerates_already_deleted_records() -> None:
    store = MagicMock(spec=DocumentStore)
    store.find.side_effect = [[{"$id": "a"}], []]
    store.delete_document.return_value = False

    assert AuditLog(store).cleanup(250) is True
    assert store.find.call_count == 2


def test_cleanup_expired_uses_retention_window(store, clock) -> None:
    audit_log = AuditLog(
        store,
        clock=clock,
        cleanup_settings=CleanupSettings(retention_seconds=100),
    )
    audit_log.setup()
    _write_at(audit_log, clock, 850)
    _write_at(audit_log, clock, 950)
    clock.now = 1_000

    assert audit_log.cleanup_expired() is True
    assert [r.time for r in audit_log.get_logs_by_user("user-1")] == [950]

    assert audit_log.cleanup_expired(retention_seconds=0) is True
    assert audit_log.get_logs_by_user_count("user-1") == 0
