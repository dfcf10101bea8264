from __future__ import annotations

import pytest

from audit_log import config
from audit_log.audit import AuditLog
from audit_log.store.sqlite import SqliteStore


class FakeClock:
    def __init__(self, now: int = 1_700_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int = 1) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def _reset_settings_cache() -> None:
    config._load_settings_cached.cache_clear()
    yield
    config._load_settings_cached.cache_clear()


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "audit.db")


@pytest.fixture
def raw_store(db_path):
    sqlite_store = SqliteStore(db_path)
    yield sqlite_store
    sqlite_store.close()


@pytest.fixture
def store(raw_store):
    raw_store.create()
    return raw_store


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def audit_log(store, clock) -> AuditLog:
    log = AuditLog(store, clock=clock)
    log.setup()
    return log
