from audit_log.store.base import DocumentStore
from audit_log.store.sqlite import SqliteStore

__all__ = ["DocumentStore", "SqliteStore"]
