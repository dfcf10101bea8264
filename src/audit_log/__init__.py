"""Audit trail of actor events with filtered reads and retention cleanup."""

from audit_log.access import AccessGrant, Authorization, PermissionContext
from audit_log.audit import AuditLog
from audit_log.codec import JsonPayloadCodec, PayloadCodec
from audit_log.errors import (
    AuditError,
    AuthorizationError,
    SchemaViolationError,
    StoreNotReadyError,
    StoreOperationError,
)
from audit_log.logging_utils import configure_logging, get_logger
from audit_log.models import AuditRecord
from audit_log.store import DocumentStore, SqliteStore

__version__ = "0.1.0"

__all__ = [
    "AccessGrant",
    "AuditError",
    "AuditLog",
    "AuditRecord",
    "Authorization",
    "AuthorizationError",
    "DocumentStore",
    "JsonPayloadCodec",
    "PayloadCodec",
    "PermissionContext",
    "SchemaViolationError",
    "SqliteStore",
    "StoreNotReadyError",
    "StoreOperationError",
    "__version__",
    "configure_logging",
    "get_logger",
]
