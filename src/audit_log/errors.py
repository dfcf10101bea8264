"""Exceptions raised by the audit log and its store."""

from __future__ import annotations


class AuditError(Exception):
    """Base exception for audit log operations."""

    pass


class StoreNotReadyError(AuditError):
    """Raised when the backing store has not been created yet."""

    pass


class SchemaViolationError(AuditError):
    """Raised when a collection or document does not satisfy its schema."""

    def __init__(self, message: str, attribute: str | None = None):
        self.attribute = attribute
        super().__init__(message)


class StoreOperationError(AuditError):
    """Raised when a find, count, delete or other store call fails."""

    pass


class AuthorizationError(AuditError):
    """Raised when a store call is not permitted for the current caller."""

    pass
