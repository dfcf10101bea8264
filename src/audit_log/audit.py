"""Audit trail of actor events on top of a document store.

Records are written and read under an access grant, so they carry empty
``$read`` / ``$write`` lists and stay invisible to ordinary permission-scoped
queries. Deciding who may call these operations is left to the host.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Sequence

from audit_log.access import Authorization
from audit_log.codec import JsonPayloadCodec, PayloadCodec
from audit_log.config import CleanupSettings, Settings, load_settings
from audit_log.errors import StoreNotReadyError
from audit_log.logging_utils import get_logger
from audit_log.models import AuditRecord, Equal, Filter, ID_KEY, InSet, LessThan, OrderType
from audit_log.schema import ATTRIBUTES, COLLECTION, INDEXES
from audit_log.store.base import DEFAULT_LIMIT, DocumentStore
from audit_log.store.sqlite import SqliteStore
from audit_log.utils.time import now_seconds

logger = get_logger(__name__)

_ORDER_ATTRIBUTES = ("time",)
_ORDER_TYPES = (OrderType.DESC,)


class AuditLog:
    COLLECTION = COLLECTION

    def __init__(
        self,
        store: DocumentStore,
        *,
        authorization: Authorization | None = None,
        codec: PayloadCodec | None = None,
        cleanup_settings: CleanupSettings | None = None,
        clock: Callable[[], int] = now_seconds,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._authorization = authorization or Authorization()
        self._codec = codec or JsonPayloadCodec()
        self._cleanup = cleanup_settings or CleanupSettings()
        self._clock = clock
        self._monotonic = monotonic

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **kwargs: Any) -> AuditLog:
        """Build an audit log backed by the configured SQLite store."""
        settings = settings or load_settings()
        store = SqliteStore(settings.storage.sqlite_path, wal=settings.storage.sqlite_wal)
        return cls(store, cleanup_settings=settings.cleanup, **kwargs)

    @property
    def store(self) -> DocumentStore:
        return self._store

    def setup(self) -> None:
        """Create the audit collection and its indexes.

        Not idempotent: calling it against a provisioned store raises the
        store's ``SchemaViolationError``.
        """
        if not self._store.exists():
            raise StoreNotReadyError("The store must be created before running audit setup")
        self._store.create_collection(COLLECTION, ATTRIBUTES, INDEXES)
        logger.info("Created audit collection '%s' with %d indexes", COLLECTION, len(INDEXES))

    def log(
        self,
        user_id: str,
        event: str,
        resource: str | None,
        user_agent: str,
        ip: str,
        location: str | None,
        data: Any = None,
    ) -> bool:
        """Record one event.

        Args:
            user_id: Who performed the action.
            event: Event name, e.g. "account.sessions.create".
            resource: Target resource identifier, if any.
            user_agent: Client descriptor.
            ip: Source address.
            location: Derived location tag, if any.
            data: Event-specific payload, stored through the payload codec.

        Returns:
            True once the record has been persisted. Store failures propagate.
        """
        record = AuditRecord(
            user_id=user_id,
            event=event,
            resource=resource,
            user_agent=user_agent,
            ip=ip,
            location=location,
            time=self._clock(),
            data={} if data is None else data,
        )
        document = record.to_document(self._codec)
        with self._authorization.skip("audit.log") as grant:
            self._store.create_document(COLLECTION, document, grant=grant)
        return True

    def get_logs_by_user(
        self,
        user_id: str,
        limit: int = DEFAULT_LIMIT,
        offset: int = 0,
        order_after: AuditRecord | None = None,
    ) -> list[AuditRecord]:
        return self._find(self._query_by_user(user_id), limit, offset, order_after)

    def get_logs_by_user_count(self, user_id: str) -> int:
        return self._count(self._query_by_user(user_id))

    def get_logs_by_resource(
        self,
        resource: str,
        limit: int = DEFAULT_LIMIT,
        offset: int = 0,
        order_after: AuditRecord | None = None,
    ) -> list[AuditRecord]:
        return self._find(self._query_by_resource(resource), limit, offset, order_after)

    def get_logs_by_resource_count(self, resource: str) -> int:
        return self._count(self._query_by_resource(resource))

    def get_logs_by_user_and_events(
        self,
        user_id: str,
        events: Sequence[str],
        limit: int = DEFAULT_LIMIT,
        offset: int = 0,
        order_after: AuditRecord | None = None,
    ) -> list[AuditRecord]:
        return self._find(
            self._query_by_user_and_events(user_id, events), limit, offset, order_after
        )

    def get_logs_by_user_and_events_count(self, user_id: str, events: Sequence[str]) -> int:
        return self._count(self._query_by_user_and_events(user_id, events))

    def get_logs_by_resource_and_events(
        self,
        resource: str,
        events: Sequence[str],
        limit: int = DEFAULT_LIMIT,
        offset: int = 0,
        order_after: AuditRecord | None = None,
    ) -> list[AuditRecord]:
        return self._find(
            self._query_by_resource_and_events(resource, events), limit, offset, order_after
        )

    def get_logs_by_resource_and_events_count(self, resource: str, events: Sequence[str]) -> int:
        return self._count(self._query_by_resource_and_events(resource, events))

    def cleanup(self, timestamp: int) -> bool:
        """Delete every record with ``time`` older than ``timestamp``.

        Fetches stale records in batches and deletes them one by one until a
        batch comes back empty. Returns False when the batch or time budget
        from ``CleanupSettings`` runs out first; the records deleted so far
        stay deleted and a later call picks up the rest.
        """
        settings = self._cleanup
        started = self._monotonic()
        batches = 0
        deleted = 0

        with self._authorization.skip("audit.cleanup") as grant:
            while True:
                documents = self._store.find(
                    COLLECTION,
                    [LessThan("time", timestamp)],
                    limit=settings.batch_size,
                    grant=grant,
                )
                if not documents:
                    break
                if batches >= settings.max_batches:
                    logger.warning(
                        "Audit cleanup stopped after %d batches (%d deleted); records older "
                        "than %d remain",
                        batches,
                        deleted,
                        timestamp,
                    )
                    return False
                # Every call deletes at least one batch, whatever the time budget.
                if (
                    batches > 0
                    and settings.max_seconds is not None
                    and self._monotonic() - started >= settings.max_seconds
                ):
                    logger.warning(
                        "Audit cleanup exceeded %.1fs budget (%d deleted); records older "
                        "than %d remain",
                        settings.max_seconds,
                        deleted,
                        timestamp,
                    )
                    return False

                for document in documents:
                    if self._store.delete_document(COLLECTION, document[ID_KEY], grant=grant):
                        deleted += 1
                batches += 1
                logger.debug("Audit cleanup batch %d removed %d record(s)", batches, len(documents))

        logger.info("Audit cleanup removed %d record(s) older than %d", deleted, timestamp)
        return True

    def cleanup_expired(self, retention_seconds: int | None = None) -> bool:
        """Run ``cleanup`` for records older than the retention window."""
        if retention_seconds is None:
            retention_seconds = self._cleanup.retention_seconds
        return self.cleanup(self._clock() - retention_seconds)

    def _find(
        self,
        filters: list[Filter],
        limit: int,
        offset: int,
        order_after: AuditRecord | None,
    ) -> list[AuditRecord]:
        cursor = {ID_KEY: order_after.id} if order_after is not None else None
        with self._authorization.skip("audit.read") as grant:
            documents = self._store.find(
                COLLECTION,
                filters,
                limit=limit,
                offset=offset,
                order_attributes=_ORDER_ATTRIBUTES,
                order_types=_ORDER_TYPES,
                order_after=cursor,
                grant=grant,
            )
        return [AuditRecord.from_document(document, self._codec) for document in documents]

    def _count(self, filters: list[Filter]) -> int:
        with self._authorization.skip("audit.read") as grant:
            return self._store.count(COLLECTION, filters, grant=grant)

    @staticmethod
    def _query_by_user(user_id: str) -> list[Filter]:
        return [Equal("userId", user_id)]

    @staticmethod
    def _query_by_resource(resource: str) -> list[Filter]:
        return [Equal("resource", resource)]

    @staticmethod
    def _query_by_user_and_events(user_id: str, events: Sequence[str]) -> list[Filter]:
        return [Equal("userId", user_id), InSet("event", tuple(events))]

    @staticmethod
    def _query_by_resource_and_events(resource: str, events: Sequence[str]) -> list[Filter]:
        return [Equal("resource", resource), InSet("event", tuple(events))]
