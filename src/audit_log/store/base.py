"""Abstract document store used by the audit log."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Mapping, Sequence

from audit_log.access import AccessGrant
from audit_log.models import AttributeSpec, Filter, IndexSpec, OrderType

DEFAULT_LIMIT = 25

Document = dict[str, Any]


class DocumentStore(ABC):
    """Typed record storage with filtered, ordered retrieval.

    Every data call takes an optional ``grant``. Without one, the store checks
    the caller's roles against each document's ``$read`` / ``$write`` lists;
    with an active grant those checks are skipped for that call only.
    """

    @abstractmethod
    def exists(self) -> bool:
        """Return True once the store has been created."""
        ...

    @abstractmethod
    def create(self) -> None:
        """Provision the store so that ``exists()`` returns True."""
        ...

    @abstractmethod
    def create_collection(
        self,
        name: str,
        attributes: Sequence[AttributeSpec],
        indexes: Sequence[IndexSpec],
    ) -> None:
        ...

    @abstractmethod
    def create_document(
        self,
        collection: str,
        document: Mapping[str, Any],
        grant: AccessGrant | None = None,
    ) -> Document:
        """Persist ``document`` and return it with its assigned ``$id``."""
        ...

    @abstractmethod
    def find(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        limit: int = DEFAULT_LIMIT,
        offset: int = 0,
        order_attributes: Sequence[str] = (),
        order_types: Sequence[OrderType] = (),
        order_after: Mapping[str, Any] | None = None,
        grant: AccessGrant | None = None,
    ) -> list[Document]:
        """Return matching documents.

        ``order_after`` is a previously returned document; results resume
        strictly after it in the requested ordering.
        """
        ...

    @abstractmethod
    def count(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        grant: AccessGrant | None = None,
    ) -> int:
        ...

    @abstractmethod
    def delete_document(
        self,
        collection: str,
        document_id: str,
        grant: AccessGrant | None = None,
    ) -> bool:
        """Delete one document by id. Returns False if it no longer exists."""
        ...
