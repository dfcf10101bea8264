"""Data models for audit records, collection schemas and store filters."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping, Union

if TYPE_CHECKING:
    from audit_log.codec import PayloadCodec

ID_KEY = "$id"
READ_KEY = "$read"
WRITE_KEY = "$write"


class AttributeType(str, Enum):
    STRING = "string"
    INTEGER = "integer"


class IndexType(str, Enum):
    KEY = "key"


class OrderType(str, Enum):
    ASC = "ASC"
    DESC = "DESC"


@dataclass(frozen=True)
class AttributeSpec:
    key: str
    type: AttributeType
    size: int = 0
    # Measure size in UTF-8 bytes instead of characters.
    size_in_bytes: bool = False
    required: bool = False


@dataclass(frozen=True)
class IndexSpec:
    key: str
    attributes: tuple[str, ...]
    type: IndexType = IndexType.KEY


@dataclass(frozen=True)
class Equal:
    attribute: str
    value: Any


@dataclass(frozen=True)
class LessThan:
    attribute: str
    value: Any


@dataclass(frozen=True)
class InSet:
    """Matches when the attribute equals any of ``values``; empty matches nothing."""

    attribute: str
    values: tuple[Any, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", tuple(self.values))


Filter = Union[Equal, LessThan, InSet]


# Dataclass field name -> persisted attribute name.
_FIELD_TO_ATTRIBUTE = {
    "user_id": "userId",
    "event": "event",
    "resource": "resource",
    "user_agent": "userAgent",
    "ip": "ip",
    "location": "location",
    "time": "time",
}


@dataclass(frozen=True)
class AuditRecord:
    user_id: str
    event: str
    user_agent: str
    ip: str
    resource: str | None = None
    location: str | None = None
    time: int | None = None
    data: Any = field(default_factory=dict)
    id: str | None = None
    read: tuple[str, ...] = ()
    write: tuple[str, ...] = ()

    def to_document(self, codec: PayloadCodec) -> dict[str, Any]:
        document: dict[str, Any] = {
            READ_KEY: list(self.read),
            WRITE_KEY: list(self.write),
        }
        if self.id is not None:
            document[ID_KEY] = self.id
        for name, attribute in _FIELD_TO_ATTRIBUTE.items():
            document[attribute] = getattr(self, name)
        document["data"] = codec.encode(self.data)
        return document

    @classmethod
    def from_document(cls, document: Mapping[str, Any], codec: PayloadCodec) -> AuditRecord:
        values = {name: document.get(attribute) for name, attribute in _FIELD_TO_ATTRIBUTE.items()}
        return cls(
            id=document.get(ID_KEY),
            read=tuple(document.get(READ_KEY) or ()),
            write=tuple(document.get(WRITE_KEY) or ()),
            data=codec.decode(document.get("data")),
            **values,
        )
