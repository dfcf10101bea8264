"""Collection layout for stored audit records.

The collection name and attribute names are the persisted contract shared with
existing data; changing them breaks reads of previously written records.
"""

from __future__ import annotations

from audit_log.models import AttributeSpec, AttributeType, IndexSpec

COLLECTION = "audit"

KEY_LENGTH = 255
DATA_MAX_BYTES = 16 * 1024 * 1024

ATTRIBUTES: tuple[AttributeSpec, ...] = (
    AttributeSpec("userId", AttributeType.STRING, size=KEY_LENGTH, required=True),
    AttributeSpec("event", AttributeType.STRING, size=255, required=True),
    AttributeSpec("resource", AttributeType.STRING, size=255),
    AttributeSpec("userAgent", AttributeType.STRING, size=65534, required=True),
    # 45 characters fits the longest textual IPv6 form.
    AttributeSpec("ip", AttributeType.STRING, size=45, required=True),
    AttributeSpec("location", AttributeType.STRING, size=45),
    AttributeSpec("time", AttributeType.INTEGER),
    AttributeSpec("data", AttributeType.STRING, size=DATA_MAX_BYTES, size_in_bytes=True),
)

INDEXES: tuple[IndexSpec, ...] = (
    IndexSpec("index1", ("userId",)),
    IndexSpec("index2", ("event",)),
    IndexSpec("index3", ("resource",)),
    IndexSpec("index4", ("userId", "event")),
    IndexSpec("index5", ("resource", "event")),
)
