"""Payload codecs for the free-form ``data`` attribute."""

from __future__ import annotations

import json
from typing import Any, Protocol

from audit_log.utils.serialization import json_default


class PayloadCodec(Protocol):
    """Turns an event payload into stored text and back."""

    def encode(self, value: Any) -> str: ...

    def decode(self, text: str | None) -> Any: ...


class JsonPayloadCodec:
    """Default codec: compact JSON with lenient handling of common Python types."""

    def encode(self, value: Any) -> str:
        return json.dumps(
            value,
            ensure_ascii=False,
            separators=(",", ":"),
            default=json_default,
        )

    def decode(self, text: str | None) -> Any:
        if text is None or text == "":
            return {}
        return json.loads(text)
