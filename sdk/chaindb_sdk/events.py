"""
Change events received on the push channel.

Wire format (one JSON object per WebSocket text frame):

    {"kind": "update", "table": "Person", "id": 1, "field": "age", "value": 43}
    {"kind": "remove", "table": "Person", "id": 1}

The server may also answer a client frame it could not parse with
{"kind": "error", "error": "..."}; such frames are not change events.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, StrictInt, ValidationError, model_validator

from .errors import ProtocolError


class ChangeKind(str, Enum):
    """Kinds of change events."""

    UPDATE = "update"
    REMOVE = "remove"


class ChangeEvent(BaseModel):
    """One field update or one removal."""

    model_config = ConfigDict(frozen=True)

    kind: ChangeKind
    table: str
    id: StrictInt
    field: str | None = None
    value: Any = None

    @model_validator(mode="after")
    def _check_field(self) -> ChangeEvent:
        if self.kind is ChangeKind.UPDATE and not self.field:
            raise ValueError("update events need a field")
        return self


def parse_message(raw: str | bytes | dict[str, Any]) -> ChangeEvent | None:
    """Decode one push message.

    Returns:
        The event, or None for a server error frame

    Raises:
        ProtocolError: If the message is not valid JSON or not a change event
    """
    if isinstance(raw, dict):
        data: Any = raw
    else:
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ProtocolError(f"Push message is not JSON: {e}", raw=raw) from e

    if isinstance(data, dict) and data.get("kind") == "error":
        return None

    try:
        return ChangeEvent.model_validate(data)
    except ValidationError as e:
        raise ProtocolError(f"Invalid change event: {e.error_count()} error(s)", raw=raw) from e
