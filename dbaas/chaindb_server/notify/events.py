"""
Change events pushed to subscribers.

Wire format (one JSON object per WebSocket text frame):

    {"kind": "update", "table": "Person", "id": 1, "field": "age", "value": 43}
    {"kind": "remove", "table": "Person", "id": 1}

Events are transient: they are not persisted, not acknowledged and not
replayed. A subscriber that was disconnected must re-fetch.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, StrictInt, model_validator

from ..db.table import Mutation


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

    @classmethod
    def from_mutation(cls, mutation: Mutation) -> ChangeEvent:
        return cls(
            kind=ChangeKind(mutation.kind),
            table=mutation.table,
            id=mutation.row_id,
            field=mutation.field,
            value=mutation.value,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": self.kind.value, "table": self.table, "id": self.id}
        if self.kind is ChangeKind.UPDATE:
            data["field"] = self.field
            data["value"] = self.value
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict())
