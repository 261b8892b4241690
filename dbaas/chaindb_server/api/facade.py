"""
Request/response facade over the table service.

ServerTable and ServerObject are the interface the HTTP layer talks to.
Unlike the raw table service, every facade call waits for persistence, so a
response is only sent once the storage side effect is known.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

from ..db.schema import ID_COLUMN
from ..db.table import RowObject, Table


class ServerObject:
    """Facade over one RowObject."""

    def __init__(self, row: RowObject) -> None:
        self._row = row

    @property
    def id(self) -> int:
        return self._row.id

    def all_fields(self) -> dict[str, Any]:
        return self._row.all_fields()

    def get_field(self, name: str) -> Any:
        return self._row.get_field(name)

    async def set_field(self, name: str, value: Any) -> dict[str, Any]:
        """Set one column, wait for persistence, return all fields."""
        await self._row.set_field(name, value)
        return self.all_fields()

    async def update(self, fields: Mapping[str, Any]) -> dict[str, Any]:
        """Set several columns; unknown fields and ``id`` are ignored."""
        descriptor = self._row.table.descriptor
        writes = [
            self._row.set_field(name, value)
            for name, value in fields.items()
            if name != ID_COLUMN and descriptor.has_column(name)
        ]
        for result in await asyncio.gather(*writes, return_exceptions=True):
            if isinstance(result, BaseException):
                raise result
        return self.all_fields()

    async def remove(self) -> None:
        await self._row.remove()


class ServerTable:
    """Facade over one Table."""

    def __init__(self, table: Table) -> None:
        self._table = table

    @property
    def name(self) -> str:
        return self._table.name

    @property
    def columns(self) -> tuple[str, ...]:
        return self._table.descriptor.column_names

    @property
    def collection(self) -> str:
        return self._table.descriptor.collection

    async def insert(self, fields: Mapping[str, Any]) -> ServerObject:
        return ServerObject(await self._table.insert(fields))

    async def get(self, row_id: int) -> ServerObject | None:
        row = await self._table.get(row_id)
        return ServerObject(row) if row is not None else None

    async def all(self) -> list[ServerObject]:
        return [ServerObject(row) for row in await self._table.all()]
