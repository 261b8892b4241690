"""
Row cache and table service for ChainDB.

A Table owns the row cache of one database table: a mapping from row id to
the single live RowObject representing that row. Every path that
materialises rows (insert, get, all) goes through the same reconciliation
step, so two callers asking for the same id always hold the same object.

Invariants:
    - For any cached id exactly one RowObject instance exists
    - get() on a cached id returns the cached instance without queueing
    - Field writes update the in-memory row first, then enqueue an UPDATE
      that reads the row's current state when its turn comes
    - remove() evicts and voids the object before the DELETE runs; a row
      whose DELETE is pending is never re-adopted by get() or all()
    - A failed write rolls the field back to the last value known to be
      stored, so the cache never disagrees with storage
    - Mutation hooks see the values an UPDATE actually wrote: one mutation
      for the written field plus one per other column the UPDATE changed.
      They fire inside the queue turn, so they observe queue order

How to change safely:
    - Any code touching the cache after an await must re-check the cache
      (see Table._adopt)
    - Keep RowObject attribute names underscored; public names are columns
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..errors import (
    InvalidRowIdError,
    ObjectRemovedError,
    ReadOnlyFieldError,
    UnknownColumnError,
)
from .schema import ID_COLUMN, TableDescriptor

if TYPE_CHECKING:
    from .database import Database

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Mutation:
    """A successfully persisted mutation, as seen by mutation hooks.

    Attributes:
        kind: "update" or "remove"
        table: Table name
        row_id: Row identifier
        field: Updated column (update only)
        value: New value (update only)
    """

    kind: str
    table: str
    row_id: int
    field: str | None = None
    value: Any = None


MutationHook = Callable[[Mutation], None]


def _consume_result(future: asyncio.Future[Any]) -> None:
    # Fire-and-forget writes report failures through the queue listeners
    if not future.cancelled():
        future.exception()


class RowObject:
    """In-memory representative of one row.

    Instances are only created by their Table. Columns are exposed as
    properties of a per-table subclass compiled from the descriptor (see
    compile_record_class); assigning a property persists in the background.

    Example:
        >>> joe = await db["Person"].insert({"nickname": "Joe", "age": 42})
        >>> joe.age = 43          # visible immediately, persisted via the queue
        >>> await joe.set_field("age", 44)   # same, but wait for persistence
    """

    __slots__ = ("_table", "_row", "_stored", "_versions", "_unsaved")

    def __init__(self, table: Table, row: dict[str, Any]) -> None:
        self._table: Table | None = table
        self._row: dict[str, Any] | None = row
        # Last values known to be in storage
        self._stored: dict[str, Any] = dict(row)
        self._versions: dict[str, int] = {}
        self._unsaved: dict[str, int] = {}

    def __repr__(self) -> str:
        if self._row is None:
            return f"<{type(self).__name__} removed>"
        return f"<{type(self).__name__} {self._row!r}>"

    @property
    def removed(self) -> bool:
        """Whether remove() has voided this object."""
        return self._row is None

    @property
    def id(self) -> int:
        return self._live_row()[ID_COLUMN]

    @property
    def table(self) -> Table:
        if self._table is None:
            raise ObjectRemovedError()
        return self._table

    def _live_row(self) -> dict[str, Any]:
        if self._row is None:
            raise ObjectRemovedError()
        return self._row

    def all_fields(self) -> dict[str, Any]:
        """Snapshot of the row, ``id`` included."""
        return dict(self._live_row())

    def get_field(self, name: str) -> Any:
        row = self._live_row()
        if name != ID_COLUMN and not self.table.descriptor.has_column(name):
            raise UnknownColumnError(name, self.table.name)
        return row.get(name)

    def set_field(self, name: str, value: Any) -> asyncio.Future[RowObject]:
        """Set a column and persist it.

        The in-memory value changes immediately (read-your-writes). The
        returned future settles once the UPDATE has run. If it fails, the
        field goes back to the last value known to be stored, unless a later
        write replaced it meanwhile.

        Raises:
            ObjectRemovedError: If the object was removed
            ReadOnlyFieldError: If name is "id"
            UnknownColumnError: If name is not a declared column
            DatabaseClosedError: If the database has no open handle
        """
        table = self.table
        row = self._live_row()
        if name == ID_COLUMN:
            raise ReadOnlyFieldError(name)
        if not table.descriptor.has_column(name):
            raise UnknownColumnError(name, table.name)
        table.database.require_open()

        row[name] = value
        version = self._versions.get(name, 0) + 1
        self._versions[name] = version
        self._unsaved[name] = self._unsaved.get(name, 0) + 1
        return table._persist(self, name, version)

    def remove(self) -> asyncio.Future[None]:
        """Delete the row.

        The object leaves the cache and loses its data right away; the
        returned future settles once the DELETE has run.

        Raises:
            ObjectRemovedError: If the object was already removed
            DatabaseClosedError: If the database has no open handle
        """
        if self._table is None or self._row is None:
            raise ObjectRemovedError()
        table = self._table
        table.database.require_open()
        row_id = self._row[ID_COLUMN]
        table._evict(row_id)
        self._table = None
        self._row = None
        return table._delete(row_id)

    def _rollback(self, name: str, version: int) -> None:
        if self._row is None or self._versions.get(name) != version:
            return
        self._row[name] = self._stored.get(name)
        logger.info(
            "Rolled back unpersisted field",
            extra={"table": self._table.name if self._table else None, "field": name},
        )

    def _mark_stored(self, written: Mapping[str, Any]) -> list[str]:
        """Record values an UPDATE wrote. Returns the columns that changed."""
        changed = [
            name
            for name, value in written.items()
            if name not in self._stored or self._stored[name] != value
        ]
        self._stored.update(written)
        return changed

    def _saved(self, name: str) -> None:
        count = self._unsaved.get(name, 0) - 1
        if count > 0:
            self._unsaved[name] = count
        else:
            self._unsaved.pop(name, None)

    def _refresh(self, row: Mapping[str, Any]) -> None:
        # Stored values are stale for fields whose UPDATE is still queued
        live = self._live_row()
        self._stored.update(row)
        for name, value in row.items():
            if name not in self._unsaved:
                live[name] = value


def _column_property(name: str) -> property:
    def getter(self: RowObject) -> Any:
        return self._live_row().get(name)

    def setter(self: RowObject, value: Any) -> None:
        self.set_field(name, value).add_done_callback(_consume_result)

    return property(getter, setter, doc=f"Column {name!r}")


def compile_record_class(descriptor: TableDescriptor) -> type[RowObject]:
    """Build the RowObject subclass for a table, one property per column.

    Done once per descriptor, when the table is created or reopened.
    """
    namespace: dict[str, Any] = {"__slots__": ()}
    for name in descriptor.column_names:
        if hasattr(RowObject, name):
            # Column shadowing a method name stays reachable via get_field/set_field
            logger.warning(
                "Column name shadows a RowObject attribute",
                extra={"table": descriptor.name, "column": name},
            )
            continue
        namespace[name] = _column_property(name)
    return type(descriptor.name, (RowObject,), namespace)


class Table:
    """Table service: CRUD through the operation queue plus the row cache.

    Operations enqueue at call time and return awaitables, so the order in
    which they are called is the order in which they hit storage.

    Attributes:
        database: Owning Database
        descriptor: Immutable table descriptor
        record_class: Compiled RowObject subclass for this table

    Example:
        >>> people = await db.create_table("Person", {"nickname": "text", "age": "num"})
        >>> joe = await people.insert({"nickname": "Joe", "age": 42})
        >>> assert await people.get(joe.id) is joe
    """

    def __init__(self, database: Database, descriptor: TableDescriptor) -> None:
        self.database = database
        self.descriptor = descriptor
        self.record_class = compile_record_class(descriptor)
        self._cache: dict[int, RowObject] = {}
        self._removing: set[int] = set()
        self._hooks: list[MutationHook] = []

    def __repr__(self) -> str:
        return f"<Table {self.name} columns={list(self.descriptor.column_names)}>"

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def columns(self) -> Mapping[str, Any]:
        return self.descriptor.columns

    def cached(self, row_id: int) -> RowObject | None:
        """Cached object for an id, without touching storage."""
        return self._cache.get(row_id)

    def cached_ids(self) -> list[int]:
        return list(self._cache)

    def add_hook(self, hook: MutationHook) -> None:
        self._hooks.append(hook)

    def remove_hook(self, hook: MutationHook) -> None:
        self._hooks.remove(hook)

    # Public operations

    def insert(self, fields: Mapping[str, Any]) -> asyncio.Future[RowObject]:
        """Insert a row. Unknown fields (and ``id``) are dropped silently.

        Declared columns missing from fields are stored and cached as None,
        so the new object has the same shape as one read back from storage.

        Returns:
            Future resolving to the new RowObject
        """
        handle = self.database.require_open()
        values = self.descriptor.filter_fields(fields)
        sql, params = self.descriptor.insert_sql(values)
        row = {column: values.get(column) for column in self.descriptor.column_names}

        async def operation() -> RowObject:
            row_id = await handle.run(sql, params)
            obj = self._adopt({ID_COLUMN: row_id, **row})
            logger.debug("Inserted row", extra={"table": self.name, "id": row_id})
            return obj

        return self.database.queue.enqueue(operation)

    def get(self, row_id: int) -> asyncio.Future[RowObject | None]:
        """Get the object for a row id, or None if there is no such row.

        A cached object is returned immediately without queueing.

        Raises:
            InvalidRowIdError: If row_id is not an integer
        """
        if isinstance(row_id, bool) or not isinstance(row_id, int):
            raise InvalidRowIdError(row_id)
        cached = self._cache.get(row_id)
        if cached is not None:
            future: asyncio.Future[RowObject | None] = asyncio.get_running_loop().create_future()
            future.set_result(cached)
            return future

        handle = self.database.require_open()
        sql = self.descriptor.select_one_sql()

        async def operation() -> RowObject | None:
            row = await handle.get_one(sql, [row_id])
            if row is None:
                return None
            return self._adopt(row)

        return self.database.queue.enqueue(operation)

    def all(self) -> asyncio.Future[list[RowObject]]:
        """Get objects for every row, reconciled with the cache."""
        handle = self.database.require_open()
        sql = self.descriptor.select_all_sql()

        async def operation() -> list[RowObject]:
            rows = await handle.get_all(sql)
            adopted = (self._adopt(row) for row in rows)
            return [obj for obj in adopted if obj is not None]

        return self.database.queue.enqueue(operation)

    # Cache maintenance

    def _adopt(self, row: dict[str, Any]) -> RowObject | None:
        """Reconcile a freshly read row with the cache.

        Called after the storage await, so the cache is re-checked here:
        an existing object is refreshed in place, otherwise one is created.
        Rows with a pending DELETE are not adopted.
        """
        row_id = row[ID_COLUMN]
        if row_id in self._removing:
            return None
        existing = self._cache.get(row_id)
        if existing is not None and not existing.removed:
            existing._refresh(row)
            return existing
        obj = self.record_class(self, dict(row))
        self._cache[row_id] = obj
        return obj

    def _evict(self, row_id: int) -> None:
        self._cache.pop(row_id, None)
        self._removing.add(row_id)

    def _invalidate(self) -> None:
        for obj in self._cache.values():
            obj._table = None
            obj._row = None
        self._cache.clear()

    # Persistence

    def _persist(self, obj: RowObject, name: str, version: int) -> asyncio.Future[RowObject]:
        handle = self.database.require_open()

        async def operation() -> RowObject:
            row = obj._row
            if row is None:
                # Removed before its turn; the pending DELETE supersedes this write
                logger.debug("Skipped update of removed row", extra={"table": self.name})
                return obj
            # The UPDATE carries every column's current value, including
            # values of writes still queued behind this one
            written = {column: row.get(column) for column in self.descriptor.column_names}
            row_id = row[ID_COLUMN]
            sql, params = self.descriptor.update_sql({**written, ID_COLUMN: row_id})
            try:
                await handle.run(sql, params)
            except Exception:
                obj._rollback(name, version)
                raise
            finally:
                obj._saved(name)
            changed = obj._mark_stored(written)
            self._emit(Mutation("update", self.name, row_id, name, written[name]))
            for column in changed:
                if column != name:
                    self._emit(Mutation("update", self.name, row_id, column, written[column]))
            return obj

        return self.database.queue.enqueue(operation)

    def _delete(self, row_id: int) -> asyncio.Future[None]:
        handle = self.database.require_open()
        sql = self.descriptor.delete_sql()

        async def operation() -> None:
            try:
                await handle.run(sql, [row_id])
            finally:
                self._removing.discard(row_id)
            logger.debug("Removed row", extra={"table": self.name, "id": row_id})
            self._emit(Mutation("remove", self.name, row_id))

        return self.database.queue.enqueue(operation)

    def _emit(self, mutation: Mutation) -> None:
        for hook in list(self._hooks):
            try:
                hook(mutation)
            except Exception:
                logger.exception(
                    "Mutation hook failed",
                    extra={"table": self.name, "kind": mutation.kind, "id": mutation.row_id},
                )
