"""
Database for ChainDB.

A Database owns one storage handle, the OperationQueue serializing every
operation on that handle, and a TableRegistry holding its Table services.
It is the lifecycle boundary of the consistency engine: tables are created
or reconstructed here, and closing the database drains the queue, voids
every cached row object and closes the handle.

Invariants:
    - The storage handle is only touched from within queue operations
    - Table names are unique within a database
    - Descriptors of an existing database are rebuilt from the SQLite
      catalog on open; no other metadata is persisted
    - Queue failures are reported to the database error listeners

How to change safely:
    - New lifecycle steps must go through the queue if they touch storage
    - Mutation hooks added here apply to current and future tables
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterator, Mapping
from functools import partial
from typing import Any

from ..errors import DatabaseClosedError, TableExistsError, UnknownTableError
from ..storage import SqliteHandle, StorageHandle
from .queue import OperationQueue
from .schema import TableDescriptor, quote, validate_identifier
from .table import MutationHook, Table

logger = logging.getLogger(__name__)

ErrorListener = Callable[[BaseException], None]

_CATALOG_SQL = (
    "select name from sqlite_master "
    "where type = 'table' and name not like 'sqlite_%' order by name"
)


class TableRegistry(Mapping[str, Table]):
    """Explicit registry of the tables of one Database.

    Tables are looked up by name, or by their pluralised collection name as
    used in HTTP paths.
    """

    def __init__(self) -> None:
        self._tables: dict[str, Table] = {}

    def __getitem__(self, name: str) -> Table:
        try:
            return self._tables[name]
        except KeyError:
            raise UnknownTableError(name) from None

    def __contains__(self, name: object) -> bool:
        return name in self._tables

    def get(self, name: str, default: Table | None = None) -> Table | None:
        return self._tables.get(name, default)

    def __iter__(self) -> Iterator[str]:
        return iter(self._tables)

    def __len__(self) -> int:
        return len(self._tables)

    def register(self, table: Table) -> None:
        if table.name in self._tables:
            raise TableExistsError(table.name)
        self._tables[table.name] = table

    def by_collection(self, collection: str) -> Table | None:
        """Find a table by its collection name (``Persons`` -> ``Person``)."""
        for table in self._tables.values():
            if table.descriptor.collection == collection:
                return table
        return None

    def clear(self) -> None:
        self._tables.clear()


class Database:
    """A storage handle, its operation queue and its tables.

    Attributes:
        name: Database name used in log records
        queue: OperationQueue serializing all storage operations
        tables: TableRegistry of this database

    Example:
        >>> db = await Database.open(":memory:")
        >>> people = await db.create_table("Person", {"nickname": "text", "age": "num"})
        >>> joe = await db["Person"].insert({"nickname": "Joe", "age": 42})
        >>> await db.persist_all()
        >>> await db.close()
    """

    def __init__(
        self,
        handle: StorageHandle,
        name: str = "main",
        operation_timeout: float | None = None,
    ) -> None:
        """Wrap an open storage handle.

        Use Database.open() to also reconstruct existing tables.

        Args:
            handle: Open storage handle, now owned by this database
            name: Database name used in log records
            operation_timeout: Optional per-operation timeout in seconds
        """
        self.name = name
        self._handle: StorageHandle | None = handle
        self.queue = OperationQueue(name, timeout=operation_timeout)
        self.tables = TableRegistry()
        self._error_listeners: list[ErrorListener] = []
        self._mutation_hooks: list[MutationHook] = []
        self._creating: dict[str, asyncio.Future[Table]] = {}
        self.queue.add_error_listener(self._on_queue_error)

    @classmethod
    async def open(
        cls,
        path: str = ":memory:",
        *,
        busy_timeout_ms: int = 5000,
        operation_timeout: float | None = None,
    ) -> Database:
        """Open a SQLite database and reconstruct its tables.

        Args:
            path: Database file path (":memory:" for a fresh in-memory database)
            busy_timeout_ms: SQLite busy timeout
            operation_timeout: Optional per-operation timeout in seconds

        Returns:
            Open Database
        """
        handle = await SqliteHandle.connect(path, busy_timeout_ms=busy_timeout_ms)
        db = cls(handle, name=path, operation_timeout=operation_timeout)
        try:
            await db.load_tables()
        except Exception:
            await handle.close()
            raise
        return db

    def __getitem__(self, name: str) -> Table:
        return self.tables[name]

    def __contains__(self, name: object) -> bool:
        return name in self.tables

    @property
    def is_open(self) -> bool:
        return self._handle is not None

    def require_open(self) -> StorageHandle:
        """Return the storage handle.

        Raises:
            DatabaseClosedError: If the database has been closed
        """
        if self._handle is None:
            raise DatabaseClosedError(f"Database is closed: {self.name}")
        return self._handle

    # Listeners

    def add_error_listener(self, listener: ErrorListener) -> None:
        """Register a callback for every failed storage operation."""
        self._error_listeners.append(listener)

    def add_mutation_hook(self, hook: MutationHook) -> None:
        """Register a hook on every current and future table."""
        self._mutation_hooks.append(hook)
        for table in self.tables.values():
            table.add_hook(hook)

    def remove_mutation_hook(self, hook: MutationHook) -> None:
        self._mutation_hooks.remove(hook)
        for table in self.tables.values():
            table.remove_hook(hook)

    def _on_queue_error(self, reason: BaseException) -> None:
        logger.error(
            f"Database operation failed: {reason}",
            extra={"database": self.name, "error": type(reason).__name__},
        )
        for listener in list(self._error_listeners):
            try:
                listener(reason)
            except Exception:
                logger.exception("Database error listener failed", extra={"database": self.name})

    # Tables

    def _attach(self, descriptor: TableDescriptor) -> Table:
        table = Table(self, descriptor)
        for hook in self._mutation_hooks:
            table.add_hook(hook)
        self.tables.register(table)
        return table

    def create_table(self, name: str, columns: Mapping[str, Any]) -> asyncio.Future[Table]:
        """Create a table.

        Args:
            name: Table name
            columns: Mapping of column name to type ("text", "number" or "num"),
                or to a dict with a "type" key

        Returns:
            Future resolving to the new Table

        Raises:
            InvalidIdentifierError: On bad table or column names
            InvalidColumnTypeError: On a column type other than text, number or num
            TableExistsError: If the table is registered or already being created
            DatabaseClosedError: If the database is closed
        """
        handle = self.require_open()
        descriptor = TableDescriptor.build(name, columns)
        if name in self.tables or name in self._creating:
            raise TableExistsError(name)

        async def operation() -> Table:
            await handle.run(descriptor.create_sql())
            table = self._attach(descriptor)
            logger.info(
                "Created table",
                extra={"database": self.name, "table": name, "columns": list(descriptor.columns)},
            )
            return table

        future = self.queue.enqueue(operation)
        self._creating[name] = future
        future.add_done_callback(partial(self._created, name))
        return future

    def _created(self, name: str, future: asyncio.Future[Table]) -> None:
        if self._creating.get(name) is future:
            del self._creating[name]

    def ensure_table(self, name: str, columns: Mapping[str, Any]) -> asyncio.Future[Table]:
        """Return the registered table, creating it if needed.

        A create already in flight for the name is shared, not repeated.
        """
        pending = self._creating.get(name)
        if pending is not None:
            return pending
        if name in self.tables:
            future: asyncio.Future[Table] = asyncio.get_running_loop().create_future()
            future.set_result(self.tables[name])
            return future
        return self.create_table(name, columns)

    async def load_tables(self) -> TableRegistry:
        """Reconstruct Table services from the SQLite catalog.

        Tables already registered are kept as they are.
        """
        handle = self.require_open()

        async def operation() -> TableRegistry:
            for entry in await handle.get_all(_CATALOG_SQL):
                name = entry["name"]
                if name in self.tables:
                    continue
                validate_identifier(name, "table name")
                info = await handle.get_all(f"pragma table_info({quote(name)})")
                self._attach(TableDescriptor.from_table_info(name, info))
                logger.info("Loaded table", extra={"database": self.name, "table": name})
            return self.tables

        return await self.queue.enqueue(operation)

    # Lifecycle

    async def persist_all(self) -> None:
        """Wait until every operation scheduled so far has settled."""
        await self.queue.join()

    async def close(self) -> None:
        """Drain the queue, void all cached objects and close the handle.

        Raises:
            DatabaseClosedError: If the database is already closed
        """
        handle = self.require_open()
        await self.queue.join()
        self._handle = None
        for table in self.tables.values():
            table._invalidate()
        self.tables.clear()
        await handle.close()
        logger.info("Closed database", extra={"database": self.name})
