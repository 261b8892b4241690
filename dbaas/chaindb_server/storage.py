"""
Storage handle abstraction for ChainDB.

The consistency engine treats the storage engine as an opaque handle with
four asynchronous operations: run, get_one, get_all and close. This module
defines that protocol and the SQLite implementation used by the server.

Invariants:
    - A handle is owned by exactly one Database
    - A handle is only touched from within Operation Queue turns
    - Engine failures surface as StorageError, never as raw sqlite3 errors

How to change safely:
    - New engines must implement the StorageHandle protocol
    - run() must return the engine-assigned row id for INSERT statements
    - Keep all blocking engine calls off the event loop
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from abc import abstractmethod
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Protocol, TypeVar, runtime_checkable

from .errors import StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Params = Sequence[Any]


@runtime_checkable
class StorageHandle(Protocol):
    """Protocol for storage engine handles.

    Example:
        >>> handle = await SqliteHandle.connect(":memory:")
        >>> row_id = await handle.run('insert into "Person" ("age") values (?)', [42])
        >>> row = await handle.get_one('select * from "Person" where id = ?', [row_id])
    """

    @abstractmethod
    async def run(self, sql: str, params: Params = ()) -> int | None:
        """Execute a statement.

        Returns:
            The engine-assigned row id of the last inserted row, if any

        Raises:
            StorageError: If the engine rejects the statement
        """
        ...

    @abstractmethod
    async def get_one(self, sql: str, params: Params = ()) -> dict[str, Any] | None:
        """Execute a query and return its first row, or None."""
        ...

    @abstractmethod
    async def get_all(self, sql: str, params: Params = ()) -> list[dict[str, Any]]:
        """Execute a query and return all rows."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying engine resources."""
        ...


class SqliteHandle:
    """SQLite implementation of StorageHandle.

    The sqlite3 module is blocking, so every call is shipped to a private
    single-thread executor. One thread means one connection user, which keeps
    sqlite3's threading rules satisfied while the event loop stays free.

    Attributes:
        path: Database file path (or ":memory:")
        busy_timeout_ms: SQLite busy timeout
    """

    def __init__(self, path: str = ":memory:", busy_timeout_ms: int = 5000) -> None:
        """Initialize the handle (no connection yet, see connect()).

        Args:
            path: Database file path, ":memory:" for a private in-memory database
            busy_timeout_ms: SQLite busy timeout
        """
        self.path = path
        self.busy_timeout_ms = busy_timeout_ms
        self._conn: sqlite3.Connection | None = None
        self._closed = False
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="chaindb-sqlite")

    @classmethod
    async def connect(cls, path: str = ":memory:", busy_timeout_ms: int = 5000) -> SqliteHandle:
        """Open a handle on a SQLite database.

        Args:
            path: Database file path
            busy_timeout_ms: SQLite busy timeout

        Returns:
            Connected SqliteHandle

        Raises:
            StorageError: If the database cannot be opened
        """
        handle = cls(path, busy_timeout_ms)
        await handle._call(handle._open)
        logger.info("Opened SQLite database", extra={"path": path})
        return handle

    @property
    def is_open(self) -> bool:
        """Whether the connection is open."""
        return self._conn is not None

    def _open(self) -> None:
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            self.path,
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit, one statement per operation
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
        self._conn = conn

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageError(f"SQLite handle is closed: {self.path}")
        return self._conn

    async def _call(self, func: Callable[..., T], *args: Any) -> T:
        if self._closed:
            raise StorageError(f"SQLite handle is closed: {self.path}")
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self._executor, func, *args)
        except sqlite3.Error as e:
            sql = args[0] if args and isinstance(args[0], str) else None
            raise StorageError(f"SQLite error: {e}", sql=sql) from e

    def _run(self, sql: str, params: Params) -> int | None:
        cursor = self._connection().execute(sql, tuple(params))
        return cursor.lastrowid

    def _get_one(self, sql: str, params: Params) -> dict[str, Any] | None:
        row = self._connection().execute(sql, tuple(params)).fetchone()
        return dict(row) if row is not None else None

    def _get_all(self, sql: str, params: Params) -> list[dict[str, Any]]:
        return [dict(row) for row in self._connection().execute(sql, tuple(params)).fetchall()]

    def _close(self) -> None:
        conn = self._connection()
        self._conn = None
        conn.close()

    async def run(self, sql: str, params: Params = ()) -> int | None:
        logger.debug("run", extra={"sql": sql})
        return await self._call(self._run, sql, params)

    async def get_one(self, sql: str, params: Params = ()) -> dict[str, Any] | None:
        logger.debug("get_one", extra={"sql": sql})
        return await self._call(self._get_one, sql, params)

    async def get_all(self, sql: str, params: Params = ()) -> list[dict[str, Any]]:
        logger.debug("get_all", extra={"sql": sql})
        return await self._call(self._get_all, sql, params)

    async def close(self) -> None:
        """Close the connection and stop the executor thread."""
        try:
            await self._call(self._close)
        finally:
            self._closed = True
            self._executor.shutdown(wait=False)
        logger.info("Closed SQLite database", extra={"path": self.path})
