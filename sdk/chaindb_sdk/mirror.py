"""
Remote mirror of ChainDB tables.

A MirrorSession keeps, per table, a local cache of the objects it has
fetched over HTTP and keeps them current by applying the change events
pushed by the server. Within one RemoteTable every id maps to at most one
RemoteObject, so every caller sees the same instance.

Example:
    >>> async with MirrorSession("http://localhost:18080") as session:
    ...     await session.subscribe()
    ...     people = session.table("Person")
    ...     joe = await people.get(1)
    ...     await joe.set_field("age", 43)
    ...     joe.age
    43

Invariants:
    - One RemoteObject per (table, id) within a session
    - Pushed updates are applied in place, identity preserved
    - A pushed or local removal evicts and voids the object
    - A failed set_field restores the last value the server confirmed,
      unless a later local write or pushed update replaced it meanwhile
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from typing import Any

import aiohttp

from ._http import HttpTransport
from .config import MirrorSettings
from .errors import ChainDbClientError, ObjectRemovedError, ProtocolError
from .events import ChangeKind, parse_message

logger = logging.getLogger(__name__)

ID_FIELD = "id"

ErrorListener = Callable[[ChainDbClientError], None]

_MISSING = object()


class RemoteObject:
    """Local copy of one server object.

    Fields are readable as attributes. Assigning an attribute is rejected:
    writes go through set_field(), which reaches the server.
    """

    __slots__ = ("_table", "_row", "_confirmed", "_versions", "_unsaved")

    def __init__(self, table: RemoteTable, row: dict[str, Any]) -> None:
        object.__setattr__(self, "_table", table)
        object.__setattr__(self, "_row", row)
        # Last values the server is known to hold
        object.__setattr__(self, "_confirmed", dict(row))
        object.__setattr__(self, "_versions", {})
        object.__setattr__(self, "_unsaved", {})

    def __repr__(self) -> str:
        if self._row is None:
            return "<RemoteObject removed>"
        return f"<RemoteObject {self._table.name} {self._row!r}>"

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        row = self._live_row()
        if name not in row:
            raise AttributeError(f"{self._table.name} object has no field {name!r}")
        return row[name]

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(f"Cannot assign {name!r} directly, use set_field()")

    @property
    def removed(self) -> bool:
        return self._row is None

    @property
    def id(self) -> int:
        return self._live_row()[ID_FIELD]

    @property
    def table(self) -> RemoteTable:
        if self._table is None:
            raise ObjectRemovedError()
        return self._table

    def _live_row(self) -> dict[str, Any]:
        if self._row is None:
            raise ObjectRemovedError()
        return self._row

    def all_fields(self) -> dict[str, Any]:
        return dict(self._live_row())

    def get_field(self, name: str) -> Any:
        """Return one field value, None if the object has no such field."""
        return self._live_row().get(name)

    async def set_field(self, name: str, value: Any) -> RemoteObject:
        """Set a field locally and on the server.

        The local value changes before the request is sent. If the request
        fails the field goes back to the last value the server confirmed,
        unless a later write or pushed update replaced it, and the error is
        re-raised.

        Raises:
            ObjectRemovedError: If the object was removed
            ChainDbClientError: If name is "id"
            RequestError: If the server rejected the write
            ConnectionError: If the server could not be reached
        """
        table = self.table
        row = self._live_row()
        if name == ID_FIELD:
            raise ChainDbClientError(
                "Field 'id' is read-only", code="READ_ONLY_FIELD", details={"field": name}
            )
        row_id = row[ID_FIELD]

        row[name] = value
        version = self._bump(name)
        self._unsaved[name] = self._unsaved.get(name, 0) + 1
        try:
            result = await table.session.transport.request(
                "PUT", table.field_path(row_id, name), {"value": value}
            )
        except ChainDbClientError:
            self._rollback(name, version)
            raise
        finally:
            self._saved(name)

        if isinstance(result, dict) and self._row is not None:
            self._refresh(result)
        return self

    async def remove(self) -> None:
        """Delete the object on the server, then evict and void it.

        Raises:
            ObjectRemovedError: If the object was already removed
        """
        table = self.table
        row_id = self.id
        await table.session.transport.request("DELETE", table.item_path(row_id))
        table._evict(row_id, self)
        self._void()

    async def refresh(self) -> bool:
        """Re-fetch the object from the server.

        Returns:
            False if the object no longer exists; it is then evicted and voided
        """
        table = self.table
        row_id = self.id
        data = await table.session.transport.request(
            "GET", table.item_path(row_id), allow_not_found=True
        )
        if data is None:
            table._evict(row_id, self)
            self._void()
            return False
        if self._row is not None:
            self._refresh(table._check_row(data))
        return True

    # Internal state transitions

    def _bump(self, name: str) -> int:
        version = self._versions.get(name, 0) + 1
        self._versions[name] = version
        return version

    def _rollback(self, name: str, version: int) -> None:
        if self._row is None or self._versions.get(name) != version:
            return
        previous = self._confirmed.get(name, _MISSING)
        if previous is _MISSING:
            self._row.pop(name, None)
        else:
            self._row[name] = previous
        logger.info(
            "Rolled back failed remote write",
            extra={"table": self._table.name if self._table else None, "field": name},
        )

    def _saved(self, name: str) -> None:
        count = self._unsaved.get(name, 0) - 1
        if count > 0:
            self._unsaved[name] = count
        else:
            self._unsaved.pop(name, None)

    def _refresh(self, row: Mapping[str, Any]) -> None:
        live = self._live_row()
        self._confirmed.update(row)
        for name, value in row.items():
            if name not in self._unsaved:
                live[name] = value

    def _apply(self, name: str, value: Any) -> bool:
        if self._row is None or name not in self._row or name == ID_FIELD:
            return False
        self._row[name] = value
        self._confirmed[name] = value
        self._bump(name)
        return True

    def _void(self) -> None:
        object.__setattr__(self, "_table", None)
        object.__setattr__(self, "_row", None)


class RemoteTable:
    """Mirror of one server table.

    Attributes:
        session: Owning MirrorSession
        name: Table name on the server
    """

    def __init__(self, session: MirrorSession, name: str) -> None:
        self.session = session
        self.name = name
        self._cache: dict[int, RemoteObject] = {}

    def __repr__(self) -> str:
        return f"RemoteTable({self.name!r}, cached={len(self._cache)})"

    @property
    def collection_path(self) -> str:
        return f"/{self.name}s/"

    def item_path(self, row_id: int) -> str:
        return f"/{self.name}s/{row_id}"

    def field_path(self, row_id: int, name: str) -> str:
        return f"/{self.name}s/{row_id}/{name}"

    def cached(self, row_id: int) -> RemoteObject | None:
        return self._cache.get(row_id)

    def cached_ids(self) -> list[int]:
        return list(self._cache)

    async def get(self, row_id: int) -> RemoteObject | None:
        """Return the object with this id, None if the server has none.

        A cached object is returned without a request.
        """
        if isinstance(row_id, bool) or not isinstance(row_id, int):
            raise ChainDbClientError(
                f"Invalid id: {row_id!r}", code="INVALID_ID", details={"id": row_id}
            )
        cached = self._cache.get(row_id)
        if cached is not None:
            return cached
        data = await self.session.transport.request(
            "GET", self.item_path(row_id), allow_not_found=True
        )
        if data is None:
            return None
        return self._adopt(data)

    async def insert(self, fields: Mapping[str, Any]) -> RemoteObject:
        data = await self.session.transport.request("POST", self.collection_path, dict(fields))
        return self._adopt(data)

    async def all(self) -> list[RemoteObject]:
        data = await self.session.transport.request("GET", self.collection_path)
        if not isinstance(data, list):
            raise ProtocolError("Expected a list of objects", raw=data)
        return [self._adopt(row) for row in data]

    def apply_update(self, row_id: int, name: str, value: Any) -> bool:
        """Apply a pushed field update. Returns False if it did not apply."""
        obj = self._cache.get(row_id)
        if obj is None:
            return False
        return obj._apply(name, value)

    def apply_remove(self, row_id: int) -> bool:
        """Apply a pushed removal. Returns False if the id was not cached."""
        obj = self._cache.pop(row_id, None)
        if obj is None:
            return False
        obj._void()
        return True

    def _check_row(self, data: Any) -> dict[str, Any]:
        if not isinstance(data, dict):
            raise ProtocolError("Expected an object", raw=data)
        row_id = data.get(ID_FIELD)
        if isinstance(row_id, bool) or not isinstance(row_id, int):
            raise ProtocolError("Object without an integer id", raw=data)
        return data

    def _adopt(self, data: Any) -> RemoteObject:
        row = self._check_row(data)
        existing = self._cache.get(row[ID_FIELD])
        if existing is not None:
            existing._refresh(row)
            return existing
        obj = RemoteObject(self, dict(row))
        self._cache[row[ID_FIELD]] = obj
        return obj

    def _evict(self, row_id: int, obj: RemoteObject) -> None:
        if self._cache.get(row_id) is obj:
            del self._cache[row_id]

    def _clear(self) -> None:
        for obj in self._cache.values():
            obj._void()
        self._cache.clear()


class MirrorSession:
    """Connection to one ChainDB server: HTTP for reads and writes, a
    WebSocket for pushed changes.

    Attributes:
        settings: Session settings
        base_url: Server base URL
        transport: HTTP transport
        tables: RemoteTable per table name, created on first use
        events_applied: Number of pushed events that changed a local object
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        settings: MirrorSettings | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Initialize the session.

        Args:
            base_url: Server base URL (defaults to settings.base_url)
            settings: Session settings (loaded from env if not provided)
            session: Optional aiohttp session to reuse; it is not closed by close()
        """
        self.settings = settings or MirrorSettings()
        self.base_url = (base_url or self.settings.base_url).rstrip("/")
        self.transport = HttpTransport(
            self.base_url, timeout=self.settings.request_timeout, session=session
        )
        self.tables: dict[str, RemoteTable] = {}
        self.events_applied = 0
        self._error_listeners: list[ErrorListener] = []
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._listener: asyncio.Task[None] | None = None

    async def __aenter__(self) -> MirrorSession:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def table(self, name: str) -> RemoteTable:
        """Return the mirror of a table, creating it on first use."""
        table = self.tables.get(name)
        if table is None:
            table = RemoteTable(self, name)
            self.tables[name] = table
        return table

    def add_error_listener(self, listener: ErrorListener) -> None:
        """Register a callback for malformed push messages."""
        self._error_listeners.append(listener)

    def remove_error_listener(self, listener: ErrorListener) -> None:
        self._error_listeners.remove(listener)

    @property
    def subscribed(self) -> bool:
        return self._ws is not None and not self._ws.closed

    # Push channel

    def dispatch(self, message: str | bytes | dict[str, Any]) -> bool:
        """Apply one push message to the local mirror.

        Malformed messages are logged and reported to the error listeners.

        Returns:
            True if a local object changed
        """
        try:
            event = parse_message(message)
        except ProtocolError as e:
            self._report(e)
            return False

        if event is None:
            logger.warning("Server reported an error on the push channel", extra={"raw": message})
            return False

        table = self.tables.get(event.table)
        if table is None:
            return False
        if event.kind is ChangeKind.UPDATE:
            applied = table.apply_update(event.id, event.field, event.value)
        else:
            applied = table.apply_remove(event.id)
        if applied:
            self.events_applied += 1
            logger.debug(
                "Applied change event",
                extra={"table": event.table, "id": event.id, "kind": event.kind.value},
            )
        return applied

    def _report(self, error: ChainDbClientError) -> None:
        logger.warning(f"Malformed push message: {error.message}", extra={"raw": error.details})
        for listener in list(self._error_listeners):
            try:
                listener(error)
            except Exception:
                logger.exception("Mirror error listener failed")

    async def subscribe(self) -> None:
        """Connect the push channel and apply events in the background.

        Once this returns the server delivers every later change event.

        Raises:
            ConnectionError: If the WebSocket handshake fails
        """
        if self._listener is not None and not self._listener.done():
            return
        self._ws = await self.transport.ws_connect(self.settings.ws_path)
        self._listener = asyncio.create_task(self._receive(self._ws))
        logger.info("Subscribed to push channel", extra={"base_url": self.base_url})

    async def listen(self) -> None:
        """Connect the push channel and apply events until it closes."""
        if self._ws is None or self._ws.closed:
            self._ws = await self.transport.ws_connect(self.settings.ws_path)
        await self._receive(self._ws)

    async def _receive(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        async for msg in ws:
            if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                self.dispatch(msg.data)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                logger.warning(f"Push channel error: {ws.exception()}")
                break
        logger.info("Push channel closed", extra={"base_url": self.base_url})

    async def close(self) -> None:
        """Close the push channel and the HTTP transport; void all objects."""
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        if self._listener is not None:
            self._listener.cancel()
            await asyncio.gather(self._listener, return_exceptions=True)
            self._listener = None
        await self.transport.close()
        for table in self.tables.values():
            table._clear()
        self.tables.clear()
