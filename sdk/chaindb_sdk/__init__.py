"""
ChainDB Python SDK - Remote mirror for ChainDB servers.

This SDK keeps a local, live copy of server objects:
- MirrorSession: HTTP access plus the WebSocket push channel
- RemoteTable: per-table cache, one object per id
- RemoteObject: attribute access to fields, writes via set_field()

Example:
    >>> from chaindb_sdk import MirrorSession
    >>>
    >>> async with MirrorSession("http://localhost:18080") as session:
    ...     await session.subscribe()
    ...     people = session.table("Person")
    ...     for person in await people.all():
    ...         print(person.nickname, person.age)

Invariants:
    - Within one session every (table, id) has at most one RemoteObject
    - Pushed changes are applied in place without a request

Version: 0.1.0
"""

__version__ = "0.1.0"

from .config import MirrorSettings
from .errors import (
    ChainDbClientError,
    ConnectionError,
    ObjectRemovedError,
    ProtocolError,
    RequestError,
)
from .events import ChangeEvent, ChangeKind, parse_message
from .mirror import MirrorSession, RemoteObject, RemoteTable

__all__ = [
    # Version
    "__version__",
    # Mirror
    "MirrorSession",
    "RemoteTable",
    "RemoteObject",
    "MirrorSettings",
    # Events
    "ChangeEvent",
    "ChangeKind",
    "parse_message",
    # Errors
    "ChainDbClientError",
    "ConnectionError",
    "RequestError",
    "ObjectRemovedError",
    "ProtocolError",
]
