"""
Error types for ChainDB SDK.

This module defines all exception types raised by the SDK:
- ChainDbClientError: Base exception
- ConnectionError: Server unreachable or connection lost
- RequestError: Server answered with an error status
- ObjectRemovedError: Access to a removed mirror object
- ProtocolError: Malformed push message

Invariants:
    - All errors inherit from ChainDbClientError
    - Errors include context for debugging
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class ChainDbClientError(Exception):
    """Base exception for all ChainDB SDK errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "CHAINDB_CLIENT_ERROR"
        self.details = details or {}


class ConnectionError(ChainDbClientError):
    """Failed to reach the ChainDB server.

    Raised when:
    - Server is unreachable
    - Request times out
    - WebSocket handshake fails
    """

    def __init__(
        self,
        message: str,
        address: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="CONNECTION_ERROR",
            details={"address": address},
        )
        self.address = address


class RequestError(ChainDbClientError):
    """The server rejected a request.

    Attributes:
        status: HTTP status code
        server_code: error_code reported by the server, if any
    """

    def __init__(
        self,
        message: str,
        status: int,
        method: Optional[str] = None,
        path: Optional[str] = None,
        server_code: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="REQUEST_ERROR",
            details={
                "status": status,
                "method": method,
                "path": path,
                "server_code": server_code,
            },
        )
        self.status = status
        self.server_code = server_code


class ObjectRemovedError(ChainDbClientError):
    """The mirror object was removed, locally or by a push event."""

    def __init__(self, table: Optional[str] = None, row_id: Optional[int] = None) -> None:
        super().__init__(
            "Object no longer available",
            code="OBJECT_REMOVED",
            details={"table": table, "id": row_id},
        )


class ProtocolError(ChainDbClientError):
    """A push message could not be understood.

    The offending raw message is kept in details["raw"].
    """

    def __init__(self, message: str, raw: Any = None) -> None:
        super().__init__(message, code="PROTOCOL_ERROR", details={"raw": raw})
        self.raw = raw
