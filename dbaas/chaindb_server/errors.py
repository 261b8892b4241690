"""
Error types for the ChainDB server.

This module defines every exception raised by the consistency engine:
- ChainDbError: Base exception
- StorageError: The storage engine rejected a statement
- OperationTimeoutError: A queued operation exceeded its time budget
- Misuse errors: closed database, removed object, read-only or unknown
  column, bad identifiers or column types, duplicate or unknown tables

Not-found is deliberately absent: a missing row is reported as ``None``.

Invariants:
    - All errors inherit from ChainDbError
    - Each error carries a stable ``code`` for programmatic handling
    - Misuse errors are raised before anything is enqueued
"""

from __future__ import annotations

from typing import Any


class ChainDbError(Exception):
    """Base exception for all ChainDB server errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    code = "CHAINDB_ERROR"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}


class StorageError(ChainDbError):
    """The storage engine failed to execute a statement.

    Raised when:
    - SQL execution fails (constraint, syntax, I/O)
    - The handle is used after being closed
    """

    code = "STORAGE_ERROR"

    def __init__(self, message: str, sql: str | None = None) -> None:
        super().__init__(message, details={"sql": sql})
        self.sql = sql


class OperationTimeoutError(ChainDbError):
    """A queued operation did not settle within the configured timeout."""

    code = "OPERATION_TIMEOUT"

    def __init__(self, timeout: float) -> None:
        super().__init__(
            f"Operation did not complete within {timeout:g}s",
            details={"timeout": timeout},
        )
        self.timeout = timeout


class DatabaseClosedError(ChainDbError):
    """Operation attempted on a database without an open storage handle."""

    code = "DATABASE_CLOSED"


class ObjectRemovedError(ChainDbError):
    """Operation attempted on a row object after remove().

    The object has lost its table and row data; it is no longer available.
    """

    code = "OBJECT_REMOVED"

    def __init__(self, table: str | None = None, row_id: int | None = None) -> None:
        super().__init__(
            "Object no longer available",
            details={"table": table, "id": row_id},
        )
        self.table = table
        self.row_id = row_id


class ReadOnlyFieldError(ChainDbError):
    """Attempt to modify the ``id`` column."""

    code = "READ_ONLY_FIELD"

    def __init__(self, field_name: str = "id") -> None:
        super().__init__(
            f"Field '{field_name}' is read-only",
            details={"field": field_name},
        )
        self.field_name = field_name


class UnknownColumnError(ChainDbError):
    """Field name is not a declared column of the table."""

    code = "UNKNOWN_COLUMN"

    def __init__(self, field_name: str, table: str) -> None:
        super().__init__(
            f"Unknown column '{field_name}' in table '{table}'",
            details={"field": field_name, "table": table},
        )
        self.field_name = field_name
        self.table = table


class InvalidIdentifierError(ChainDbError):
    """Table or column name is not an acceptable SQL identifier."""

    code = "INVALID_IDENTIFIER"


class InvalidColumnTypeError(ChainDbError):
    """Declared column type is not one of text, number or num."""

    code = "INVALID_COLUMN_TYPE"

    def __init__(self, declared: Any, column: str | None = None) -> None:
        super().__init__(
            f"Invalid column type {declared!r}, expected 'text', 'number' or 'num'",
            details={"type": repr(declared), "column": column},
        )
        self.declared = declared
        self.column = column


class InvalidRowIdError(ChainDbError):
    """Row identifier is not an integer."""

    code = "INVALID_ROW_ID"

    def __init__(self, row_id: Any) -> None:
        super().__init__(
            f"Row id must be an integer, got {row_id!r}",
            details={"id": repr(row_id)},
        )


class TableExistsError(ChainDbError):
    """A table with this name already exists in the database."""

    code = "TABLE_EXISTS"

    def __init__(self, table: str) -> None:
        super().__init__(f"Table already exists: {table}", details={"table": table})
        self.table = table


class UnknownTableError(ChainDbError):
    """No table with this name is registered in the database."""

    code = "UNKNOWN_TABLE"

    def __init__(self, table: str) -> None:
        super().__init__(f"Unknown table: {table}", details={"table": table})
        self.table = table
