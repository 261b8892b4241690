"""
Table descriptors for ChainDB.

A TableDescriptor names a table and its declared columns. Descriptors are
created once, either by Database.create_table() or by introspecting the
SQLite catalog when an existing database is reopened, and never change
afterwards (no live schema migration).

This module also renders the handful of single-row SQL statements the
Table service needs. Identifiers are validated before being quoted, so
rendered SQL never contains user-controlled text outside bound parameters.

Invariants:
    - Table and column names are plain SQL identifiers
    - No declared column is named "id"; "id" is the integer primary key
    - Column types are text or number ("num" is accepted as number)
    - Descriptors are immutable

How to change safely:
    - New column types need an entry in _DECLARED_TYPES
    - Keep generated SQL parameterised; never interpolate values
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from ..errors import InvalidColumnTypeError, InvalidIdentifierError

ID_COLUMN = "id"

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def validate_identifier(name: str, what: str = "identifier") -> str:
    """Check that a table or column name is an acceptable SQL identifier.

    Raises:
        InvalidIdentifierError: If the name is not a plain identifier
    """
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise InvalidIdentifierError(
            f"Invalid {what}: {name!r}",
            details={"name": repr(name), "kind": what},
        )
    if name.lower().startswith("sqlite_"):
        raise InvalidIdentifierError(
            f"Invalid {what}: {name!r} (reserved prefix)",
            details={"name": name, "kind": what},
        )
    return name


def quote(name: str) -> str:
    """Quote an already validated identifier."""
    return f'"{name}"'


class ColumnType(Enum):
    """Scalar column types."""

    TEXT = "text"
    NUMBER = "number"

    @classmethod
    def parse(cls, declared: str | ColumnType, column: str | None = None) -> ColumnType:
        """Map a declared column type onto a ColumnType.

        Only "text", "number" and "num" are accepted (case-insensitive).

        Raises:
            InvalidColumnTypeError: For any other declaration
        """
        if isinstance(declared, ColumnType):
            return declared
        if isinstance(declared, str):
            found = _DECLARED_TYPES.get(declared.strip().lower())
            if found is not None:
                return found
        raise InvalidColumnTypeError(declared, column)

    @classmethod
    def from_affinity(cls, declared: str | None) -> ColumnType:
        """Map an introspected SQLite type onto a ColumnType.

        Uses SQLite affinity rules: anything with text affinity is TEXT,
        everything else stores numbers.
        """
        upper = (declared or "").upper()
        if any(token in upper for token in ("CHAR", "CLOB", "TEXT")):
            return cls.TEXT
        return cls.NUMBER


_DECLARED_TYPES = {
    "text": ColumnType.TEXT,
    "number": ColumnType.NUMBER,
    "num": ColumnType.NUMBER,
}


@dataclass(frozen=True)
class ColumnDef:
    """A declared column.

    Attributes:
        name: Column name
        type: Scalar type
    """

    name: str
    type: ColumnType

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "type": self.type.value}


@dataclass(frozen=True)
class TableDescriptor:
    """Immutable description of a table.

    Attributes:
        name: Table name, unique within a database
        columns: Ordered mapping of column name to ColumnDef (``id`` excluded)

    Example:
        >>> Person = TableDescriptor.build("Person", {"nickname": "text", "age": "num"})
        >>> Person.column_names
        ('nickname', 'age')
    """

    name: str
    columns: Mapping[str, ColumnDef] = field(default_factory=dict)

    @classmethod
    def build(cls, name: str, columns: Mapping[str, Any]) -> TableDescriptor:
        """Build a validated descriptor.

        Args:
            name: Table name
            columns: Mapping of column name to a type string, a ColumnType,
                or a dict with a "type" key

        Raises:
            InvalidIdentifierError: On bad names, a declared "id" column,
                or no columns at all
            InvalidColumnTypeError: On a type other than text, number or num
        """
        validate_identifier(name, "table name")
        if not columns:
            raise InvalidIdentifierError(
                f"Table '{name}' needs at least one column", details={"table": name}
            )
        defs: dict[str, ColumnDef] = {}
        for column_name, spec in columns.items():
            validate_identifier(column_name, "column name")
            if column_name.lower() == ID_COLUMN:
                raise InvalidIdentifierError(
                    f"Column '{column_name}' is reserved for the primary key",
                    details={"table": name, "column": column_name},
                )
            declared = spec.get("type") if isinstance(spec, Mapping) else spec
            defs[column_name] = ColumnDef(column_name, ColumnType.parse(declared, column_name))
        return cls(name=name, columns=MappingProxyType(defs))

    @classmethod
    def from_table_info(cls, name: str, rows: Iterable[Mapping[str, Any]]) -> TableDescriptor:
        """Rebuild a descriptor from ``PRAGMA table_info`` rows."""
        columns = {
            row["name"]: ColumnType.from_affinity(row["type"])
            for row in rows
            if row["name"].lower() != ID_COLUMN
        }
        return cls.build(name, columns)

    @property
    def column_names(self) -> tuple[str, ...]:
        return tuple(self.columns)

    @property
    def collection(self) -> str:
        """Pluralised name used in HTTP paths (``Person`` -> ``Persons``)."""
        return f"{self.name}s"

    def has_column(self, name: str) -> bool:
        return name in self.columns

    def filter_fields(self, fields: Mapping[str, Any]) -> dict[str, Any]:
        """Keep only declared columns, in declaration order. ``id`` is dropped."""
        return {name: fields[name] for name in self.columns if name in fields}

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "columns": {name: column.to_dict() for name, column in self.columns.items()},
        }

    # SQL rendering

    def create_sql(self) -> str:
        # "integer primary key asc" makes id an alias of the rowid
        columns = ", ".join(
            f"{quote(c.name)} {c.type.value}" for c in self.columns.values()
        )
        return f'create table {quote(self.name)} ("id" integer primary key asc, {columns})'

    def insert_sql(self, fields: Mapping[str, Any]) -> tuple[str, list[Any]]:
        names = [name for name in self.columns if name in fields]
        values = [fields[name] for name in names]
        if not names:
            return f"insert into {quote(self.name)} default values", []
        placeholders = ", ".join("?" for _ in names)
        column_list = ", ".join(quote(name) for name in names)
        return (
            f"insert into {quote(self.name)} ({column_list}) values ({placeholders})",
            values,
        )

    def select_one_sql(self) -> str:
        return f"select * from {quote(self.name)} where id = ?"

    def select_all_sql(self) -> str:
        return f"select * from {quote(self.name)} order by id"

    def update_sql(self, row: Mapping[str, Any]) -> tuple[str, list[Any]]:
        settings = ", ".join(f"{quote(name)} = ?" for name in self.columns)
        values = [row.get(name) for name in self.columns]
        return (
            f"update {quote(self.name)} set {settings} where id = ?",
            [*values, row[ID_COLUMN]],
        )

    def delete_sql(self) -> str:
        return f"delete from {quote(self.name)} where id = ?"
