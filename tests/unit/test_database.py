"""
Unit tests for Database lifecycle and the table registry.

Tests cover:
- Table creation and registry lookups
- Reconstruction of tables on reopen
- Closing semantics
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from dbaas.chaindb_server.db import Database
from dbaas.chaindb_server.db.schema import ColumnType
from dbaas.chaindb_server.errors import (
    DatabaseClosedError,
    InvalidColumnTypeError,
    InvalidIdentifierError,
    ObjectRemovedError,
    StorageError,
    TableExistsError,
    UnknownTableError,
)


class TestTableRegistry:
    """Tests for table creation and lookup."""

    @pytest.fixture
    async def db(self):
        database = await Database.open(":memory:")
        yield database
        if database.is_open:
            await database.close()

    @pytest.mark.asyncio
    async def test_create_table_registers_it(self, db):
        people = await db.create_table("Person", {"nickname": "text", "age": "num"})

        assert "Person" in db
        assert db["Person"] is people
        assert db.tables.by_collection("Persons") is people
        assert db.tables.by_collection("People") is None

    @pytest.mark.asyncio
    async def test_duplicate_table_rejected(self, db):
        await db.create_table("Person", {"nickname": "text"})
        with pytest.raises(TableExistsError):
            db.create_table("Person", {"nickname": "text"})

    @pytest.mark.asyncio
    async def test_unknown_table(self, db):
        with pytest.raises(UnknownTableError):
            db["Ghost"]

    @pytest.mark.asyncio
    async def test_invalid_names_fail_fast(self, db):
        with pytest.raises(InvalidIdentifierError):
            db.create_table("bad name", {"x": "text"})
        with pytest.raises(InvalidIdentifierError):
            db.create_table("Thing", {"id": "number"})

    @pytest.mark.asyncio
    async def test_invalid_column_type_fails_fast(self, db):
        with pytest.raises(InvalidColumnTypeError):
            db.create_table("Thing", {"x": "banana"})

        assert db.queue.pending == 0
        assert "Thing" not in db

    @pytest.mark.asyncio
    async def test_concurrent_create_rejected(self, db):
        """A second create for a name still being created is a misuse error."""
        first = db.create_table("Person", {"nickname": "text"})
        with pytest.raises(TableExistsError):
            db.create_table("Person", {"nickname": "text"})

        people = await first
        assert db["Person"] is people

    @pytest.mark.asyncio
    async def test_ensure_table_shares_pending_create(self, db):
        first = db.ensure_table("Person", {"nickname": "text"})
        second = db.ensure_table("Person", {"nickname": "text"})

        assert await first is await second

    @pytest.mark.asyncio
    async def test_failed_create_releases_name(self, db):
        handle = db.require_open()
        with patch.object(handle, "run", AsyncMock(side_effect=StorageError("disk full"))):
            with pytest.raises(StorageError):
                await db.create_table("Person", {"nickname": "text"})
        await asyncio.sleep(0)

        people = await db.create_table("Person", {"nickname": "text"})
        assert db["Person"] is people

    @pytest.mark.asyncio
    async def test_ensure_table_is_idempotent(self, db):
        first = await db.ensure_table("Person", {"nickname": "text"})
        second = await db.ensure_table("Person", {"nickname": "text"})
        assert first is second

    @pytest.mark.asyncio
    async def test_mutation_hook_reaches_later_tables(self, db):
        seen = []
        db.add_mutation_hook(seen.append)
        people = await db.create_table("Person", {"nickname": "text"})
        joe = await people.insert({"nickname": "Joe"})

        await joe.set_field("nickname", "Joseph")

        assert [m.kind for m in seen] == ["update"]

        db.remove_mutation_hook(seen.append)
        await joe.set_field("nickname", "Jo")
        assert len(seen) == 1


class TestReopen:
    """Tests for reopening a database file."""

    @pytest.mark.asyncio
    async def test_reopen_reconstructs_tables(self, tmp_path):
        path = str(tmp_path / "chain.sqlite3")
        db = await Database.open(path)
        people = await db.create_table("Person", {"nickname": "text", "age": "number"})
        joe = await people.insert({"nickname": "Joe", "age": 42})
        joe.age = 43
        await db.close()

        reopened = await Database.open(path)
        try:
            people = reopened["Person"]
            assert people.descriptor.column_names == ("nickname", "age")
            assert people.columns["age"].type is ColumnType.NUMBER

            joe = await people.get(1)
            assert joe.all_fields() == {"id": 1, "nickname": "Joe", "age": 43}
        finally:
            await reopened.close()


class TestClose:
    """Tests for closing a database."""

    @pytest.mark.asyncio
    async def test_close_drains_pending_writes(self, tmp_path):
        path = str(tmp_path / "chain.sqlite3")
        db = await Database.open(path)
        people = await db.create_table("Person", {"nickname": "text"})
        for name in ("a", "b", "c"):
            people.insert({"nickname": name})
        await db.close()

        reopened = await Database.open(path)
        try:
            assert len(await reopened["Person"].all()) == 3
        finally:
            await reopened.close()

    @pytest.mark.asyncio
    async def test_operations_after_close_fail(self):
        db = await Database.open(":memory:")
        people = await db.create_table("Person", {"nickname": "text"})
        joe = await people.insert({"nickname": "Joe"})
        await db.close()

        assert not db.is_open
        assert joe.removed
        with pytest.raises(ObjectRemovedError):
            joe.get_field("nickname")
        with pytest.raises(DatabaseClosedError):
            people.insert({"nickname": "Jill"})
        with pytest.raises(DatabaseClosedError):
            db.create_table("Other", {"x": "text"})
        with pytest.raises(DatabaseClosedError):
            await db.close()
