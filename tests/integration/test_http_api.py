"""
Integration tests for the HTTP API.

Tests cover:
- Collection and item resources
- Column resources
- Error mapping (400, 404, 500)
- Health endpoint
"""

from unittest.mock import AsyncMock, patch

import pytest

from dbaas.chaindb_server.errors import StorageError


class TestCollection:
    """Tests for /{collection}/."""

    @pytest.mark.asyncio
    async def test_list(self, client):
        resp = await client.get("/Persons/")

        assert resp.status == 200
        assert await resp.json() == [
            {"id": 1, "nickname": "Joe", "age": 42},
            {"id": 2, "nickname": "Jill", "age": 43},
        ]

    @pytest.mark.asyncio
    async def test_trailing_slash_optional(self, client):
        resp = await client.get("/Persons")
        assert resp.status == 200
        assert len(await resp.json()) == 2

    @pytest.mark.asyncio
    async def test_unknown_collection(self, client):
        resp = await client.get("/Ghosts/")
        assert resp.status == 404

    @pytest.mark.asyncio
    async def test_create(self, client, db):
        resp = await client.post("/Persons/", json={"nickname": "Jack", "age": 7, "hat": "red"})

        assert resp.status == 201
        assert resp.headers["Location"] == "/Persons/3"
        assert await resp.json() == {"id": 3, "nickname": "Jack", "age": 7}
        assert db["Person"].cached(3).nickname == "Jack"

    @pytest.mark.asyncio
    async def test_create_rejects_invalid_json(self, client):
        resp = await client.post(
            "/Persons/", data="{not json", headers={"Content-Type": "application/json"}
        )
        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_create_rejects_non_objects(self, client):
        resp = await client.post("/Persons/", json=[1, 2])
        assert resp.status == 400


class TestItem:
    """Tests for /{collection}/{id}."""

    @pytest.mark.asyncio
    async def test_get(self, client):
        resp = await client.get("/Persons/1")

        assert resp.status == 200
        assert await resp.json() == {"id": 1, "nickname": "Joe", "age": 42}

    @pytest.mark.asyncio
    async def test_get_missing(self, client):
        resp = await client.get("/Persons/99")
        assert resp.status == 404

    @pytest.mark.asyncio
    async def test_put_updates_fields(self, client, db):
        resp = await client.put("/Persons/1/", json={"age": 44, "id": 9, "hat": "red"})

        assert resp.status == 200
        assert await resp.json() == {"id": 1, "nickname": "Joe", "age": 44}
        assert (await db["Person"].get(1)).age == 44

    @pytest.mark.asyncio
    async def test_put_missing_creates_with_new_id(self, client):
        resp = await client.put("/Persons/77", json={"nickname": "Jack"})

        assert resp.status == 201
        body = await resp.json()
        assert body["id"] == 3
        assert resp.headers["Location"] == "/Persons/3"

    @pytest.mark.asyncio
    async def test_delete(self, client, db):
        resp = await client.delete("/Persons/1")

        assert resp.status == 204
        assert (await client.get("/Persons/1")).status == 404
        assert await db["Person"].get(1) is None

    @pytest.mark.asyncio
    async def test_delete_missing_is_no_content(self, client):
        resp = await client.delete("/Persons/99")
        assert resp.status == 204


class TestColumn:
    """Tests for /{collection}/{id}/{column}."""

    @pytest.mark.asyncio
    async def test_get_as_text(self, client):
        resp = await client.get("/Persons/1/nickname")

        assert resp.status == 200
        assert resp.content_type == "text/plain"
        assert await resp.text() == "Joe"

    @pytest.mark.asyncio
    async def test_get_null_as_empty_text(self, client):
        await client.post("/Persons/", json={"nickname": "Jack"})

        resp = await client.get("/Persons/3/age")
        assert await resp.text() == ""

    @pytest.mark.asyncio
    async def test_get_unknown_column(self, client):
        resp = await client.get("/Persons/1/hat")
        assert resp.status == 404

    @pytest.mark.asyncio
    async def test_get_missing_row(self, client):
        resp = await client.get("/Persons/99/nickname")
        assert resp.status == 404

    @pytest.mark.asyncio
    async def test_put(self, client, db):
        resp = await client.put("/Persons/1/age", json={"value": 50})

        assert resp.status == 200
        assert (await resp.json())["age"] == 50
        await db.persist_all()
        row = await db.require_open().get_one('select age from "Person" where id = 1')
        assert row == {"age": 50}

    @pytest.mark.asyncio
    async def test_put_requires_value(self, client):
        resp = await client.put("/Persons/1/age", json={"age": 50})
        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_put_id_rejected(self, client):
        resp = await client.put("/Persons/1/id", json={"value": 5})

        assert resp.status == 400
        assert (await resp.json())["error_code"] == "READ_ONLY_FIELD"


class TestErrors:
    """Tests for error mapping and health."""

    @pytest.mark.asyncio
    async def test_storage_failure_is_500(self, client, db):
        with patch.object(db.require_open(), "run", AsyncMock(side_effect=StorageError("disk"))):
            resp = await client.put("/Persons/1/age", json={"value": 50})

        assert resp.status == 500
        assert (await resp.json())["error_code"] == "STORAGE_ERROR"
        assert (await db["Person"].get(1)).age == 42

    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/health")

        assert resp.status == 200
        body = await resp.json()
        assert body["healthy"] is True
        assert body["tables"] == ["Person"]
