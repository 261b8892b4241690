"""
Integration tests for change push and remote mirrors.

Tests cover:
- Events pushed to raw WebSocket subscribers
- Two mirrors kept in sync through the server
- Remote removal voiding mirror objects
- Malformed client messages
"""

import asyncio
import json

import pytest

from sdk.chaindb_sdk import MirrorSession, MirrorSettings, ObjectRemovedError, RequestError


async def eventually(predicate, timeout=2.0):
    """Wait until predicate() is true."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
async def mirrors(base_url, hub):
    """Two subscribed mirror sessions against the same server."""
    settings = MirrorSettings(base_url=base_url)
    sessions = [MirrorSession(settings=settings), MirrorSession(settings=settings)]
    for session in sessions:
        await session.subscribe()
    await eventually(lambda: hub.subscriber_count == 2)
    yield sessions
    for session in sessions:
        await session.close()


class TestRawSubscriber:
    """Tests for the push channel seen by a plain WebSocket client."""

    @pytest.mark.asyncio
    async def test_update_event_pushed(self, client, db):
        ws = await client.ws_connect("/ws")
        joe = await db["Person"].get(1)

        await joe.set_field("age", 43)

        msg = await ws.receive_json(timeout=2)
        assert msg == {"kind": "update", "table": "Person", "id": 1, "field": "age", "value": 43}
        await ws.close()

    @pytest.mark.asyncio
    async def test_remove_event_pushed(self, client):
        ws = await client.ws_connect("/ws")

        resp = await client.delete("/Persons/2")
        assert resp.status == 204

        msg = await ws.receive_json(timeout=2)
        assert msg == {"kind": "remove", "table": "Person", "id": 2}
        await ws.close()

    @pytest.mark.asyncio
    async def test_malformed_client_message_answered(self, client, hub):
        ws = await client.ws_connect("/ws")

        await ws.send_str("{oops")
        msg = await ws.receive_json(timeout=2)

        assert msg["kind"] == "error"
        assert not ws.closed
        assert hub.subscriber_count == 1
        await ws.close()

    @pytest.mark.asyncio
    async def test_every_subscriber_gets_each_event(self, client, db):
        first = await client.ws_connect("/ws")
        second = await client.ws_connect("/ws")

        await (await db["Person"].get(2)).set_field("nickname", "Jilly")

        for ws in (first, second):
            msg = await ws.receive_json(timeout=2)
            assert msg["value"] == "Jilly"
            await ws.close()


class TestMirrors:
    """Tests for remote mirrors kept in sync by pushed events."""

    @pytest.mark.asyncio
    async def test_update_reaches_other_mirror_in_place(self, mirrors):
        a, b = mirrors
        joe_a = await a.table("Person").get(1)
        joe_b = await b.table("Person").get(1)

        await joe_a.set_field("age", 43)

        await eventually(lambda: joe_b.age == 43)
        assert await b.table("Person").get(1) is joe_b
        assert joe_a.age == 43

    @pytest.mark.asyncio
    async def test_server_side_write_reaches_mirrors(self, mirrors, db):
        a, b = mirrors
        people_a = await a.table("Person").all()
        people_b = await b.table("Person").all()

        jill = await db["Person"].get(2)
        await jill.set_field("nickname", "Jilly")

        await eventually(lambda: people_a[1].nickname == "Jilly")
        await eventually(lambda: people_b[1].nickname == "Jilly")

    @pytest.mark.asyncio
    async def test_remove_voids_other_mirror_object(self, mirrors):
        a, b = mirrors
        jill_a = await a.table("Person").get(2)
        jill_b = await b.table("Person").get(2)

        await jill_a.remove()

        await eventually(lambda: jill_b.removed)
        assert b.table("Person").cached(2) is None
        with pytest.raises(ObjectRemovedError):
            jill_b.nickname
        assert await b.table("Person").get(2) is None

    @pytest.mark.asyncio
    async def test_insert_then_other_mirror_reads_it(self, mirrors):
        a, b = mirrors
        jack = await a.table("Person").insert({"nickname": "Jack", "age": 5})

        jack_b = await b.table("Person").get(jack.id)

        assert jack_b.all_fields() == {"id": 3, "nickname": "Jack", "age": 5}

    @pytest.mark.asyncio
    async def test_failed_write_rolls_back_mirror(self, mirrors):
        a, _ = mirrors
        joe = await a.table("Person").get(1)

        with pytest.raises(RequestError) as exc_info:
            await joe.set_field("shoe_size", 44)

        assert exc_info.value.status == 404
        assert joe.get_field("shoe_size") is None
        assert "shoe_size" not in joe.all_fields()

    @pytest.mark.asyncio
    async def test_refresh(self, mirrors, db):
        a, _ = mirrors
        joe = await a.table("Person").get(1)
        row_object = await db["Person"].get(1)

        await row_object.set_field("nickname", "Joseph")
        assert await joe.refresh() is True
        assert joe.nickname == "Joseph"
