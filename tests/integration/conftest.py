"""
Integration test fixtures for ChainDB.

Provides a seeded in-memory database served over a real aiohttp test
server, with the change notifier wired to the broadcast hub.
"""

import pytest
from aiohttp.test_utils import TestClient, TestServer

from dbaas.chaindb_server.api import create_http_app
from dbaas.chaindb_server.db import Database
from dbaas.chaindb_server.main import seed_demo_data
from dbaas.chaindb_server.notify import BroadcastHub, ChangeNotifier


@pytest.fixture
async def db():
    """In-memory database with the demo Person table (Joe 42, Jill 43)."""
    database = await Database.open(":memory:")
    await seed_demo_data(database)
    yield database
    if database.is_open:
        await database.close()


@pytest.fixture
def hub():
    return BroadcastHub(heartbeat=None)


@pytest.fixture
def notifier(db, hub):
    notifier = ChangeNotifier(hub.broadcast)
    notifier.attach(db)
    return notifier


@pytest.fixture
async def server(db, hub, notifier):
    """Running HTTP server for the database."""
    server = TestServer(create_http_app(db, hub))
    await server.start_server()
    yield server
    await hub.close()
    await server.close()


@pytest.fixture
async def client(server):
    """HTTP client bound to the test server."""
    async with TestClient(server) as client:
        yield client


@pytest.fixture
def base_url(server):
    return f"http://{server.host}:{server.port}"
