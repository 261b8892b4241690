"""
Integration tests for the Server orchestrator.

Tests cover:
- Startup with demo data
- Graceful shutdown
"""

import asyncio

import pytest

from dbaas.chaindb_server.config import HttpConfig, ServerConfig, StorageConfig
from dbaas.chaindb_server.main import Server


class TestServer:
    """Tests for Server start/stop."""

    @pytest.fixture
    def config(self, tmp_path):
        return ServerConfig(
            http=HttpConfig(host="127.0.0.1", port=0),
            storage=StorageConfig(
                database_path=str(tmp_path / "data" / "chain.sqlite3"),
                seed_demo_data=True,
            ),
        )

    @pytest.mark.asyncio
    async def test_start_and_stop(self, config):
        server = Server(config)

        await server.start(wait=False)
        try:
            assert server.running
            assert server.database.is_open
            people = await server.database["Person"].all()
            assert [p.nickname for p in people] == ["Joe", "Jill"]
        finally:
            await server.stop()

        assert not server.running
        assert not server.database.is_open

    @pytest.mark.asyncio
    async def test_request_shutdown_ends_start(self, config):
        server = Server(config)
        task = asyncio.create_task(server.start())

        async def wait_running():
            while not server.running:
                await asyncio.sleep(0.01)

        await asyncio.wait_for(wait_running(), timeout=5)
        server.request_shutdown()
        await asyncio.wait_for(task, timeout=5)
        await server.stop()

        assert not server.running

    @pytest.mark.asyncio
    async def test_restart_keeps_data(self, config):
        first = Server(config)
        await first.start(wait=False)
        jack = await first.database["Person"].insert({"nickname": "Jack", "age": 1})
        jack_id = jack.id
        await first.stop()

        second = Server(config)
        await second.start(wait=False)
        try:
            people = await second.database["Person"].all()
            assert [p.id for p in people] == [1, 2, jack_id]
        finally:
            await second.stop()
