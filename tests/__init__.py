"""
ChainDB Test Suite.

This package contains:
- unit/: Unit tests (in-memory SQLite, mocked transports)
- integration/: Integration tests (HTTP and WebSocket through aiohttp test servers)
"""
