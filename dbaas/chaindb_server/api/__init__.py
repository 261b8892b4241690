"""
API layer for ChainDB Server.

This module provides:
- The REST resource server (aiohttp)
- The awaiting facade the resources are served through
"""

from .facade import ServerObject, ServerTable
from .http_server import create_http_app, error_middleware

__all__ = [
    "ServerObject",
    "ServerTable",
    "create_http_app",
    "error_middleware",
]
