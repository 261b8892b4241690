"""
ChainDB Server - Consistency engine over SQLite with live change push.

This package implements a small object store built on:
- One SQLite table per entity, accessed through a single operation queue
- A per-table row cache handing out exactly one live object per row
- A change notifier broadcasting every persisted mutation over WebSocket
- A REST resource layer over the same table services

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌─────────────────┐
    │   Mirror    │────▶│    HTTP     │────▶│  Table service  │
    │   (SDK)     │     │   server    │     │  (row cache)    │
    └──────▲──────┘     └─────────────┘     └────────┬────────┘
           │                                         │
           │                                         ▼
    ┌──────┴──────┐     ┌─────────────┐     ┌─────────────────┐
    │  WebSocket  │◀────│   Change    │◀────│ Operation queue │
    │     hub     │     │  notifier   │     │    (SQLite)     │
    └─────────────┘     └─────────────┘     └─────────────────┘

Invariants:
    - Storage side effects happen in submission order
    - One live object per cached row id
    - Only persisted mutations are broadcast

How to change safely:
    - Anything touching storage goes through Database.queue
    - New mutation kinds need a ChangeKind and SDK support
"""

from ._version import __version__

__all__ = ["__version__"]
