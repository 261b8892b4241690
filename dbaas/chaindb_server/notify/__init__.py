"""
Change propagation for ChainDB.

This module handles:
- ChangeEvent, the wire format of pushed updates and removals
- ChangeNotifier, the mutation hook producing one event per mutation
- BroadcastHub, the best-effort WebSocket fan-out

Invariants:
    - Only successfully persisted mutations produce events
    - Delivery is at-most-once per subscriber, without replay
"""

from .events import ChangeEvent, ChangeKind
from .hub import BroadcastHub, Subscriber
from .notifier import ChangeNotifier

__all__ = [
    "ChangeEvent",
    "ChangeKind",
    "BroadcastHub",
    "Subscriber",
    "ChangeNotifier",
]
