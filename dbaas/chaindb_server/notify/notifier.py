"""
Change notifier for ChainDB.

The ChangeNotifier sits at the Table service boundary: it is registered as
a mutation hook on a Database and turns every successfully persisted update
or removal into exactly one ChangeEvent, handed to a broadcast primitive.

Invariants:
    - One event per mutation a table reports, none for failed writes
    - Update events carry the value the UPDATE stored, so subscribers end
      up with what storage holds
    - Events are produced inside the queue turn of their mutation, so they
      are broadcast in queue order
    - A failing broadcast never fails the mutation itself
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from ..db.database import Database
from ..db.table import Mutation
from .events import ChangeEvent

logger = logging.getLogger(__name__)

Broadcast = Callable[[ChangeEvent], None]


class ChangeNotifier:
    """Builds ChangeEvents from mutations and broadcasts them.

    Example:
        >>> hub = BroadcastHub()
        >>> notifier = ChangeNotifier(hub.broadcast)
        >>> notifier.attach(db)
    """

    def __init__(self, broadcast: Broadcast) -> None:
        """Initialize the notifier.

        Args:
            broadcast: Primitive delivering an event to every subscriber
        """
        self._broadcast = broadcast
        self._databases: list[Database] = []
        self.events_sent = 0

    def attach(self, database: Database) -> None:
        """Observe every table (current and future) of a database."""
        database.add_mutation_hook(self.on_mutation)
        self._databases.append(database)

    def detach(self, database: Database) -> None:
        if database not in self._databases:
            return
        database.remove_mutation_hook(self.on_mutation)
        self._databases.remove(database)

    def on_mutation(self, mutation: Mutation) -> None:
        event = ChangeEvent.from_mutation(mutation)
        try:
            self._broadcast(event)
        except Exception:
            logger.exception(
                "Broadcast failed",
                extra={"table": event.table, "id": event.id, "kind": event.kind.value},
            )
            return
        self.events_sent += 1
        logger.debug(
            "Broadcast change event",
            extra={"table": event.table, "id": event.id, "kind": event.kind.value},
        )
