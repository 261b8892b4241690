"""
WebSocket fan-out for change events.

The BroadcastHub keeps the set of connected WebSocket subscribers and
delivers every broadcast event to each of them. Delivery is best effort:
no acknowledgment, no replay on reconnect, and a subscriber that cannot keep
up loses events rather than slowing down the database.

Each subscriber has its own outbox and sender task, so broadcast() never
awaits and events reach a given subscriber in broadcast order.

Invariants:
    - broadcast() is synchronous and never blocks the operation queue
    - A closed or failing subscriber is dropped, never retried
    - Messages from clients are ignored; malformed ones are logged and
      answered with an error frame, the connection stays open
"""

from __future__ import annotations

import asyncio
import json
import logging

from aiohttp import WSCloseCode, WSMsgType, web

from .events import ChangeEvent

logger = logging.getLogger(__name__)


class Subscriber:
    """One connected WebSocket client."""

    def __init__(self, ws: web.WebSocketResponse, remote: str | None, max_pending: int) -> None:
        self.ws = ws
        self.remote = remote
        self.dropped = 0
        self._outbox: asyncio.Queue[str | None] = asyncio.Queue(maxsize=max_pending)

    def offer(self, data: str) -> bool:
        """Queue a frame for sending. Returns False if it was dropped."""
        if self.ws.closed:
            return False
        try:
            self._outbox.put_nowait(data)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "Subscriber outbox full, dropping event",
                extra={"remote": self.remote, "dropped": self.dropped},
            )
            return False
        return True

    def stop(self) -> None:
        try:
            self._outbox.put_nowait(None)
        except asyncio.QueueFull:
            pass

    async def run(self) -> None:
        """Send queued frames until stopped or the socket fails."""
        while True:
            data = await self._outbox.get()
            if data is None or self.ws.closed:
                return
            try:
                await self.ws.send_str(data)
            except ConnectionError as e:
                logger.debug(f"Subscriber send failed: {e}", extra={"remote": self.remote})
                return


class BroadcastHub:
    """Set of WebSocket subscribers plus the broadcast primitive.

    Example:
        >>> hub = BroadcastHub()
        >>> app.router.add_get("/ws", hub.handle_websocket)
        >>> hub.broadcast(ChangeEvent(kind="remove", table="Person", id=1))
    """

    def __init__(self, max_pending: int = 1000, heartbeat: float | None = 30.0) -> None:
        """Initialize the hub.

        Args:
            max_pending: Per-subscriber outbox size before events are dropped
            heartbeat: WebSocket ping interval in seconds (None disables)
        """
        self.max_pending = max_pending
        self.heartbeat = heartbeat
        self._subscribers: set[Subscriber] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def broadcast(self, event: ChangeEvent) -> int:
        """Deliver an event to every connected subscriber.

        Returns:
            Number of subscribers the event was queued for
        """
        data = event.to_json()
        delivered = 0
        for subscriber in list(self._subscribers):
            if subscriber.offer(data):
                delivered += 1
        return delivered

    async def handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        """aiohttp handler for the push channel."""
        ws = web.WebSocketResponse(heartbeat=self.heartbeat)
        subscriber = Subscriber(ws, request.remote, self.max_pending)

        # Registered before the handshake answer so the client misses no event
        # broadcast after its connect returns
        self._subscribers.add(subscriber)
        try:
            await ws.prepare(request)
        except Exception:
            self._subscribers.discard(subscriber)
            raise

        sender = asyncio.create_task(subscriber.run())
        logger.info(
            "Subscriber connected",
            extra={"remote": request.remote, "subscribers": len(self._subscribers)},
        )

        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    self._on_client_message(subscriber, msg.data)
                elif msg.type == WSMsgType.ERROR:
                    logger.warning(
                        f"WebSocket error: {ws.exception()}", extra={"remote": request.remote}
                    )
        finally:
            self._subscribers.discard(subscriber)
            subscriber.stop()
            await sender
            logger.info(
                "Subscriber disconnected",
                extra={"remote": request.remote, "subscribers": len(self._subscribers)},
            )

        return ws

    def _on_client_message(self, subscriber: Subscriber, data: str) -> None:
        # Clients have nothing to say on this channel; only report garbage
        try:
            json.loads(data)
        except json.JSONDecodeError as e:
            logger.warning(
                f"Malformed message from subscriber: {e}", extra={"remote": subscriber.remote}
            )
            subscriber.offer(json.dumps({"kind": "error", "error": "malformed message"}))
            return
        logger.debug("Ignored message from subscriber", extra={"remote": subscriber.remote})

    async def close(self) -> None:
        """Close every subscriber connection."""
        for subscriber in list(self._subscribers):
            await subscriber.ws.close(code=WSCloseCode.GOING_AWAY, message=b"Server shutdown")
