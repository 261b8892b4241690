"""
Operation queue for ChainDB.

Row ids, cache entries and SQL text are all derived from mutable shared
state (table descriptors, row caches). If two storage operations were allowed
to interleave at their suspension points, two writers could race on the same
row. The OperationQueue therefore runs every storage operation of a database
one at a time, in submission order.

Invariants:
    - Operations run in FIFO order matching submission order
    - An operation's thunk is not invoked before every previously enqueued
      operation has settled (succeeded, failed or timed out)
    - A failing operation rejects its own future only; later operations run
    - Every failure is also reported to the queue-level error listeners
    - Cancelling the drain task cancels every operation still queued

How to change safely:
    - Never await inside enqueue(): submission order is call order
    - Keep error listeners synchronous and cheap
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from ..errors import OperationTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[Any]]
ErrorListener = Callable[[BaseException], None]


class OperationQueue:
    """FIFO serializer for asynchronous storage operations.

    Operations are thunks returning awaitables. enqueue() appends the thunk to
    the tail and returns a future for its result; a single drain task executes
    the thunks one after the other.

    Attributes:
        name: Queue name used in log records
        timeout: Optional per-operation timeout in seconds

    Example:
        >>> queue = OperationQueue("main")
        >>> future = queue.enqueue(lambda: handle.run("delete from t where id = ?", [1]))
        >>> await future
    """

    def __init__(self, name: str = "main", timeout: float | None = None) -> None:
        """Initialize an empty queue.

        Args:
            name: Queue name used in log records
            timeout: Optional per-operation timeout in seconds
        """
        self.name = name
        self.timeout = timeout
        self._pending: deque[tuple[Operation, asyncio.Future[Any]]] = deque()
        self._drainer: asyncio.Task[None] | None = None
        self._busy = False
        self._error_listeners: list[ErrorListener] = []
        self._completed = 0
        self._failed = 0

    @property
    def pending(self) -> int:
        """Number of operations waiting or running."""
        return len(self._pending) + (1 if self._busy else 0)

    @property
    def stats(self) -> dict[str, int]:
        """Counters for completed and failed operations."""
        return {"completed": self._completed, "failed": self._failed, "pending": self.pending}

    def add_error_listener(self, listener: ErrorListener) -> None:
        """Register a callback invoked with the reason of every failed operation."""
        self._error_listeners.append(listener)

    def remove_error_listener(self, listener: ErrorListener) -> None:
        self._error_listeners.remove(listener)

    def enqueue(self, operation: Callable[[], Awaitable[T]]) -> asyncio.Future[T]:
        """Append an operation to the tail of the queue.

        Args:
            operation: Thunk returning an awaitable; invoked when its turn comes

        Returns:
            Future resolved with the operation's result or its failure
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[T] = loop.create_future()
        self._pending.append((operation, future))
        if self._drainer is None or self._drainer.done():
            self._drainer = loop.create_task(self._drain(), name=f"chaindb-queue-{self.name}")
            self._drainer.add_done_callback(self._drainer_done)
        return future

    async def join(self) -> None:
        """Wait until every operation enqueued so far has settled."""
        marker = self.enqueue(_noop)
        await asyncio.shield(marker)

    async def _drain(self) -> None:
        while self._pending:
            # A caller cancelling its future does not withdraw the operation
            operation, future = self._pending.popleft()
            self._busy = True
            try:
                result = await self._execute(operation)
            except asyncio.CancelledError:
                if not future.done():
                    future.cancel()
                raise
            except Exception as e:
                self._failed += 1
                self._report(e)
                if not future.done():
                    future.set_exception(e)
            else:
                self._completed += 1
                if not future.done():
                    future.set_result(result)
            finally:
                self._busy = False

    def _drainer_done(self, task: asyncio.Task[None]) -> None:
        # A replacement drainer, if any, owns whatever is still queued
        if task.cancelled() and task is self._drainer:
            self._cancel_pending()

    def _cancel_pending(self) -> None:
        dropped = len(self._pending)
        while self._pending:
            _, future = self._pending.popleft()
            if not future.done():
                future.cancel()
        if dropped:
            logger.warning(
                "Queue cancelled with operations pending",
                extra={"queue": self.name, "dropped": dropped},
            )

    async def _execute(self, operation: Operation) -> Any:
        if self.timeout is None:
            return await operation()
        try:
            return await asyncio.wait_for(operation(), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise OperationTimeoutError(self.timeout)

    def _report(self, reason: BaseException) -> None:
        logger.warning(
            f"Queued operation failed: {reason}",
            extra={"queue": self.name, "error": type(reason).__name__},
        )
        for listener in list(self._error_listeners):
            try:
                listener(reason)
            except Exception:
                logger.exception("Queue error listener failed", extra={"queue": self.name})


async def _noop() -> None:
    return None
