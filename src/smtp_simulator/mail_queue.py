# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Store-and-forward queue for messages whose recipient is offline.

Messages are delivered in the order they were enqueued. A flush takes a
snapshot of the queue and clears it before delivering anything, so messages
enqueued while a flush is in progress wait for the next flush. Flushes are
serialised: a second flush starts only after the first one has delivered
its whole snapshot.

Example:
    Draining the queue::

        queue = MailQueue()
        queue.enqueue(message)
        delivered = await queue.flush(deliver_one)
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable, Iterator

from .logger import get_logger
from .models import QueuedMessage, SimulatorError

logger = get_logger("MailQueue")

DeliverCallable = Callable[[QueuedMessage], Awaitable[None]]


class DuplicateMessageError(SimulatorError, ValueError):
    """Raised when a message id is already present in the queue."""

    code = "duplicate_message"

    def __init__(self, message_id: str):
        super().__init__(f"Message {message_id} is already queued")
        self.message_id = message_id


class MailQueue:
    """FIFO of :class:`QueuedMessage` with unique identifiers."""

    def __init__(self):
        self._items: deque[QueuedMessage] = deque()
        self._ids: set[str] = set()
        self._flush_lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[QueuedMessage]:
        return iter(list(self._items))

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._ids

    @property
    def flushing(self) -> bool:
        return self._flush_lock.locked()

    def enqueue(self, message: QueuedMessage) -> int:
        """Append ``message`` to the queue.

        Returns:
            The queue length after the append.

        Raises:
            DuplicateMessageError: If a message with the same id is queued.
        """
        if message.id in self._ids:
            raise DuplicateMessageError(message.id)
        self._items.append(message)
        self._ids.add(message.id)
        logger.info("Queued message %s for %s (queue length %d)", message.id, message.config.recipient, len(self._items))
        return len(self._items)

    def drain(self) -> list[QueuedMessage]:
        """Remove and return every queued message, oldest first."""
        snapshot = list(self._items)
        self._items.clear()
        self._ids.clear()
        return snapshot

    async def flush(
        self,
        deliver: DeliverCallable,
        on_start: Callable[[list[QueuedMessage]], None] | None = None,
    ) -> list[QueuedMessage]:
        """Deliver every message present when the flush starts.

        Each message is awaited through ``deliver`` and then its completion
        callback is fired, one message at a time in enqueue order. A callback
        that raises is logged and does not stop the remaining deliveries.

        Args:
            deliver: Coroutine function simulating the delivery of one message.
            on_start: Called with the snapshot right after the live queue has
                been cleared, before the first delivery.

        Returns:
            The delivered messages, in delivery order. Empty if the queue was
            empty, in which case nothing else happens.
        """
        async with self._flush_lock:
            snapshot = self.drain()
            if not snapshot:
                return []
            logger.info("Flushing %d queued message(s)", len(snapshot))
            if on_start is not None:
                on_start(snapshot)
            for message in snapshot:
                await deliver(message)
                try:
                    message.notify_delivered()
                except Exception:
                    logger.exception("Delivery callback failed for queued message %s", message.id)
            return snapshot
