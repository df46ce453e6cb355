# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Clock abstraction used for every simulated delay.

All suspension points of the simulator (network delay, server delay,
recovery interval, availability probe, queued deliveries) go through a
:class:`Clock` so simulated time can be decoupled from wall-clock time.

- :class:`RealClock` sleeps with ``asyncio.sleep`` and is used by the CLI and
  the HTTP server.
- :class:`VirtualClock` is a discrete-event clock: sleepers are resumed in
  deadline order as soon as every other task has settled, so a full session
  completes instantly while preserving the relative ordering of concurrent
  tasks.

Example:
    Running a session in simulated time::

        clock = VirtualClock()
        core = SimulatorCore(clock=clock)
        await core.send(MessageConfig())
        print(clock.now())  # simulated seconds elapsed
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import time


class Clock:
    """Interface for time sources."""

    def now(self) -> float:
        """Return the current time in seconds."""
        raise NotImplementedError

    async def sleep(self, seconds: float) -> None:
        """Suspend the calling task for ``seconds``."""
        raise NotImplementedError


class RealClock(Clock):
    """Wall-clock time backed by the running event loop."""

    def __init__(self, speed: float = 1.0):
        """Initialize the clock.

        Args:
            speed: Time acceleration factor. ``2.0`` halves every delay.
        """
        if speed <= 0:
            raise ValueError("speed must be positive")
        self.speed = float(speed)

    def now(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds) / self.speed)


class VirtualClock(Clock):
    """Deterministic simulated time.

    Sleeping registers a wake-up deadline. A driver task lets the event loop
    settle for ``settle_rounds`` iterations, then advances simulated time to
    the earliest deadline and resumes that sleeper. Ties are resumed in
    registration order.
    """

    def __init__(self, start: float = 0.0, settle_rounds: int = 8):
        self._now = float(start)
        self._settle_rounds = max(1, int(settle_rounds))
        self._sleepers: list[tuple[float, int, asyncio.Future[None]]] = []
        self._seq = itertools.count()
        self._driver: asyncio.Task[None] | None = None

    def now(self) -> float:
        return self._now

    @property
    def pending(self) -> int:
        """Number of tasks currently sleeping on this clock."""
        return len(self._sleepers)

    async def sleep(self, seconds: float) -> None:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[None] = loop.create_future()
        deadline = self._now + max(0.0, seconds)
        heapq.heappush(self._sleepers, (deadline, next(self._seq), future))
        if self._driver is None or self._driver.done() or self._driver.get_loop() is not loop:
            self._driver = loop.create_task(self._drive(), name="virtual-clock")
        await future

    async def _drive(self) -> None:
        loop = asyncio.get_running_loop()
        while self._sleepers:
            for _ in range(self._settle_rounds):
                await asyncio.sleep(0)
            deadline, _, future = heapq.heappop(self._sleepers)
            if future.done() or future.get_loop() is not loop:
                # cancelled, or left behind by a closed event loop
                continue
            self._now = max(self._now, deadline)
            future.set_result(None)
