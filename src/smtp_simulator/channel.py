# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Unreliable transport channel with automatic retransmission.

Each call to :meth:`UnreliableChannel.transmit` models the delivery of one
logical packet. An attempt is lost when a uniform sample in ``[0, 100)``
falls below the current loss probability. A lost attempt is counted, a
warning is observed, the sender waits a short recovery interval and
retransmits the same payload with the loss probability multiplied by
``loss_decay`` (0.3 by default), so attempt ``n`` is lost with probability
``p * 0.3**n``.

Retransmission is an explicit loop bounded by ``max_retries``. The decayed
probability reaches negligible values after a handful of retries (from 100%
it is about 0.24% after five), so the cap is a safety net: once it is
reached the next attempt is sent with loss disabled. Packet loss is never
reported to callers as a failure.

Example:
    Sending a command through the channel::

        channel = UnreliableChannel(clock, observer)
        stats = TransmissionStats()
        ack = await channel.transmit("HELO client.example.com", "250 OK", 500, 10, stats)
"""

from __future__ import annotations

import random
from typing import Protocol

from .clock import Clock
from .logger import get_logger
from .models import LogCategory, TransmissionStats
from .observer import SimulationObserver

DEFAULT_RECOVERY_INTERVAL = 0.5
DEFAULT_LOSS_DECAY = 0.3
DEFAULT_MAX_RETRIES = 10


class RandomSource(Protocol):
    """Anything exposing ``random() -> float`` in ``[0, 1)``, like :class:`random.Random`."""

    def random(self) -> float: ...


def loss_probability_at(base: float, retry: int, decay: float = DEFAULT_LOSS_DECAY) -> float:
    """Return the loss probability used by the ``retry``-th retransmission.

    Args:
        base: Loss probability of the first attempt, in percent.
        retry: Number of retransmissions already performed (0 = first attempt).
        decay: Multiplier applied after each loss.
    """
    return base * decay**retry


class UnreliableChannel:
    """Simulated lossy link between two nodes.

    Attributes:
        clock: Clock used for network delay and recovery interval.
        observer: Receives a warning for each lost packet.
        rng: Random source used to sample losses.
        recovery_interval: Seconds waited before retransmitting.
        loss_decay: Factor applied to the loss probability after each loss.
        max_retries: Retransmissions allowed before loss is disabled.
        last_attempts: Loss probabilities used by each attempt of the most
            recent :meth:`transmit` call.
    """

    def __init__(
        self,
        clock: Clock,
        observer: SimulationObserver | None = None,
        *,
        rng: RandomSource | None = None,
        recovery_interval: float = DEFAULT_RECOVERY_INTERVAL,
        loss_decay: float = DEFAULT_LOSS_DECAY,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ):
        if not 0 <= loss_decay < 1:
            raise ValueError("loss_decay must be in [0, 1)")
        self.clock = clock
        self.observer = observer or SimulationObserver()
        self.rng: RandomSource = rng or random.Random()
        self.recovery_interval = max(0.0, float(recovery_interval))
        self.loss_decay = float(loss_decay)
        self.max_retries = max(0, int(max_retries))
        self.last_attempts: list[float] = []
        self.logger = get_logger("Channel")

    def _is_lost(self, loss_probability: float) -> bool:
        if loss_probability <= 0:
            return False
        return self.rng.random() * 100 < loss_probability

    async def transmit(
        self,
        payload: str,
        expected_ack: str,
        network_delay: float,
        loss_probability: float,
        stats: TransmissionStats,
    ) -> str:
        """Deliver ``payload`` and return ``expected_ack``, retransmitting on loss.

        Args:
            payload: Command or data being sent (used for observations only).
            expected_ack: Response returned once the packet gets through.
            network_delay: Transit delay of a successful attempt, in milliseconds.
            loss_probability: Loss probability of the first attempt, in percent.
            stats: Counters updated for every attempt and every loss.

        Returns:
            The ``expected_ack`` value.
        """
        self.last_attempts = []
        probability = float(loss_probability)
        retries = 0
        while True:
            stats.record_sent()
            effective = probability if retries < self.max_retries else 0.0
            self.last_attempts.append(effective)
            self.logger.debug(
                "Transmitting %r (attempt %d, loss probability %.4f%%)", payload, retries + 1, effective
            )
            if not self._is_lost(effective):
                break
            stats.record_lost()
            self.observer.on_log(f"Packet lost during transmission of: {payload}", LogCategory.WARNING)
            await self.clock.sleep(self.recovery_interval)
            self.observer.on_log("Retransmitting packet...", LogCategory.WARNING)
            retries += 1
            probability *= self.loss_decay
            if retries == self.max_retries:
                self.logger.warning("Retransmission cap reached for %r after %d retries", payload, retries)

        await self.clock.sleep(max(0.0, network_delay) / 1000.0)
        return expected_ack

    async def forward(self, seconds: float) -> None:
        """Simulate a lossless relay-to-recipient hop lasting ``seconds``."""
        await self.clock.sleep(seconds)
