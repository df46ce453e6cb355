"""Shared test doubles for the simulator tests."""

from __future__ import annotations

from collections.abc import Iterable

from smtp_simulator.clock import VirtualClock
from smtp_simulator.core import SimulatorCore
from smtp_simulator.models import MessageConfig
from smtp_simulator.observer import RecordingObserver


class SequenceRandom:
    """Random source replaying scripted samples in ``[0, 1)``.

    Once the script is exhausted ``fallback`` is returned forever.
    """

    def __init__(self, samples: Iterable[float] = (), fallback: float = 0.99):
        self.samples = list(samples)
        self.fallback = fallback
        self.calls = 0

    def random(self) -> float:
        self.calls += 1
        if self.samples:
            return self.samples.pop(0)
        return self.fallback


class NoRandom:
    """Random source that must never be consulted."""

    def random(self) -> float:
        raise AssertionError("random source should not be used")


def make_core(*, available: bool = True, rng=None, **kwargs) -> tuple[SimulatorCore, RecordingObserver, VirtualClock]:
    clock = VirtualClock()
    observer = RecordingObserver()
    core = SimulatorCore(
        clock=clock,
        observer=observer,
        rng=rng or SequenceRandom(),
        recipient_available=available,
        **kwargs,
    )
    return core, observer, clock


def lossless(**overrides) -> MessageConfig:
    values = {"packet_loss": 0, "server_delay": 1, "network_delay": 500}
    values.update(overrides)
    return MessageConfig(**values)
