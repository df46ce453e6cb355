# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Observer interface between the simulator core and its presentation layer.

The core never renders anything itself. Every visible change (log lines,
progress, active node, counters, recipient availability) is pushed to a
:class:`SimulationObserver`. Presentation layers subclass it and override
the callbacks they care about; the defaults do nothing.

Observers shipped with the package:
    - :class:`CompositeObserver`: fans events out to several observers.
    - :class:`RecordingObserver`: keeps a timestamped history, used by the
      report generator and the HTTP API.
    - :class:`LoggingObserver`: forwards log events to the ``logging`` module.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from .logger import get_logger
from .models import LogCategory, Node


class SimulationObserver:
    """Sink for simulator events. All callbacks are no-ops by default."""

    def on_log(self, message: str, category: LogCategory) -> None:
        pass

    def on_progress(self, percent: float, label: str) -> None:
        pass

    def on_node_active(self, node: Node | None) -> None:
        pass

    def on_stats(self, total_packets: int, lost_packets: int, retransmissions: int, queue_length: int) -> None:
        pass

    def on_availability_changed(self, available: bool) -> None:
        pass


class CompositeObserver(SimulationObserver):
    """Forward every event to each wrapped observer, in order."""

    def __init__(self, observers: Iterable[SimulationObserver] = ()):
        self.observers: list[SimulationObserver] = list(observers)

    def add(self, observer: SimulationObserver) -> None:
        self.observers.append(observer)

    def on_log(self, message, category):
        for observer in self.observers:
            observer.on_log(message, category)

    def on_progress(self, percent, label):
        for observer in self.observers:
            observer.on_progress(percent, label)

    def on_node_active(self, node):
        for observer in self.observers:
            observer.on_node_active(node)

    def on_stats(self, total_packets, lost_packets, retransmissions, queue_length):
        for observer in self.observers:
            observer.on_stats(total_packets, lost_packets, retransmissions, queue_length)

    def on_availability_changed(self, available):
        for observer in self.observers:
            observer.on_availability_changed(available)


@dataclass(frozen=True)
class LogEntry:
    """A log observation stamped with the wall-clock time it was received."""

    timestamp: datetime
    message: str
    category: LogCategory

    def format(self) -> str:
        return f"[{self.timestamp.strftime('%H:%M:%S')}]{self.message}"

    def as_dict(self) -> dict[str, str]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "message": self.message,
            "category": self.category.value,
        }


class RecordingObserver(SimulationObserver):
    """Keep the latest state and the full log history of a simulation.

    Attributes:
        entries: Every log entry received since the last :meth:`clear`.
        progress: Last ``(percent, label)`` pair.
        active_node: Node highlighted last, or None.
        stats: Last ``(total, lost, retransmissions, queue_length)`` tuple.
        availability: Sequence of availability notifications.
    """

    def __init__(self):
        self.entries: list[LogEntry] = []
        self.progress: tuple[float, str] = (0.0, "Idle")
        self.progress_history: list[tuple[float, str]] = []
        self.active_node: Node | None = None
        self.node_history: list[Node | None] = []
        self.stats: tuple[int, int, int, int] = (0, 0, 0, 0)
        self.stats_updates = 0
        self.availability: list[bool] = []

    def on_log(self, message, category):
        self.entries.append(LogEntry(datetime.now(), message, LogCategory(category)))

    def on_progress(self, percent, label):
        self.progress = (percent, label)
        self.progress_history.append((percent, label))

    def on_node_active(self, node):
        self.active_node = node
        self.node_history.append(node)

    def on_stats(self, total_packets, lost_packets, retransmissions, queue_length):
        self.stats = (total_packets, lost_packets, retransmissions, queue_length)
        self.stats_updates += 1

    def on_availability_changed(self, available):
        self.availability.append(available)

    def messages(self, category: LogCategory | None = None) -> list[str]:
        """Return logged messages, optionally filtered by category."""
        return [e.message for e in self.entries if category is None or e.category == category]

    def lines(self) -> list[str]:
        return [entry.format() for entry in self.entries]

    def clear(self) -> None:
        self.entries.clear()


_CATEGORY_LEVELS = {
    LogCategory.ERROR: logging.ERROR,
    LogCategory.WARNING: logging.WARNING,
    LogCategory.COMMAND: logging.DEBUG,
    LogCategory.RESPONSE: logging.DEBUG,
}


class LoggingObserver(SimulationObserver):
    """Forward log observations to a standard library logger.

    Commands and responses are logged at DEBUG, warnings and errors at their
    own level, everything else at INFO.
    """

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or get_logger("SMTPSimulator.events")

    def on_log(self, message, category):
        level = _CATEGORY_LEVELS.get(LogCategory(category), logging.INFO)
        self.logger.log(level, "%s", message.strip())

    def on_availability_changed(self, available):
        self.logger.info("Recipient availability: %s", "online" if available else "offline")
