# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Recipient availability flag with transition notifications."""

from __future__ import annotations

from collections.abc import Callable

from .logger import get_logger

logger = get_logger("Availability")

AvailabilityListener = Callable[[bool], None]


class RecipientAvailability:
    """Whether the recipient server currently accepts deliveries.

    Listeners are called synchronously, in subscription order, every time
    :meth:`toggle` or :meth:`set` changes the value. Setting the current
    value again is not a transition and notifies nobody.
    """

    def __init__(self, available: bool = True):
        self._available = bool(available)
        self._listeners: list[AvailabilityListener] = []

    @property
    def available(self) -> bool:
        return self._available

    def __bool__(self) -> bool:
        return self._available

    def subscribe(self, listener: AvailabilityListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: AvailabilityListener) -> None:
        self._listeners.remove(listener)

    def toggle(self) -> bool:
        """Flip availability and notify listeners. Returns the new value."""
        self._apply(not self._available)
        return self._available

    def set(self, available: bool) -> bool:
        """Force availability to ``available``.

        Returns:
            True if the value changed (listeners were notified).
        """
        available = bool(available)
        if available == self._available:
            return False
        self._apply(available)
        return True

    def _apply(self, available: bool) -> None:
        self._available = available
        logger.info("Recipient is now %s", "online" if available else "offline")
        for listener in list(self._listeners):
            listener(available)
