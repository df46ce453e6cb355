# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Core orchestration logic for the SMTP session simulator.

This module provides the :class:`SimulatorCore` class, the context object
that owns every piece of simulator state. It coordinates:

- Protocol sessions and their mutual exclusion
- The unreliable channel and its random source
- Recipient availability and the store-and-forward queue
- Queue flushes triggered by availability transitions
- Observer notifications and Prometheus metrics

Several cores can coexist in one process; nothing is global.

Example:
    Running a session and draining the queue::

        from smtp_simulator.clock import VirtualClock
        from smtp_simulator.core import SimulatorCore
        from smtp_simulator.models import MessageConfig

        core = SimulatorCore(clock=VirtualClock(), recipient_available=False)
        result = await core.send(MessageConfig(recipient="bob@example.com"))
        assert result.status.value == "queued"

        flush = core.toggle_recipient()
        await flush
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from .availability import RecipientAvailability
from .channel import DEFAULT_LOSS_DECAY, DEFAULT_MAX_RETRIES, DEFAULT_RECOVERY_INTERVAL, RandomSource, UnreliableChannel
from .clock import Clock, RealClock
from .logger import get_logger
from .mail_queue import MailQueue
from .models import (
    LogCategory,
    MessageConfig,
    Node,
    QueuedMessage,
    SessionResult,
    SessionState,
    SessionStatus,
    TransmissionStats,
)
from .observer import CompositeObserver, RecordingObserver, SimulationObserver
from .prometheus import SimulatorMetrics
from .report import generate_report
from .session import ProtocolSession, SessionTimings


class SimulatorCore:
    """Engine context of one simulator instance.

    Attributes:
        clock: Time source for every simulated delay.
        observer: Fan-out observer; the internal recorder is always attached.
        recorder: Keeps the log history used by reports and the API.
        channel: The lossy link used by protocol sessions.
        availability: Recipient availability flag.
        queue: Store-and-forward queue.
        metrics: Prometheus metrics collector.
        last_config: Configuration of the most recently started session.
        last_result: Result of the most recently finished session.
        flush_task: Task of the flush started by the last availability
            transition, if any.
        message_defaults: Field values applied to commands that omit them.
    """

    def __init__(
        self,
        *,
        clock: Clock | None = None,
        observer: SimulationObserver | None = None,
        rng: RandomSource | None = None,
        metrics: SimulatorMetrics | None = None,
        recipient_available: bool = True,
        timings: SessionTimings | None = None,
        recovery_interval: float = DEFAULT_RECOVERY_INTERVAL,
        loss_decay: float = DEFAULT_LOSS_DECAY,
        max_retries: int = DEFAULT_MAX_RETRIES,
        queue_processing_delay: float = 1.0,
        queue_settle_delay: float = 0.5,
        message_defaults: dict[str, Any] | None = None,
        logger=None,
    ):
        """Initialize the simulator.

        Args:
            clock: Time source. Defaults to :class:`RealClock`.
            observer: Presentation sink. Defaults to no-op.
            rng: Random source for loss sampling (``random.Random``-like).
            metrics: Prometheus metrics collector. Created if omitted.
            recipient_available: Initial recipient availability.
            timings: Probe and forward-hop durations.
            recovery_interval: Seconds before a lost packet is resent.
            loss_decay: Loss probability multiplier after each loss.
            max_retries: Retransmissions allowed before loss is disabled.
            queue_processing_delay: Seconds before each queued delivery.
            queue_settle_delay: Seconds after each queued delivery.
            message_defaults: Default ``MessageConfig`` fields for the ``send``
                command, overridden by the command payload.
            logger: Custom logger instance. If None, uses default logger.
        """
        self.logger = logger or get_logger("SimulatorCore")
        self.clock = clock or RealClock()
        self.recorder = RecordingObserver()
        self.observer = CompositeObserver([self.recorder])
        if observer is not None:
            self.observer.add(observer)
        self.metrics = metrics or SimulatorMetrics()
        self.timings = timings or SessionTimings()
        self.channel = UnreliableChannel(
            self.clock,
            self.observer,
            rng=rng,
            recovery_interval=recovery_interval,
            loss_decay=loss_decay,
            max_retries=max_retries,
        )
        self.availability = RecipientAvailability(recipient_available)
        self.availability.subscribe(self._on_availability_changed)
        self.queue = MailQueue()
        self.queue_processing_delay = max(0.0, float(queue_processing_delay))
        self.queue_settle_delay = max(0.0, float(queue_settle_delay))
        self.message_defaults: dict[str, Any] = dict(message_defaults or {})

        self.state = SessionState()
        self.last_config: MessageConfig | None = None
        self.last_result: SessionResult | None = None
        self.flush_task: asyncio.Task[list[QueuedMessage]] | None = None
        self._active_sessions = 0
        self._background_tasks: set[asyncio.Task[Any]] = set()

    @classmethod
    def from_settings(cls, settings, **kwargs: Any) -> SimulatorCore:
        """Build a core from :class:`~smtp_simulator.config_loader.SimulatorSettings`."""
        params: dict[str, Any] = dict(
            timings=settings.timings,
            recovery_interval=settings.recovery_interval,
            loss_decay=settings.loss_decay,
            max_retries=settings.max_retries,
            queue_processing_delay=settings.queue_processing_delay,
            queue_settle_delay=settings.queue_settle_delay,
            message_defaults=settings.message_defaults,
        )
        params.update(kwargs)
        return cls(**params)

    # ------------------------------------------------------------------- state
    @property
    def running(self) -> bool:
        """True while at least one protocol session is executing."""
        return self._active_sessions > 0

    @property
    def recipient_available(self) -> bool:
        return self.availability.available

    @property
    def stats(self) -> TransmissionStats:
        """Counters of the most recently started session."""
        return self.state.stats

    def _emit_stats(self) -> None:
        stats = self.stats
        self.observer.on_stats(stats.total_packets, stats.lost_packets, stats.retransmissions, len(self.queue))

    # ---------------------------------------------------------------- sessions
    async def send(
        self,
        config: MessageConfig,
        on_delivered: Callable[[], Any] | None = None,
    ) -> SessionResult:
        """Run one protocol session for ``config``.

        A call made while another session is running is a no-op (status
        ``skipped``) only if the recipient is online; with the recipient
        offline, sessions may overlap since they only end up queuing.

        Args:
            config: Message and transport parameters.
            on_delivered: Called once when the message reaches the mailbox,
                immediately or after a later queue flush.

        Returns:
            The session result.
        """
        if self.running and self.availability.available:
            self.logger.debug("Session already running with recipient online, ignoring send")
            return SessionResult(status=SessionStatus.SKIPPED, progress=self.state.progress, label=self.state.label)

        session = ProtocolSession(
            config,
            channel=self.channel,
            clock=self.clock,
            availability=self.availability,
            queue=self.queue,
            observer=self.observer,
            timings=self.timings,
            on_delivered=on_delivered,
        )
        if self.availability.available:
            self.recorder.clear()
        self.state = session.state
        self.last_config = config
        self._active_sessions += 1
        try:
            result = await session.run()
        finally:
            self._active_sessions -= 1
        self.last_result = result
        self.metrics.observe_session(result)
        self.metrics.set_queue_length(len(self.queue))
        return result

    # ------------------------------------------------------------ availability
    def toggle_recipient(self) -> asyncio.Task[list[QueuedMessage]] | None:
        """Flip recipient availability.

        Coming online schedules the queue flush on the running event loop.
        Called outside a loop, the flag still flips but queued messages stay
        queued until :meth:`flush_queue` is awaited.

        Returns:
            The flush task started when the recipient came online with a
            non-empty queue, otherwise None.
        """
        self.flush_task = None
        self.availability.toggle()
        return self.flush_task

    def set_recipient(self, available: bool) -> asyncio.Task[list[QueuedMessage]] | None:
        """Force recipient availability; returns the flush task if one started."""
        self.flush_task = None
        self.availability.set(available)
        return self.flush_task

    def _on_availability_changed(self, available: bool) -> None:
        self.observer.on_availability_changed(available)
        if available:
            self.observer.on_log("Receiver status changed to ONLINE", LogCategory.SUCCESS)
            if len(self.queue) > 0:
                self._schedule_flush()
        else:
            self.observer.on_log("Receiver status changed to OFFLINE", LogCategory.WARNING)
            if len(self.queue) > 0:
                self.observer.on_log(f"{len(self.queue)} email(s) waiting in queue", LogCategory.INFO)

    def _schedule_flush(self) -> None:
        try:
            self.flush_task = self._spawn(self.flush_queue(), name="mail-queue-flush")
        except RuntimeError:
            # no running event loop; the queue is left untouched
            self.logger.warning(
                "No running event loop, %d queued email(s) wait for flush_queue()", len(self.queue)
            )

    def _spawn(self, coro, name: str) -> asyncio.Task[Any]:
        """Start ``coro`` as a background task and keep a reference until it ends."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            raise
        task = loop.create_task(coro, name=name)
        self._background_tasks.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task[Any]) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.error("Background task %s failed: %s", task.get_name(), exc, exc_info=exc)

    # ------------------------------------------------------------------- queue
    async def flush_queue(self) -> list[QueuedMessage]:
        """Deliver every queued message in enqueue order.

        Returns:
            The delivered messages. Empty (and silent) when the queue is empty.
        """
        delivered = await self.queue.flush(self._deliver_queued, on_start=self._on_flush_start)
        if delivered:
            self.observer.on_log(f"All {len(delivered)} queued email(s) delivered!", LogCategory.SUCCESS)
            self.metrics.set_queue_length(len(self.queue))
        return delivered

    def _on_flush_start(self, snapshot: list[QueuedMessage]) -> None:
        self.observer.on_log(f"Processing {len(snapshot)} queued email(s)...", LogCategory.SUCCESS)
        self._emit_stats()
        self.metrics.set_queue_length(len(self.queue))

    async def _deliver_queued(self, message: QueuedMessage) -> None:
        self.observer.on_log(
            f"Delivering queued email [ID: {message.id}] to {message.config.recipient}...",
            LogCategory.INFO,
        )
        await self.clock.sleep(self.queue_processing_delay)
        await self.channel.forward(self.timings.forward_transit)
        self.observer.on_node_active(Node.RECIPIENT)
        await self.clock.sleep(self.queue_settle_delay)
        self.observer.on_log(f"Email [ID: {message.id}] delivered successfully!", LogCategory.SUCCESS)
        self.metrics.inc_queued_delivery()
        self.logger.info("Delivered queued message %s to %s", message.id, message.config.recipient)

    # ------------------------------------------------------------------ report
    def report(self, config: MessageConfig | None = None) -> str:
        """Render the transmission report of the last session."""
        return generate_report(
            config or self.last_config or MessageConfig(),
            self.stats,
            queue_length=len(self.queue),
            recipient_available=self.availability.available,
            log=self.recorder.lines(),
        )

    def status(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "recipient_available": self.availability.available,
            "queue_length": len(self.queue),
            "step": self.state.step,
            "progress": self.state.progress,
            "label": self.state.label,
            "stats": self.stats.as_dict(),
            "last_result": self.last_result.as_dict() if self.last_result else None,
        }

    # ---------------------------------------------------------------- commands
    async def handle_command(self, cmd: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        """Execute an external control command.

        Supported commands:
        - ``send``: Run a session (payload: MessageConfig fields, plus
          ``wait=False`` to return as soon as the session is scheduled)
        - ``toggleRecipient``: Flip recipient availability
        - ``setRecipient``: Force availability (payload: ``available``)
        - ``status``: Current state and counters
        - ``listQueue``: Messages waiting for the recipient
        - ``log``: Recorded log entries
        - ``clearLog``: Drop the recorded log
        - ``report``: Plain-text transmission report

        Args:
            cmd: Command name to execute.
            payload: Command-specific parameters.

        Returns:
            dict: Command result with ``ok`` status and command-specific data.
        """
        payload = dict(payload or {})
        match cmd:
            case "send":
                wait = bool(payload.pop("wait", True))
                try:
                    values = dict(self.message_defaults)
                    values.update({k: v for k, v in payload.items() if v is not None})
                    config = MessageConfig(**values)
                except ValidationError as exc:
                    return {"ok": False, "error": str(exc)}
                if not wait:
                    self._spawn(self.send(config), name="protocol-session")
                    return {"ok": True, "scheduled": True}
                result = await self.send(config)
                return {"ok": True, **result.as_dict()}
            case "toggleRecipient":
                flushing = self.toggle_recipient() is not None
                return {"ok": True, "available": self.availability.available, "flushing": flushing}
            case "setRecipient":
                if "available" not in payload:
                    return {"ok": False, "error": "available is required"}
                flushing = self.set_recipient(bool(payload["available"])) is not None
                return {"ok": True, "available": self.availability.available, "flushing": flushing}
            case "status":
                return {"ok": True, **self.status()}
            case "listQueue":
                return {"ok": True, "messages": [message.as_dict() for message in self.queue]}
            case "log":
                return {"ok": True, "entries": [entry.as_dict() for entry in self.recorder.entries]}
            case "clearLog":
                self.recorder.clear()
                return {"ok": True}
            case "report":
                return {"ok": True, "report": self.report()}
            case _:
                return {"ok": False, "error": "unknown command"}
