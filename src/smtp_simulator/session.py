# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Protocol session: the scripted SMTP exchange for one message.

A :class:`ProtocolSession` walks a fixed, strictly sequential list of steps:

1. ``HELO`` - client introduction
2. ``MAIL FROM`` - sender declaration
3. ``RCPT TO`` - recipient declaration and validation
4. ``DATA`` - headers, body preview and content transfer
5. availability probe - deliver to the mailbox or park the message in the
   store-and-forward queue
6. ``QUIT`` - close

Every command travels through the :class:`~smtp_simulator.channel.UnreliableChannel`
and every reply is followed by the relay's processing delay. An invalid
recipient aborts the run at step 3: the failure is logged and turned into
a ``failed`` result, it never escapes :meth:`ProtocolSession.run`.
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .availability import RecipientAvailability
from .channel import UnreliableChannel
from .clock import Clock
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
    SimulatorError,
)
from .observer import SimulationObserver

CLIENT_HOSTNAME = "client.example.com"
INVALID_MARKER = "invalid"
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# Progress reported when each step starts, and the label shown with it.
STEP_PROGRESS = {
    "connect": (0, "Connecting..."),
    "helo": (20, "Handshake"),
    "mail_from": (40, "Sender Verification"),
    "rcpt_to": (60, "Recipient Validation"),
    "data": (70, "Transmitting Message"),
    "probe": (80, "Checking Receiver Status"),
    "queued": (85, "Receiver Offline - Queued"),
    "deliver": (90, "Delivering to Recipient"),
}
PERCENT_PER_STEP = 20


class InvalidRecipientError(SimulatorError):
    """Raised at ``RCPT TO`` when the recipient address is rejected."""

    code = "invalid_recipient"
    smtp_code = 550

    def __init__(self, recipient: str, message: str = "Invalid recipient address"):
        super().__init__(message)
        self.recipient = recipient


def is_valid_recipient(address: str) -> bool:
    """Return True if ``address`` is ``local@domain.tld``-shaped and not marked invalid."""
    return bool(EMAIL_PATTERN.match(address)) and INVALID_MARKER not in address


@dataclass(frozen=True)
class SessionTimings:
    """Fixed delays (in seconds) that do not depend on the message configuration.

    Attributes:
        probe_interval: Pause of the recipient liveness probe.
        forward_transit: Duration of the relay-to-recipient hop.
    """

    probe_interval: float = 1.0
    forward_transit: float = 2.0


class ProtocolSession:
    """One run of the SMTP exchange for a single :class:`MessageConfig`.

    The session owns its :class:`SessionState`; counters, step index and the
    running flag are reset at the start of :meth:`run`.
    """

    def __init__(
        self,
        config: MessageConfig,
        *,
        channel: UnreliableChannel,
        clock: Clock,
        availability: RecipientAvailability,
        queue: MailQueue,
        observer: SimulationObserver | None = None,
        timings: SessionTimings | None = None,
        on_delivered: Callable[[], Any] | None = None,
    ):
        self.config = config
        self.channel = channel
        self.clock = clock
        self.availability = availability
        self.queue = queue
        self.observer = observer or SimulationObserver()
        self.timings = timings or SessionTimings()
        self.on_delivered = on_delivered
        self.state = SessionState()
        self.logger = get_logger("ProtocolSession")

    # ------------------------------------------------------------------ events
    def _log(self, message: str, category: LogCategory = LogCategory.INFO) -> None:
        self.observer.on_log(message, category)

    def _progress(self, percent: float, label: str) -> None:
        self.state.progress = percent
        self.state.label = label
        self.observer.on_progress(percent, label)

    def _enter(self, key: str) -> None:
        self._progress(*STEP_PROGRESS[key])

    def _node(self, node: Node | None) -> None:
        self.observer.on_node_active(node)

    def _emit_stats(self) -> None:
        stats = self.state.stats
        self.observer.on_stats(stats.total_packets, stats.lost_packets, stats.retransmissions, len(self.queue))

    def _notify_delivered(self) -> None:
        if self.on_delivered is None:
            return
        try:
            self.on_delivered()
        except Exception:
            self.logger.exception("Delivery callback failed for %s", self.config.recipient)

    # ------------------------------------------------------------------- steps
    async def _exchange(self, command: str, ack: str) -> str:
        """Send ``command`` from the client and wait for the relay to process it."""
        self._node(Node.CLIENT)
        self._log(f"→ CLIENT: {command}", LogCategory.COMMAND)
        reply = await self._transmit(command, ack)
        await self._relay_processing()
        return reply

    async def _transmit(self, payload: str, ack: str) -> str:
        reply = await self.channel.transmit(
            payload,
            ack,
            self.config.network_delay,
            self.config.packet_loss,
            self.state.stats,
        )
        self._emit_stats()
        return reply

    async def _relay_processing(self) -> None:
        self._node(Node.RELAY)
        await self.clock.sleep(self.config.server_delay)

    def _begin_step(self, step: int, key: str) -> None:
        self.state.step = step
        self._enter(key)

    async def _introduce(self) -> None:
        self._begin_step(1, "helo")
        await self._exchange(f"HELO {CLIENT_HOSTNAME}", "250 OK")
        self._log(f"← SERVER: 250 Hello {CLIENT_HOSTNAME}", LogCategory.RESPONSE)
        self.state.commands.append("HELO")

    async def _declare_sender(self) -> None:
        self._begin_step(2, "mail_from")
        await self._exchange(f"MAIL FROM:<{self.config.sender}>", "250 OK")
        self._log("← SERVER: 250 Sender OK", LogCategory.RESPONSE)
        self.state.commands.append("MAIL FROM")

    async def _declare_recipient(self) -> None:
        self._begin_step(3, "rcpt_to")
        recipient = self.config.recipient
        await self._exchange(f"RCPT TO:<{recipient}>", "250 OK")
        if not is_valid_recipient(recipient):
            self._log("← SERVER: 550 Invalid recipient address", LogCategory.ERROR)
            self._progress(self.state.step * PERCENT_PER_STEP, "Failed")
            raise InvalidRecipientError(recipient)
        self._log("← SERVER: 250 Recipient OK", LogCategory.RESPONSE)
        self.state.commands.append("RCPT TO")

    async def _transfer_content(self) -> None:
        self._begin_step(4, "data")
        config = self.config
        await self._exchange("DATA", "354")
        self._log("← SERVER: 354 Start mail input; end with <CRLF>.<CRLF>", LogCategory.RESPONSE)

        self._node(Node.CLIENT)
        self._log(f"→ CLIENT: Subject: {config.subject}", LogCategory.COMMAND)
        self._log(f"→ CLIENT: From: {config.sender}", LogCategory.COMMAND)
        self._log(f"→ CLIENT: To: {config.recipient}", LogCategory.COMMAND)
        if config.attachment:
            self._log(f"→ CLIENT: Attachment: {config.attachment}", LogCategory.COMMAND)
        self._log(f"→ CLIENT: [Message Body: {config.body_preview()}]", LogCategory.COMMAND)
        self._log("→ CLIENT: .", LogCategory.COMMAND)

        await self._transmit("EMAIL_CONTENT", "250")
        await self._relay_processing()
        self._log("← SERVER: 250 Message accepted and stored in queue", LogCategory.RESPONSE)
        self.state.commands.append("DATA")

    async def _probe_recipient(self) -> bool:
        self._enter("probe")
        self._log("→ SMTP: Checking recipient server status...", LogCategory.COMMAND)
        await self.clock.sleep(self.timings.probe_interval)
        return self.availability.available

    def _enqueue(self) -> str:
        self._enter("queued")
        message = QueuedMessage(
            id=uuid.uuid4().hex,
            config=self.config,
            queued_at=self.clock.now(),
            on_delivered=self.on_delivered or (lambda: None),
        )
        self._log("Receiver is OFFLINE. Email stored in server queue.", LogCategory.WARNING)
        self._log(
            f"Email queued [ID: {message.id}]: From {self.config.sender} to {self.config.recipient}",
            LogCategory.INFO,
        )
        length = self.queue.enqueue(message)
        self._emit_stats()
        self._log(f"Total emails in queue: {length}", LogCategory.INFO)
        self._log("Email will be delivered when receiver comes online...", LogCategory.WARNING)
        return message.id

    async def _deliver_to_mailbox(self) -> None:
        self._log("← RECIPIENT SERVER: 200 Server is ONLINE", LogCategory.SUCCESS)
        self._enter("deliver")
        self._log("→ SMTP: Forwarding message to recipient server...", LogCategory.COMMAND)
        await self.channel.forward(self.timings.forward_transit)
        self._node(Node.RECIPIENT)
        await self.clock.sleep(self.config.server_delay)
        self._log("← RECIPIENT SERVER: 250 Message delivered to mailbox", LogCategory.SUCCESS)

    async def _close(self, label: str) -> None:
        self.state.step = 5
        self._progress(100, label)
        await self._exchange("QUIT", "221")
        self._log("← SERVER: 221 Goodbye", LogCategory.RESPONSE)
        self.state.commands.append("QUIT")
        self._node(None)

    # --------------------------------------------------------------------- run
    async def run(self) -> SessionResult:
        """Execute every step and return the outcome.

        Returns:
            A :class:`SessionResult` with status ``delivered``, ``queued`` or
            ``failed``.
        """
        state = self.state
        state.reset()
        state.running = True
        state.status = SessionStatus.RUNNING
        message_id: str | None = None
        error: str | None = None
        self.logger.info(
            "Session started: %s -> %s (loss=%s%%, network=%sms, server=%ss)",
            self.config.sender,
            self.config.recipient,
            self.config.packet_loss,
            self.config.network_delay,
            self.config.server_delay,
        )
        try:
            self._log("=== Starting SMTP Session ===", LogCategory.COMMAND)
            self._enter("connect")
            await self._introduce()
            await self._declare_sender()
            await self._declare_recipient()
            await self._transfer_content()

            if await self._probe_recipient():
                await self._deliver_to_mailbox()
                await self._close("Complete")
                self._log("=== Email delivered successfully! ===", LogCategory.SUCCESS)
                state.status = SessionStatus.DELIVERED
                self._notify_delivered()
            else:
                message_id = self._enqueue()
                await self._close("Queued")
                self._log("=== Email queued successfully! ===", LogCategory.SUCCESS)
                state.status = SessionStatus.QUEUED
        except InvalidRecipientError as exc:
            error = str(exc)
            self._log(f"ERROR: {error}", LogCategory.ERROR)
            self._progress(state.step * PERCENT_PER_STEP, "Failed")
            self._node(None)
            state.status = SessionStatus.FAILED
            self.logger.warning("Session failed at step %d: %s (%s)", state.step, error, exc.recipient)
        finally:
            state.running = False

        self.logger.info(
            "Session finished: status=%s packets=%d lost=%d",
            state.status.value,
            state.stats.total_packets,
            state.stats.lost_packets,
        )
        return SessionResult.from_state(state, message_id=message_id, error=error)
