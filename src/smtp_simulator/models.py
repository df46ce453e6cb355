# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Data models shared by the simulator components.

This module defines the value types that flow between the protocol session,
the unreliable channel, the mail queue and the observers.

Models:
    - MessageConfig: Immutable message and transport parameters for one run
    - TransmissionStats: Packet counters for a session
    - SessionState: Mutable per-run state owned by a protocol session
    - SessionResult: Summary returned when a run finishes
    - QueuedMessage: A message parked in the store-and-forward queue
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_SENDER = "sender@example.com"
DEFAULT_RECIPIENT = "recipient@example.com"
DEFAULT_SUBJECT = "Test Email"
DEFAULT_BODY = "This is a test message."
DEFAULT_SERVER_DELAY = 1.0
DEFAULT_NETWORK_DELAY = 500.0
DEFAULT_PACKET_LOSS = 10.0


class SimulatorError(RuntimeError):
    """Base class for errors raised by the simulator core."""

    code = "simulator_error"


class LogCategory(str, Enum):
    """Categories attached to every log observation.

    Attributes:
        INFO: Neutral progress information.
        COMMAND: A command sent by the client or relay.
        RESPONSE: A reply received from the relay or recipient.
        ERROR: A fatal condition for the current session.
        WARNING: A recoverable condition (packet loss, recipient offline).
        SUCCESS: A completed delivery or state change.
    """

    INFO = "info"
    COMMAND = "command"
    RESPONSE = "response"
    ERROR = "error"
    WARNING = "warning"
    SUCCESS = "success"


class Node(str, Enum):
    """Logical actors of the simulated exchange."""

    CLIENT = "client"
    RELAY = "relay"
    RECIPIENT = "recipient"


class SessionStatus(str, Enum):
    """Lifecycle states of a protocol session.

    Attributes:
        IDLE: Session created but not started.
        RUNNING: Steps are being executed.
        DELIVERED: Message reached the recipient mailbox.
        QUEUED: Recipient was offline; message parked in the queue.
        FAILED: Session aborted (invalid recipient).
        SKIPPED: Another session was already running with the recipient online.
    """

    IDLE = "idle"
    RUNNING = "running"
    DELIVERED = "delivered"
    QUEUED = "queued"
    FAILED = "failed"
    SKIPPED = "skipped"


class MessageConfig(BaseModel):
    """Message content and transport parameters for a single session.

    The model is frozen: once a session starts the configuration cannot
    change. Absent fields take the simulator defaults.

    Attributes:
        sender: Envelope sender address.
        recipient: Envelope recipient address (validated at RCPT TO).
        subject: Subject header.
        body: Message body; delivered verbatim, previewed truncated.
        attachment: Optional attachment reference (a file name).
        server_delay: Relay processing delay after each command, in seconds.
        network_delay: One-way network delay per packet, in milliseconds.
        packet_loss: Base loss probability of each packet, in percent.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    sender: Annotated[str, Field(default=DEFAULT_SENDER, description="Sender address")]
    recipient: Annotated[str, Field(default=DEFAULT_RECIPIENT, description="Recipient address")]
    subject: Annotated[str, Field(default=DEFAULT_SUBJECT, description="Subject header")]
    body: Annotated[str, Field(default=DEFAULT_BODY, description="Message body")]
    attachment: Annotated[
        str | None,
        Field(default=None, description="Optional attachment reference")
    ]
    server_delay: Annotated[
        float,
        Field(default=DEFAULT_SERVER_DELAY, ge=0, description="Server processing delay (seconds)")
    ]
    network_delay: Annotated[
        float,
        Field(default=DEFAULT_NETWORK_DELAY, ge=0, description="Network delay (milliseconds)")
    ]
    packet_loss: Annotated[
        float,
        Field(default=DEFAULT_PACKET_LOSS, ge=0, le=100, description="Packet loss probability (percent)")
    ]

    @field_validator("sender", "recipient", "subject", "body", mode="before")
    @classmethod
    def blank_uses_default(cls, v: Any, info) -> Any:
        """Substitute the default for empty form values."""
        if v is None or (isinstance(v, str) and not v.strip()):
            return cls.model_fields[info.field_name].default
        return v

    @field_validator("attachment", mode="before")
    @classmethod
    def blank_attachment_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def network_delay_seconds(self) -> float:
        return self.network_delay / 1000.0

    def body_preview(self, limit: int = 50) -> str:
        """Return the body truncated for display, with an ellipsis if cut."""
        if len(self.body) > limit:
            return self.body[:limit] + "..."
        return self.body


@dataclass
class TransmissionStats:
    """Packet counters of one session.

    Every lost attempt is retransmitted exactly once, so
    ``retransmissions == lost_packets`` always holds.
    """

    total_packets: int = 0
    lost_packets: int = 0
    retransmissions: int = 0

    def record_sent(self) -> None:
        self.total_packets += 1

    def record_lost(self) -> None:
        self.lost_packets += 1
        self.retransmissions += 1

    def reset(self) -> None:
        self.total_packets = 0
        self.lost_packets = 0
        self.retransmissions = 0

    @property
    def success_rate(self) -> float:
        """Percentage of packets that were not lost (0 when nothing was sent)."""
        if self.total_packets == 0:
            return 0.0
        return (self.total_packets - self.lost_packets) / self.total_packets * 100

    def copy(self) -> TransmissionStats:
        return TransmissionStats(self.total_packets, self.lost_packets, self.retransmissions)

    def as_dict(self) -> dict[str, int]:
        return {
            "total_packets": self.total_packets,
            "lost_packets": self.lost_packets,
            "retransmissions": self.retransmissions,
        }


@dataclass
class SessionState:
    """Ephemeral state of one protocol session run.

    Attributes:
        step: Index of the protocol step reached (0 before HELO, 5 at QUIT).
        running: True while the session is executing steps.
        status: Current lifecycle status.
        progress: Last reported progress percentage.
        label: Last reported status label.
        stats: Packet counters of this run.
        commands: Protocol commands completed so far, in order.
    """

    step: int = 0
    running: bool = False
    status: SessionStatus = SessionStatus.IDLE
    progress: float = 0.0
    label: str = "Idle"
    stats: TransmissionStats = field(default_factory=TransmissionStats)
    commands: list[str] = field(default_factory=list)

    def reset(self) -> None:
        self.step = 0
        self.running = False
        self.status = SessionStatus.IDLE
        self.progress = 0.0
        self.label = "Idle"
        self.stats.reset()
        self.commands.clear()


@dataclass(frozen=True)
class SessionResult:
    """Summary of a finished (or skipped) session run."""

    status: SessionStatus
    progress: float
    label: str
    commands: tuple[str, ...] = ()
    stats: TransmissionStats = field(default_factory=TransmissionStats)
    message_id: str | None = None
    error: str | None = None

    @classmethod
    def from_state(
        cls,
        state: SessionState,
        *,
        message_id: str | None = None,
        error: str | None = None,
    ) -> SessionResult:
        return cls(
            status=state.status,
            progress=state.progress,
            label=state.label,
            commands=tuple(state.commands),
            stats=state.stats.copy(),
            message_id=message_id,
            error=error,
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "progress": self.progress,
            "label": self.label,
            "commands": list(self.commands),
            "stats": self.stats.as_dict(),
            "message_id": self.message_id,
            "error": self.error,
        }


def _noop() -> None:
    return None


@dataclass
class QueuedMessage:
    """A message held by the mail queue until the recipient comes back.

    Attributes:
        id: Unique identifier within the queue.
        config: Snapshot of the configuration the message was sent with.
        queued_at: Clock time at which the message was enqueued.
        on_delivered: Zero-argument callback fired once after delivery.
    """

    id: str
    config: MessageConfig
    queued_at: float
    on_delivered: Callable[[], Any] = _noop
    _notified: bool = field(default=False, init=False, repr=False)

    @property
    def delivered(self) -> bool:
        return self._notified

    def notify_delivered(self) -> bool:
        """Fire the completion callback unless it already fired.

        Returns:
            True if the callback was invoked by this call.
        """
        if self._notified:
            return False
        self._notified = True
        self.on_delivered()
        return True

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "queued_at": self.queued_at,
            "sender": self.config.sender,
            "recipient": self.config.recipient,
            "subject": self.config.subject,
        }
