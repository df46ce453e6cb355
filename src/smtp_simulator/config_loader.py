# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Configuration loader for the simulator.

Settings are read from an INI file, with ``SMTPSIM_`` environment variables
as fallbacks and built-in defaults last.

Environment variables:
    SMTPSIM_CONFIG - Path to the INI file (default: smtp_simulator.ini)
    SMTPSIM_LOG_LEVEL - Logging level (default: INFO)
    SMTPSIM_RECOVERY_INTERVAL - Seconds before a lost packet is resent
    SMTPSIM_PROBE_INTERVAL - Seconds spent probing the recipient
    SMTPSIM_FORWARD_TRANSIT - Seconds of the relay-to-recipient hop
    SMTPSIM_QUEUE_PROCESSING_DELAY - Seconds before each queued delivery
    SMTPSIM_QUEUE_SETTLE_DELAY - Seconds after each queued delivery
    SMTPSIM_LOSS_DECAY - Loss probability multiplier after each loss
    SMTPSIM_MAX_RETRIES - Retransmissions before loss is disabled
    SMTPSIM_SERVER_DELAY / SMTPSIM_NETWORK_DELAY / SMTPSIM_PACKET_LOSS -
        Default transport parameters of new messages
    SMTPSIM_HOST / SMTPSIM_PORT / SMTPSIM_API_TOKEN - HTTP server settings

Example:
    Configuration file format::

        [timing]
        recovery_interval = 0.5
        probe_interval = 1.0

        [transport]
        loss_decay = 0.3
        max_retries = 10

        [message]
        sender = alice@example.com
        recipient = bob@example.com
        packet_loss = 20

        [server]
        port = 8080
        api_token = secret

        [logging]
        level = DEBUG
"""

from __future__ import annotations

import configparser
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .channel import DEFAULT_LOSS_DECAY, DEFAULT_MAX_RETRIES, DEFAULT_RECOVERY_INTERVAL
from .logger import get_logger
from .models import (
    DEFAULT_BODY,
    DEFAULT_NETWORK_DELAY,
    DEFAULT_PACKET_LOSS,
    DEFAULT_RECIPIENT,
    DEFAULT_SENDER,
    DEFAULT_SERVER_DELAY,
    DEFAULT_SUBJECT,
    MessageConfig,
)
from .session import SessionTimings

logger = get_logger("ConfigLoader")

DEFAULT_CONFIG_PATH = "smtp_simulator.ini"
ENV_PREFIX = "SMTPSIM_"


@dataclass
class SimulatorSettings:
    """Resolved simulator settings.

    Attributes:
        recovery_interval: Seconds waited before a lost packet is resent.
        probe_interval: Seconds spent probing the recipient server.
        forward_transit: Seconds of the relay-to-recipient hop.
        queue_processing_delay: Seconds before each queued delivery.
        queue_settle_delay: Seconds after each queued delivery.
        loss_decay: Loss probability multiplier after each loss.
        max_retries: Retransmissions allowed before loss is disabled.
        sender, recipient, subject, body, server_delay, network_delay,
        packet_loss: Defaults of new messages.
        host: HTTP server bind address.
        port: HTTP server port.
        api_token: Token required in ``X-API-Token``, or None.
        log_level: Logging level name.
    """

    # Timing
    recovery_interval: float = DEFAULT_RECOVERY_INTERVAL
    probe_interval: float = 1.0
    forward_transit: float = 2.0
    queue_processing_delay: float = 1.0
    queue_settle_delay: float = 0.5

    # Transport
    loss_decay: float = DEFAULT_LOSS_DECAY
    max_retries: int = DEFAULT_MAX_RETRIES

    # Message defaults
    sender: str = DEFAULT_SENDER
    recipient: str = DEFAULT_RECIPIENT
    subject: str = DEFAULT_SUBJECT
    body: str = DEFAULT_BODY
    server_delay: float = DEFAULT_SERVER_DELAY
    network_delay: float = DEFAULT_NETWORK_DELAY
    packet_loss: float = DEFAULT_PACKET_LOSS

    # Server
    host: str = "127.0.0.1"
    port: int = 8000
    api_token: str | None = None

    # Logging
    log_level: str = "INFO"

    @property
    def timings(self) -> SessionTimings:
        return SessionTimings(probe_interval=self.probe_interval, forward_transit=self.forward_transit)

    @property
    def message_defaults(self) -> dict[str, Any]:
        """The ``[message]`` values as :class:`MessageConfig` fields."""
        return {
            "sender": self.sender,
            "recipient": self.recipient,
            "subject": self.subject,
            "body": self.body,
            "server_delay": self.server_delay,
            "network_delay": self.network_delay,
            "packet_loss": self.packet_loss,
        }

    def default_message(self, **overrides: Any) -> MessageConfig:
        """Build a :class:`MessageConfig` from the message defaults.

        Keyword arguments whose value is None are ignored, so CLI options
        and form fields can be passed through unchanged.
        """
        values = self.message_defaults
        values.update({k: v for k, v in overrides.items() if v is not None})
        return MessageConfig(**values)


def load_settings(config_path: str | Path | None = None) -> SimulatorSettings:
    """Load settings from an INI file with environment variables as fallbacks.

    Args:
        config_path: INI file to read. Defaults to ``$SMTPSIM_CONFIG`` or
            ``smtp_simulator.ini``. A missing file is not an error.

    Returns:
        The resolved :class:`SimulatorSettings`.
    """
    path = Path(config_path or os.getenv(f"{ENV_PREFIX}CONFIG", DEFAULT_CONFIG_PATH))
    parser = configparser.ConfigParser()
    if path.exists():
        parser.read(path)
        logger.debug(f"Loaded configuration from {path}")
    elif config_path is not None:
        logger.warning(f"Config file not found: {path}, using defaults")

    def get(section: str, option: str, env: str) -> str | None:
        if parser.has_option(section, option):
            return parser.get(section, option).strip()
        return os.getenv(f"{ENV_PREFIX}{env}")

    def get_str(section: str, option: str, env: str, default: str | None) -> str | None:
        value = get(section, option, env)
        return value if value else default

    def get_float(section: str, option: str, env: str, default: float) -> float:
        value = get(section, option, env)
        if value is None or value == "":
            return default
        try:
            return float(value)
        except ValueError:
            logger.warning(f"Invalid float for {section}.{option}: {value!r}, using default {default}")
            return default

    def get_int(section: str, option: str, env: str, default: int) -> int:
        value = get(section, option, env)
        if value is None or value == "":
            return default
        try:
            return int(value)
        except ValueError:
            logger.warning(f"Invalid int for {section}.{option}: {value!r}, using default {default}")
            return default

    defaults = SimulatorSettings()
    token = get_str("server", "api_token", "API_TOKEN", None)
    return SimulatorSettings(
        # Timing
        recovery_interval=get_float("timing", "recovery_interval", "RECOVERY_INTERVAL", defaults.recovery_interval),
        probe_interval=get_float("timing", "probe_interval", "PROBE_INTERVAL", defaults.probe_interval),
        forward_transit=get_float("timing", "forward_transit", "FORWARD_TRANSIT", defaults.forward_transit),
        queue_processing_delay=get_float(
            "timing", "queue_processing_delay", "QUEUE_PROCESSING_DELAY", defaults.queue_processing_delay
        ),
        queue_settle_delay=get_float("timing", "queue_settle_delay", "QUEUE_SETTLE_DELAY", defaults.queue_settle_delay),

        # Transport
        loss_decay=get_float("transport", "loss_decay", "LOSS_DECAY", defaults.loss_decay),
        max_retries=get_int("transport", "max_retries", "MAX_RETRIES", defaults.max_retries),

        # Message defaults
        sender=get_str("message", "sender", "SENDER", defaults.sender),
        recipient=get_str("message", "recipient", "RECIPIENT", defaults.recipient),
        subject=get_str("message", "subject", "SUBJECT", defaults.subject),
        body=get_str("message", "body", "BODY", defaults.body),
        server_delay=get_float("message", "server_delay", "SERVER_DELAY", defaults.server_delay),
        network_delay=get_float("message", "network_delay", "NETWORK_DELAY", defaults.network_delay),
        packet_loss=get_float("message", "packet_loss", "PACKET_LOSS", defaults.packet_loss),

        # Server
        host=get_str("server", "host", "HOST", defaults.host),
        port=get_int("server", "port", "PORT", defaults.port),
        api_token=token,

        # Logging
        log_level=(get_str("logging", "level", "LOG_LEVEL", defaults.log_level) or "INFO").upper(),
    )
