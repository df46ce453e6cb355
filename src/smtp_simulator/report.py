# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Plain-text transmission report.

The report is built only from public state: the message configuration, the
last session counters, the queue length, the recipient availability and the
accumulated log. It mirrors what a user would download after a run.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from .models import MessageConfig, TransmissionStats

RULE = "═" * 63


def _section(title: str) -> str:
    return f"{RULE}\n{title}\n{RULE}"


def _fmt(value: float) -> str:
    return f"{value:g}"


def rate_server_delay(seconds: float) -> str:
    if seconds > 2:
        return "Slow"
    return "Moderate" if seconds > 1 else "Fast"


def rate_network_delay(milliseconds: float) -> str:
    if milliseconds > 1000:
        return "Slow"
    return "Moderate" if milliseconds > 500 else "Fast"


def rate_packet_loss(percent: float) -> str:
    if percent > 30:
        return "High"
    return "Moderate" if percent > 10 else "Low"


def report_filename(now: datetime | None = None) -> str:
    """Return the download file name, stamped with epoch milliseconds."""
    now = now or datetime.now()
    return f"SMTP_Simulation_Report_{int(now.timestamp() * 1000)}.txt"


def generate_report(
    config: MessageConfig,
    stats: TransmissionStats,
    *,
    queue_length: int = 0,
    recipient_available: bool = True,
    log: Iterable[str] = (),
    generated_at: datetime | None = None,
) -> str:
    """Render the human-readable transmission report.

    Args:
        config: Configuration of the reported session.
        stats: Counters of the reported session.
        queue_length: Messages waiting in the queue when the report is made.
        recipient_available: Current recipient availability.
        log: Formatted log lines, oldest first.
        generated_at: Report timestamp, defaults to now.
    """
    generated_at = generated_at or datetime.now()
    receiver_status = "Online" if recipient_available else "Offline"
    loss = config.packet_loss
    log_text = "\n".join(log)

    if stats.lost_packets > 0:
        network_behaviour = (
            f"This transmission experienced {stats.lost_packets} packet losses, "
            f"requiring {stats.retransmissions} retransmissions.\n"
            "This demonstrates the reliability mechanisms in network protocols where lost packets\n"
            "are automatically detected and retransmitted to ensure complete data delivery."
        )
    else:
        network_behaviour = (
            "This transmission completed without any packet loss, indicating a stable network\n"
            f"connection. All {stats.total_packets} packets were successfully delivered on first attempt."
        )

    if recipient_available:
        receiver_text = (
            "The receiver was online and the email was delivered immediately to the recipient's\n"
            "mailbox without any queuing delay."
        )
    else:
        receiver_text = (
            "The receiver was offline during transmission. The email was stored in the server queue\n"
            "and will be delivered automatically when the receiver comes online. This demonstrates\n"
            "the store-and-forward mechanism used in email systems."
        )

    if loss > 30:
        performance = (
            f"High packet loss rate ({_fmt(loss)}%) significantly impacts transmission efficiency.\n"
            "In real-world scenarios, this would indicate network congestion or connectivity issues."
        )
    else:
        quality = "adequately" if loss > 10 else "excellently"
        performance = f"The network performed {quality} with minimal packet loss."

    lines = [
        "╔════════════════════════════════════════════════════════════════╗",
        "║              SMTP PROTOCOL SIMULATOR - REPORT                  ║",
        "╚════════════════════════════════════════════════════════════════╝",
        "",
        f"Generated: {generated_at.strftime('%Y-%m-%d %H:%M:%S')}",
        "",
        _section("INPUT DETAILS"),
        "",
        "Email Configuration:",
        f"• Sender Email: {config.sender}",
        f"• Recipient Email: {config.recipient}",
        f"• Subject: {config.subject}",
        "• Message Body: ",
        config.body,
        f"• Attachment: {config.attachment or 'None'}",
        "",
        "Network Configuration:",
        f"• Server Delay: {_fmt(config.server_delay)} seconds",
        f"• Network Delay: {_fmt(config.network_delay)} milliseconds",
        f"• Packet Loss Rate: {_fmt(loss)}%",
        f"• Receiver Status: {receiver_status}",
        "",
        _section("TRANSMISSION STATISTICS"),
        "",
        "Network Performance:",
        f"• Total Packets Sent: {stats.total_packets}",
        f"• Packets Lost: {stats.lost_packets}",
        f"• Retransmissions: {stats.retransmissions}",
        f"• Queued Emails: {queue_length}",
        f"• Packet Loss Rate: {_fmt(loss)}%",
        f"• Success Rate: {stats.success_rate:.2f}%",
        "",
        "Network Configuration Impact:",
        f"• Server Delay: {_fmt(config.server_delay)}s ({rate_server_delay(config.server_delay)} server)",
        f"• Network Delay: {_fmt(config.network_delay)}ms ({rate_network_delay(config.network_delay)} network)",
        f"• Packet Loss: {_fmt(loss)}% ({rate_packet_loss(loss)} loss rate)",
        "",
        _section("DETAILED SMTP COMMAND LOG"),
        "",
        log_text,
        "",
        _section("INTERPRETATION OF RESULTS"),
        "",
        "Protocol Sequence:",
        "The SMTP protocol follows a strict command-response sequence:",
        "1. Connection establishment (HELO)",
        "2. Sender identification (MAIL FROM)",
        "3. Recipient validation (RCPT TO)",
        "4. Data transmission (DATA)",
        "5. Receiver availability check",
        "6. Message queuing if receiver offline",
        "7. Connection closure (QUIT)",
        "",
        "Network Behavior:",
        network_behaviour,
        "",
        "Receiver Status Management:",
        receiver_text,
        "",
        "Performance Analysis:",
        performance,
        "",
        _section("CONCLUSION"),
        "",
        "Email transmission simulation completed using the SMTP protocol.",
        "The simulation shows how email clients communicate with mail servers",
        "through a series of standardized commands and responses. Network conditions",
        "such as delays and packet loss affect transmission efficiency but are handled",
        "through automatic retransmission mechanisms.",
        "",
        "The store-and-forward mechanism ensures that emails are not lost when the receiver",
        "is offline: they are queued on the server and delivered when the receiver",
        "becomes available.",
        "",
        _section("END OF REPORT"),
        "",
    ]
    return "\n".join(lines)
