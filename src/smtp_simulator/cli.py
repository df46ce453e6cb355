"""Command-line interface for the SMTP session simulator.

This module runs simulations from the terminal and renders their events
with rich, or serves the HTTP API.

Usage:
    smtp-sim send --recipient bob@example.com --packet-loss 30
    smtp-sim send --offline --instant --report report.txt
    smtp-sim demo --count 3 --instant
    smtp-sim serve --port 8000

Example:
    $ smtp-sim send --sender alice@example.com --recipient bob@example.com \\
        --subject "Meeting Tomorrow" --packet-loss 20 --seed 7 --instant
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import sys
from pathlib import Path
from typing import Any, Optional

import click
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from smtp_simulator.clock import Clock, RealClock, VirtualClock
from smtp_simulator.config_loader import SimulatorSettings, load_settings
from smtp_simulator.core import SimulatorCore
from smtp_simulator.logger import LOG_DATE_FORMAT, LOG_FORMAT
from smtp_simulator.models import LogCategory, SessionResult, SessionStatus
from smtp_simulator.observer import SimulationObserver
from smtp_simulator.report import report_filename

console = Console()
err_console = Console(stderr=True)

CATEGORY_STYLES = {
    LogCategory.INFO: "white",
    LogCategory.COMMAND: "cyan",
    LogCategory.RESPONSE: "green",
    LogCategory.ERROR: "bold red",
    LogCategory.WARNING: "yellow",
    LogCategory.SUCCESS: "bold green",
}


def run_async(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    err_console.print(f"[red]Error:[/red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {message}")


def print_json(data: Any) -> None:
    """Print data as formatted JSON."""
    console.print_json(json.dumps(data, indent=2, default=str))


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        force=True,
    )


class ConsoleObserver(SimulationObserver):
    """Render simulator events on a rich console."""

    def __init__(self, out: Console | None = None, show_progress: bool = True):
        self.console = out or console
        self.show_progress = show_progress

    def on_log(self, message, category):
        style = CATEGORY_STYLES.get(LogCategory(category), "white")
        self.console.print(message, style=style, highlight=False, markup=False)

    def on_progress(self, percent, label):
        if self.show_progress:
            self.console.print(f"  [{percent:>3.0f}%] {label}", style="dim", highlight=False, markup=False)

    def on_availability_changed(self, available):
        state = "[green]Online[/green]" if available else "[red]Offline[/red]"
        self.console.print(f"Recipient: {state}")


def _make_clock(instant: bool, speed: float) -> Clock:
    if instant:
        return VirtualClock()
    return RealClock(speed=speed)


def _make_core(settings: SimulatorSettings, *, instant: bool, speed: float, seed: Optional[int],
               offline: bool, quiet: bool) -> SimulatorCore:
    observer = None if quiet else ConsoleObserver()
    return SimulatorCore.from_settings(
        settings,
        clock=_make_clock(instant, speed),
        observer=observer,
        rng=random.Random(seed),
        recipient_available=not offline,
    )


def _stats_table(core: SimulatorCore) -> Table:
    stats = core.stats
    table = Table(title="Transmission Statistics")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Total Packets", str(stats.total_packets))
    table.add_row("Packets Lost", str(stats.lost_packets))
    table.add_row("Retransmissions", str(stats.retransmissions))
    table.add_row("Queued Emails", str(len(core.queue)))
    table.add_row("Success Rate", f"{stats.success_rate:.2f}%")
    table.add_row("Recipient", "online" if core.recipient_available else "offline")
    return table


def _write_report(core: SimulatorCore, target: str) -> Path:
    path = Path(target)
    if path.is_dir():
        path = path / report_filename()
    path.write_text(core.report(), encoding="utf-8")
    return path


@click.group()
@click.version_option(package_name="smtp-simulator")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None,
              help="INI configuration file (default: $SMTPSIM_CONFIG or smtp_simulator.ini).")
@click.option("--log-level", default=None, help="Logging level (DEBUG, INFO, WARNING...).")
@click.pass_context
def main(ctx: click.Context, config_path: Optional[str], log_level: Optional[str]) -> None:
    """smtp-sim - Simulate SMTP sessions over an unreliable network.

    Examples:

        smtp-sim send --packet-loss 30        # Lossy network

        smtp-sim send --offline --instant     # Store-and-forward

        smtp-sim demo --count 3               # Queue then flush
    """
    settings = load_settings(config_path)
    configure_logging(log_level or settings.log_level)
    ctx.obj = settings


@main.command()
@click.option("--sender", "-f", default=None, help="Sender address.")
@click.option("--recipient", "-t", default=None, help="Recipient address.")
@click.option("--subject", "-s", default=None, help="Subject line.")
@click.option("--body", "-b", default=None, help="Message body.")
@click.option("--attachment", "-a", default=None, help="Attachment file name.")
@click.option("--server-delay", type=float, default=None, help="Server processing delay in seconds.")
@click.option("--network-delay", type=float, default=None, help="Network delay in milliseconds.")
@click.option("--packet-loss", type=float, default=None, help="Packet loss probability in percent (0-100).")
@click.option("--offline", is_flag=True, help="Start with the recipient offline.")
@click.option("--instant", is_flag=True, help="Use simulated time instead of real delays.")
@click.option("--speed", type=float, default=1.0, show_default=True, help="Real-time acceleration factor.")
@click.option("--seed", type=int, default=None, help="Seed for packet loss sampling.")
@click.option("--report", "report_path", type=click.Path(), default=None,
              help="Write the transmission report to this file or directory.")
@click.option("--json", "as_json", is_flag=True, help="Print the session result as JSON.")
@click.pass_obj
def send(settings: SimulatorSettings, sender, recipient, subject, body, attachment,
         server_delay, network_delay, packet_loss, offline, instant, speed, seed,
         report_path, as_json) -> None:
    """Run one SMTP session."""
    try:
        config = settings.default_message(
            sender=sender,
            recipient=recipient,
            subject=subject,
            body=body,
            attachment=attachment,
            server_delay=server_delay,
            network_delay=network_delay,
            packet_loss=packet_loss,
        )
    except ValidationError as e:
        print_error(f"Validation error: {escape(str(e))}")
        sys.exit(1)

    core = _make_core(settings, instant=instant, speed=speed, seed=seed, offline=offline, quiet=as_json)
    result: SessionResult = run_async(core.send(config))

    if as_json:
        print_json(result.as_dict())
    else:
        console.print(_stats_table(core))
    if report_path:
        written = _write_report(core, report_path)
        if not as_json:
            print_success(f"Report written to {written}")
    if result.status == SessionStatus.FAILED:
        sys.exit(1)


@main.command()
@click.option("--count", "-n", type=click.IntRange(min=1), default=3, show_default=True,
              help="Messages to queue while the recipient is offline.")
@click.option("--packet-loss", type=float, default=None, help="Packet loss probability in percent (0-100).")
@click.option("--instant", is_flag=True, help="Use simulated time instead of real delays.")
@click.option("--speed", type=float, default=1.0, show_default=True, help="Real-time acceleration factor.")
@click.option("--seed", type=int, default=None, help="Seed for packet loss sampling.")
@click.pass_obj
def demo(settings: SimulatorSettings, count, packet_loss, instant, speed, seed) -> None:
    """Queue messages while the recipient is offline, then bring it back online."""
    try:
        configs = [
            settings.default_message(subject=f"Queued message {i}", packet_loss=packet_loss)
            for i in range(1, count + 1)
        ]
    except ValidationError as e:
        print_error(f"Validation error: {escape(str(e))}")
        sys.exit(1)

    core = _make_core(settings, instant=instant, speed=speed, seed=seed, offline=True, quiet=False)
    delivered: list[str] = []

    async def _run() -> None:
        for config in configs:
            await core.send(config, on_delivered=lambda s=config.subject: delivered.append(s))
        flush = core.toggle_recipient()
        if flush is not None:
            await flush

    run_async(_run())
    console.print(_stats_table(core))
    print_success(f"{len(delivered)} of {count} queued message(s) delivered")


@main.command()
@click.option("--host", "-h", default=None, help="Host to bind to (default from settings).")
@click.option("--port", "-p", type=int, default=None, help="Port to listen on (default from settings).")
@click.option("--offline", is_flag=True, help="Start with the recipient offline.")
@click.pass_obj
def serve(settings: SimulatorSettings, host, port, offline) -> None:
    """Serve the HTTP API with uvicorn."""
    import uvicorn

    from smtp_simulator.api import create_app
    from smtp_simulator.observer import LoggingObserver

    core = SimulatorCore.from_settings(settings, observer=LoggingObserver(), recipient_available=not offline)
    app = create_app(core, api_token=settings.api_token)
    uvicorn.run(app, host=host or settings.host, port=port or settings.port)


if __name__ == "__main__":
    main()
