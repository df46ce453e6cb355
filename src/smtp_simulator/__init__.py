"""SMTP session simulator with packet loss and store-and-forward queuing.

This package simulates an SMTP exchange between a client, a relay and a
recipient for teaching purposes. Features include:

- Scripted HELO / MAIL FROM / RCPT TO / DATA / QUIT sessions
- Unreliable channel with packet loss and automatic retransmission
- Recipient availability toggle with a FIFO store-and-forward queue
- Pluggable observers for rendering, logging and reporting
- Deterministic virtual clock and injectable random source for testing
- Prometheus metrics, a FastAPI control API and a click/rich CLI

Example:
    Running a session in simulated time::

        from smtp_simulator.clock import VirtualClock
        from smtp_simulator.core import SimulatorCore
        from smtp_simulator.models import MessageConfig

        core = SimulatorCore(clock=VirtualClock())
        result = await core.send(MessageConfig(recipient="bob@example.com"))
"""
