# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Prometheus metrics for monitoring the simulator.

All metrics use the ``smtpsim_`` prefix.

Metrics exposed:
    - ``smtpsim_packets_sent_total``: Packets sent, retransmissions included.
    - ``smtpsim_packets_lost_total``: Packets declared lost.
    - ``smtpsim_retransmissions_total``: Retransmitted packets.
    - ``smtpsim_sessions_total``: Finished sessions, labelled by status.
    - ``smtpsim_queued_deliveries_total``: Messages delivered by queue flushes.
    - ``smtpsim_queue_length``: Messages currently waiting in the queue.

Example:
    Accessing metrics via the REST API::

        GET /metrics
"""

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest

from .models import SessionResult


class SimulatorMetrics:
    """Prometheus metrics collector for the simulator.

    Attributes:
        registry: The Prometheus CollectorRegistry holding all metrics.
        packets_sent: Counter of packets sent.
        packets_lost: Counter of lost packets.
        retransmissions: Counter of retransmissions.
        sessions: Counter of finished sessions per status.
        queued_deliveries: Counter of deliveries performed by queue flushes.
        queue_length: Gauge showing current queue depth.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """Initialize metrics with an optional custom registry.

        Args:
            registry: Optional Prometheus CollectorRegistry. A private
                registry is created when omitted so several simulator
                instances can coexist.
        """
        self.registry = registry or CollectorRegistry()
        self.packets_sent = Counter(
            "smtpsim_packets_sent_total",
            "Total packets sent, retransmissions included",
            registry=self.registry,
        )
        self.packets_lost = Counter(
            "smtpsim_packets_lost_total",
            "Total packets lost",
            registry=self.registry,
        )
        self.retransmissions = Counter(
            "smtpsim_retransmissions_total",
            "Total retransmitted packets",
            registry=self.registry,
        )
        self.sessions = Counter(
            "smtpsim_sessions_total",
            "Total finished sessions",
            ["status"],
            registry=self.registry,
        )
        self.queued_deliveries = Counter(
            "smtpsim_queued_deliveries_total",
            "Total messages delivered from the store-and-forward queue",
            registry=self.registry,
        )
        self.queue_length = Gauge(
            "smtpsim_queue_length",
            "Messages currently waiting for the recipient",
            registry=self.registry,
        )

    def observe_session(self, result: SessionResult) -> None:
        """Add the counters of a finished session."""
        self.packets_sent.inc(result.stats.total_packets)
        self.packets_lost.inc(result.stats.lost_packets)
        self.retransmissions.inc(result.stats.retransmissions)
        self.sessions.labels(status=result.status.value).inc()

    def inc_queued_delivery(self) -> None:
        self.queued_deliveries.inc()

    def set_queue_length(self, value: int) -> None:
        self.queue_length.set(value)

    def generate_latest(self) -> bytes:
        """Export all metrics in Prometheus text exposition format."""
        return generate_latest(self.registry)
