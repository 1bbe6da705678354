"""
Reporting module for MQTT Stress.
Aggregates worker events into pool-wide counters and reports throughput once per tick.
"""

import time
import asyncio
import logging
import numpy as np
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from mqtt_stress.core.deadline import RunDeadline
from mqtt_stress.models.events import ClientEvent, EventType


class UnhandledEventError(Exception):
    """An event with an unknown tag reached the aggregator."""


@dataclass(frozen=True)
class StatsSnapshot:
    """Read-only view of the pool counters."""
    total_messages_sent: int
    total_messages_received: int
    messages_sent_per_second: int
    messages_received_per_second: int


@dataclass
class PoolStats:
    """
    Pool-wide throughput counters.

    The totals are written only by the StatsAggregator and the per-second rates only by
    the ReportingManager, so no field ever has two writers.
    """
    total_messages_sent: int = 0
    total_messages_received: int = 0
    messages_sent_per_second: int = 0
    messages_received_per_second: int = 0

    def snapshot(self) -> StatsSnapshot:
        return StatsSnapshot(
            total_messages_sent=self.total_messages_sent,
            total_messages_received=self.total_messages_received,
            messages_sent_per_second=self.messages_sent_per_second,
            messages_received_per_second=self.messages_received_per_second,
        )

    def update_rates(self, last_sent: int, last_received: int):
        """Set the per-second rates from the totals seen one tick ago."""
        self.messages_sent_per_second = compute_rate(self.total_messages_sent, last_sent)
        self.messages_received_per_second = compute_rate(self.total_messages_received, last_received)


def compute_rate(current_total: int, previous_total: int) -> int:
    return current_total - previous_total


class StatsAggregator:
    """Sole consumer of the event bus and sole writer of the cumulative counters."""

    def __init__(self, events: asyncio.Queue, stats: PoolStats):
        self.events = events
        self.stats = stats
        self.logger = logging.getLogger(__name__)

    def handle(self, event: ClientEvent):
        """
        Apply one event to the counters.

        Raises:
            UnhandledEventError: For any tag other than published/received
        """
        event_type = getattr(event, "event_type", None)
        if event_type is EventType.MESSAGE_PUBLISHED:
            self.stats.total_messages_sent += event.count
        elif event_type is EventType.MESSAGE_RECEIVED:
            self.stats.total_messages_received += event.count
        else:
            raise UnhandledEventError(f"unhandled broker event: {event_type or event!r}")

    async def run(self):
        """Drain the bus until cancelled."""
        while True:
            event = await self.events.get()
            try:
                self.handle(event)
            except UnhandledEventError as e:
                self.logger.warning(str(e))
            finally:
                self.events.task_done()


@dataclass
class RateSample:
    timestamp: float
    sent_per_second: int
    received_per_second: int


@dataclass
class RunSummary:
    """Final figures for a completed run."""
    workers: int
    duration_seconds: float
    total_messages_sent: int
    total_messages_received: int
    rates: Dict[str, Dict[str, float]] = field(default_factory=dict)


class ReportingManager:
    """Once-per-tick stats reporting for the life of the run."""

    def __init__(self, stats: PoolStats, deadline: RunDeadline, worker_count: int, interval: float = 1.0):
        self.stats = stats
        self.deadline = deadline
        self.worker_count = worker_count
        self.interval = interval
        self.logger = logging.getLogger(__name__)

        self.time_series: List[RateSample] = []
        self.test_start_time: Optional[float] = None
        self.test_end_time: Optional[float] = None

    async def run(self) -> StatsSnapshot:
        """Log a stats line every tick until the deadline fires."""
        self.test_start_time = time.monotonic()
        while True:
            last_sent = self.stats.total_messages_sent
            last_received = self.stats.total_messages_received

            if self.deadline.fired:
                self.test_end_time = time.monotonic()
                self.logger.info("finished..")
                return self.stats.snapshot()

            self.log_stats()
            await asyncio.sleep(self.interval)

            self.stats.update_rates(last_sent, last_received)
            self.time_series.append(RateSample(
                timestamp=time.time(),
                sent_per_second=self.stats.messages_sent_per_second,
                received_per_second=self.stats.messages_received_per_second,
            ))

    def log_stats(self):
        s = self.stats
        self.logger.info(
            f"Stats - Workers: {self.worker_count}, "
            f"Sent: {s.total_messages_sent} ({s.messages_sent_per_second}/s), "
            f"Received: {s.total_messages_received} ({s.messages_received_per_second}/s)"
        )

    def build_summary(self) -> RunSummary:
        """Summarise totals and per-second rate distribution of the run."""
        duration = 0.0
        if self.test_start_time is not None:
            duration = (self.test_end_time or time.monotonic()) - self.test_start_time

        summary = RunSummary(
            workers=self.worker_count,
            duration_seconds=duration,
            total_messages_sent=self.stats.total_messages_sent,
            total_messages_received=self.stats.total_messages_received,
        )
        if self.time_series:
            sent = np.array([sample.sent_per_second for sample in self.time_series], dtype=float)
            received = np.array([sample.received_per_second for sample in self.time_series], dtype=float)
            summary.rates = {
                'sent': _rate_distribution(sent),
                'received': _rate_distribution(received),
            }
        return summary

    def print_final_stats(self) -> RunSummary:
        summary = self.build_summary()
        self.logger.info(
            f"Run complete - Workers: {summary.workers}, Duration: {summary.duration_seconds:.1f}s, "
            f"Total sent: {summary.total_messages_sent}, Total received: {summary.total_messages_received}"
        )
        for direction, dist in summary.rates.items():
            self.logger.info(
                f"  {direction.capitalize()} rate - mean: {dist['mean']:.1f}/s, "
                f"peak: {dist['peak']:.0f}/s, p95: {dist['p95']:.1f}/s"
            )
        return summary


def _rate_distribution(values: np.ndarray) -> Dict[str, float]:
    return {
        'mean': float(np.mean(values)),
        'peak': float(np.max(values)),
        'p95': float(np.percentile(values, 95)),
    }
