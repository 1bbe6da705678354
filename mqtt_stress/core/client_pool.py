"""
Client pool for MQTT Stress.
Builds the workers, wires them to one event bus and one deadline, and runs the stats loops.
"""

import asyncio
import logging
from typing import List, Optional

from mqtt_stress.config.stress_config import StressConfig
from mqtt_stress.core.connection import BrokerConnection
from mqtt_stress.core.deadline import RunDeadline
from mqtt_stress.core.reporting import PoolStats, ReportingManager, StatsAggregator, StatsSnapshot
from mqtt_stress.core.workers import ConnectionFactory, StressWorker
from mqtt_stress.models.worker_config import WorkerConfig
from mqtt_stress.utils.constants import DEFAULT_TOPIC_NAMESPACE


def broker_connection_factory(config: StressConfig) -> ConnectionFactory:
    """Build paho-backed connections using the run's connection options."""
    def create(worker_config: WorkerConfig) -> BrokerConnection:
        return BrokerConnection(
            client_id=worker_config.client_id,
            url=worker_config.url,
            username=worker_config.username,
            password=worker_config.password,
            connect_timeout=config.connect_timeout,
            keepalive=config.keepalive,
            publish_timeout=config.publish_timeout,
            ca_file_path=config.ca_file_path,
            insecure_tls=config.insecure_tls,
        )
    return create


class ClientPool:
    """Runs `worker_count` workers against one broker until the deadline fires."""

    def __init__(self, template: WorkerConfig, worker_count: int, deadline: RunDeadline,
                 connection_factory: ConnectionFactory, namespace: str = DEFAULT_TOPIC_NAMESPACE,
                 disconnect_grace_ms: int = 250, report_interval: float = 1.0):
        self.template = template
        self.worker_count = worker_count
        self.deadline = deadline
        self.namespace = namespace
        self.disconnect_grace_ms = disconnect_grace_ms
        self.logger = logging.getLogger(__name__)

        self.events: asyncio.Queue = asyncio.Queue()
        self.stats = PoolStats()
        self.workers: List[StressWorker] = []
        self.aggregator = StatsAggregator(self.events, self.stats)
        self.reporting_manager = ReportingManager(self.stats, deadline, worker_count, interval=report_interval)

        self._connection_factory = connection_factory
        self._aggregator_task: Optional[asyncio.Task] = None

    async def start(self) -> List[StressWorker]:
        """Create, connect, and start every worker in order."""
        for index in range(self.worker_count):
            worker = StressWorker(
                self.template.for_worker(index, self.namespace),
                self.events,
                self.deadline,
                self._connection_factory,
                disconnect_grace_ms=self.disconnect_grace_ms,
            )
            worker.setup()
            await worker.connect()
            worker.publish()
            worker.subscribe()
            self.workers.append(worker)

        connected = sum(1 for w in self.workers if w.connection is not None and w.connection.is_connected)
        self.logger.info(f"{len(self.workers)} workers started ({connected} connected)")
        return self.workers

    async def run_stats(self) -> StatsSnapshot:
        """Run the aggregator and reporting loop; returns once the deadline has been observed."""
        self._aggregator_task = asyncio.create_task(self.aggregator.run(), name="stats-aggregator")
        return await self.reporting_manager.run()

    async def run(self) -> StatsSnapshot:
        """Full lifecycle: start workers, report until the deadline, then tear down."""
        self.deadline.start()
        try:
            await self.start()
            await self.run_stats()
        finally:
            await self.shutdown()
        self.reporting_manager.print_final_stats()
        return self.stats.snapshot()

    async def shutdown(self):
        """
        Wait for publish loops, give acknowledgments at most the disconnect grace period,
        drain the bus, stop the aggregator.
        """
        self.deadline.fire("pool shutdown")

        running = [w for w in self.workers if w.publish_task is not None]
        if running:
            results = await asyncio.gather(*(w.publish_task for w in running), return_exceptions=True)
            for worker, result in zip(running, results):
                if isinstance(result, Exception):
                    self.logger.error(f"Worker {worker.config.client_id}: publish loop failed: {result!r}")

        # Connections fail their unacknowledged messages on disconnect; anything still
        # outstanding after the grace period is cancelled rather than awaited
        grace = self.disconnect_grace_ms / 1000.0
        abandoned = await asyncio.gather(*(w.drain(grace) for w in self.workers))
        if sum(abandoned):
            self.logger.warning(f"{sum(abandoned)} acknowledgments abandoned at shutdown")

        # Let pending thread-safe receive callbacks land before draining
        await asyncio.sleep(0)
        if self._aggregator_task is not None:
            await self.events.join()
            self._aggregator_task.cancel()
            try:
                await self._aggregator_task
            except asyncio.CancelledError:
                pass
