"""
Stress worker module for MQTT Stress.
Each worker owns one broker connection, one topic, and a publish/subscribe loop pair.
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, Optional, Set

from mqtt_stress.core.connection import BrokerConnection, BrokerConnectionError, PublishError, PublishToken
from mqtt_stress.core.deadline import RunDeadline
from mqtt_stress.core.payloads import PayloadResolver
from mqtt_stress.models.events import ClientEvent
from mqtt_stress.models.worker_config import WorkerConfig

ConnectionFactory = Callable[[WorkerConfig], BrokerConnection]


class WorkerState(Enum):
    CREATED = "created"
    CONNECTED = "connected"
    RUNNING = "running"
    DISCONNECTED = "disconnected"


class StressWorker:
    """One simulated client publishing to, and subscribed to, its own topic."""

    def __init__(self, config: WorkerConfig, events: asyncio.Queue, deadline: RunDeadline,
                 connection_factory: ConnectionFactory, disconnect_grace_ms: int = 250):
        self.config = config
        self.deadline = deadline
        self.disconnect_grace_ms = disconnect_grace_ms
        self.state = WorkerState.CREATED
        self.connection: Optional[BrokerConnection] = None
        self.payloads = PayloadResolver(config.payload_mode, config.payload, worker_id=config.client_id)
        self.logger = logging.getLogger(__name__)

        self._events = events
        self._connection_factory = connection_factory
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._publish_task: Optional[asyncio.Task] = None
        self._pending_acks: Set[asyncio.Task] = set()

    def __repr__(self):
        return f"<StressWorker {self.config.client_id} topic={self.config.topic} state={self.state.value}>"

    @property
    def publish_task(self) -> Optional[asyncio.Task]:
        return self._publish_task

    @property
    def pending_acks(self) -> int:
        return len(self._pending_acks)

    def setup(self) -> "StressWorker":
        """Create the broker connection for this worker."""
        self.connection = self._connection_factory(self.config)
        return self

    async def connect(self) -> "StressWorker":
        """Connect to the broker. Failures are logged and leave the worker unconnected."""
        self._loop = asyncio.get_running_loop()
        try:
            await self.connection.connect()
        except BrokerConnectionError as e:
            self.logger.error(f"Worker {self.config.client_id}: error connecting to broker {self.config.url}: {e}")
            return self
        self.state = WorkerState.CONNECTED
        self.logger.debug(f"Worker {self.config.client_id}: connected to {self.config.url}")
        return self

    def publish(self) -> "StressWorker":
        """Start the publish loop as a task on the running event loop."""
        self._loop = asyncio.get_running_loop()
        if self.state is WorkerState.CONNECTED:
            self.state = WorkerState.RUNNING
        self._publish_task = asyncio.create_task(
            self._publish_loop(), name=f"publish-{self.config.client_id}"
        )
        return self

    def subscribe(self) -> "StressWorker":
        """Register the receive callback on this worker's topic."""
        self._loop = asyncio.get_running_loop()
        try:
            self.connection.subscribe(self.config.topic, self._on_message)
        except BrokerConnectionError as e:
            self.logger.error(f"Worker {self.config.client_id}: error subscribing to {self.config.topic}: {e}")
        return self

    def _on_message(self, topic: str, payload: bytes):
        # Runs on the connection's dispatch thread: hand off and return immediately
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._events.put_nowait, ClientEvent.received())

    async def _publish_loop(self):
        topic = self.config.topic
        while True:
            payload = self.payloads.next_payload()
            try:
                token = self.connection.publish(topic, payload)
            except PublishError as e:
                self.logger.error(f"Worker {self.config.client_id}: error publishing message to {topic}: {e}")
            else:
                self._track_ack(token)

            await asyncio.sleep(self.config.message_delay)

            if self.deadline.fired:
                await self.disconnect()
                return

    def _track_ack(self, token: PublishToken):
        task = asyncio.create_task(self._wait_for_ack(token))
        self._pending_acks.add(task)
        task.add_done_callback(self._pending_acks.discard)

    async def _wait_for_ack(self, token: PublishToken):
        try:
            await token.wait()
        except PublishError as e:
            self.logger.error(
                f"Worker {self.config.client_id}: error publishing message {token.mid} to {self.config.topic}: {e}"
            )
            return
        self._events.put_nowait(ClientEvent.published())

    async def disconnect(self):
        """Gracefully disconnect; the subscribe callback is left registered."""
        try:
            await self.connection.disconnect(self.disconnect_grace_ms)
        except Exception as e:
            self.logger.error(f"Worker {self.config.client_id}: error during disconnect: {e}")
        self.state = WorkerState.DISCONNECTED
        self.logger.debug(f"Worker {self.config.client_id}: disconnected")

    async def drain(self, timeout: Optional[float] = None) -> int:
        """
        Wait up to `timeout` for outstanding acknowledgments, then cancel the rest.
        Returns the number of acknowledgments abandoned.
        """
        if not self._pending_acks:
            return 0
        _done, pending = await asyncio.wait(set(self._pending_acks), timeout=timeout)
        if not pending:
            return 0

        self.logger.warning(
            f"Worker {self.config.client_id}: abandoning {len(pending)} acknowledgments still pending after {timeout}s"
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        return len(pending)
