"""Shared pytest fixtures: an in-memory broker standing in for paho connections, and a localhost socket stub."""

import asyncio
import logging
from typing import Dict, List, Set, Tuple

import pytest

from mqtt_stress.core.connection import BrokerConnectionError, PublishError
from mqtt_stress.models.worker_config import WorkerConfig
from mqtt_stress.utils.constants import ENV_PASSWORD, ENV_URL, ENV_USERNAME


class FakeToken:
    def __init__(self, connection: "FakeConnection", topic: str, payload: bytes, mid: int):
        self.connection = connection
        self.topic = topic
        self.payload = payload
        self.mid = mid

    async def wait(self):
        await asyncio.sleep(0)
        if self.connection.broker.hold_acks:
            # The broker never takes the message off the socket
            await asyncio.Event().wait()
        if self.connection.broker.fail_acks:
            raise PublishError("no delivery acknowledgment")
        # The broker echoes the message back to the topic's subscriber
        handler = self.connection.handlers.get(self.topic)
        if self.connection.broker.echo and handler is not None and self.connection.connected:
            handler(self.topic, self.payload)


class FakeConnection:
    def __init__(self, broker: "FakeBroker", config: WorkerConfig):
        self.broker = broker
        self.config = config
        self.connected = False
        self.handlers = {}
        self.published: List[Tuple[str, bytes]] = []
        self.disconnect_grace_ms = None

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def connect(self):
        await asyncio.sleep(0)
        if self.config.client_id in self.broker.refuse:
            raise BrokerConnectionError("broker refused connection: Not authorized")
        self.connected = True

    def subscribe(self, topic, handler):
        if not self.connected:
            raise BrokerConnectionError(f"subscribe to {topic} failed: The client is not currently connected.")
        self.handlers[topic] = handler

    def publish(self, topic, payload):
        if not self.connected:
            raise PublishError("The client is not currently connected.")
        self.published.append((topic, payload))
        return FakeToken(self, topic, payload, mid=len(self.published))

    async def disconnect(self, grace_ms):
        self.disconnect_grace_ms = grace_ms
        self.connected = False


class FakeBroker:
    """Connection factory handing out FakeConnections keyed by client id."""

    def __init__(self, refuse: Set[str] = None, fail_acks: bool = False, echo: bool = True,
                 hold_acks: bool = False):
        self.refuse = refuse or set()
        self.fail_acks = fail_acks
        self.hold_acks = hold_acks
        self.echo = echo
        self.connections: Dict[str, FakeConnection] = {}

    def __call__(self, config: WorkerConfig) -> FakeConnection:
        connection = FakeConnection(self, config)
        self.connections[config.client_id] = connection
        return connection

    @property
    def total_published(self) -> int:
        return sum(len(c.published) for c in self.connections.values())


class StubMqttBroker:
    """
    Localhost TCP listener speaking just enough MQTT 3.1.1 for a paho client:
    every CONNECT is answered with a successful CONNACK. With `reading=False`
    the stub then never reads the socket again, so large publishes back up in
    the client's send buffer and are never handed over.
    """

    CONNACK = b"\x20\x02\x00\x00"

    def __init__(self, reading: bool = True):
        self.reading = reading
        self.received = 0
        self._server = None
        self._release = asyncio.Event()

    async def start(self) -> int:
        self._server = await asyncio.start_server(self._session, "127.0.0.1", 0)
        return self._server.sockets[0].getsockname()[1]

    async def _session(self, reader, writer):
        await reader.read(1024)
        writer.write(self.CONNACK)
        await writer.drain()
        if self.reading:
            while True:
                data = await reader.read(65536)
                if not data:
                    break
                self.received += len(data)
        else:
            await self._release.wait()
        writer.close()

    async def stop(self):
        self._release.set()
        self._server.close()
        await asyncio.sleep(0)


@pytest.fixture
def fake_broker():
    return FakeBroker()


@pytest.fixture
def worker_template():
    return WorkerConfig(
        client_id="mqtt-stress-worker",
        url="tcp://localhost:1883",
        message_delay=0.01,
    )


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (ENV_URL, ENV_USERNAME, ENV_PASSWORD):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def broker_factory():
    return FakeBroker


@pytest.fixture(autouse=True)
def restore_root_logging():
    # main() reconfigures the root logger; keep tests isolated from each other
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


@pytest.fixture
def stub_mqtt_broker():
    return StubMqttBroker
