"""
Broker connection for MQTT Stress.
Wraps a paho-mqtt client (running its own network thread) behind an asyncio-friendly API.
"""

import os
import ssl
import asyncio
import logging
import threading
from typing import Callable, Dict, Optional

import paho.mqtt.client as mqtt

from mqtt_stress.config.stress_config import BrokerAddress, parse_broker_url
from mqtt_stress.utils.constants import MQTT_QOS

MessageHandler = Callable[[str, bytes], None]


class BrokerConnectionError(ConnectionError):
    """The broker could not be reached, refused the client, or rejected a subscription."""


class PublishError(Exception):
    """A publish was not handed to the broker."""


def get_mqtt_ssl_context(ca_file_path: Optional[str] = None, insecure: bool = False) -> ssl.SSLContext:
    """Creates and configures an SSLContext for MQTT TLS connections."""
    logger = logging.getLogger(__name__)

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.minimum_version = ssl.TLSVersion.TLSv1_2

    if ca_file_path:
        if not os.path.exists(ca_file_path):
            raise BrokerConnectionError(f"CA file not found at '{ca_file_path}'")
        context.load_verify_locations(cafile=ca_file_path)
        logger.debug(f"MQTT SSLContext: Loaded CA file '{ca_file_path}'. Server certificate will be verified.")
    else:
        context.load_default_certs()

    if insecure:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        logger.warning("MQTT SSLContext: Insecure TLS connection. Server certificate WILL NOT be verified.")
    return context


class PublishToken:
    """
    Delivery acknowledgment for one publish call.

    The future is completed on the event loop from paho's on_publish callback, or failed
    when the connection's network thread is stopped, so waiting holds no thread.
    """

    def __init__(self, mid: int, future: asyncio.Future, timeout: float):
        self._mid = mid
        self._future = future
        self._timeout = timeout

    @property
    def mid(self) -> int:
        return self._mid

    async def wait(self) -> None:
        """
        Wait for paho to hand the message to the broker.

        Raises:
            PublishError: If the message was rejected, dropped on disconnect, or not sent within the timeout
        """
        try:
            await asyncio.wait_for(self._future, self._timeout)
        except asyncio.TimeoutError:
            raise PublishError(f"message {self._mid} not published after {self._timeout}s") from None


class BrokerConnection:
    """One MQTT client session to the broker."""

    def __init__(self, client_id: str, url: str, username: str = "", password: str = "",
                 connect_timeout: float = 10.0, keepalive: int = 60, publish_timeout: float = 10.0,
                 ca_file_path: Optional[str] = None, insecure_tls: bool = False):
        self.client_id = client_id
        self.url = url
        self.address: BrokerAddress = parse_broker_url(url)
        self.connect_timeout = connect_timeout
        self.keepalive = keepalive
        self.publish_timeout = publish_timeout
        self.logger = logging.getLogger(__name__)

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._connack: Optional[asyncio.Event] = None
        self._closed: Optional[asyncio.Event] = None
        self._connect_error: Optional[str] = None
        self._loop_started = False
        self._connected = False
        self._inflight: Dict[int, asyncio.Future] = {}

        self._client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            transport=self.address.transport,
        )
        if username:
            self._client.username_pw_set(username, password or None)
        elif password:
            self._client.username_pw_set("", password)

        if self.address.transport == "websockets" and self.address.path:
            self._client.ws_set_options(path=self.address.path)
        if self.address.use_tls:
            self._client.tls_set_context(get_mqtt_ssl_context(ca_file_path, insecure_tls))
            if insecure_tls:
                self._client.tls_insecure_set(True)

        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_publish = self._on_publish

    @property
    def is_connected(self) -> bool:
        return self._connected

    # --- paho callbacks (network thread) ---

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        if reason_code.is_failure:
            self._connect_error = f"broker refused connection: {reason_code}"
        else:
            self._connected = True
        self._notify(self._connack)

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties):
        was_connected = self._connected
        self._connected = False
        if was_connected and reason_code.is_failure:
            self.logger.warning(f"MQTT unexpected disconnection for client {self.client_id}: {reason_code}")
        else:
            self.logger.debug(f"MQTT disconnected for client {self.client_id}: {reason_code}")
        self._notify(self._closed)

    def _on_publish(self, client, userdata, mid, reason_code, properties):
        if self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._resolve_publish, mid, reason_code)

    def _notify(self, event: Optional[asyncio.Event]):
        if event is None or self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(event.set)

    # --- acknowledgment bookkeeping (event loop) ---

    def _resolve_publish(self, mid: int, reason_code):
        future = self._inflight.pop(mid, None)
        if future is None or future.done():
            return
        if reason_code.is_failure:
            future.set_exception(PublishError(f"message {mid} rejected: {reason_code}"))
        else:
            future.set_result(None)

    def _forget(self, mid: int, future: asyncio.Future):
        if self._inflight.get(mid) is future:
            del self._inflight[mid]

    def _fail_inflight(self, reason: str):
        inflight, self._inflight = self._inflight, {}
        for mid, future in inflight.items():
            if not future.done():
                future.set_exception(PublishError(f"message {mid} not published: {reason}"))
        if inflight:
            self.logger.debug(f"Client {self.client_id}: {len(inflight)} unacknowledged messages dropped ({reason})")

    # --- public API ---

    async def connect(self) -> None:
        """
        Connect to the broker and wait for the CONNACK.

        Raises:
            BrokerConnectionError: On socket failure, refusal, or timeout
        """
        self._loop = asyncio.get_running_loop()
        self._connack = asyncio.Event()
        self._closed = asyncio.Event()
        self._connect_error = None

        try:
            await asyncio.to_thread(self._client.connect, self.address.host, self.address.port, self.keepalive)
        except (OSError, ValueError) as e:
            raise BrokerConnectionError(f"could not reach {self.url}: {e}") from e

        self._client.loop_start()
        self._loop_started = True

        try:
            await asyncio.wait_for(self._connack.wait(), self.connect_timeout)
        except asyncio.TimeoutError:
            self._connect_error = f"connection attempt timed out after {self.connect_timeout}s"

        if not self._connected:
            await self._stop_network_loop(self.connect_timeout)
            raise BrokerConnectionError(self._connect_error or f"could not connect to {self.url}")

    def subscribe(self, topic: str, handler: MessageHandler) -> None:
        """Register `handler(topic, payload)` for messages arriving on `topic`."""

        def on_message(client, userdata, message):
            handler(message.topic, message.payload)

        self._client.message_callback_add(topic, on_message)
        result, _mid = self._client.subscribe(topic, qos=MQTT_QOS)
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise BrokerConnectionError(f"subscribe to {topic} failed: {mqtt.error_string(result)}")

    def publish(self, topic: str, payload: bytes) -> PublishToken:
        """
        Queue a fire-and-forget publish; the returned token reports delivery.

        Raises:
            PublishError: If paho rejects the message outright (e.g. not connected)
        """
        if self._loop is None:
            raise PublishError(mqtt.error_string(mqtt.MQTT_ERR_NO_CONN))
        try:
            info = self._client.publish(topic, payload, qos=MQTT_QOS, retain=False)
        except (ValueError, TypeError) as e:
            raise PublishError(f"publish rejected: {e}") from e
        if info.rc not in (mqtt.MQTT_ERR_SUCCESS, mqtt.MQTT_ERR_AGAIN):
            raise PublishError(mqtt.error_string(info.rc))

        # on_publish results are delivered through call_soon_threadsafe, so they
        # always run after this registration even if paho has already sent the message
        future = self._loop.create_future()
        self._inflight[info.mid] = future
        future.add_done_callback(lambda f, mid=info.mid: self._forget(mid, f))
        return PublishToken(info.mid, future, self.publish_timeout)

    async def disconnect(self, grace_ms: int) -> None:
        """
        Send DISCONNECT and stop the network thread, spending at most `grace_ms` overall.
        Messages still unacknowledged afterwards are failed with PublishError.
        """
        if not self._loop_started:
            return
        loop = asyncio.get_running_loop()
        expires = loop.time() + grace_ms / 1000.0
        if self._connected:
            self._client.disconnect()
            try:
                await asyncio.wait_for(self._closed.wait(), grace_ms / 1000.0)
            except asyncio.TimeoutError:
                self.logger.debug(f"Client {self.client_id}: disconnect grace period of {grace_ms}ms elapsed")
        await self._stop_network_loop(max(0.0, expires - loop.time()))

    async def _stop_network_loop(self, timeout: Optional[float]):
        if not self._loop_started:
            return
        self._loop_started = False
        loop = asyncio.get_running_loop()
        stopped = asyncio.Event()

        # loop_stop() joins paho's thread, which may sit in select() for up to a second
        # on a congested socket; join on a private thread and wait only `timeout` for it
        def stop():
            self._client.loop_stop()
            try:
                loop.call_soon_threadsafe(stopped.set)
            except RuntimeError:
                pass  # event loop already closed

        threading.Thread(target=stop, name=f"mqtt-stop-{self.client_id}", daemon=True).start()
        try:
            await asyncio.wait_for(stopped.wait(), timeout)
        except asyncio.TimeoutError:
            self.logger.debug(f"Client {self.client_id}: network thread still stopping after {timeout:.3f}s")

        # Let on_publish results already handed over land before failing the rest
        await asyncio.sleep(0)
        self._fail_inflight("connection closed")
