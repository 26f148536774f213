# src/extwork/mqtt/connection.py
from __future__ import annotations

import asyncio
import enum
import logging
import ssl
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional, Tuple

from aiomqtt import Client, MqttError, TLSParameters

from ..errors import TransportError
from .config import BrokerConfig

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str, str], None]
ErrorHandler = Callable[[TransportError], None]
ConnectHandler = Callable[[], None]
ClientFactory = Callable[[BrokerConfig], Any]


def valid_publish_topic(topic: str) -> bool:
    # paho raises ValueError on these; they can never be delivered
    return bool(topic) and "+" not in topic and "#" not in topic


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


def default_client_factory(cfg: BrokerConfig) -> Client:
    tls_params = None
    tls_insecure = None
    if cfg.tls:
        tls_params = TLSParameters(cert_reqs=ssl.CERT_REQUIRED if cfg.tls_verify else ssl.CERT_NONE)
        tls_insecure = not cfg.tls_verify

    return Client(
        hostname=cfg.host,
        port=cfg.port,
        username=cfg.username,
        password=cfg.password,
        identifier=cfg.client_id,
        transport="websockets",
        websocket_path=cfg.path,
        tls_params=tls_params,
        tls_insecure=tls_insecure,
        keepalive=cfg.keepalive,
    )


def _payload_text(payload: Any) -> str:
    if payload is None:
        return ""
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload).decode("utf-8", errors="replace")
    return str(payload)


class ConnectionManager:
    """
    Owns at most one live broker session.

    - subscriptions are retained for the manager's lifetime and replayed on every connect
    - publishes issued while offline are deferred and fire once on the next connect
    - transport failures go to on_error and schedule one reconnect after a fixed delay
    - nothing here raises MqttError to the caller
    """

    def __init__(
        self,
        config: BrokerConfig,
        on_message: MessageHandler,
        *,
        on_error: ErrorHandler | None = None,
        on_connect: ConnectHandler | None = None,
        client_factory: ClientFactory | None = None,
    ):
        self.cfg = config
        self._on_message = on_message
        self._on_error = on_error
        self._on_connect = on_connect
        self._factory = client_factory or default_client_factory

        self._state = ConnectionState.DISCONNECTED
        self._client: Optional[Any] = None
        self._lock = asyncio.Lock()

        # insertion-ordered set
        self._subscriptions: Dict[str, None] = {}
        self._deferred: Deque[Tuple[str, str, int, bool]] = deque()

        self._reader_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None

        # False after disconnect(): late failures must not schedule a reconnect
        self._wanted = False
        self._disposed = False

    # ======================================================
    # Properties
    # ======================================================
    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def subscriptions(self) -> Tuple[str, ...]:
        return tuple(self._subscriptions)

    @property
    def deferred_count(self) -> int:
        return len(self._deferred)

    async def __aenter__(self) -> "ConnectionManager":
        await self.connect()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.dispose()

    # ======================================================
    # Lifecycle
    # ======================================================
    async def connect(self) -> bool:
        if self._disposed:
            logger.warning("[MQTT] connect() after dispose ignored")
            return False

        async with self._lock:
            if self._state is ConnectionState.CONNECTED:
                return True

            self._wanted = True
            self._cancel_reconnect()
            await self._drop_session()

            if self._state is ConnectionState.DISCONNECTED:
                self._state = ConnectionState.CONNECTING

            logger.info("[MQTT] connecting to %s", self.cfg.url)
            client = self._factory(self.cfg)
            self._client = client
            try:
                await client.__aenter__()
            except MqttError as e:
                await self._on_session_lost(client, e, opened=False)
                return False

            try:
                await self._replay(client)
            except MqttError as e:
                await self._on_session_lost(client, e)
                return False
            except Exception as e:
                logger.exception("[MQTT] replay failed")
                await self._on_session_lost(client, e)
                return False

            if not self._wanted or client is not self._client:
                # disconnect() ran while we were opening
                return False

            self._state = ConnectionState.CONNECTED
            self._reader_task = asyncio.create_task(self._read(client))

        logger.info("[MQTT] connected, %d subscription(s)", len(self._subscriptions))
        if self._on_connect is not None:
            try:
                self._on_connect()
            except Exception:
                logger.exception("[MQTT] on_connect handler failed")
        return True

    async def disconnect(self) -> None:
        self._wanted = False
        self._cancel_reconnect()
        self._deferred.clear()
        await self._drop_session()
        if self._state is not ConnectionState.DISCONNECTED:
            logger.info("[MQTT] disconnected")
        self._state = ConnectionState.DISCONNECTED

    async def dispose(self) -> None:
        await self.disconnect()
        self._subscriptions.clear()
        self._disposed = True

    # ======================================================
    # Commands
    # ======================================================
    async def subscribe(self, topic: str) -> None:
        if self._disposed:
            logger.warning("[MQTT] subscribe(%s) after dispose ignored", topic)
            return
        if not topic:
            logger.warning("[MQTT] subscribe with an empty topic ignored")
            return
        if topic in self._subscriptions:
            return

        self._subscriptions[topic] = None
        client = self._client
        if self.is_connected and client is not None:
            try:
                await client.subscribe(topic)
            except MqttError as e:
                await self._on_session_lost(client, e)

    async def unsubscribe(self, topic: str) -> None:
        if topic not in self._subscriptions:
            return

        del self._subscriptions[topic]
        client = self._client
        if self.is_connected and client is not None:
            try:
                await client.unsubscribe(topic)
            except MqttError as e:
                await self._on_session_lost(client, e)

    async def publish(self, topic: str, payload: str, *, qos: int = 0, retain: bool = False) -> bool:
        """True when the message went out now (or on the connect this call triggered)."""
        if self._disposed:
            logger.warning("[MQTT] publish(%s) after dispose ignored", topic)
            return False
        if not valid_publish_topic(topic):
            logger.warning("[MQTT] publish to invalid topic %r dropped", topic)
            return False

        client = self._client
        if self.is_connected and client is not None:
            try:
                await client.publish(topic, payload, qos=qos, retain=retain)
                return True
            except ValueError as e:
                logger.warning("[MQTT] publish to %s rejected: %s", topic, e)
                return False
            except MqttError as e:
                logger.warning("[MQTT] publish to %s failed: %r", topic, e)
                await self._on_session_lost(client, e)
                return False

        self._defer(topic, payload, qos, retain)
        if self._state is ConnectionState.DISCONNECTED:
            return await self.connect()
        return False

    # ======================================================
    # Internals
    # ======================================================
    def _defer(self, topic: str, payload: str, qos: int, retain: bool) -> None:
        if len(self._deferred) >= self.cfg.max_deferred:
            dropped = self._deferred.popleft()
            logger.warning("[MQTT] deferred queue full, dropping publish to %s", dropped[0])
        self._deferred.append((topic, payload, qos, retain))
        logger.debug("[MQTT] deferred publish to %s (%d queued)", topic, len(self._deferred))

    async def _replay(self, client: Any) -> None:
        # topics may be added while we await; loop until every one went out
        sent = set()
        while True:
            pending = [t for t in self._subscriptions if t not in sent]
            if not pending:
                break
            for topic in pending:
                sent.add(topic)
                try:
                    await client.subscribe(topic)
                except ValueError as e:
                    logger.warning("[MQTT] subscription %s rejected, removed: %s", topic, e)
                    self._subscriptions.pop(topic, None)

        while self._deferred:
            topic, payload, qos, retain = self._deferred[0]
            try:
                await client.publish(topic, payload, qos=qos, retain=retain)
            except ValueError as e:
                logger.warning("[MQTT] deferred publish to %s rejected, dropped: %s", topic, e)
            self._deferred.popleft()

    async def _read(self, client: Any) -> None:
        try:
            async for message in client.messages:
                self._deliver(str(message.topic), _payload_text(message.payload))
        except MqttError as e:
            await self._on_session_lost(client, e)
            return
        await self._on_session_lost(client, TransportError("broker closed the session"))

    def _deliver(self, topic: str, payload: str) -> None:
        try:
            self._on_message(topic, payload)
        except Exception:
            logger.exception("[MQTT] message handler failed on %s", topic)

    async def _on_session_lost(self, client: Any, exc: BaseException, opened: bool = True) -> None:
        if client is not self._client:
            logger.debug("[MQTT] ignoring error from a stale session: %r", exc)
            return

        self._client = None
        reader = self._reader_task
        self._reader_task = None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
        if opened:
            await self._close(client)

        if not self._wanted:
            self._state = ConnectionState.DISCONNECTED
            return

        self._state = ConnectionState.RECONNECTING
        logger.warning("[MQTT] connection lost: %r (retry in %.1fs)", exc, self.cfg.reconnect_delay)

        err = exc if isinstance(exc, TransportError) else TransportError(str(exc) or repr(exc), cause=exc)
        if self._on_error is not None:
            try:
                self._on_error(err)
            except Exception:
                logger.exception("[MQTT] on_error handler failed")
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_later())

    async def _reconnect_later(self) -> None:
        await asyncio.sleep(self.cfg.reconnect_delay)
        self._reconnect_task = None
        await self.connect()

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _drop_session(self) -> None:
        reader = self._reader_task
        self._reader_task = None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)

        client = self._client
        self._client = None
        if client is not None:
            await self._close(client)

    @staticmethod
    async def _close(client: Any) -> None:
        try:
            await client.__aexit__(None, None, None)
        except MqttError as e:
            logger.debug("[MQTT] close: %r", e)
