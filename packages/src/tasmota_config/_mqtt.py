"""MQTT client port and adapters.

Provides MqttPort (Protocol) and two implementations:

- MqttClient — real aiomqtt-based client with reconnection
- MockMqttClient — test double that records calls and scripts replies

Design decisions:

- aiomqtt imported lazily inside MqttClient._connection_loop() so the
  mock works without aiomqtt installed
- Each subscription carries its own MessageCallback; inbound messages
  are dispatched by exact topic match (only literal topics are
  subscribed, never wildcards)
- Subscriptions are tracked internally and restored on reconnect
- Operations wait for the broker acknowledgement (PUBACK / SUBACK)
  but never time out on their own; callers bound them with
  ``asyncio.timeout``
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from tasmota_config._settings import MqttSettings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------

MessageCallback = Callable[[str, str], Awaitable[None]]
"""Async callback receiving (topic, payload) for each inbound message."""

# ---------------------------------------------------------------------------
# Ports (Protocols)
# ---------------------------------------------------------------------------


@runtime_checkable
class MqttPort(Protocol):
    """Port contract for MQTT publish/subscribe.

    All broker interaction of the reconciler goes through this
    protocol so adapters are swappable.
    """

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None: ...

    async def subscribe(
        self,
        topic: str,
        callback: MessageCallback,
        *,
        qos: int = 1,
    ) -> None: ...

    async def unsubscribe(self, topic: str) -> None: ...


@runtime_checkable
class MqttLifecycle(Protocol):
    """Adapters that own a broker connection."""

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def wait_connected(self, timeout: float) -> None: ...


# ---------------------------------------------------------------------------
# Mock / test-double adapter
# ---------------------------------------------------------------------------


@dataclass
class MockMqttClient:
    """In-memory test double that records MQTT interactions.

    Records publishes, subscriptions and unsubscriptions for
    assertion.  Replies can be scripted with :meth:`reply_to`: each
    publish to a query topic delivers the next scripted payload to the
    reply topic's subscriber, the way a device answers a command.

    Failures are injected with ``publish_error`` (optionally limited
    to ``failing_topics``) and ``subscribe_error``.
    """

    published: list[tuple[str, str, bool, int]] = field(
        default_factory=list,
    )
    subscriptions: list[str] = field(default_factory=list)
    unsubscriptions: list[str] = field(default_factory=list)
    publish_error: Exception | None = None
    failing_topics: set[str] = field(default_factory=set)
    subscribe_error: Exception | None = None
    _callbacks: dict[str, MessageCallback] = field(
        default_factory=dict,
        init=False,
        repr=False,
    )
    _replies: dict[str, list[tuple[str, str]]] = field(
        default_factory=dict,
        init=False,
        repr=False,
    )

    # -- MqttPort methods --------------------------------------------------

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None:
        """Record a publish call and deliver any scripted reply."""
        if self.publish_error is not None and (
            not self.failing_topics or topic in self.failing_topics
        ):
            raise self.publish_error
        self.published.append((topic, payload, retain, qos))
        scripted = self._replies.get(topic)
        if scripted:
            reply_topic, reply = scripted.pop(0)
            await self.deliver(reply_topic, reply)

    async def subscribe(
        self,
        topic: str,
        callback: MessageCallback,
        *,
        qos: int = 1,  # noqa: ARG002
    ) -> None:
        """Record a subscribe call and register its callback."""
        if self.subscribe_error is not None:
            raise self.subscribe_error
        self.subscriptions.append(topic)
        self._callbacks[topic] = callback

    async def unsubscribe(self, topic: str) -> None:
        """Record an unsubscribe call and drop its callback."""
        self.unsubscriptions.append(topic)
        self._callbacks.pop(topic, None)

    # -- Test helpers -------------------------------------------------------

    def reply_to(self, query_topic: str, reply_topic: str, payload: str) -> None:
        """Script *payload* as the answer to the next publish on *query_topic*.

        Multiple calls for the same query topic queue up in order.
        """
        self._replies.setdefault(query_topic, []).append((reply_topic, payload))

    async def deliver(self, topic: str, payload: str) -> None:
        """Simulate an inbound message on *topic*.

        Messages on topics without a subscriber are discarded, as a
        broker would.
        """
        callback = self._callbacks.get(topic)
        if callback is not None:
            await callback(topic, payload)

    @property
    def active_subscriptions(self) -> list[str]:
        """Topics currently subscribed."""
        return list(self._callbacks)

    @property
    def publish_count(self) -> int:
        """Number of recorded publishes."""
        return len(self.published)

    def reset(self) -> None:
        """Clear all recorded data, callbacks and scripted replies."""
        self.published.clear()
        self.subscriptions.clear()
        self.unsubscriptions.clear()
        self._callbacks.clear()
        self._replies.clear()

    def get_messages_for(
        self,
        topic: str,
    ) -> list[tuple[str, bool, int]]:
        """Return ``(payload, retain, qos)`` tuples for *topic*."""
        return [
            (payload, retain, qos)
            for t, payload, retain, qos in self.published
            if t == topic
        ]


# ---------------------------------------------------------------------------
# Real adapter
# ---------------------------------------------------------------------------


@dataclass
class MqttClient:
    """Production MQTT adapter backed by *aiomqtt*.

    Uses a background task that maintains a persistent connection
    with automatic reconnection.  ``aiomqtt`` is imported lazily
    inside ``_connection_loop()`` so the mock adapter works without
    the dependency installed.
    """

    settings: MqttSettings

    # internal state --------------------------------------------------------
    _subscriptions: dict[str, MessageCallback] = field(
        default_factory=dict,
        init=False,
        repr=False,
    )
    _client: Any = field(default=None, init=False, repr=False)
    _listen_task: asyncio.Task[None] | None = field(
        default=None,
        init=False,
        repr=False,
    )
    _connected: asyncio.Event = field(
        default_factory=asyncio.Event,
        init=False,
        repr=False,
    )
    _stopping: bool = field(default=False, init=False, repr=False)

    # -- MqttPort methods --------------------------------------------------

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None:
        """Publish a message and wait for the broker acknowledgement.

        Raises:
            RuntimeError: If the client is not connected.
        """
        client = self._require_client()
        await client.publish(
            topic,
            payload,
            retain=retain,
            qos=qos,
        )
        logger.debug(
            "Published to %s (qos=%d, retain=%s)",
            topic,
            qos,
            retain,
        )

    async def subscribe(
        self,
        topic: str,
        callback: MessageCallback,
        *,
        qos: int = 1,
    ) -> None:
        """Subscribe to *topic* and route its messages to *callback*.

        The subscription is tracked internally so it can be restored
        after a reconnection.

        Raises:
            RuntimeError: If the client is not connected.
        """
        client = self._require_client()
        self._subscriptions[topic] = callback
        try:
            await client.subscribe(topic, qos=qos)
        except BaseException:
            self._subscriptions.pop(topic, None)
            raise
        logger.debug("Subscribed to %s (qos=%d)", topic, qos)

    async def unsubscribe(self, topic: str) -> None:
        """Stop routing *topic* and unsubscribe at the broker if connected."""
        self._subscriptions.pop(topic, None)
        if self._client is not None:
            await self._client.unsubscribe(topic)
            logger.debug("Unsubscribed from %s", topic)

    # -- Lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Start the background connection loop."""
        if self._listen_task is not None and not self._listen_task.done():
            logger.debug("MqttClient.start() called while already running")
            return
        self._stopping = False
        self._listen_task = asyncio.create_task(
            self._connection_loop(),
        )

    async def stop(self) -> None:
        """Stop the connection loop and clean up.

        Idempotent — safe to call multiple times.
        """
        self._stopping = True
        if self._listen_task is not None:
            self._listen_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listen_task
            self._listen_task = None
        self._client = None
        self._connected.clear()

    async def wait_connected(self, timeout: float) -> None:
        """Block until the broker connection is up.

        Raises:
            TimeoutError: If no connection is established in time.
        """
        async with asyncio.timeout(timeout):
            await self._connected.wait()

    @property
    def is_connected(self) -> bool:
        """Whether the client is currently connected to the broker."""
        return self._connected.is_set()

    # -- Internal -----------------------------------------------------------

    def _require_client(self) -> Any:
        if self._client is None:
            msg = "MqttClient is not connected"
            raise RuntimeError(msg)
        return self._client

    def _client_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for ``aiomqtt.Client`` built from settings."""
        secret = self.settings.password
        return {
            "hostname": self.settings.host,
            "port": self.settings.port,
            "username": self.settings.username,
            "password": secret.get_secret_value() if secret is not None else None,
            "identifier": self.settings.client_id or None,
        }

    async def _session(self, client: Any) -> None:
        """Serve one broker session until the connection drops."""
        self._client = client
        try:
            for topic in list(self._subscriptions):
                await client.subscribe(topic, qos=self.settings.qos)
            self._connected.set()
            logger.info(
                "Connected to broker %s:%d (%d subscription(s) restored)",
                self.settings.host,
                self.settings.port,
                len(self._subscriptions),
            )
            async for message in client.messages:
                await self._dispatch(message)
        finally:
            self._connected.clear()
            self._client = None

    async def _connection_loop(self) -> None:
        """Connect, serve, and reconnect after ``reconnect_interval``.

        ``aiomqtt`` is imported here so ``MockMqttClient`` works without it.
        """
        try:
            import aiomqtt  # noqa: PLC0415
        except ModuleNotFoundError as exc:
            msg = "aiomqtt is required to use MqttClient"
            raise RuntimeError(msg) from exc

        while not self._stopping:
            try:
                async with aiomqtt.Client(**self._client_kwargs()) as client:
                    await self._session(client)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning(
                    "Broker %s:%d unavailable, retrying in %.1fs",
                    self.settings.host,
                    self.settings.port,
                    self.settings.reconnect_interval,
                    exc_info=True,
                )
                await asyncio.sleep(self.settings.reconnect_interval)

    @staticmethod
    def _decode(payload: Any) -> str:
        if payload is None:
            return ""
        if isinstance(payload, bytes | bytearray):
            return payload.decode("utf-8", errors="replace")
        return str(payload)

    async def _dispatch(self, message: Any) -> None:
        """Hand an inbound message to the callback registered for its topic."""
        topic = str(message.topic)
        callback = self._subscriptions.get(topic)
        if callback is None:
            logger.debug("Dropping message on unsubscribed topic %s", topic)
            return

        try:
            await callback(topic, self._decode(message.payload))
        except Exception:
            logger.exception("Reply handler for %s failed", topic)
