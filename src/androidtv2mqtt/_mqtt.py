"""MQTT port and adapters.

Provides MqttPort (Protocol) and three implementations:

- MqttClient — aiomqtt-based client with reconnection
- MockMqttClient — test double that records calls
- NullMqttClient — dry-run adapter that only logs

The accessory adapter, the health reporter and the error publisher all
talk to the broker through :class:`MqttPort` only.

``aiomqtt`` is imported only by :class:`MqttClient` once it connects,
so the mock and dry-run adapters never touch the network stack.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from androidtv2mqtt._settings import MqttSettings

logger = logging.getLogger(__name__)

MessageCallback = Callable[[str, str], Awaitable[None]]
"""Async callback receiving (topic, payload) for each inbound message."""


@dataclass(frozen=True)
class WillConfig:
    """Last-Will-and-Testament configuration.

    Translated into ``aiomqtt.Will`` by the real client so callers never
    depend on aiomqtt types.
    """

    topic: str
    payload: str = "offline"
    qos: int = 1
    retain: bool = True


# ---------------------------------------------------------------------------
# Ports
# ---------------------------------------------------------------------------


@runtime_checkable
class MqttPort(Protocol):
    """Publish/subscribe contract used by every MQTT-facing component."""

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None: ...

    async def subscribe(self, topic: str) -> None: ...


@runtime_checkable
class MqttLifecycle(Protocol):
    """Adapters that need explicit start/stop."""

    async def start(self) -> None: ...

    async def stop(self) -> None: ...


@runtime_checkable
class MqttMessageHandler(Protocol):
    """Adapters that can deliver inbound messages."""

    def on_message(self, callback: MessageCallback) -> None: ...


# ---------------------------------------------------------------------------
# Dry-run adapter
# ---------------------------------------------------------------------------


@dataclass
class NullMqttClient:
    """Broker-less adapter for ``--dry-run``.

    Nothing leaves the process; every publish is logged at INFO so the
    state the bridge would push can be followed in the log.
    """

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,  # noqa: ARG002
    ) -> None:
        logger.info("dry run: %s%s %s", topic, " (retained)" if retain else "", payload)

    async def subscribe(self, topic: str) -> None:
        logger.debug("dry run: not subscribing to %s", topic)


# ---------------------------------------------------------------------------
# Test double
# ---------------------------------------------------------------------------


@dataclass
class MockMqttClient:
    """Records publishes and subscriptions; ``deliver()`` injects intents.

    ``deliver()`` awaits every callback registered with ``on_message()``
    in turn, the way the real client dispatches a broker message.
    """

    published: list[tuple[str, str, bool, int]] = field(default_factory=list)
    subscriptions: list[str] = field(default_factory=list)
    _callbacks: list[MessageCallback] = field(
        default_factory=list,
        init=False,
        repr=False,
    )

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None:
        self.published.append((topic, payload, retain, qos))

    async def subscribe(self, topic: str) -> None:
        self.subscriptions.append(topic)

    def on_message(self, callback: MessageCallback) -> None:
        self._callbacks.append(callback)

    async def deliver(self, topic: str, payload: str) -> None:
        for callback in self._callbacks:
            await callback(topic, payload)

    def get_messages_for(self, topic: str) -> list[tuple[str, bool, int]]:
        """``(payload, retain, qos)`` for every publish to *topic*."""
        return [entry[1:] for entry in self.published if entry[0] == topic]

    def payloads_for(self, topic: str) -> list[str]:
        return [payload for payload, _, _ in self.get_messages_for(topic)]

    def retained(self, topic: str) -> str | None:
        """The payload a new subscriber to *topic* would receive."""
        for published_topic, payload, retain, _ in reversed(self.published):
            if published_topic == topic and retain:
                return payload
        return None

    def reset(self) -> None:
        self.published.clear()
        self.subscriptions.clear()
        self._callbacks.clear()


# ---------------------------------------------------------------------------
# Real adapter
# ---------------------------------------------------------------------------


@dataclass
class MqttClient:
    """Broker connection backed by *aiomqtt*.

    :meth:`start` launches a background task that keeps one connection
    open and reconnects ``settings.reconnect_interval`` seconds after it
    drops, re-subscribing to every intent topic.  Publishes made while
    the broker is unreachable are dropped with a warning; every poll
    cycle re-publishes the retained TV state anyway.
    """

    settings: MqttSettings
    will: WillConfig | None = None

    _callbacks: list[MessageCallback] = field(
        default_factory=list,
        init=False,
        repr=False,
    )
    _subscriptions: set[str] = field(default_factory=set, init=False, repr=False)
    _client: Any = field(default=None, init=False, repr=False)
    _listen_task: asyncio.Task[None] | None = field(default=None, init=False, repr=False)
    _connected: asyncio.Event = field(
        default_factory=asyncio.Event,
        init=False,
        repr=False,
    )

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None:
        client = self._client
        if client is None:
            logger.warning("Broker unavailable, dropping publish to %s", topic)
            return
        await client.publish(topic, payload, retain=retain, qos=qos)
        logger.debug("%s <- %r (qos=%d, retain=%s)", topic, payload, qos, retain)

    async def subscribe(self, topic: str) -> None:
        """Subscribe now if connected, and again after every reconnect."""
        self._subscriptions.add(topic)
        if self._client is not None:
            await self._client.subscribe(topic, qos=self.settings.qos)

    def on_message(self, callback: MessageCallback) -> None:
        self._callbacks.append(callback)

    async def start(self) -> None:
        if self._listen_task is None or self._listen_task.done():
            self._listen_task = asyncio.create_task(
                self._connection_loop(),
                name="mqtt-connection",
            )

    async def stop(self) -> None:
        """Cancel the connection loop.  Idempotent."""
        task, self._listen_task = self._listen_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._client = None
        self._connected.clear()

    @property
    def is_connected(self) -> bool:
        return self._connected.is_set()

    async def wait_connected(self, timeout: float | None = None) -> bool:
        """Block until the broker accepted the connection; False on timeout."""
        try:
            await asyncio.wait_for(self._connected.wait(), timeout=timeout)
        except TimeoutError:
            return False
        return True

    def _client_options(self) -> dict[str, Any]:
        import aiomqtt  # noqa: PLC0415

        settings = self.settings
        options: dict[str, Any] = {
            "hostname": settings.host,
            "port": settings.port,
            "username": settings.username,
            "password": (
                settings.password.get_secret_value()
                if settings.password is not None
                else None
            ),
            "identifier": settings.client_id or None,
        }
        if self.will is not None:
            options["will"] = aiomqtt.Will(
                topic=self.will.topic,
                payload=self.will.payload,
                qos=self.will.qos,
                retain=self.will.retain,
            )
        return options

    async def _connection_loop(self) -> None:
        import aiomqtt  # noqa: PLC0415

        address = f"{self.settings.host}:{self.settings.port}"
        while True:
            try:
                async with aiomqtt.Client(**self._client_options()) as client:
                    await self._on_connected(client, address)
                    try:
                        async for message in client.messages:
                            await self._dispatch(str(message.topic), message.payload)
                    finally:
                        self._client = None
                        self._connected.clear()
            except aiomqtt.MqttError as exc:
                logger.warning(
                    "Broker %s unreachable (%s), retrying in %.1fs",
                    address,
                    exc,
                    self.settings.reconnect_interval,
                )
                await asyncio.sleep(self.settings.reconnect_interval)

    async def _on_connected(self, client: Any, address: str) -> None:
        for topic in sorted(self._subscriptions):
            await client.subscribe(topic, qos=self.settings.qos)
        self._client = client
        self._connected.set()
        logger.info(
            "Connected to broker %s (%d intent topics)",
            address,
            len(self._subscriptions),
        )

    async def _dispatch(self, topic: str, raw: Any) -> None:
        """Decode an inbound payload and hand it to every callback."""
        if isinstance(raw, (bytes, bytearray)):
            payload = raw.decode("utf-8", errors="replace")
        elif raw is None:
            payload = ""
        else:
            payload = str(raw)
        for callback in self._callbacks:
            try:
                await callback(topic, payload)
            except Exception:
                logger.exception("Intent callback failed for %s", topic)
