"""Intent topic routing.

Maps inbound command topics to per-TV intent handlers::

    {prefix}/{device}/power/set    → power intent ("ON" / "OFF")
    {prefix}/{device}/source/set   → source intent (source id)
    {prefix}/{device}/power        → state topic (published, not routed)
"""

from __future__ import annotations

import logging

from androidtv2mqtt._mqtt import MessageCallback

logger = logging.getLogger(__name__)

_SET_SUFFIX = "/set"


class TopicRouter:
    """Routes ``{prefix}/{device}/{channel}/set`` messages to handlers."""

    def __init__(self, *, topic_prefix: str) -> None:
        self._topic_prefix = topic_prefix
        self._handlers: dict[tuple[str, str], MessageCallback] = {}

    def register(self, device: str, channel: str, handler: MessageCallback) -> None:
        """Register *handler* for ``{prefix}/{device}/{channel}/set``.

        Raises:
            ValueError: A handler is already registered for that pair,
                or a name contains ``/``.
        """
        if not device or not channel or "/" in device or "/" in channel:
            msg = f"Invalid device/channel: {device!r}/{channel!r}"
            raise ValueError(msg)
        key = (device, channel)
        if key in self._handlers:
            msg = f"Handler already registered for '{device}/{channel}'"
            raise ValueError(msg)
        self._handlers[key] = handler

    async def route(self, topic: str, payload: str) -> None:
        """Dispatch an inbound message.

        Topics that are not intent topics are ignored; intent topics
        without a handler are logged at WARNING.
        """
        key = self._extract(topic)
        if key is None:
            return
        handler = self._handlers.get(key)
        if handler is None:
            logger.warning("No handler registered for %s/%s (topic: %s)", *key, topic)
            return
        await handler(topic, payload)

    def _extract(self, topic: str) -> tuple[str, str] | None:
        prefix = self._topic_prefix + "/"
        if not (topic.startswith(prefix) and topic.endswith(_SET_SUFFIX)):
            return None
        parts = topic[len(prefix) : -len(_SET_SUFFIX)].split("/")
        if len(parts) != 2 or not all(parts):  # noqa: PLR2004
            return None
        return parts[0], parts[1]

    @property
    def subscriptions(self) -> list[str]:
        """Topics to subscribe to for all registered handlers."""
        return [
            f"{self._topic_prefix}/{device}/{channel}{_SET_SUFFIX}"
            for device, channel in self._handlers
        ]
