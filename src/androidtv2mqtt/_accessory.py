"""Accessory port and its MQTT adapter.

The session pushes state through :class:`AccessoryPort` and never knows
who listens.  :class:`MqttAccessory` maps the pushes onto retained
topics::

    {prefix}/{device}/power    ← "ON" / "OFF"
    {prefix}/{device}/source   ← active source id
    {prefix}/{device}/info     ← {"name", "model", "manufacturer",
                                  "serial", "sources", "apps"}

Pushes are fire-and-forget: a broker hiccup is logged and the session
carries on.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from androidtv2mqtt._models import AppDefinition, ProductIdentity, SourceDefinition
from androidtv2mqtt._mqtt import MqttPort

logger = logging.getLogger(__name__)


@runtime_checkable
class AccessoryPort(Protocol):
    """Outbound state pushes from a session to the smart-home layer."""

    async def update_power(self, on: bool) -> None: ...

    async def update_active_source(self, source_id: int) -> None: ...

    async def publish_identity(self, identity: ProductIdentity) -> None: ...


class MqttAccessory:
    """Publishes one television's state under ``{prefix}/{device}``.

    Args:
        mqtt: MQTT port used for publishing.
        topic_prefix: Application topic prefix.
        device: Topic segment of the television.
        name: Display name, included in the info document.
        sources: Configured sources, included in the info document.
        apps: Configured apps, included in the info document.
    """

    def __init__(
        self,
        mqtt: MqttPort,
        *,
        topic_prefix: str,
        device: str,
        name: str,
        sources: Sequence[SourceDefinition] = (),
        apps: Sequence[AppDefinition] = (),
    ) -> None:
        self._mqtt = mqtt
        self._base = f"{topic_prefix}/{device}"
        self._name = name
        self._sources = tuple(sources)
        self._apps = tuple(apps)

    @property
    def base_topic(self) -> str:
        return self._base

    async def update_power(self, on: bool) -> None:
        await self._safe_publish("power", "ON" if on else "OFF")

    async def update_active_source(self, source_id: int) -> None:
        await self._safe_publish("source", str(source_id))

    async def publish_identity(self, identity: ProductIdentity) -> None:
        document = {
            "name": self._name,
            **identity.to_dict(),
            "sources": [
                {"id": source.id, "name": source.name} for source in self._sources
            ],
            "apps": [{"id": app.id, "name": app.name} for app in self._apps],
        }
        await self._safe_publish("info", json.dumps(document))

    async def _safe_publish(self, channel: str, payload: str) -> None:
        topic = f"{self._base}/{channel}"
        try:
            await self._mqtt.publish(topic, payload, retain=True, qos=1)
        except Exception:
            logger.exception("Failed to publish %s", topic)
