"""Bridge heartbeat and per-TV availability.

Topic layout::

    {prefix}/status                  ← bridge heartbeat (retained JSON)
    {prefix}/{device}/availability   ← "online" / "offline" (retained)

Heartbeat payload::

    {
        "status": "online",
        "uptime_s": 3600.0,
        "version": "0.1.0",
        "devices": {
            "living_room": {"status": "ready", "retry_count": 0},
            "bedroom": {"status": "stopped", "retry_count": 5}
        }
    }

A TV whose polling stopped at the retry ceiling keeps its last pushed
state; the heartbeat is where operators see ``"stopped"``.

The broker publishes ``"offline"`` to ``{prefix}/status`` through the
LWT when the bridge vanishes; a graceful shutdown publishes it
explicitly.  All publication is fire-and-forget.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field

from androidtv2mqtt._clock import ClockPort
from androidtv2mqtt._mqtt import MqttPort, WillConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DeviceStatus:
    """Health snapshot of one TV session."""

    status: str = "ready"
    retry_count: int = 0

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class HeartbeatPayload:
    """Bridge-level status snapshot."""

    status: str
    uptime_s: float
    version: str
    devices: dict[str, DeviceStatus] = field(default_factory=dict)

    def to_json(self) -> str:
        data: dict[str, object] = {
            "status": self.status,
            "uptime_s": self.uptime_s,
            "version": self.version,
            "devices": {
                name: device.to_dict() for name, device in self.devices.items()
            },
        }
        return json.dumps(data)


def build_will_config(topic_prefix: str) -> WillConfig:
    """LWT that marks ``{topic_prefix}/status`` offline on a crash."""
    return WillConfig(
        topic=f"{topic_prefix}/status",
        payload="offline",
        qos=1,
        retain=True,
    )


@dataclass
class HealthReporter:
    """Publishes heartbeats and per-TV availability.

    Parameters
    ----------
    mqtt:
        MQTT port used for publishing.
    topic_prefix:
        Base prefix for health topics.
    version:
        Application version string included in heartbeats.
    clock:
        Monotonic clock for uptime measurement.
    """

    mqtt: MqttPort
    topic_prefix: str
    version: str
    clock: ClockPort
    _start_time: float = field(init=False, repr=False)
    _devices: dict[str, DeviceStatus] = field(
        init=False,
        default_factory=dict,
        repr=False,
    )

    def __post_init__(self) -> None:
        self._start_time = self.clock.now()

    @property
    def devices(self) -> dict[str, DeviceStatus]:
        return dict(self._devices)

    def set_device_status(self, device: str, status: str, retry_count: int = 0) -> None:
        """Record the session state reported for *device*."""
        self._devices[device] = DeviceStatus(status=status, retry_count=retry_count)

    async def publish_device_available(self, device: str) -> None:
        """Publish ``"online"`` for *device* and start tracking it."""
        await self._safe_publish(f"{self.topic_prefix}/{device}/availability", "online")
        self._devices.setdefault(device, DeviceStatus(status="uninitialized"))

    async def publish_device_unavailable(self, device: str) -> None:
        """Publish ``"offline"`` for *device* and stop tracking it."""
        await self._safe_publish(f"{self.topic_prefix}/{device}/availability", "offline")
        self._devices.pop(device, None)

    async def publish_heartbeat(self) -> None:
        payload = HeartbeatPayload(
            status="online",
            uptime_s=self.clock.now() - self._start_time,
            version=self.version,
            devices=dict(self._devices),
        )
        topic = f"{self.topic_prefix}/status"
        logger.debug("Heartbeat: %d TV(s), uptime %.0fs", len(payload.devices), payload.uptime_s)
        await self._safe_publish(topic, payload.to_json())

    async def shutdown(self) -> None:
        """Publish ``"offline"`` for every tracked TV and the bridge."""
        logger.info("Marking %d TV(s) and the bridge offline", len(self._devices))
        for device in list(self._devices):
            await self._safe_publish(
                f"{self.topic_prefix}/{device}/availability",
                "offline",
            )
        await self._safe_publish(f"{self.topic_prefix}/status", "offline")
        self._devices.clear()

    async def _safe_publish(self, topic: str, payload: str) -> None:
        try:
            await self.mqtt.publish(topic, payload, retain=True, qos=1)
        except Exception:
            logger.exception("Failed to publish health to %s", topic)
