"""Error taxonomy and structured error publication.

Domain exceptions raised by the runner, the connection manager, the
parsers and the session all derive from :class:`AndroidTvError`.

Intent failures that the smart-home side should know about are
converted into JSON payloads and published to MQTT::

    {prefix}/error              ← all errors (global, always published)
    {prefix}/{device}/error     ← per-device errors (when device is known)

Payload schema::

    {
        "error_type": "source_not_found",
        "message": "No source with id 3 on 10.0.0.2",
        "device": "living_room",
        "timestamp": "2026-10-16T19:02:11+00:00",
        "details": {}
    }

Publication is not retained, QoS 1, and fire-and-forget: failures are
logged, never propagated.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum

from androidtv2mqtt._mqtt import MqttPort

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class AndroidTvError(Exception):
    """Base class for every error raised by androidtv2mqtt."""


class CommandFailure(Enum):
    """Why an adb command did not produce usable output."""

    EXEC_FAILURE = "exec_failure"
    TIMEOUT = "timeout"
    NON_ZERO_EXIT = "non_zero_exit"


class CommandError(AndroidTvError):
    """An adb invocation failed.

    Attributes:
        kind: Failure category.
        command: The argument vector that was executed.
        diagnostic: Original stderr / OS error text.
    """

    def __init__(
        self,
        kind: CommandFailure,
        command: str,
        diagnostic: str = "",
    ) -> None:
        self.kind = kind
        self.command = command
        self.diagnostic = diagnostic
        detail = f": {diagnostic}" if diagnostic else ""
        super().__init__(f"{command!r} failed ({kind.value}){detail}")


class ConnectionFailure(Enum):
    """Why the adb transport could not be (re-)established."""

    FAILED = "failed"
    AMBIGUOUS = "ambiguous"
    RESET_FAILED = "reset_failed"


class DeviceConnectionError(AndroidTvError):
    """``adb connect`` / ``adb disconnect`` did not produce a session."""

    def __init__(self, kind: ConnectionFailure, address: str, output: str = "") -> None:
        self.kind = kind
        self.address = address
        self.output = output
        super().__init__(f"Connection to {address} {kind.value}: {output or 'no output'}")


class ParseError(AndroidTvError, ValueError):
    """Device output did not have the expected shape."""


class ConfigError(AndroidTvError):
    """A device configuration cannot be used to build a session."""


class SourceNotFoundError(AndroidTvError, LookupError):
    """A source switch named an id that is not configured."""

    def __init__(self, source_id: int, address: str) -> None:
        self.source_id = source_id
        self.address = address
        super().__init__(f"No source with id {source_id} on {address}")


class InvalidPayloadError(AndroidTvError, ValueError):
    """An inbound MQTT intent carried an unusable payload."""


class IntentFailedError(AndroidTvError):
    """The TV did not confirm a power or source intent."""


DEFAULT_ERROR_TYPES: dict[type[Exception], str] = {
    CommandError: "command_failed",
    DeviceConnectionError: "connection_failed",
    ParseError: "parse_error",
    ConfigError: "config_error",
    SourceNotFoundError: "source_not_found",
    InvalidPayloadError: "invalid_payload",
    IntentFailedError: "intent_failed",
}

# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ErrorPayload:
    """Immutable structured error payload."""

    error_type: str
    message: str
    device: str | None
    timestamp: str
    details: dict[str, object] = field(default_factory=dict)

    def to_json(self) -> str:
        """Serialise to a JSON string."""
        return json.dumps(asdict(self))


def build_error_payload(
    error: Exception,
    *,
    error_type_map: dict[type[Exception], str] | None = None,
    device: str | None = None,
    details: dict[str, object] | None = None,
    clock: Callable[[], datetime] | None = None,
) -> ErrorPayload:
    """Convert an exception into a structured :class:`ErrorPayload`.

    Looks up the exact class of the exception; subclasses are not
    matched.  Unmapped exceptions get the generic ``"error"`` type.

    Args:
        error: The exception to convert.
        error_type_map: Exception type → ``error_type`` string.  Defaults
            to :data:`DEFAULT_ERROR_TYPES`.
        device: Optional device name to include in the payload.
        details: Optional extra context.
        clock: Optional callable returning the timestamp.
    """
    resolved_map = DEFAULT_ERROR_TYPES if error_type_map is None else error_type_map
    error_type = resolved_map.get(type(error), "error")
    now = clock() if clock is not None else datetime.now(UTC)
    return ErrorPayload(
        error_type=error_type,
        message=str(error),
        device=device,
        timestamp=now.isoformat(),
        details=details or {},
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


@dataclass
class ErrorPublisher:
    """Publishes structured error payloads to MQTT.

    Errors during publication are logged but never propagated — an
    intent handler must complete even when the error *report* fails.

    Args:
        mqtt: MQTT port used for publishing.
        topic_prefix: Base prefix for error topics.
        error_type_map: Exception type → machine-readable type string.
        clock: Optional timestamp source for deterministic tests.
    """

    mqtt: MqttPort
    topic_prefix: str
    error_type_map: dict[type[Exception], str] = field(
        default_factory=lambda: dict(DEFAULT_ERROR_TYPES),
    )
    clock: Callable[[], datetime] | None = field(default=None, repr=False)

    async def publish(
        self,
        error: Exception,
        *,
        device: str | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        """Build an error payload and publish it.

        Always publishes to ``{topic_prefix}/error``; additionally to
        ``{topic_prefix}/{device}/error`` when *device* is given.
        """
        try:
            payload = build_error_payload(
                error,
                error_type_map=self.error_type_map,
                device=device,
                details=details,
                clock=self.clock,
            )
            payload_json = payload.to_json()
        except Exception:
            logger.exception(
                "Failed to build error payload for %r (device=%s)",
                error,
                device,
            )
            return

        logger.warning(
            "Publishing error: %s (type=%s, device=%s)",
            payload.message,
            payload.error_type,
            device,
        )
        await self._safe_publish(f"{self.topic_prefix}/error", payload_json)
        if device is not None:
            await self._safe_publish(f"{self.topic_prefix}/{device}/error", payload_json)

    async def _safe_publish(self, topic: str, payload: str) -> None:
        try:
            await self.mqtt.publish(topic, payload, retain=False, qos=1)
        except Exception:
            logger.exception("Failed to publish error to %s", topic)
