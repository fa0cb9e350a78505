"""Application configuration via pydantic-settings.

Configuration is loaded from environment variables and/or a ``.env``
file, all prefixed with ``ANDROIDTV_``.  Nested models use ``__`` as the
delimiter; lists (the TVs) are given as JSON::

    ANDROIDTV_MQTT__HOST=broker.local
    ANDROIDTV_LOGGING__FORMAT=text
    ANDROIDTV_TVS='[{"name": "Living Room", "address": "10.0.0.2",
                     "mac": "aa:bb:cc:dd:ee:ff",
                     "sources": [{"id": 1, "name": "HDMI 1",
                                  "key_code": "KEYCODE_F1"}]}]'

A JSON document with the same shape can be loaded with
:meth:`Settings.from_json_file`.

Durations are in **seconds**, except the per-TV poll ``interval``, which
is in milliseconds to match the television plugin configuration it
replaces.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Annotated, Any, Literal, Self

from pydantic import (
    BaseModel,
    Field,
    SecretStr,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_NAME = "Android Television"
DEFAULT_INTERVAL_MS = 5000
DEFAULT_LAUNCHER_ACTIVITIES = ("Launcher", "MainActivity", "RecentsTvActivity")

# -------------------------------------------------------------------
# Infrastructure sub-models
# -------------------------------------------------------------------


class MqttSettings(BaseModel):
    """MQTT broker connection and topic configuration."""

    host: str = Field(
        default="localhost",
        description="MQTT broker hostname or IP address.",
    )
    port: Annotated[int, Field(ge=1, le=65535)] = Field(
        default=1883,
        description="MQTT broker port.",
    )
    username: str | None = Field(
        default=None,
        description="MQTT authentication username (optional).",
    )
    password: SecretStr | None = Field(
        default=None,
        description="MQTT authentication password (optional).",
    )
    client_id: str = Field(
        default="",
        description=(
            "MQTT client identifier. When empty, a '{name}-{hex8}' "
            "identifier is generated at startup."
        ),
    )
    reconnect_interval: Annotated[float, Field(gt=0)] = Field(
        default=5.0,
        description="Seconds to wait before reconnecting after connection loss.",
    )
    qos: Literal[0, 1, 2] = Field(
        default=1,
        description="QoS used for command subscriptions.",
    )
    topic_prefix: str = Field(
        default="androidtv",
        description="Root prefix for all MQTT topics.",
    )


class LoggingSettings(BaseModel):
    """Logging configuration.

    ``format="json"`` emits one JSON object per line for log
    aggregators; ``"text"`` is a timestamped human-readable format.
    When ``file`` is set, logs are also written to a rotating file.
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Root log level.",
    )
    format: Literal["json", "text"] = Field(
        default="text",
        description="Log output format.",
    )
    file: str | None = Field(
        default=None,
        description="Optional log file path. ``None`` means stderr only.",
    )
    max_file_size_mb: Annotated[int, Field(ge=1)] = Field(
        default=10,
        description="Maximum log file size in megabytes before rotation.",
    )
    backup_count: Annotated[int, Field(ge=0)] = Field(
        default=3,
        description="Number of rotated log files to keep.",
    )


class AdbSettings(BaseModel):
    """How the ``adb`` executable is invoked."""

    executable: str = Field(
        default="adb",
        description="Path or name of the adb binary.",
    )
    command_timeout: Annotated[float, Field(gt=0)] = Field(
        default=10.0,
        description="Upper bound in seconds for any single adb command.",
    )


# -------------------------------------------------------------------
# Television sub-models
# -------------------------------------------------------------------


class SourceSettings(BaseModel):
    """One selectable input source."""

    id: int
    name: str
    key_code: str = Field(description="Key-event sent to select the source, e.g. KEYCODE_F1.")
    is_default: bool = False
    package: str | None = Field(
        default=None,
        description="Android package focused while this source is shown.",
    )


class AppSettings(BaseModel):
    """An installed application (stored for the accessory layer)."""

    id: str
    name: str


class TvSettings(BaseModel):
    """Configuration of one television.

    ``address`` is optional at this level so that a single broken
    entry does not reject the whole configuration; the session refuses
    to start without it.
    """

    name: str = DEFAULT_NAME
    id: str | None = Field(
        default=None,
        description="Topic segment for this TV. Defaults to a slug of the name.",
    )
    address: str | None = None
    mac: str = ""
    interval: Annotated[int, Field(gt=0)] = Field(
        default=DEFAULT_INTERVAL_MS,
        description="Poll interval in milliseconds (floored to 300).",
    )
    sources: list[SourceSettings] = Field(default_factory=list)
    apps: list[AppSettings] = Field(default_factory=list)
    launcher_activities: list[str] = Field(
        default_factory=lambda: list(DEFAULT_LAUNCHER_ACTIVITIES),
    )
    optimistic_source: bool = Field(
        default=True,
        description=(
            "Record the requested source before its key-event is confirmed "
            "so the UI reflects the intent immediately."
        ),
    )

    @model_validator(mode="after")
    def _unique_source_ids(self) -> Self:
        ids = [source.id for source in self.sources]
        if len(ids) != len(set(ids)):
            msg = f"Duplicate source ids for TV '{self.name}': {ids}"
            raise ValueError(msg)
        return self

    @property
    def device_id(self) -> str:
        """Topic-safe identifier for this TV."""
        if self.id:
            return self.id
        return re.sub(r"[^a-z0-9]+", "_", self.name.lower()).strip("_") or "tv"


# -------------------------------------------------------------------
# Root settings
# -------------------------------------------------------------------


class Settings(BaseSettings):
    """Root settings for androidtv2mqtt.

    Example ``.env``::

        ANDROIDTV_MQTT__HOST=broker.local
        ANDROIDTV_LOGGING__LEVEL=DEBUG
        ANDROIDTV_ADB__COMMAND_TIMEOUT=5
        ANDROIDTV_TVS=[{"name": "Bedroom", "address": "10.0.0.3"}]
    """

    model_config = SettingsConfigDict(
        env_prefix="ANDROIDTV_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="forbid",
    )

    mqtt: MqttSettings = Field(
        default_factory=MqttSettings,
        description="MQTT broker connection settings.",
    )
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings,
        description="Logging configuration.",
    )
    adb: AdbSettings = Field(
        default_factory=AdbSettings,
        description="adb invocation settings.",
    )
    tvs: list[TvSettings] = Field(
        default_factory=list,
        description="Televisions to control.",
    )

    @classmethod
    def from_json_file(cls, path: str | Path, **overrides: Any) -> Self:
        """Load settings from a JSON document.

        Values from the file take precedence over the environment;
        *overrides* take precedence over both.
        """
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        data.update(overrides)
        return cls(**data)
