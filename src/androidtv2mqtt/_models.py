"""Value objects shared by the session, the parsers and the adapters.

Everything configured or fetched once is a frozen dataclass.  The only
mutable record is :class:`DeviceState`, owned by a single
:class:`~androidtv2mqtt._session.DeviceSession`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

ADB_DEFAULT_PORT = 5555


class PowerState(Enum):
    """Observed or commanded power of a television."""

    ON = "ON"
    OFF = "OFF"
    UNKNOWN = "UNKNOWN"


class ConnectionState(Enum):
    """State of the adb transport to one device."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


class SessionState(Enum):
    """Lifecycle of a device session.

    ``UNINITIALIZED → INITIALIZING → READY ⇄ DEGRADED → STOPPED``
    """

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    DEGRADED = "degraded"
    STOPPED = "stopped"


class LauncherToken(Enum):
    """Marker returned by the focus parser when the home screen is shown."""

    LAUNCHER = "launcher"


# ---------------------------------------------------------------------------
# Immutable records
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DeviceIdentity:
    """Where a television lives on the network and what it is called."""

    address: str
    mac: str
    name: str

    @property
    def serial(self) -> str:
        """adb serial for the device (``host:port``).

        ``adb connect 10.0.0.2`` registers the device as
        ``10.0.0.2:5555``; ``-s`` must use that form.
        """
        if ":" in self.address:
            return self.address
        return f"{self.address}:{ADB_DEFAULT_PORT}"


@dataclass(frozen=True, slots=True)
class SourceDefinition:
    """An input source selectable through a remote key-event.

    ``package`` is the Android package focused while the source is
    showing; it lets reconciliation map the focused window back to a
    source id.
    """

    id: int
    name: str
    key_code: str
    is_default: bool = False
    package: str | None = None


@dataclass(frozen=True, slots=True)
class AppDefinition:
    """An installed application, kept for the accessory layer."""

    id: str
    name: str


@dataclass(frozen=True, slots=True)
class ProductIdentity:
    """Model, manufacturer and serial number reported by the device."""

    model: str
    manufacturer: str
    serial: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {
            "model": self.model,
            "manufacturer": self.manufacturer,
            "serial": self.serial,
        }


# ---------------------------------------------------------------------------
# Mutable state
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class DeviceState:
    """Last observed-or-commanded truth about a device."""

    power: PowerState = PowerState.UNKNOWN
    active_source_id: int | None = None
    retry_count: int = 0
