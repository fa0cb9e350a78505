"""androidtv2mqtt.

Bridges network-attached Android televisions to MQTT over adb.
"""

from importlib.metadata import PackageNotFoundError, version

from androidtv2mqtt._accessory import AccessoryPort, MqttAccessory
from androidtv2mqtt._app import Bridge, parse_power_payload, parse_source_payload
from androidtv2mqtt._clock import ClockPort, SystemClock
from androidtv2mqtt._connection import RETRY_LIMIT, ConnectionManager
from androidtv2mqtt._errors import (
    AndroidTvError,
    CommandError,
    CommandFailure,
    ConfigError,
    ConnectionFailure,
    DeviceConnectionError,
    ErrorPayload,
    ErrorPublisher,
    IntentFailedError,
    InvalidPayloadError,
    ParseError,
    SourceNotFoundError,
    build_error_payload,
)
from androidtv2mqtt._health import (
    DeviceStatus,
    HealthReporter,
    HeartbeatPayload,
    build_will_config,
)
from androidtv2mqtt._logging import DeviceLogger, JsonFormatter, configure_logging
from androidtv2mqtt._models import (
    AppDefinition,
    ConnectionState,
    DeviceIdentity,
    DeviceState,
    LauncherToken,
    PowerState,
    ProductIdentity,
    SessionState,
    SourceDefinition,
)
from androidtv2mqtt._mqtt import (
    MessageCallback,
    MockMqttClient,
    MqttClient,
    MqttLifecycle,
    MqttMessageHandler,
    MqttPort,
    NullMqttClient,
    WillConfig,
)
from androidtv2mqtt._parsers import (
    parse_device_list,
    parse_focused_source,
    parse_power,
    parse_product_info,
)
from androidtv2mqtt._runner import AdbCommandRunner, CommandRunner
from androidtv2mqtt._scheduler import PollScheduler
from androidtv2mqtt._session import MIN_INTERVAL_MS, DeviceSession
from androidtv2mqtt._settings import (
    AdbSettings,
    LoggingSettings,
    MqttSettings,
    Settings,
    SourceSettings,
    TvSettings,
)
from androidtv2mqtt._wol import MagicPacketSender, WakeOnLanPort

try:
    __version__ = version("androidtv2mqtt")
except PackageNotFoundError:
    # Source checkout without installed metadata
    __version__ = "0.0.0+unknown"

__all__ = [
    # Version
    "__version__",
    # Bridge
    "Bridge",
    "parse_power_payload",
    "parse_source_payload",
    # Session
    "DeviceSession",
    "MIN_INTERVAL_MS",
    "PollScheduler",
    "ConnectionManager",
    "RETRY_LIMIT",
    # Ports and adapters
    "AccessoryPort",
    "MqttAccessory",
    "CommandRunner",
    "AdbCommandRunner",
    "WakeOnLanPort",
    "MagicPacketSender",
    # Models
    "AppDefinition",
    "ConnectionState",
    "DeviceIdentity",
    "DeviceState",
    "LauncherToken",
    "PowerState",
    "ProductIdentity",
    "SessionState",
    "SourceDefinition",
    # Parsers
    "parse_device_list",
    "parse_focused_source",
    "parse_power",
    "parse_product_info",
    # Clock
    "ClockPort",
    "SystemClock",
    # Logging
    "DeviceLogger",
    "JsonFormatter",
    "configure_logging",
    # MQTT
    "MessageCallback",
    "MockMqttClient",
    "MqttClient",
    "MqttLifecycle",
    "MqttMessageHandler",
    "MqttPort",
    "NullMqttClient",
    "WillConfig",
    # Errors
    "AndroidTvError",
    "CommandError",
    "CommandFailure",
    "ConfigError",
    "ConnectionFailure",
    "DeviceConnectionError",
    "IntentFailedError",
    "InvalidPayloadError",
    "ParseError",
    "SourceNotFoundError",
    "ErrorPayload",
    "ErrorPublisher",
    "build_error_payload",
    # Health
    "DeviceStatus",
    "HealthReporter",
    "HeartbeatPayload",
    "build_will_config",
    # Settings
    "AdbSettings",
    "LoggingSettings",
    "MqttSettings",
    "Settings",
    "SourceSettings",
    "TvSettings",
]
