"""Public test-support utilities for androidtv2mqtt.

Re-exports test doubles and factories so that test suites can import
everything from a single ``androidtv2mqtt.testing`` namespace.

Provided symbols:

- :class:`BridgeHarness`: Bridge wired with every test double.
- :class:`FakeAdb`: scripted command runner recording every call.
- :class:`FakeWakeOnLan`: wake-on-LAN double with a fixed result.
- :class:`RecordingAccessory`: accessory double recording pushes.
- :class:`MockMqttClient`: in-memory MQTT double that records calls.
- :class:`NullMqttClient`: silent no-op MQTT adapter.
- :class:`FakeClock`: deterministic clock for timing tests.
- :func:`make_settings` / :func:`make_tv_settings`: settings factories
  that ignore ``.env`` files and the environment.
"""

from androidtv2mqtt._mqtt import MockMqttClient, NullMqttClient
from androidtv2mqtt.testing._adb import FakeAdb, command_error
from androidtv2mqtt.testing._clock import FakeClock
from androidtv2mqtt.testing._doubles import FakeWakeOnLan, RecordingAccessory
from androidtv2mqtt.testing._harness import BridgeHarness
from androidtv2mqtt.testing._settings import make_settings, make_tv_settings

__all__ = [
    "BridgeHarness",
    "FakeAdb",
    "FakeClock",
    "FakeWakeOnLan",
    "MockMqttClient",
    "NullMqttClient",
    "RecordingAccessory",
    "command_error",
    "make_settings",
    "make_tv_settings",
]
