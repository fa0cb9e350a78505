"""Tests for androidtv2mqtt._session — the per-TV control session.

Test Techniques Used:
    - State Transition Testing: lifecycle READY ⇄ DEGRADED → STOPPED
    - Specification-based Testing: power / source / reconcile contracts
    - Call Recording: FakeAdb verifies which adb commands were issued
    - Concurrency Testing: gated FakeAdb proves intents never interleave
    - Clock Injection: FakeClock drives the poll scheduler instantly
"""

from __future__ import annotations

import asyncio
import logging

import pytest

from androidtv2mqtt._connection import RETRY_LIMIT
from androidtv2mqtt._errors import ConfigError, SourceNotFoundError
from androidtv2mqtt._models import (
    DeviceIdentity,
    PowerState,
    ProductIdentity,
    SessionState,
    SourceDefinition,
)
from androidtv2mqtt._session import (
    MIN_INTERVAL_MS,
    DeviceSession,
    key_event,
)
from androidtv2mqtt.testing import FakeAdb, FakeClock, FakeWakeOnLan, RecordingAccessory

SERIAL = "10.0.0.2:5555"
WAKEUP = "input keyevent KEYCODE_WAKEUP"
SLEEP = "input keyevent KEYCODE_SLEEP"
POWER = "mHoldingDisplay"
FOCUS = "mFocusedApp"

PLAYTV_FOCUS = (
    "mFocusedApp=AppWindowToken{e3cc25 token=Token{f7a281c ActivityRecord{eb72d8f "
    "u0 org.droidtv.playtv/.PlayTvActivity t30}}}"
)
NETFLIX_FOCUS = (
    "mFocusedApp=AppWindowToken{1 token=Token{2 ActivityRecord{3 "
    "u0 com.netflix.ninja/.NetflixActivity t12}}}"
)
LAUNCHER_FOCUS = (
    "mFocusedApp=AppWindowToken{1 token=Token{2 ActivityRecord{3 "
    "u0 com.google.android.tvlauncher/.MainActivity t1}}}"
)


def _make_session(
    identity: DeviceIdentity,
    sources: list[SourceDefinition],
    fake_adb: FakeAdb,
    fake_wol: FakeWakeOnLan,
    accessory: RecordingAccessory,
    fake_clock: FakeClock,
    **kwargs: object,
) -> DeviceSession:
    return DeviceSession(
        identity,
        sources,
        runner=fake_adb,
        wol=fake_wol,
        accessory=accessory,
        clock=fake_clock,
        **kwargs,  # type: ignore[arg-type]
    )


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestConstruction:
    """Technique: Specification-based Testing — configuration checks."""

    def test_initial_state(self, session: DeviceSession) -> None:
        assert session.lifecycle is SessionState.UNINITIALIZED
        assert session.state.power is PowerState.UNKNOWN
        assert session.state.active_source_id is None
        assert session.state.retry_count == 0
        assert session.product is None

    def test_missing_address_rejected(
        self,
        sources: list[SourceDefinition],
        fake_adb: FakeAdb,
        fake_wol: FakeWakeOnLan,
        accessory: RecordingAccessory,
        fake_clock: FakeClock,
    ) -> None:
        identity = DeviceIdentity(address="", mac="", name="Bedroom")
        with pytest.raises(ConfigError, match="Bedroom"):
            _make_session(identity, sources, fake_adb, fake_wol, accessory, fake_clock)

    def test_duplicate_source_ids_rejected(
        self,
        identity: DeviceIdentity,
        fake_adb: FakeAdb,
        fake_wol: FakeWakeOnLan,
        accessory: RecordingAccessory,
        fake_clock: FakeClock,
    ) -> None:
        sources = [
            SourceDefinition(id=1, name="HDMI 1", key_code="KEYCODE_F1"),
            SourceDefinition(id=1, name="HDMI 2", key_code="KEYCODE_F2"),
        ]
        with pytest.raises(ConfigError):
            _make_session(identity, sources, fake_adb, fake_wol, accessory, fake_clock)

    def test_default_interval(self, session: DeviceSession) -> None:
        assert session.poll_interval == 5000
        assert session.scheduler.interval == 5.0

    def test_interval_floored(
        self,
        identity: DeviceIdentity,
        sources: list[SourceDefinition],
        fake_adb: FakeAdb,
        fake_wol: FakeWakeOnLan,
        accessory: RecordingAccessory,
        fake_clock: FakeClock,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        session = _make_session(
            identity,
            sources,
            fake_adb,
            fake_wol,
            accessory,
            fake_clock,
            interval=100,
        )
        assert session.poll_interval == MIN_INTERVAL_MS == 300
        assert session.scheduler.interval == pytest.approx(0.3)
        assert "using 300ms" in caplog.text

    def test_serial_uses_default_adb_port(self, session: DeviceSession) -> None:
        assert session.connection.serial == SERIAL

    def test_key_event(self) -> None:
        assert key_event("KEYCODE_F1") == "input keyevent KEYCODE_F1"


# ---------------------------------------------------------------------------
# initialize
# ---------------------------------------------------------------------------


class TestInitialize:
    """Technique: State Transition Testing — startup outcome."""

    async def test_blank_model_degrades_without_identity(
        self,
        session: DeviceSession,
        fake_adb: FakeAdb,
        accessory: RecordingAccessory,
    ) -> None:
        fake_adb.respond("getprop", "\nSony\nSER123")
        assert await session.initialize() is False
        assert session.lifecycle is SessionState.DEGRADED
        assert session.product is None
        assert accessory.identities == []

    async def test_success_publishes_identity(
        self,
        session: DeviceSession,
        fake_adb: FakeAdb,
        accessory: RecordingAccessory,
    ) -> None:
        fake_adb.respond("getprop", "BRAVIA 4K\nSony\nSER123")
        assert await session.initialize() is True
        assert session.lifecycle is SessionState.READY
        expected = ProductIdentity(model="BRAVIA 4K", manufacturer="Sony", serial="SER123")
        assert session.product == expected
        assert accessory.identities == [expected]
        assert fake_adb.commands[:3] == [
            "adb devices",
            f"adb disconnect {SERIAL}",
            f"adb connect {SERIAL}",
        ]

    async def test_serial_falls_back_to_address(
        self,
        session: DeviceSession,
        fake_adb: FakeAdb,
    ) -> None:
        fake_adb.respond("getprop", "SHIELD\nNVIDIA")
        await session.initialize()
        assert session.product is not None
        assert session.product.serial == "10.0.0.2"

    async def test_existing_session_adopted(
        self,
        session: DeviceSession,
        fake_adb: FakeAdb,
    ) -> None:
        fake_adb.respond("devices", f"List of devices attached\n{SERIAL}\tdevice")
        fake_adb.respond("getprop", "BRAVIA\nSony\nX")
        await session.initialize()
        assert fake_adb.count("connect") == 0

    async def test_connection_failure_degrades(
        self,
        session: DeviceSession,
        fake_adb: FakeAdb,
        accessory: RecordingAccessory,
    ) -> None:
        fake_adb.respond("connect", "failed to connect")
        assert await session.initialize() is False
        assert session.lifecycle is SessionState.DEGRADED
        assert accessory.identities == []

    async def test_unparsable_identity_degrades(self, session: DeviceSession) -> None:
        assert await session.initialize() is False
        assert session.lifecycle is SessionState.DEGRADED


# ---------------------------------------------------------------------------
# set_power
# ---------------------------------------------------------------------------


class TestSetPower:
    """Technique: Specification-based Testing — power intent contract."""

    async def test_unknown_rejected(self, session: DeviceSession) -> None:
        with pytest.raises(ValueError):
            await session.set_power(PowerState.UNKNOWN)

    async def test_power_on(
        self,
        session: DeviceSession,
        fake_adb: FakeAdb,
        fake_wol: FakeWakeOnLan,
        accessory: RecordingAccessory,
    ) -> None:
        assert await session.set_power(PowerState.ON) is True
        assert fake_wol.macs == ["aa:bb:cc:dd:ee:ff"]
        assert fake_adb.shell_commands == [WAKEUP]
        assert session.state.power is PowerState.ON
        assert accessory.power == [True]

    async def test_power_on_restores_selected_source(
        self,
        session: DeviceSession,
        accessory: RecordingAccessory,
    ) -> None:
        await session.set_source(2)
        accessory.reset()
        await session.set_power(PowerState.ON)
        assert accessory.sources == [2]
        assert accessory.power == [True]

    async def test_wake_on_lan_failure(
        self,
        session: DeviceSession,
        fake_adb: FakeAdb,
        fake_wol: FakeWakeOnLan,
        accessory: RecordingAccessory,
    ) -> None:
        fake_wol.result = False
        assert await session.set_power(PowerState.ON) is False
        assert fake_adb.calls == []
        assert session.state.power is PowerState.OFF
        assert True not in accessory.power
        assert accessory.power == [False]

    async def test_wake_key_failure(
        self,
        session: DeviceSession,
        fake_adb: FakeAdb,
        accessory: RecordingAccessory,
    ) -> None:
        fake_adb.fail("KEYCODE_WAKEUP")
        assert await session.set_power(PowerState.ON) is False
        assert session.state.power is PowerState.OFF
        assert accessory.power == [False]
        assert session.state.retry_count == 1
        assert session.lifecycle is SessionState.DEGRADED

    async def test_command_failure_resets_connection_without_retrying(
        self,
        session: DeviceSession,
        fake_adb: FakeAdb,
    ) -> None:
        fake_adb.fail("KEYCODE_WAKEUP")
        await session.set_power(PowerState.ON)
        assert fake_adb.shell_commands == [WAKEUP]
        assert fake_adb.commands[-2:] == [
            f"adb disconnect {SERIAL}",
            f"adb connect {SERIAL}",
        ]
        assert session.connection.connected

    async def test_power_off(
        self,
        session: DeviceSession,
        fake_adb: FakeAdb,
        accessory: RecordingAccessory,
    ) -> None:
        assert await session.set_power(PowerState.OFF) is True
        assert fake_adb.shell_commands == [SLEEP]
        assert session.state.power is PowerState.OFF
        assert accessory.power == [False]

    async def test_power_off_failure_pushes_current_power_back(
        self,
        session: DeviceSession,
        fake_adb: FakeAdb,
        accessory: RecordingAccessory,
    ) -> None:
        await session.set_power(PowerState.ON)
        fake_adb.fail("KEYCODE_SLEEP")
        assert await session.set_power(PowerState.OFF) is False
        assert session.state.power is PowerState.ON
        assert accessory.power == [True, True]

    async def test_power_off_failure_from_unknown_pushes_nothing(
        self,
        session: DeviceSession,
        fake_adb: FakeAdb,
        accessory: RecordingAccessory,
    ) -> None:
        fake_adb.fail("KEYCODE_SLEEP")
        assert await session.set_power(PowerState.OFF) is False
        assert accessory.power == []
        assert session.state.power is PowerState.UNKNOWN


# ---------------------------------------------------------------------------
# set_source
# ---------------------------------------------------------------------------


class TestSetSource:
    """Technique: Specification-based Testing — source intent contract."""

    async def test_unknown_source(
        self,
        session: DeviceSession,
        fake_adb: FakeAdb,
        accessory: RecordingAccessory,
    ) -> None:
        with pytest.raises(SourceNotFoundError) as exc_info:
            await session.set_source(3)
        assert exc_info.value.source_id == 3
        assert fake_adb.calls == []
        assert session.state.active_source_id is None
        assert accessory.sources == []

    async def test_switch(
        self,
        session: DeviceSession,
        fake_adb: FakeAdb,
        accessory: RecordingAccessory,
    ) -> None:
        assert await session.set_source(2) is True
        assert fake_adb.shell_commands == [WAKEUP, "input keyevent KEYCODE_F2"]
        assert session.state.active_source_id == 2
        assert accessory.sources == [2]

    async def test_source_key_attempted_after_wake_failure(
        self,
        session: DeviceSession,
        fake_adb: FakeAdb,
    ) -> None:
        fake_adb.fail("KEYCODE_WAKEUP")
        assert await session.set_source(1) is False
        assert "input keyevent KEYCODE_F1" in fake_adb.shell_commands

    async def test_pessimistic_failure_keeps_previous_source(
        self,
        session: DeviceSession,
        fake_adb: FakeAdb,
        accessory: RecordingAccessory,
    ) -> None:
        await session.set_source(1)
        fake_adb.fail("KEYCODE_F2")
        assert await session.set_source(2) is False
        assert session.state.active_source_id == 1
        assert accessory.sources == [1]

    async def test_optimistic_failure_keeps_requested_source(
        self,
        identity: DeviceIdentity,
        sources: list[SourceDefinition],
        fake_adb: FakeAdb,
        fake_wol: FakeWakeOnLan,
        accessory: RecordingAccessory,
        fake_clock: FakeClock,
    ) -> None:
        session = _make_session(
            identity,
            sources,
            fake_adb,
            fake_wol,
            accessory,
            fake_clock,
            optimistic_source=True,
        )
        fake_adb.fail("KEYCODE_F2")
        assert await session.set_source(2) is False
        assert session.state.active_source_id == 2
        assert session.state.retry_count == 1

    async def test_switches_never_interleave(
        self,
        session: DeviceSession,
        fake_adb: FakeAdb,
    ) -> None:
        fake_adb.gate = asyncio.Event()
        first = asyncio.create_task(session.set_source(1))
        second = asyncio.create_task(session.set_source(2))
        for _ in range(5):
            await asyncio.sleep(0)
        assert session.busy
        fake_adb.gate.set()
        assert await asyncio.gather(first, second) == [True, True]
        assert fake_adb.max_in_flight == 1
        assert session.state.active_source_id == 2
        assert fake_adb.shell_commands == [
            WAKEUP,
            "input keyevent KEYCODE_F1",
            WAKEUP,
            "input keyevent KEYCODE_F2",
        ]


# ---------------------------------------------------------------------------
# reconcile
# ---------------------------------------------------------------------------


class TestReconcile:
    """Technique: Specification-based Testing — observed state sync."""

    async def test_power_on_observed(
        self,
        session: DeviceSession,
        fake_adb: FakeAdb,
        accessory: RecordingAccessory,
    ) -> None:
        fake_adb.respond(POWER, "true\n")
        assert await session.reconcile() is True
        assert session.state.power is PowerState.ON
        assert accessory.power == [True]

    async def test_power_off_skips_focus_query(
        self,
        session: DeviceSession,
        fake_adb: FakeAdb,
        accessory: RecordingAccessory,
    ) -> None:
        fake_adb.respond(POWER, "false")
        await session.set_source(1)
        accessory.reset()
        assert await session.reconcile() is True
        assert session.state.power is PowerState.OFF
        assert session.state.active_source_id == 1
        assert fake_adb.count(FOCUS) == 0
        assert accessory.power == [False]
        assert accessory.sources == [1]

    async def test_launcher_maps_to_default_source(
        self,
        session: DeviceSession,
        fake_adb: FakeAdb,
        accessory: RecordingAccessory,
    ) -> None:
        fake_adb.respond(POWER, "true")
        fake_adb.respond(FOCUS, LAUNCHER_FOCUS)
        await session.reconcile()
        assert session.state.active_source_id == 1
        assert accessory.sources == [1]

    async def test_package_maps_to_source(
        self,
        session: DeviceSession,
        fake_adb: FakeAdb,
    ) -> None:
        fake_adb.respond(POWER, "true")
        fake_adb.respond(FOCUS, NETFLIX_FOCUS)
        await session.reconcile()
        assert session.state.active_source_id == 2

    async def test_unmapped_package_is_logged_not_defaulted(
        self,
        session: DeviceSession,
        fake_adb: FakeAdb,
        accessory: RecordingAccessory,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        fake_adb.respond(POWER, "true")
        fake_adb.respond(FOCUS, PLAYTV_FOCUS)
        with caplog.at_level(logging.WARNING):
            assert await session.reconcile() is True
        assert session.state.active_source_id is None
        assert accessory.sources == []
        assert "org.droidtv.playtv" in caplog.text

    async def test_unparsable_focus_leaves_source(
        self,
        session: DeviceSession,
        fake_adb: FakeAdb,
    ) -> None:
        await session.set_source(2)
        fake_adb.respond(POWER, "true")
        fake_adb.respond(FOCUS, "mFocusedApp=null")
        assert await session.reconcile() is True
        assert session.state.active_source_id == 2

    async def test_idempotent(
        self,
        session: DeviceSession,
        fake_adb: FakeAdb,
        accessory: RecordingAccessory,
    ) -> None:
        fake_adb.respond(POWER, "true")
        fake_adb.respond(FOCUS, NETFLIX_FOCUS)
        await session.reconcile()
        first = session.state
        await session.reconcile()
        assert session.state == first
        assert accessory.power == [True, True]
        assert accessory.sources == [2, 2]

    async def test_failure_keeps_state_and_pushes_nothing(
        self,
        session: DeviceSession,
        fake_adb: FakeAdb,
        accessory: RecordingAccessory,
    ) -> None:
        fake_adb.respond(POWER, "true")
        await session.reconcile()
        accessory.reset()
        fake_adb.fail(POWER)
        assert await session.reconcile() is False
        assert session.state.power is PowerState.ON
        assert session.state.retry_count == 1
        assert session.lifecycle is SessionState.DEGRADED
        assert accessory.power == []

    async def test_success_after_failure_recovers(
        self,
        session: DeviceSession,
        fake_adb: FakeAdb,
    ) -> None:
        fake_adb.fail(POWER)
        await session.reconcile()
        fake_adb.respond(POWER, "false")
        assert await session.reconcile() is True
        assert session.state.retry_count == 0
        assert session.lifecycle is SessionState.READY

    async def test_fetches_identity_missed_at_startup(
        self,
        session: DeviceSession,
        fake_adb: FakeAdb,
        accessory: RecordingAccessory,
    ) -> None:
        fake_adb.respond("connect", "failed to connect", f"connected to {SERIAL}")
        fake_adb.respond("getprop", "BRAVIA\nSony\nSER1")
        assert await session.initialize() is False
        assert await session.reconcile() is True
        assert session.product is not None
        assert len(accessory.identities) == 1

    async def test_stopped_after_retry_limit(
        self,
        session: DeviceSession,
        fake_adb: FakeAdb,
    ) -> None:
        fake_adb.respond("connect", "failed")
        for _ in range(RETRY_LIMIT):
            await session.reconcile()
        assert session.lifecycle is SessionState.STOPPED
        assert session.state.retry_count == RETRY_LIMIT

    async def test_stopped_session_still_attempts_intents(
        self,
        session: DeviceSession,
        fake_adb: FakeAdb,
    ) -> None:
        fake_adb.fail(POWER)
        for _ in range(RETRY_LIMIT):
            await session.reconcile()
        fake_adb.clear()
        assert await session.set_source(1) is True
        assert session.state.retry_count == 0
        assert session.lifecycle is SessionState.STOPPED


# ---------------------------------------------------------------------------
# Polling lifecycle
# ---------------------------------------------------------------------------


class TestPolling:
    """Technique: Clock Injection — scheduler-driven reconciliation."""

    async def test_polling_stops_at_retry_limit(
        self,
        session: DeviceSession,
        fake_adb: FakeAdb,
        fake_clock: FakeClock,
    ) -> None:
        fake_adb.respond("connect", "failed to connect")
        await asyncio.wait_for(session.start(), timeout=2.0)
        assert session.scheduler.fire_count == RETRY_LIMIT
        assert fake_clock.sleeps == [5.0] * RETRY_LIMIT
        assert session.lifecycle is SessionState.STOPPED
        # one attempt during initialization plus one per poll
        assert fake_adb.count("connect") == RETRY_LIMIT + 1

    async def test_stop_waits_for_session_task(
        self,
        session: DeviceSession,
        fake_adb: FakeAdb,
        accessory: RecordingAccessory,
    ) -> None:
        fake_adb.respond("getprop", "BRAVIA\nSony\nSER1")
        fake_adb.respond(POWER, "true")
        task = session.start()
        for _ in range(500):
            if session.scheduler.fire_count >= 2:
                break
            await asyncio.sleep(0)
        await asyncio.wait_for(session.stop(), timeout=2.0)
        assert task.done()
        assert session.scheduler.cancelled
        assert session.lifecycle is SessionState.READY
        assert accessory.identities

    async def test_start_is_idempotent(self, session: DeviceSession) -> None:
        first = session.start()
        assert session.start() is first
        await session.stop()
