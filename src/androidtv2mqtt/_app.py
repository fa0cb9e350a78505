"""Bridge orchestrator: one device session per configured television.

The :class:`Bridge` class is the composition root.  It loads settings,
configures logging, connects to the broker, builds a
:class:`~androidtv2mqtt._session.DeviceSession` for every configured TV
and routes inbound intents to them::

    from androidtv2mqtt import Bridge

    Bridge(version="0.1.0").run()

Intent topics::

    {prefix}/{device}/power/set    ← "ON" / "OFF" (also 1/0, true/false)
    {prefix}/{device}/source/set   ← configured source id

Every intent handler returns normally.  Malformed payloads, unknown
sources and unconfirmed intents are logged and published through the
:class:`~androidtv2mqtt._errors.ErrorPublisher`.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import uuid

from androidtv2mqtt._accessory import MqttAccessory
from androidtv2mqtt._clock import ClockPort, SystemClock
from androidtv2mqtt._errors import (
    ConfigError,
    ErrorPublisher,
    IntentFailedError,
    InvalidPayloadError,
)
from androidtv2mqtt._health import HealthReporter, build_will_config
from androidtv2mqtt._logging import configure_logging
from androidtv2mqtt._models import (
    AppDefinition,
    DeviceIdentity,
    PowerState,
    SourceDefinition,
)
from androidtv2mqtt._mqtt import (
    MessageCallback,
    MqttClient,
    MqttLifecycle,
    MqttMessageHandler,
    MqttPort,
    NullMqttClient,
)
from androidtv2mqtt._router import TopicRouter
from androidtv2mqtt._runner import AdbCommandRunner, CommandRunner
from androidtv2mqtt._session import DeviceSession
from androidtv2mqtt._settings import Settings, TvSettings
from androidtv2mqtt._wol import MagicPacketSender, WakeOnLanPort

logger = logging.getLogger(__name__)

POWER_CHANNEL = "power"
SOURCE_CHANNEL = "source"

_CONNECT_TIMEOUT = 10.0

_ON_PAYLOADS = frozenset({"on", "1", "true"})
_OFF_PAYLOADS = frozenset({"off", "0", "false"})


# ---------------------------------------------------------------------------
# Payload parsing
# ---------------------------------------------------------------------------


def parse_power_payload(payload: str) -> PowerState:
    """Map a power intent payload to ``ON`` / ``OFF``.

    Raises:
        InvalidPayloadError: The payload is neither.
    """
    value = payload.strip().lower()
    if value in _ON_PAYLOADS:
        return PowerState.ON
    if value in _OFF_PAYLOADS:
        return PowerState.OFF
    msg = f"Invalid power payload {payload!r}, expected ON or OFF"
    raise InvalidPayloadError(msg)


def parse_source_payload(payload: str) -> int:
    """Map a source intent payload to a source id.

    Raises:
        InvalidPayloadError: The payload is not an integer.
    """
    try:
        return int(payload.strip())
    except ValueError:
        msg = f"Invalid source payload {payload!r}, expected a source id"
        raise InvalidPayloadError(msg) from None


# ---------------------------------------------------------------------------
# Session construction
# ---------------------------------------------------------------------------


def build_identity(tv: TvSettings) -> DeviceIdentity:
    return DeviceIdentity(address=tv.address or "", mac=tv.mac, name=tv.name)


def build_sources(tv: TvSettings) -> list[SourceDefinition]:
    return [
        SourceDefinition(
            id=source.id,
            name=source.name,
            key_code=source.key_code,
            is_default=source.is_default,
            package=source.package,
        )
        for source in tv.sources
    ]


def build_apps(tv: TvSettings) -> list[AppDefinition]:
    return [AppDefinition(id=app.id, name=app.name) for app in tv.apps]


class Bridge:
    """Composition root and lifecycle orchestrator.

    Args:
        name: Application name, used for the MQTT client id and logs.
        version: Application version string.
        description: Short description for CLI help text.
        heartbeat_interval: Seconds between heartbeats on
            ``{prefix}/status``; ``None`` disables the periodic loop.
        dry_run: Use a :class:`NullMqttClient` instead of a broker.
    """

    def __init__(
        self,
        name: str = "androidtv2mqtt",
        version: str = "0.0.0",
        *,
        description: str = "Android TV to MQTT bridge",
        heartbeat_interval: float | None = 60.0,
        dry_run: bool = False,
    ) -> None:
        if heartbeat_interval is not None and heartbeat_interval <= 0:
            msg = f"heartbeat_interval must be positive, got {heartbeat_interval}"
            raise ValueError(msg)
        self._name = name
        self._version = version
        self._description = description
        self._heartbeat_interval = heartbeat_interval
        self._dry_run = dry_run
        self._sessions: dict[str, DeviceSession] = {}
        self._intent_tasks: set[asyncio.Task[None]] = set()

    @property
    def name(self) -> str:
        return self._name

    @property
    def version(self) -> str:
        return self._version

    @property
    def description(self) -> str:
        return self._description

    @property
    def dry_run(self) -> bool:
        return self._dry_run

    @dry_run.setter
    def dry_run(self, value: bool) -> None:
        self._dry_run = value

    @property
    def sessions(self) -> dict[str, DeviceSession]:
        """Running sessions keyed by device id."""
        return dict(self._sessions)

    # --- Lifecycle ---------------------------------------------------------

    def run(
        self,
        *,
        mqtt: MqttPort | None = None,
        settings: Settings | None = None,
        shutdown_event: asyncio.Event | None = None,
        clock: ClockPort | None = None,
    ) -> None:
        """Start the bridge (blocking).

        Wraps :meth:`_run_async` in :func:`asyncio.run`; Ctrl-C shuts
        down cleanly.
        """
        with contextlib.suppress(KeyboardInterrupt):
            asyncio.run(
                self._run_async(
                    mqtt=mqtt,
                    settings=settings,
                    shutdown_event=shutdown_event,
                    clock=clock,
                ),
            )

    async def _run_async(
        self,
        *,
        mqtt: MqttPort | None = None,
        settings: Settings | None = None,
        shutdown_event: asyncio.Event | None = None,
        clock: ClockPort | None = None,
        runner: CommandRunner | None = None,
        wol: WakeOnLanPort | None = None,
    ) -> None:
        """Async orchestration.

        1. Bootstrap settings, logging, MQTT, health and error services.
        2. Build one session per TV and wire intent routing.
        3. Start sessions and the heartbeat, block until shutdown.
        4. Stop sessions, publish offline, disconnect.

        Every collaborator can be injected for tests: a
        :class:`MockMqttClient`, a fake clock, a fake adb runner and a
        fake wake-on-LAN sender.
        """
        # --- Phase 1: Bootstrap infrastructure ---
        resolved_settings = settings if settings is not None else Settings()
        prefix = resolved_settings.mqtt.topic_prefix or self._name
        configure_logging(
            resolved_settings.logging,
            service=self._name,
            version=self._version,
        )
        resolved_clock = clock if clock is not None else SystemClock()
        resolved_runner = runner if runner is not None else AdbCommandRunner(
            executable=resolved_settings.adb.executable,
            default_timeout=resolved_settings.adb.command_timeout,
        )
        resolved_wol = wol if wol is not None else MagicPacketSender()

        mqtt = self._create_mqtt(mqtt, resolved_settings, prefix)
        health_reporter = HealthReporter(
            mqtt=mqtt,
            topic_prefix=prefix,
            version=self._version,
            clock=resolved_clock,
        )
        error_publisher = ErrorPublisher(mqtt=mqtt, topic_prefix=prefix)

        if isinstance(mqtt, MqttLifecycle):
            await mqtt.start()
        if isinstance(mqtt, MqttClient) and not await mqtt.wait_connected(
            timeout=_CONNECT_TIMEOUT,
        ):
            logger.warning(
                "Broker %s:%d not reachable yet, continuing in the background",
                resolved_settings.mqtt.host,
                resolved_settings.mqtt.port,
            )

        # --- Phase 2: Sessions and routing ---
        shutdown_event = self._install_signal_handlers(shutdown_event)

        self._sessions = self._build_sessions(
            resolved_settings,
            mqtt,
            prefix,
            resolved_runner,
            resolved_wol,
            resolved_clock,
        )
        if not self._sessions:
            logger.warning("No usable TVs configured")

        router = self._wire_router(self._sessions, prefix, error_publisher)
        await self._subscribe(mqtt, router)

        for device in self._sessions:
            await health_reporter.publish_device_available(device)

        # --- Phase 3: Run ---
        for session in self._sessions.values():
            session.start()

        self._refresh_device_statuses(health_reporter)
        await health_reporter.publish_heartbeat()
        heartbeat_task = self._start_heartbeat_task(health_reporter, resolved_clock)

        await shutdown_event.wait()
        logger.info("Shutdown requested")

        # --- Phase 4: Tear down ---
        if heartbeat_task is not None:
            heartbeat_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await heartbeat_task
        await self._drain_intents()
        await self._stop_sessions(list(self._sessions.values()))

        await health_reporter.shutdown()

        if isinstance(mqtt, MqttLifecycle):
            await mqtt.stop()

        logger.info("Shutdown complete")

    # --- _run_async helpers ------------------------------------------------

    def _create_mqtt(
        self,
        mqtt: MqttPort | None,
        resolved_settings: Settings,
        prefix: str,
    ) -> MqttPort:
        """Create the MQTT client, or return the injected one.

        When no ``client_id`` is configured one is generated from the
        app name and a short random suffix.
        """
        if mqtt is not None:
            return mqtt
        if self._dry_run:
            logger.info("Dry run: MQTT messages are logged, not sent")
            return NullMqttClient()
        mqtt_settings = resolved_settings.mqtt
        if not mqtt_settings.client_id:
            generated_id = f"{self._name}-{uuid.uuid4().hex[:8]}"
            mqtt_settings = mqtt_settings.model_copy(
                update={"client_id": generated_id},
            )
        return MqttClient(settings=mqtt_settings, will=build_will_config(prefix))

    @staticmethod
    def _install_signal_handlers(
        shutdown_event: asyncio.Event | None,
    ) -> asyncio.Event:
        """Install SIGTERM/SIGINT handlers. Returns the shutdown event."""
        if shutdown_event is not None:
            return shutdown_event
        event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, event.set)
        return event

    @staticmethod
    def _build_sessions(
        settings: Settings,
        mqtt: MqttPort,
        prefix: str,
        runner: CommandRunner,
        wol: WakeOnLanPort,
        clock: ClockPort,
    ) -> dict[str, DeviceSession]:
        """Build a session per configured TV, skipping unusable ones."""
        sessions: dict[str, DeviceSession] = {}
        for tv in settings.tvs:
            device = tv.device_id
            if device in sessions:
                logger.error(
                    "Skipping TV '%s': device id '%s' is already in use",
                    tv.name,
                    device,
                )
                continue
            sources = build_sources(tv)
            apps = build_apps(tv)
            accessory = MqttAccessory(
                mqtt,
                topic_prefix=prefix,
                device=device,
                name=tv.name,
                sources=sources,
                apps=apps,
            )
            try:
                sessions[device] = DeviceSession(
                    build_identity(tv),
                    sources,
                    runner=runner,
                    wol=wol,
                    accessory=accessory,
                    apps=apps,
                    interval=tv.interval,
                    launcher_activities=tv.launcher_activities,
                    optimistic_source=tv.optimistic_source,
                    clock=clock,
                )
            except ConfigError as exc:
                logger.error("Skipping TV '%s': %s", tv.name, exc)
                continue
            logger.info("TV '%s' registered as '%s'", tv.name, device)
        return sessions

    def _wire_router(
        self,
        sessions: dict[str, DeviceSession],
        prefix: str,
        error_publisher: ErrorPublisher,
    ) -> TopicRouter:
        """Create a TopicRouter with power and source handlers per TV."""
        router = TopicRouter(topic_prefix=prefix)
        for device, session in sessions.items():
            power = self._power_handler(device, session, error_publisher)
            source = self._source_handler(device, session, error_publisher)
            router.register(device, POWER_CHANNEL, self._in_background(power))
            router.register(device, SOURCE_CHANNEL, self._in_background(source))
        return router

    def _in_background(self, handler: MessageCallback) -> MessageCallback:
        """Run *handler* as its own task so the MQTT loop is never held.

        Intents for one TV still run in order through the session lock;
        intents for different TVs proceed independently.
        """

        async def _spawn(topic: str, payload: str) -> None:
            task = asyncio.create_task(
                handler(topic, payload),  # type: ignore[arg-type]
                name=f"intent {topic}",
            )
            self._intent_tasks.add(task)
            task.add_done_callback(self._intent_tasks.discard)

        return _spawn

    async def _drain_intents(self) -> None:
        """Wait for intents that are still being carried out."""
        if self._intent_tasks:
            logger.info("Waiting for %d pending intent(s)", len(self._intent_tasks))
            await asyncio.gather(*self._intent_tasks, return_exceptions=True)

    @staticmethod
    def _power_handler(
        device: str,
        session: DeviceSession,
        error_publisher: ErrorPublisher,
    ) -> MessageCallback:
        async def _handle(topic: str, payload: str) -> None:
            try:
                desired = parse_power_payload(payload)
                if not await session.set_power(desired):
                    msg = f"TV did not confirm power {desired.value}"
                    raise IntentFailedError(msg)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("Power intent for '%s' failed: %s", device, exc)
                await error_publisher.publish(
                    exc,
                    device=device,
                    details={"topic": topic, "payload": payload},
                )

        return _handle

    @staticmethod
    def _source_handler(
        device: str,
        session: DeviceSession,
        error_publisher: ErrorPublisher,
    ) -> MessageCallback:
        async def _handle(topic: str, payload: str) -> None:
            try:
                source_id = parse_source_payload(payload)
                if not await session.set_source(source_id):
                    msg = f"TV did not confirm source {source_id}"
                    raise IntentFailedError(msg)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("Source intent for '%s' failed: %s", device, exc)
                await error_publisher.publish(
                    exc,
                    device=device,
                    details={"topic": topic, "payload": payload},
                )

        return _handle

    @staticmethod
    async def _subscribe(mqtt: MqttPort, router: TopicRouter) -> None:
        """Subscribe to intent topics and wire the message handler."""
        for topic in router.subscriptions:
            await mqtt.subscribe(topic)
        if isinstance(mqtt, MqttMessageHandler):
            mqtt.on_message(router.route)

    def _refresh_device_statuses(self, health_reporter: HealthReporter) -> None:
        for device, session in self._sessions.items():
            health_reporter.set_device_status(
                device,
                session.lifecycle.value,
                session.state.retry_count,
            )

    def _start_heartbeat_task(
        self,
        health_reporter: HealthReporter,
        clock: ClockPort,
    ) -> asyncio.Task[None] | None:
        if self._heartbeat_interval is None:
            return None
        return asyncio.create_task(
            self._heartbeat_loop(health_reporter, self._heartbeat_interval, clock),
        )

    async def _heartbeat_loop(
        self,
        health_reporter: HealthReporter,
        interval: float,
        clock: ClockPort,
    ) -> None:
        """Publish heartbeats with fresh session states until cancelled."""
        while True:
            await clock.sleep(interval)
            self._refresh_device_statuses(health_reporter)
            await health_reporter.publish_heartbeat()

    @staticmethod
    async def _stop_sessions(sessions: list[DeviceSession]) -> None:
        """Stop every session and wait for in-flight work to finish."""
        results = await asyncio.gather(
            *(session.stop() for session in sessions),
            return_exceptions=True,
        )
        for session, result in zip(sessions, results, strict=True):
            if isinstance(result, Exception):
                logger.error(
                    "Session %s ended with an error: %s",
                    session.identity.address,
                    result,
                )
