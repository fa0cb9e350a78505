"""Device session: the control-and-polling relationship with one TV.

A :class:`DeviceSession` owns a television's :class:`DeviceState` and is
the only component that mutates it.  Intents (power, source) and poll
cycles all go through one per-session :class:`asyncio.Lock`, so two
commands are never in flight on the same adb transport; a second
request waits for the first instead of interleaving with it.

Lifecycle::

    UNINITIALIZED → INITIALIZING → READY ⇄ DEGRADED → STOPPED

- any command or connection failure increments ``retry_count`` and
  moves the session to DEGRADED;
- any successful command resets ``retry_count`` and moves it back to
  READY;
- when ``retry_count`` reaches :data:`RETRY_LIMIT` the session is
  STOPPED: polling ends for good, intents are still attempted once.

Failed commands trigger a connection reset.  The failed command is
*not* repeated; the next poll cycle or intent is the retry.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from androidtv2mqtt._accessory import AccessoryPort
from androidtv2mqtt._clock import ClockPort, SystemClock
from androidtv2mqtt._connection import RETRY_LIMIT, ConnectionManager
from androidtv2mqtt._errors import (
    CommandError,
    ConfigError,
    DeviceConnectionError,
    ParseError,
    SourceNotFoundError,
)
from androidtv2mqtt._logging import DeviceLogger
from androidtv2mqtt._models import (
    AppDefinition,
    DeviceIdentity,
    DeviceState,
    LauncherToken,
    PowerState,
    ProductIdentity,
    SessionState,
    SourceDefinition,
)
from androidtv2mqtt._parsers import (
    parse_focused_source,
    parse_power,
    parse_product_info,
)
from androidtv2mqtt._runner import CommandRunner, shell_args
from androidtv2mqtt._scheduler import PollScheduler
from androidtv2mqtt._settings import DEFAULT_INTERVAL_MS, DEFAULT_LAUNCHER_ACTIVITIES
from androidtv2mqtt._wol import WakeOnLanPort

logger = logging.getLogger(__name__)

MIN_INTERVAL_MS = 300

PRODUCT_INFO_COMMAND = (
    "getprop ro.product.model && getprop ro.product.manufacturer && getprop ro.serialno"
)
POWER_STATE_COMMAND = "dumpsys power | grep mHoldingDisplay | cut -d = -f 2"
FOCUSED_APP_COMMAND = "dumpsys window windows | grep -E mFocusedApp"
KEYCODE_WAKEUP = "KEYCODE_WAKEUP"
KEYCODE_SLEEP = "KEYCODE_SLEEP"

_SessionFailure = CommandError | DeviceConnectionError


def key_event(key_code: str) -> str:
    return f"input keyevent {key_code}"


class DeviceSession:
    """Resilient control session for one Android television.

    Args:
        identity: Address, MAC and display name of the TV.
        sources: Configured input sources (ids must be unique).
        runner: Command runner used for every adb call.
        wol: Wake-on-LAN capability.
        accessory: Sink for state pushes.
        apps: Configured apps; stored only.
        interval: Poll interval in milliseconds, floored to
            :data:`MIN_INTERVAL_MS`.
        launcher_activities: Activity names that identify the home
            screen in the focused-window output.
        optimistic_source: Record a requested source before its
            key-event is confirmed.
        retry_limit: Consecutive failures that stop polling.
        clock: Clock driving the poll scheduler.

    Raises:
        ConfigError: The identity has no address or source ids repeat.
    """

    def __init__(
        self,
        identity: DeviceIdentity,
        sources: Sequence[SourceDefinition],
        *,
        runner: CommandRunner,
        wol: WakeOnLanPort,
        accessory: AccessoryPort,
        apps: Sequence[AppDefinition] = (),
        interval: int = DEFAULT_INTERVAL_MS,
        launcher_activities: Sequence[str] = DEFAULT_LAUNCHER_ACTIVITIES,
        optimistic_source: bool = True,
        retry_limit: int = RETRY_LIMIT,
        clock: ClockPort | None = None,
    ) -> None:
        if not identity.address:
            msg = f"Please provide an address for TV '{identity.name}'"
            raise ConfigError(msg)
        by_id = {source.id: source for source in sources}
        if len(by_id) != len(sources):
            msg = f"Duplicate source ids for TV '{identity.name}'"
            raise ConfigError(msg)

        self._identity = identity
        self._sources = tuple(sources)
        self._sources_by_id = by_id
        self._apps = tuple(apps)
        self._runner = runner
        self._wol = wol
        self._accessory = accessory
        self._launcher_activities = tuple(launcher_activities)
        self._optimistic_source = optimistic_source
        self._retry_limit = retry_limit
        self._log = DeviceLogger(logger, identity.address)

        if interval < MIN_INTERVAL_MS:
            self._log.warning(
                "interval %dms floods the network, using %dms",
                interval,
                MIN_INTERVAL_MS,
            )
            interval = MIN_INTERVAL_MS
        self._interval = interval

        self._connection = ConnectionManager(
            runner,
            identity.serial,
            retry_limit=retry_limit,
        )
        self._scheduler = PollScheduler(
            self.reconcile,
            interval=interval / 1000,
            clock=clock if clock is not None else SystemClock(),
            should_stop=self._polling_exhausted,
            name=identity.address,
        )
        self._state = DeviceState()
        self._lifecycle = SessionState.UNINITIALIZED
        self._product: ProductIdentity | None = None
        self._lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None

        self._log.debug("sources: %s", self._sources)
        self._log.debug("apps: %s", self._apps)

    # -- Read-only views ----------------------------------------------------

    @property
    def identity(self) -> DeviceIdentity:
        return self._identity

    @property
    def sources(self) -> tuple[SourceDefinition, ...]:
        return self._sources

    @property
    def apps(self) -> tuple[AppDefinition, ...]:
        return self._apps

    @property
    def state(self) -> DeviceState:
        """Snapshot of the device state."""
        return DeviceState(
            power=self._state.power,
            active_source_id=self._state.active_source_id,
            retry_count=self._state.retry_count,
        )

    @property
    def lifecycle(self) -> SessionState:
        return self._lifecycle

    @property
    def product(self) -> ProductIdentity | None:
        return self._product

    @property
    def connection(self) -> ConnectionManager:
        return self._connection

    @property
    def scheduler(self) -> PollScheduler:
        return self._scheduler

    @property
    def poll_interval(self) -> int:
        """Effective poll interval in milliseconds."""
        return self._interval

    @property
    def busy(self) -> bool:
        """True while a command sequence holds the transport."""
        return self._lock.locked()

    # -- Lifecycle ----------------------------------------------------------

    def start(self) -> asyncio.Task[None]:
        """Initialize in the background, then poll until stopped."""
        if self._task is None:
            self._task = asyncio.create_task(
                self._run(),
                name=f"session-{self._identity.address}",
            )
        return self._task

    async def stop(self) -> None:
        """Stop polling and wait for the session task.

        A reconciliation that is already running completes first.
        """
        self._scheduler.cancel()
        if self._task is not None:
            await self._task

    async def _run(self) -> None:
        await self.initialize()
        await self._scheduler.run()
        if self._lifecycle is SessionState.STOPPED:
            self._log.info(
                "tried to reach the TV %d times, updating has stopped",
                self._state.retry_count,
            )

    async def initialize(self) -> bool:
        """Connect and publish the product identity.

        Returns:
            True when the session is READY.  On failure the session is
            DEGRADED and polling will keep trying.
        """
        self._lifecycle = SessionState.INITIALIZING
        async with self._lock:
            try:
                await self._connection.probe()
                await self._connection.ensure_connected()
                await self._fetch_identity()
            except (CommandError, DeviceConnectionError, ParseError) as exc:
                self._log.error("can't get accessory information: %s", exc)
                self._log.error("please check the adb connection to this TV manually")
                self._lifecycle = SessionState.DEGRADED
                return False
        self._lifecycle = SessionState.READY
        self._log.info("session ready")
        return True

    # -- Intents ------------------------------------------------------------

    async def set_power(self, desired: PowerState) -> bool:
        """Turn the TV on or off.

        Returns:
            True when the TV confirmed the change.
        """
        if desired is PowerState.UNKNOWN:
            msg = "Desired power must be ON or OFF"
            raise ValueError(msg)
        async with self._lock:
            if desired is PowerState.ON:
                return await self._power_on()
            return await self._power_off()

    async def _power_on(self) -> bool:
        self._log.info("power on requested")
        if not await self._wol.send_magic_packet(self._identity.mac):
            self._log.error("wake-on-LAN failed")
            await self._commit_power(PowerState.OFF)
            return False

        try:
            await self._connection.ensure_connected()
            await self._shell(key_event(KEYCODE_WAKEUP))
        except (CommandError, DeviceConnectionError) as exc:
            self._log.error("can't wake the TV up: %s", exc)
            await self._record_failure(exc)
            await self._commit_power(PowerState.OFF)
            return False

        self._record_success()
        if self._state.active_source_id is not None:
            await self._accessory.update_active_source(self._state.active_source_id)
        await self._commit_power(PowerState.ON)
        self._log.info("TV is awake")
        return True

    async def _power_off(self) -> bool:
        self._log.info("power off requested")
        try:
            await self._connection.ensure_connected()
            await self._shell(key_event(KEYCODE_SLEEP))
        except (CommandError, DeviceConnectionError) as exc:
            self._log.error("can't put the TV to sleep: %s", exc)
            await self._record_failure(exc)
            if self._state.power is not PowerState.UNKNOWN:
                await self._accessory.update_power(self._state.power is PowerState.ON)
            return False

        self._record_success()
        await self._commit_power(PowerState.OFF)
        self._log.info("TV is sleeping")
        return True

    async def set_source(self, source_id: int) -> bool:
        """Switch to the configured source *source_id*.

        Sends the wake key-event and then the source key-event; both
        are attempted even if the first fails.  With
        ``optimistic_source`` the id is recorded before either is sent
        and stays recorded when they fail.

        Returns:
            True when both key-events succeeded.

        Raises:
            SourceNotFoundError: *source_id* is not configured.
        """
        source = self._sources_by_id.get(source_id)
        if source is None:
            raise SourceNotFoundError(source_id, self._identity.address)

        async with self._lock:
            self._log.info("switching to %s (id=%d)", source.name, source.id)
            if self._optimistic_source:
                self._state.active_source_id = source.id

            try:
                await self._connection.ensure_connected()
            except DeviceConnectionError as exc:
                await self._record_failure(exc)
                return False

            failure: _SessionFailure | None = None
            for command in (key_event(KEYCODE_WAKEUP), key_event(source.key_code)):
                try:
                    await self._shell(command)
                except CommandError as exc:
                    self._log.warning("%r failed: %s", command, exc)
                    failure = exc

            if failure is not None:
                await self._record_failure(failure)
                return False

            self._record_success()
            self._state.active_source_id = source.id
            await self._accessory.update_active_source(source.id)
            self._log.info("switched to %s", source.name)
            return True

    # -- Reconciliation -----------------------------------------------------

    async def reconcile(self) -> bool:
        """Read the TV's power and focused source and push them.

        Returns:
            True when the cycle completed and state was pushed.
        """
        async with self._lock:
            try:
                await self._connection.ensure_connected()
                power_on = parse_power(await self._shell(POWER_STATE_COMMAND))
                source_id = self._state.active_source_id
                if power_on:
                    focused = await self._shell(FOCUSED_APP_COMMAND)
                    source_id = self._observed_source(focused, source_id)
            except (CommandError, DeviceConnectionError) as exc:
                self._log.warning("no status from the TV: %s", exc)
                await self._record_failure(exc)
                return False

            self._record_success()
            self._state.power = PowerState.ON if power_on else PowerState.OFF
            self._state.active_source_id = source_id

            await self._accessory.update_power(power_on)
            if source_id is not None:
                await self._accessory.update_active_source(source_id)

            if self._product is None:
                await self._try_fetch_identity()
            return True

    def _observed_source(self, focused: str, current: int | None) -> int | None:
        try:
            token = parse_focused_source(focused, self._launcher_activities)
        except ParseError as exc:
            self._log.debug("focused source unknown: %s", exc)
            return current

        if token is LauncherToken.LAUNCHER:
            resolved = self._default_source()
        else:
            resolved = self._source_for_package(token)
            if resolved is None:
                self._log.warning("focused app %r matches no configured source", token)
        if resolved is None or resolved.id == current:
            return current
        self._log.info("active source is now %s (id=%d)", resolved.name, resolved.id)
        return resolved.id

    def _default_source(self) -> SourceDefinition | None:
        for source in self._sources:
            if source.is_default:
                return source
        return self._sources[0] if self._sources else None

    def _source_for_package(self, package: str) -> SourceDefinition | None:
        for source in self._sources:
            if source.package == package:
                return source
        return None

    # -- Internal -----------------------------------------------------------

    async def _shell(self, command: str) -> str:
        return await self._runner.run(shell_args(self._identity.serial, command))

    async def _fetch_identity(self) -> ProductIdentity:
        product = parse_product_info(await self._shell(PRODUCT_INFO_COMMAND))
        if product.serial is None:
            product = ProductIdentity(
                model=product.model,
                manufacturer=product.manufacturer,
                serial=self._identity.address,
            )
        self._product = product
        self._log.info("%s %s (serial %s)", product.manufacturer, product.model, product.serial)
        await self._accessory.publish_identity(product)
        return product

    async def _try_fetch_identity(self) -> None:
        try:
            await self._fetch_identity()
        except (CommandError, ParseError) as exc:
            self._log.warning("product information still unavailable: %s", exc)

    async def _commit_power(self, power: PowerState) -> None:
        self._state.power = power
        await self._accessory.update_power(power is PowerState.ON)

    def _record_success(self) -> None:
        self._state.retry_count = 0
        if self._lifecycle is not SessionState.STOPPED:
            self._lifecycle = SessionState.READY

    async def _record_failure(self, exc: _SessionFailure) -> None:
        self._state.retry_count += 1
        if self._lifecycle is not SessionState.STOPPED:
            self._lifecycle = SessionState.DEGRADED
        if self._state.retry_count >= self._retry_limit:
            self._lifecycle = SessionState.STOPPED
        self._log.debug("failure %d/%d", self._state.retry_count, self._retry_limit)

        if isinstance(exc, CommandError):
            try:
                await self._connection.reset()
            except DeviceConnectionError as reset_exc:
                self._log.warning("connection reset failed: %s", reset_exc)

    def _polling_exhausted(self) -> bool:
        return self._lifecycle is SessionState.STOPPED
