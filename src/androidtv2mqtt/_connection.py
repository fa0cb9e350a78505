"""adb transport management for one device.

``adb connect`` exits successfully even when it fails, so the outcome is
read from its output:

- contains ``failed``     → :attr:`ConnectionFailure.FAILED`
- contains ``connected``  → success (also matches "already connected")
- anything else           → :attr:`ConnectionFailure.AMBIGUOUS`

Every failed attempt increments :attr:`ConnectionManager.retry_count`;
a success resets it.  The manager never retries on its own — the
session decides when to try again.
"""

from __future__ import annotations

import logging

from androidtv2mqtt._errors import (
    CommandError,
    ConnectionFailure,
    DeviceConnectionError,
)
from androidtv2mqtt._logging import DeviceLogger
from androidtv2mqtt._models import ConnectionState
from androidtv2mqtt._parsers import parse_device_list
from androidtv2mqtt._runner import CommandRunner

logger = logging.getLogger(__name__)

RETRY_LIMIT = 5

_FAILURE_TOKEN = "failed"
_SUCCESS_TOKEN = "connected"
_DISCONNECTED_TOKEN = "disconnected"


class ConnectionManager:
    """Establishes and repairs the adb session to one device.

    Args:
        runner: Command runner used for ``devices`` / ``connect`` /
            ``disconnect``.
        serial: adb serial of the device (``host:port``).
        retry_limit: Failed attempts after which :attr:`exhausted`
            becomes true.
    """

    def __init__(
        self,
        runner: CommandRunner,
        serial: str,
        *,
        retry_limit: int = RETRY_LIMIT,
    ) -> None:
        self._runner = runner
        self._serial = serial
        self._retry_limit = retry_limit
        self._state = ConnectionState.DISCONNECTED
        self._retry_count = 0
        self._log = DeviceLogger(logger, serial)

    @property
    def serial(self) -> str:
        return self._serial

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def retry_count(self) -> int:
        """Consecutive failed connection attempts."""
        return self._retry_count

    @property
    def exhausted(self) -> bool:
        return self._retry_count >= self._retry_limit

    # -- Operations ---------------------------------------------------------

    async def probe(self) -> bool:
        """Check whether adb already lists the device.

        A device listed in state ``device`` has a live session, which is
        adopted as ``CONNECTED``.

        Raises:
            CommandError: ``adb devices`` itself failed.
        """
        listing = parse_device_list(await self._runner.run(["devices"]))
        device_state = listing.get(self._serial)
        if device_state is None:
            self._log.info("not in the adb device list")
            return False
        self._log.debug("listed by adb as %r", device_state)
        if device_state == "device":
            self._state = ConnectionState.CONNECTED
        return True

    async def ensure_connected(self) -> None:
        """Connect unless a session is already up.

        A stale session is dropped first; failing to drop it is
        expected when it is already gone and is only logged.

        Raises:
            DeviceConnectionError: The connect attempt failed or its
                output was not understood.
        """
        if self.connected:
            return
        self._log.info("connection attempt %d", self._retry_count + 1)
        await self._disconnect_quietly()
        await self._connect()

    async def reset(self) -> None:
        """Drop the session and, if the drop is confirmed, reconnect.

        Used after a command failure.  The failed command is not
        repeated here.

        Raises:
            DeviceConnectionError: The disconnect was not confirmed
                (``RESET_FAILED``) or the reconnect failed.
        """
        self._state = ConnectionState.DISCONNECTED
        try:
            output = await self._runner.run(["disconnect", self._serial])
        except CommandError as exc:
            self._log.warning("reset: disconnect failed: %s", exc)
            raise DeviceConnectionError(
                ConnectionFailure.RESET_FAILED,
                self._serial,
                exc.diagnostic,
            ) from exc
        if _DISCONNECTED_TOKEN not in output:
            self._log.warning("reset: disconnect not confirmed: %s", output)
            raise DeviceConnectionError(
                ConnectionFailure.RESET_FAILED,
                self._serial,
                output,
            )
        await self._connect()

    # -- Internal -----------------------------------------------------------

    async def _connect(self) -> None:
        try:
            output = await self._runner.run(["connect", self._serial])
        except CommandError as exc:
            self._retry_count += 1
            self._log.error("adb connect failed: %s", exc)
            raise DeviceConnectionError(
                ConnectionFailure.FAILED,
                self._serial,
                exc.diagnostic,
            ) from exc

        if _FAILURE_TOKEN in output:
            self._retry_count += 1
            self._log.error("adb connect: %s", output)
            raise DeviceConnectionError(ConnectionFailure.FAILED, self._serial, output)

        if _SUCCESS_TOKEN in output:
            self._retry_count = 0
            self._state = ConnectionState.CONNECTED
            self._log.info("connected")
            return

        self._retry_count += 1
        self._log.error("unexpected adb connect output: %r", output)
        await self._disconnect_quietly()
        raise DeviceConnectionError(ConnectionFailure.AMBIGUOUS, self._serial, output)

    async def _disconnect_quietly(self) -> None:
        try:
            await self._runner.run(["disconnect", self._serial])
        except CommandError as exc:
            self._log.debug("disconnect before connect failed: %s", exc)
