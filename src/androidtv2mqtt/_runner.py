"""adb command execution.

:class:`CommandRunner` is the port the connection manager and the
session issue every command through; :class:`AdbCommandRunner` runs the
real ``adb`` binary as an asyncio subprocess.

The runner has no retry policy.  It has exactly one responsibility
beyond running the process: no command may outlive its timeout.  A
process that exceeds it is killed and reported as
:attr:`CommandFailure.TIMEOUT`.
"""

from __future__ import annotations

import asyncio
import logging
import shlex
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from androidtv2mqtt._errors import CommandError, CommandFailure

logger = logging.getLogger(__name__)


@runtime_checkable
class CommandRunner(Protocol):
    """Runs one adb command and returns its trimmed standard output."""

    async def run(self, args: Sequence[str], *, timeout: float | None = None) -> str:
        """Execute ``adb <args>``.

        Raises:
            CommandError: The process could not be started, exited
                non-zero, or exceeded *timeout*.
        """
        ...


def shell_args(serial: str, command: str) -> list[str]:
    """Arguments for running *command* in the shell of device *serial*."""
    return ["-s", serial, "shell", command]


def trim_output(text: str) -> str:
    """Trim command output, keeping leading blank lines.

    Multi-line answers such as the ``getprop`` triple are positional; an
    empty first property must stay an empty first line.
    """
    return text.rstrip().lstrip(" \t")


def render(args: Sequence[str]) -> str:
    """Render an adb argument vector for logs and error messages."""
    return shlex.join(["adb", *args])


@dataclass(slots=True)
class AdbCommandRunner:
    """Runs the ``adb`` executable.

    Args:
        executable: Path or name of the adb binary.
        default_timeout: Applied when a caller passes no timeout.
    """

    executable: str = "adb"
    default_timeout: float = 10.0

    async def run(self, args: Sequence[str], *, timeout: float | None = None) -> str:
        command = render(args)
        limit = self.default_timeout if timeout is None else timeout
        logger.debug("Running %s (timeout=%.1fs)", command, limit)

        try:
            process = await asyncio.create_subprocess_exec(
                self.executable,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise CommandError(CommandFailure.EXEC_FAILURE, command, str(exc)) from exc

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(),
                timeout=limit,
            )
        except TimeoutError as exc:
            process.kill()
            await process.wait()
            raise CommandError(
                CommandFailure.TIMEOUT,
                command,
                f"no result after {limit:.1f}s",
            ) from exc

        stdout = trim_output(stdout_bytes.decode("utf-8", errors="replace"))
        stderr = stderr_bytes.decode("utf-8", errors="replace").strip()
        if process.returncode != 0:
            raise CommandError(
                CommandFailure.NON_ZERO_EXIT,
                command,
                stderr or stdout or f"exit status {process.returncode}",
            )
        return stdout
