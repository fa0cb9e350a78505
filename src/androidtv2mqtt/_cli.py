"""Command line for androidtv2mqtt (Typer-based).

Provides :func:`build_cli` which constructs a Typer app that parses the
bridge options (``--config``, ``--dry-run``, ``--version``,
``--log-level``, ``--log-format``, ``--env-file``) and hands off to the
bridge's async lifecycle.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, get_args

import typer
from pydantic import ValidationError

from androidtv2mqtt._settings import LoggingSettings, Settings

if TYPE_CHECKING:
    from androidtv2mqtt._app import Bridge

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_RUNTIME_ERROR = 3

# ---------------------------------------------------------------------------
# Allowed values (extracted from LoggingSettings Literal types)
# ---------------------------------------------------------------------------

_VALID_LOG_LEVELS: tuple[str, ...] = get_args(
    LoggingSettings.model_fields["level"].annotation,
)
_VALID_LOG_FORMATS: tuple[str, ...] = get_args(
    LoggingSettings.model_fields["format"].annotation,
)


def load_settings(config: Path | None, env_file: str) -> Settings:
    """Build settings from *config* (JSON) or the environment.

    Raises:
        ValidationError: The configuration is invalid.
        OSError: *config* cannot be read.
        ValueError: *config* is not valid JSON.
    """
    if config is not None:
        return Settings.from_json_file(config, _env_file=env_file)
    return Settings(_env_file=env_file)  # type: ignore[call-arg]


def _choice(value: str | None, allowed: tuple[str, ...], option: str) -> str | None:
    """Normalise *value* to the case used in *allowed*, or reject it."""
    if value is None:
        return None
    for candidate in allowed:
        if candidate.lower() == value.lower():
            return candidate
    raise typer.BadParameter(
        f"Invalid value '{value}'. Choose from: {', '.join(allowed)}",
        param_hint=f"'{option}'",
    )


def _with_log_overrides(
    settings: Settings,
    level: str | None,
    log_format: str | None,
) -> Settings:
    overrides = {
        key: value
        for key, value in (("level", level), ("format", log_format))
        if value is not None
    }
    if overrides:
        settings.logging = settings.logging.model_copy(update=overrides)
    return settings


def build_cli(bridge: Bridge) -> typer.Typer:
    """Construct a Typer CLI around *bridge*.

    The single default command loads settings, applies the logging
    overrides and runs the bridge until SIGINT/SIGTERM.
    """
    cli = typer.Typer(
        help=f"{bridge.name} v{bridge.version}: {bridge.description}",
        add_completion=False,
    )

    @cli.callback(invoke_without_command=True)
    def main(
        version_flag: Annotated[
            bool,
            typer.Option("--version", is_eager=True, help="Show version and exit."),
        ] = False,
        config: Annotated[
            Path | None,
            typer.Option(
                "--config",
                "-c",
                help="JSON file with the TV list (takes precedence over the environment).",
            ),
        ] = None,
        dry_run: Annotated[
            bool,
            typer.Option(
                "--dry-run",
                help="Talk to the TVs but only log what would be published.",
            ),
        ] = False,
        log_level: Annotated[
            str | None,
            typer.Option("--log-level", help="Override the configured log level."),
        ] = None,
        log_format: Annotated[
            str | None,
            typer.Option("--log-format", help="Override the log format (json/text)."),
        ] = None,
        env_file: Annotated[
            str,
            typer.Option("--env-file", help="Path to a .env file."),
        ] = ".env",
    ) -> None:
        if version_flag:
            typer.echo(f"{bridge.name} v{bridge.version}")
            raise typer.Exit

        level = _choice(log_level, _VALID_LOG_LEVELS, "--log-level")
        fmt = _choice(log_format, _VALID_LOG_FORMATS, "--log-format")

        try:
            settings = load_settings(config, env_file)
        except (ValidationError, OSError, ValueError) as exc:
            source = config if config is not None else "environment"
            logger.error("Invalid configuration (%s): %s", source, exc)
            raise SystemExit(EXIT_CONFIG_ERROR) from exc

        bridge.dry_run = dry_run
        settings = _with_log_overrides(settings, level, fmt)

        try:
            with contextlib.suppress(KeyboardInterrupt):
                asyncio.run(bridge._run_async(settings=settings))
        except Exception as exc:
            logger.error("Bridge stopped unexpectedly: %s", exc)
            raise SystemExit(EXIT_RUNTIME_ERROR) from exc

    return cli


def main() -> None:
    """Console entry point."""
    from androidtv2mqtt import Bridge, __version__  # noqa: PLC0415

    build_cli(Bridge(version=__version__))(standalone_mode=True)
