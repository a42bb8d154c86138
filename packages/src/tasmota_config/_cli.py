"""Command-line interface (Typer-based).

Provides :func:`build_cli` which constructs a Typer app that parses
the run options (``--config``, ``--device``, ``--dry-run``,
``--command-timeout``, ``--strict``, ``--json``), the logging
overrides (``--log-level``, ``--log-format``), ``--env-file`` and
``--version``, then hands off to the application's async run.

Exit codes:

- ``0`` — run completed (device failures are reported, not fatal)
- ``1`` — invalid settings or desired-state document
- ``2`` — ``--strict`` and at least one device failed
- ``3`` — runtime error, e.g. broker unreachable
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from typing import TYPE_CHECKING, Annotated, get_args

import typer
from pydantic import ValidationError

from tasmota_config._settings import LoggingSettings
from tasmota_config.exceptions import ConfigError

if TYPE_CHECKING:
    from tasmota_config._app import App
    from tasmota_config._report import RunReport
    from tasmota_config._settings import Settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_DEVICE_FAILURE = 2
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


def _print_report(report: RunReport, *, as_json: bool) -> None:
    if as_json:
        typer.echo(report.to_json())
        return
    for device in report.devices:
        typer.echo(f"{device.device}: {device.summary}")
    if report.interrupted:
        typer.echo("run interrupted before all devices were processed")


def build_cli(app: App) -> typer.Typer:
    """Construct a Typer CLI from an :class:`App` instance.

    The returned Typer app exposes a single default command.  When
    invoked it loads settings, applies CLI overrides, runs
    :meth:`App._run_async` and prints one report line per device.

    Args:
        app: The application to wrap.

    Returns:
        A configured :class:`typer.Typer` ready to invoke.
    """
    name = app._name
    version = app._version
    description = app._description

    cli = typer.Typer(
        help=f"{name} v{version} — {description}",
    )

    @cli.callback(invoke_without_command=True)
    def main(
        version_flag: Annotated[
            bool | None,
            typer.Option(
                "--version",
                is_eager=True,
                help="Show version and exit.",
            ),
        ] = None,
        config_file: Annotated[
            str | None,
            typer.Option(
                "--config",
                "-c",
                help="Desired-state YAML document [default: config.yaml].",
            ),
        ] = None,
        device: Annotated[
            str | None,
            typer.Option("--device", "-d", help="Limit the run to one device."),
        ] = None,
        dry_run: Annotated[
            bool,
            typer.Option(
                "--dry-run",
                "-n",
                help="Report needed changes without sending them.",
            ),
        ] = False,
        command_timeout: Annotated[
            float | None,
            typer.Option(
                "--command-timeout",
                help="Seconds to wait for each broker round-trip [default: 2].",
            ),
        ] = None,
        strict: Annotated[
            bool,
            typer.Option(
                "--strict",
                help=f"Exit with code {EXIT_DEVICE_FAILURE} when any device fails.",
            ),
        ] = False,
        as_json: Annotated[
            bool,
            typer.Option("--json", help="Print the run report as JSON."),
        ] = False,
        log_level: Annotated[
            str | None,
            typer.Option("--log-level", help="Override log level."),
        ] = None,
        log_format: Annotated[
            str | None,
            typer.Option("--log-format", help="Override log format."),
        ] = None,
        env_file: Annotated[
            str,
            typer.Option("--env-file", help="Path to .env file."),
        ] = ".env",
    ) -> None:
        # -- version ---------------------------------------------------------
        if version_flag:
            typer.echo(f"{name} v{version}")
            raise typer.Exit()

        # -- validate enum-like and numeric options -------------------------
        if log_level is not None and log_level.upper() not in _VALID_LOG_LEVELS:
            raise typer.BadParameter(
                f"Invalid log level '{log_level}'. "
                f"Choose from: {', '.join(_VALID_LOG_LEVELS)}",
                param_hint="'--log-level'",
            )

        if log_format is not None and log_format.lower() not in _VALID_LOG_FORMATS:
            raise typer.BadParameter(
                f"Invalid log format '{log_format}'. "
                f"Choose from: {', '.join(_VALID_LOG_FORMATS)}",
                param_hint="'--log-format'",
            )

        if command_timeout is not None and command_timeout <= 0:
            raise typer.BadParameter(
                f"Command timeout must be positive, got {command_timeout}",
                param_hint="'--command-timeout'",
            )

        # -- build settings -------------------------------------------------
        try:
            settings: Settings = app._settings_class(_env_file=env_file)  # type: ignore[call-arg]
        except ValidationError as exc:
            logger.error("Configuration error: %s", exc)
            raise SystemExit(EXIT_CONFIG_ERROR) from exc

        # -- apply CLI overrides --------------------------------------------
        overrides: dict[str, object] = {}
        if config_file is not None:
            overrides["config_file"] = config_file
        if device is not None:
            overrides["device"] = device
        if dry_run:
            overrides["dry_run"] = True
        if strict:
            overrides["strict"] = True
        if overrides:
            settings = settings.model_copy(update=overrides)

        if command_timeout is not None:
            settings.mqtt = settings.mqtt.model_copy(
                update={"command_timeout": command_timeout},
            )

        if log_level is not None:
            settings.logging = settings.logging.model_copy(
                update={"level": log_level.upper()},
            )

        if log_format is not None:
            settings.logging = settings.logging.model_copy(
                update={"format": log_format.lower()},
            )

        # -- run -------------------------------------------------------------
        report: RunReport | None = None
        try:
            with contextlib.suppress(KeyboardInterrupt):
                report = asyncio.run(app._run_async(settings=settings))
        except SystemExit:
            raise
        except ConfigError as exc:
            logger.error("Configuration error: %s", exc)
            sys.exit(EXIT_CONFIG_ERROR)
        except Exception as exc:
            logger.error("Runtime error: %s", exc)
            sys.exit(EXIT_RUNTIME_ERROR)

        if report is None:
            sys.exit(EXIT_RUNTIME_ERROR)

        _print_report(report, as_json=as_json)

        if settings.strict and report.failed:
            sys.exit(EXIT_DEVICE_FAILURE)

    return cli
