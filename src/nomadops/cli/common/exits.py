"""Exit handling utilities for the CLI."""

from typing import NoReturn

import typer

from nomadops.cli.common.output import out
from nomadops.core.errors import ConfigError, DeployError

EXIT_FAILED = 1
EXIT_CONFIG = 2


def ok_exit(msg: str | None = None) -> NoReturn:
    """Exit successfully with an optional informational message."""
    if msg:
        out.info(msg)
    raise typer.Exit(0)


def die(msg: str, code: int = EXIT_FAILED) -> NoReturn:
    """Exit with an error message and optional exit code."""
    out.error(msg)
    raise typer.Exit(code)


def exit_from_error(exc: DeployError) -> NoReturn:
    """
    Print a domain error as ``<kind>: <message>`` and exit.

    Configuration problems exit with 2, everything else with 1.
    """
    code = EXIT_CONFIG if isinstance(exc, ConfigError) else EXIT_FAILED
    out.error(f"{exc.kind}: {exc}")
    raise typer.Exit(code) from exc
