"""Shared utilities for DentalFlow CLI commands."""
import sys
from pathlib import Path
from typing import Optional

import click

from dentalflow.errors import user_message
from dentalflow.settings import Settings

# Verbosity levels
VERBOSITY_QUIET = 0
VERBOSITY_NORMAL = 1
VERBOSITY_VERBOSE = 2


def should_print(verbosity: int, message_level: int) -> bool:
    return verbosity >= message_level


def echo_verbose(message: str, verbosity: int) -> None:
    """Print a message only in verbose mode."""
    if should_print(verbosity, VERBOSITY_VERBOSE):
        click.echo(message, err=False)


def echo_normal(message: str, verbosity: int) -> None:
    """Print a message in normal and verbose modes."""
    if should_print(verbosity, VERBOSITY_NORMAL):
        click.echo(message, err=False)


def echo_quiet(message: str, verbosity: int) -> None:
    """Print a message that is shown even in quiet mode."""
    click.echo(message, err=False)


def fail(message: str, verbosity: int = VERBOSITY_NORMAL) -> None:
    """Print an error and exit with status 1."""
    echo_quiet(click.style(f"Error: {message}", fg="red"), verbosity)
    sys.exit(1)


def fail_result(result, verbosity: int = VERBOSITY_NORMAL) -> None:
    """Exit with the user-facing message for a failed engine result."""
    message = user_message(result.code, result.error)
    if result.code and result.code not in message:
        message = f"{message} [{result.code}]"
    fail(message, verbosity)


def load_settings(ctx) -> Settings:
    data_dir: Optional[Path] = ctx.obj.get('data_dir')
    return Settings.load(data_dir)


def get_verbosity(ctx) -> int:
    return ctx.obj.get('verbosity', VERBOSITY_NORMAL)
