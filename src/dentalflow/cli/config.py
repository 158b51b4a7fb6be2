"""Configuration management commands for the DentalFlow CLI."""
import sys

import click
import yaml

# Local CLI imports
from .common import echo_normal, echo_quiet, fail, get_verbosity, load_settings


@click.group()
def config_group():
    """Configuration management commands."""
    pass


@config_group.command('set')
@click.argument('key')
@click.argument('value')
@click.pass_context
def config_set(ctx, key: str, value: str) -> None:
    """Set a configuration value.

    Values are parsed as YAML scalars, so numbers stay numbers.

    \b
    Examples:
        dentalflow config set backup.frequency weekly
        dentalflow config set backup.local_path ~/ClinicBackups
        dentalflow config set remote.bucket clinic-backups
    """
    verbosity = get_verbosity(ctx)
    settings = load_settings(ctx)

    try:
        settings.set(key, yaml.safe_load(value) if value else value)
        settings.save()
    except ValueError as e:
        fail(str(e), verbosity)
    except OSError as e:
        fail(f"Failed to save config: {e}", verbosity)

    echo_normal(click.style(f"✓ Set {key} = {value}", fg="green"), verbosity)


@config_group.command('get')
@click.argument('key')
@click.pass_context
def config_get(ctx, key: str) -> None:
    """Get a configuration value.

    \b
    Examples:
        dentalflow config get backup.frequency
    """
    verbosity = get_verbosity(ctx)
    settings = load_settings(ctx)

    missing = object()
    value = settings.get(key, missing)
    if value is missing:
        echo_quiet(click.style(f"Key '{key}' not found", fg="yellow"), verbosity)
        sys.exit(1)
    echo_quiet(str(value), verbosity)


@config_group.command('show')
@click.pass_context
def config_show(ctx) -> None:
    """Display full configuration (secrets masked)."""
    verbosity = get_verbosity(ctx)
    settings = load_settings(ctx)

    data = yaml.safe_load(yaml.safe_dump(settings.data))
    if data.get('remote', {}).get('secret_key'):
        data['remote']['secret_key'] = '********'

    echo_normal(click.style(f"Configuration ({settings.path}):", fg="cyan", bold=True), verbosity)
    echo_quiet(yaml.safe_dump(data, default_flow_style=False, sort_keys=False).rstrip(), verbosity)
