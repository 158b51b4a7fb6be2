"""DentalFlow CLI - clinic database maintenance from the command line

Command groups are organized into separate modules:
- migrate.py: migrate, status
- backup.py: backup run/list/prune, restore local/cloud
- config.py: config set, get, show
- common.py: shared utilities
"""
import logging
from pathlib import Path

import click

from dentalflow import __version__

# Local imports
from .backup import backup_group, restore_group
from .common import VERBOSITY_NORMAL, VERBOSITY_QUIET, VERBOSITY_VERBOSE
from .config import config_group
from .migrate import migrate_group


@click.group()
@click.version_option(version=__version__, prog_name="dentalflow")
@click.option('--data-dir', type=click.Path(), default=None, envvar='DENTALFLOW_DATA_DIR',
              help='Directory holding clinic.db and config.yaml (default: ~/.dentalflow)')
@click.option('--verbose', '-v', is_flag=True, default=False,
              help='Enable verbose output')
@click.option('--quiet', '-q', is_flag=True, default=False,
              help='Suppress non-essential output')
@click.pass_context
def cli(ctx, data_dir, verbose, quiet):
    """DentalFlow - clinic database maintenance

    \b
    Key Commands:
        migrate           Apply pending schema migrations
        status            Show schema version and backup state
        backup run        Back up the database now
        restore local     Restore from a backup file
        restore cloud     Restore from the cloud backup folder
        config            Configuration management

    \b
    Examples:
        dentalflow migrate
        dentalflow backup run --password correct-horse
        dentalflow restore local backup.db.enc --password correct-horse
    """
    ctx.ensure_object(dict)

    if verbose and quiet:
        raise click.UsageError("--verbose and --quiet are mutually exclusive")

    if quiet:
        ctx.obj['verbosity'] = VERBOSITY_QUIET
        level = logging.ERROR
    elif verbose:
        ctx.obj['verbosity'] = VERBOSITY_VERBOSE
        level = logging.DEBUG
    else:
        ctx.obj['verbosity'] = VERBOSITY_NORMAL
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    ctx.obj['data_dir'] = Path(data_dir) if data_dir else None


# Register schema commands (migrate, status)
cli.add_command(migrate_group.commands['migrate'])
cli.add_command(migrate_group.commands['status'])

# Register backup and restore command groups
cli.add_command(backup_group, name='backup')
cli.add_command(restore_group, name='restore')

# Register config command group (config set, get, show)
cli.add_command(config_group, name='config')


def main():
    """Entry point for the CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
