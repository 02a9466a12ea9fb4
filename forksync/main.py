"""
forksync — CLI Entry Point

Usage:
    python -m forksync.main sync [--auto]
    python -m forksync.main promote [--auto]
    python -m forksync.main rollback [TAG] [--branch ROLE] [--yes]
    python -m forksync.main emergency-rollback [TAG] [--yes]
    python -m forksync.main resolve-conflicts
    python -m forksync.main health-check [--json]
    python -m forksync.main backups [--limit N]
    python -m forksync.main setup [--upstream-url URL]
"""

from __future__ import annotations

# Load .env file FIRST, before any other imports that might read env vars
from pathlib import Path
from dotenv import load_dotenv

_env_file = Path.cwd() / ".env"
if _env_file.exists():
    load_dotenv(_env_file)

import os
from typing import Optional

import click

from . import __version__
from .config.settings import SyncSettings
from .errors import ForkSyncError
from .logging_config import DEFAULT_LOG_FILE, setup_logging
from .cli.output import report_error
from .cli.sync import sync, promote
from .cli.rollback import backups, rollback, emergency_rollback
from .cli.conflicts import resolve_conflicts
from .cli.ops import health_check
from .cli.setup import setup

# Initialize logging
setup_logging()


def get_project_root() -> Path:
    """Repository the commands act on when --repo is not given."""
    return Path.cwd()


@click.group()
@click.option(
    "--repo",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Fork checkout to operate on (default: current directory)",
)
@click.version_option(__version__, prog_name="forksync")
@click.pass_context
def cli(ctx: click.Context, repo: Optional[Path]) -> None:
    """forksync — Keep a fork in step with upstream, safely."""
    ctx.ensure_object(dict)
    root = (repo or get_project_root()).resolve()
    ctx.obj["root"] = root

    try:
        settings = SyncSettings.load(root)
    except ForkSyncError as e:
        report_error(e)
        raise SystemExit(1)
    ctx.obj["settings"] = settings

    # .forksync.yaml may name a different log file than the environment
    if settings.log_file != os.environ.get("LOG_FILE", DEFAULT_LOG_FILE):
        setup_logging(log_file=settings.log_file)


# Sync commands — forksync/cli/sync.py
cli.add_command(sync)
cli.add_command(promote)

# Rollback commands — forksync/cli/rollback.py
cli.add_command(backups)
cli.add_command(rollback)
cli.add_command(emergency_rollback)

# Conflict resolution — forksync/cli/conflicts.py
cli.add_command(resolve_conflicts)

# Ops commands — forksync/cli/ops.py and forksync/cli/setup.py
cli.add_command(health_check)
cli.add_command(setup)


if __name__ == "__main__":
    cli()
