"""
CLI rollback commands — list backups and reset branches to one.

Usage:
    forksync backups [--limit N] [--json]
    forksync rollback [TAG] [--branch ROLE] [--yes]
    forksync emergency-rollback [TAG] [--yes]
"""

from __future__ import annotations

from typing import List

import click

from ..errors import ForkSyncError
from .output import report_error

ROLES = ("mirror", "integration", "production")


def _manager(ctx: click.Context):
    from ..git.refs import RefStore
    from ..pipeline.backup import BackupManager
    from ..pipeline.rollback import RollbackManager

    refs = RefStore(ctx.obj["root"])
    return RollbackManager(refs, BackupManager(refs), ctx.obj["settings"])


def _print_candidates(manager, limit: int = 10) -> None:
    tags = manager.candidates(limit=limit)
    if not tags:
        click.echo("  (no backup tags)")
        return
    for tag in tags:
        click.echo(f"  {tag.name:48} {tag.short_commit}  {tag.created_at[:19]}")


def _run_rollback(ctx: click.Context, manager, target: str, roles: List[str], yes: bool) -> None:
    from ..reliability.lease import LEASE_FILENAME, SessionLease

    settings = ctx.obj["settings"]
    plan = manager.plan(target, roles)

    click.echo()
    click.secho("⚠️  ROLLBACK will hard-reset and force-push:", fg="yellow", bold=True)
    for role in roles:
        branch = settings.branch_for(role)
        current = manager.refs.rev_parse(f"refs/heads/{branch}") or "missing"
        click.echo(f"  {branch:20} {current[:12]} → {plan[role][:12]}")
    click.echo("  Current tips are tagged emergency/<timestamp>/<role> first.")
    click.echo()

    if not yes:
        answer = click.prompt("Type 'ROLLBACK' to confirm", default="", show_default=False)
        if answer.strip() != "ROLLBACK":
            click.echo("Rollback cancelled.")
            return

    lease = SessionLease(
        manager.refs.git_dir() / LEASE_FILENAME,
        command="rollback",
        ttl=settings.lease_ttl,
    )
    with lease:
        result = manager.rollback(target, roles)

    click.secho(f"✅ Rolled back to {target}", fg="green", bold=True)
    for branch, (before, after) in result.changes.items():
        click.echo(f"  {branch:20} {before[:12]} → {after[:12]}")
    click.echo()
    click.echo(f"Undo with: forksync emergency-rollback {result.emergency_set}")


@click.command("backups")
@click.option("--limit", default=20, type=int, help="How many tags to show")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def backups(ctx: click.Context, limit: int, as_json: bool) -> None:
    """List backup and emergency tags, newest first."""
    manager = _manager(ctx)
    tags = manager.candidates(limit=limit)

    if as_json:
        import json
        click.echo(json.dumps([t.model_dump() for t in tags], indent=2))
        return

    click.echo()
    click.echo(f"🏷️  Backup tags ({len(tags)})")
    click.echo()
    _print_candidates(manager, limit=limit)
    click.echo()


@click.command("rollback")
@click.argument("tag", required=False)
@click.option(
    "--branch",
    "roles",
    multiple=True,
    type=click.Choice(ROLES),
    help="Branch role to reset (default: the role the tag was taken from)",
)
@click.option("--yes", "-y", is_flag=True, help="Skip the ROLLBACK confirmation")
@click.pass_context
def rollback(ctx: click.Context, tag: str, roles: tuple, yes: bool) -> None:
    """Reset a branch to a backup tag."""
    manager = _manager(ctx)

    if not tag:
        click.echo("Usage: forksync rollback <backup-tag> [--branch ROLE]")
        click.echo()
        click.echo("Available backups:")
        _print_candidates(manager)
        raise SystemExit(1)

    try:
        selected = list(roles) or manager.default_roles(tag)
        _run_rollback(ctx, manager, tag, selected, yes)
    except ForkSyncError as e:
        report_error(e)
        raise SystemExit(1)


@click.command("emergency-rollback")
@click.argument("tag", required=False)
@click.option("--yes", "-y", is_flag=True, help="Skip the ROLLBACK confirmation")
@click.pass_context
def emergency_rollback(ctx: click.Context, tag: str, yes: bool) -> None:
    """Reset mirror, integration and production to a backup tag."""
    manager = _manager(ctx)

    if not tag:
        click.echo("Usage: forksync emergency-rollback <backup-tag>")
        click.echo()
        click.echo("Available backups:")
        _print_candidates(manager)
        raise SystemExit(1)

    try:
        _run_rollback(ctx, manager, tag, list(ROLES), yes)
    except ForkSyncError as e:
        report_error(e)
        raise SystemExit(1)
