"""
CLI conflict command — interactive resolution of a halted merge.

Usage:
    forksync resolve-conflicts
"""

from __future__ import annotations

from pathlib import Path

import click

from ..errors import ForkSyncError
from .output import report_error

MENU = [
    ("1", "keep-local", "Keep OUR changes (fork)"),
    ("2", "keep-incoming", "Accept THEIR changes (upstream)"),
    ("3", "manual", "Manual edit (opens editor)"),
    ("4", "view-diff", "Show diff"),
    ("5", "skip", "Skip for now"),
    ("6", "abort", "Abort merge"),
]


def _edit(path: Path) -> None:
    click.edit(filename=str(path))


def _choose(entry, context):
    from ..pipeline.conflicts import ResolutionAction

    click.echo("=" * 40)
    click.secho(f"File: {entry.path}", fg="yellow", bold=True)
    click.echo(f"Conflict sections: {context.sections}")
    click.echo("Last modified locally:")
    click.echo(f"  {context.local_change or '(not in current branch)'}")
    click.echo("Last modified upstream:")
    click.echo(f"  {context.incoming_change or '(not in upstream)'}")
    if context.protected:
        click.secho("⚠️  WARNING: This is a PROTECTED path (listed in .sync-protected)", fg="red", bold=True)
    click.echo()
    click.echo("Options:")
    for key, _, label in MENU:
        click.echo(f"  {key}. {label}")

    choice = click.prompt("Choose action", type=click.Choice([key for key, _, _ in MENU]), show_choices=False)
    action = next(value for key, value, _ in MENU if key == choice)
    return ResolutionAction(action)


@click.command("resolve-conflicts")
@click.pass_context
def resolve_conflicts(ctx: click.Context) -> None:
    """Walk each conflicting file and choose how to resolve it."""
    from ..config.protected import load_protected
    from ..git.refs import RefStore
    from ..pipeline.conflicts import ConflictResolver
    from ..reliability.lease import LEASE_FILENAME, SessionLease

    root = ctx.obj["root"]
    settings = ctx.obj["settings"]
    refs = RefStore(root)
    resolver = ConflictResolver(
        refs,
        settings,
        protected=load_protected(root / settings.protected_file),
        editor=_edit,
        confirm=lambda prompt: click.confirm(prompt, default=False),
    )

    click.secho("=== Conflict Resolution ===", fg="blue", bold=True)
    pending = resolver.pending()
    if not pending:
        click.secho("No merge conflicts detected!", fg="green")
        return

    click.echo()
    click.echo("Conflicting files:")
    for i, entry in enumerate(pending, 1):
        click.echo(f"  {i}. {entry.path}")
    click.echo()

    lease = SessionLease(refs.git_dir() / LEASE_FILENAME, command="resolve-conflicts", ttl=settings.lease_ttl)
    try:
        with lease:
            report = resolver.run(_choose, show=click.echo)
            if report.aborted:
                click.secho("✗ Merge aborted", fg="red")
                raise SystemExit(1)

            remaining = refs.conflicted_paths()
            if remaining:
                click.secho("Some conflicts remain unresolved!", fg="yellow")
                for path in remaining:
                    click.echo(f"  - {path}")
                click.echo("Run forksync resolve-conflicts again when ready.")
                raise SystemExit(1)

            click.secho("✓ All conflicts resolved!", fg="green")
            if not click.confirm("Complete the merge commit and push?", default=True):
                click.echo("Merge ready. Complete manually with: git merge --continue")
                return
            commit = resolver.complete()
    except ForkSyncError as e:
        report_error(e)
        raise SystemExit(1)

    click.secho(f"✓ Merge completed ({commit[:12]})", fg="green")
    click.echo("Continue the sync with: forksync sync")
