"""
CLI output helpers — error reporting, prompts, and the session summary.
"""

from __future__ import annotations

from typing import Iterable, Optional

import click

from ..config.settings import SyncSettings
from ..errors import ForkSyncError, MergeConflict
from ..models.session import SyncSession


def report_error(error: ForkSyncError) -> None:
    """Red message, failing stage, and the commands that get back to a good state."""
    click.echo()
    click.secho(f"❌ {error.message}", fg="red", bold=True, err=True)
    click.echo(f"   Stage: {error.stage}", err=True)
    if isinstance(error, MergeConflict) and error.paths:
        click.echo("   Conflicting files:", err=True)
        for path in error.paths:
            click.echo(f"     - {path}", err=True)
    if error.remediation:
        click.echo("   To recover:", err=True)
        for command in error.remediation:
            click.echo(f"     {command}", err=True)


def confirm(prompt: str) -> bool:
    """y/N question."""
    return click.confirm(prompt, default=False)


def confirm_yes(prompt: str) -> bool:
    """Only the literal answer 'yes' counts."""
    return click.prompt(prompt, default="no", show_default=False).strip() == "yes"


def _branch_line(label: str, state: str, color: Optional[str] = None) -> None:
    click.echo(f"  {label:20} ", nl=False)
    click.secho(state, fg=color)


def print_summary(
    session: SyncSession,
    settings: SyncSettings,
    warnings: Iterable[ForkSyncError] = (),
) -> None:
    """End-of-run report, printed on success and after a halt."""
    roles_touched = {t.source_role for t in session.backup_tags}

    click.echo()
    if session.halted_stage:
        click.secho(f"=== Sync halted at {session.halted_stage} ===", fg="red", bold=True)
    else:
        click.secho("=== Sync Complete ===", fg="green", bold=True)
    click.echo()
    click.echo("Summary:")
    click.echo(f"  New upstream commits: {session.new_commit_count}")

    if session.mirror_reset:
        _branch_line(settings.mirror_branch, "reset to upstream (stray commits in backup)", "yellow")
    else:
        _branch_line(settings.mirror_branch, "updated" if "mirror" in roles_touched else "unchanged")

    if session.halted_stage == "integration":
        _branch_line(settings.integration_branch, "merge in progress (conflicts)", "red")
    else:
        _branch_line(settings.integration_branch, "updated" if "integration" in roles_touched else "unchanged")

    test_colors = {"passed": "green", "failed": "red", "skipped": "yellow"}
    _branch_line("tests", session.test_result or "not run", test_colors.get(session.test_result or ""))

    if session.promoted:
        _branch_line(settings.production_branch, "updated", "green")
    else:
        _branch_line(settings.production_branch, "NOT updated", "yellow")
    click.echo(f"  Promoted: {'yes' if session.promoted else 'no'}")

    if session.promoted:
        if session.build_ok is not None:
            _branch_line("build", "ok" if session.build_ok else "FAILED", "green" if session.build_ok else "red")
        if session.marker_ok is not None:
            _branch_line("custom marker", "found" if session.marker_ok else "MISSING", "green" if session.marker_ok else "red")
        if session.service_restarted:
            healthy = session.service_healthy
            _branch_line("service", "restarted, healthy" if healthy else "restarted, NOT healthy", "green" if healthy else "yellow")
        _branch_line("notification", "sent" if session.notified else "not sent")

    for warning in warnings:
        click.secho(f"  ⚠️  {warning.message}", fg="yellow")

    if session.backup_tags:
        click.echo()
        click.echo("Backup tags created:")
        for tag in session.backup_tags:
            click.echo(f"  - {tag.name} ({tag.short_commit})")

    if not session.halted_stage:
        click.echo()
        click.echo("Next steps:")
        if not session.promoted and session.test_result in ("passed", "skipped"):
            click.echo("  - Promote when ready: forksync promote")
        click.echo(f"  - Review changes: git log {settings.production_branch} --oneline -10")
        click.echo(f"  - Update {settings.custom_changes_file} with any new modifications")
    click.echo()
