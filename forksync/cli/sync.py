"""
CLI sync commands — full upstream sync and stand-alone promotion.

Usage:
    forksync sync [--auto]
    forksync promote [--auto]
"""

from __future__ import annotations

import click

from ..errors import ForkSyncError
from .output import confirm, confirm_yes, print_summary, report_error


def _pipeline(ctx: click.Context):
    from ..pipeline.sync import SyncPipeline

    return SyncPipeline(
        ctx.obj["root"],
        ctx.obj["settings"],
        confirm=confirm,
        confirm_promotion=confirm_yes,
    )


@click.command("sync")
@click.option("--auto", is_flag=True, help="Unattended: no prompts, promote when tests pass")
@click.pass_context
def sync(ctx: click.Context, auto: bool) -> None:
    """Bring upstream changes through mirror, integration and production."""
    settings = ctx.obj["settings"]
    pipeline = _pipeline(ctx)

    click.secho(f"🔄 Upstream sync ({'auto' if auto else 'manual'} mode)", fg="cyan", bold=True)
    try:
        session = pipeline.run(mode="auto" if auto else "manual")
    except ForkSyncError as e:
        if pipeline.session is not None:
            print_summary(pipeline.session, settings, pipeline.warnings)
        report_error(e)
        raise SystemExit(1)

    if session.up_to_date:
        click.secho("✓ Already up to date with upstream. Nothing to do.", fg="green")
        return
    if session.cancelled:
        click.echo("Sync cancelled.")
        return

    print_summary(session, settings, pipeline.warnings)


@click.command("promote")
@click.option("--auto", is_flag=True, help="Promote without asking when tests pass")
@click.pass_context
def promote(ctx: click.Context, auto: bool) -> None:
    """Test the integration branch and promote it to production."""
    settings = ctx.obj["settings"]
    pipeline = _pipeline(ctx)

    try:
        session = pipeline.promote(mode="auto" if auto else "manual")
    except ForkSyncError as e:
        if pipeline.session is not None:
            print_summary(pipeline.session, settings, pipeline.warnings)
        report_error(e)
        raise SystemExit(1)

    if session.test_result is None:
        click.secho(
            f"✓ {settings.production_branch} already contains {settings.integration_branch}",
            fg="green",
        )
        return
    print_summary(session, settings, pipeline.warnings)
