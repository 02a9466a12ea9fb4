"""
CLI setup command — prepare a fork checkout for syncing.

Usage:
    forksync setup [--upstream-url URL] [--from REF]
"""

from __future__ import annotations

import click

from ..errors import ForkSyncError
from .output import report_error


@click.command("setup")
@click.option("--upstream-url", default=None, help="URL of the upstream repository")
@click.option("--from", "start", default="HEAD", help="Start point for integration/production branches")
@click.pass_context
def setup(ctx: click.Context, upstream_url: str, start: str) -> None:
    """Create the upstream remote, branches and template files."""
    from ..git.refs import RefStore
    from ..pipeline.setup import ForkSetup

    settings = ctx.obj["settings"]
    refs = RefStore(ctx.obj["root"])

    click.secho("🚀 Fork setup", fg="cyan", bold=True)
    try:
        report = ForkSetup(refs, settings).run(upstream_url=upstream_url, start=start)
    except ForkSyncError as e:
        report_error(e)
        raise SystemExit(1)

    click.echo()
    if report.remote_added:
        click.secho(f"  ✅ Added remote {settings.upstream_remote}", fg="green")
    for branch in report.created_branches:
        click.secho(f"  ✅ Created {branch}", fg="green")
    for branch in report.existing_branches:
        click.echo(f"  ·  {branch} already exists")
    for branch in report.push_failures:
        click.secho(f"  ⚠️  Could not push {branch}", fg="yellow")
    for name in report.written_files:
        click.secho(f"  ✅ Wrote {name}", fg="green")

    click.echo()
    click.secho("📖 Next steps:", bold=True)
    if report.written_files:
        click.echo(f"  1. Review and commit: git add {' '.join(report.written_files)} && git commit")
    click.echo("  2. Check the layout: forksync health-check")
    click.echo("  3. Run the first sync: forksync sync")
    click.echo()
