"""
CLI ops commands — fork health.

Usage:
    forksync health-check [--json] [--no-fetch]
"""

from __future__ import annotations

import click


@click.command("health-check")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.option("--no-fetch", is_flag=True, help="Skip fetching upstream before comparing")
@click.pass_context
def health_check(ctx: click.Context, as_json: bool, no_fetch: bool) -> None:
    """Check remotes, branches, sync lag and backups."""
    from ..git.refs import RefStore
    from ..observability.health import HealthChecker, HealthStatus

    refs = RefStore(ctx.obj["root"])
    checker = HealthChecker(refs, ctx.obj["settings"], fetch=not no_fetch)
    result = checker.check()

    if as_json:
        import json
        click.echo(json.dumps(result.to_dict(), indent=2))
        if result.status == HealthStatus.UNHEALTHY:
            raise SystemExit(1)
        return

    status_colors = {
        HealthStatus.HEALTHY: ("✅", "green"),
        HealthStatus.DEGRADED: ("⚠️", "yellow"),
        HealthStatus.UNHEALTHY: ("❌", "red"),
    }
    icon, color = status_colors.get(result.status, ("❓", "white"))

    click.echo()
    click.secho(f"{icon} Fork Health: {result.status.value.upper()}", fg=color, bold=True)
    click.echo()

    for component in result.components:
        c_icon, c_color = status_colors.get(component.status, ("❓", "white"))
        click.echo(f"  {c_icon} ", nl=False)
        click.secho(f"{component.name}", fg=c_color, bold=True, nl=False)
        click.echo(f": {component.message}")

    click.echo()
    if result.errors == 0 and result.warnings == 0:
        click.secho("✓ All checks passed!", fg="green")
    elif result.errors == 0:
        click.secho(f"⚠ {result.warnings} warning(s) found", fg="yellow")
    else:
        click.secho(f"✗ {result.errors} error(s) and {result.warnings} warning(s) found", fg="red")

    if result.status == HealthStatus.UNHEALTHY:
        raise SystemExit(1)
