"""bump / remove commands: open or reuse a remediation PR."""

from __future__ import annotations

import click
from rich.console import Console

from depguard_core.gh.client import GitHubClientFactory
from depguard_core.remediation import RemediationResult, RemediationService

console = Console()


def _service(ctx: click.Context) -> RemediationService:
    config = ctx.obj["config"]
    return RemediationService(config, ctx.obj["store"], GitHubClientFactory(config))


def _report(result: RemediationResult) -> None:
    if not result.ok:
        raise click.ClickException(result.error)
    if result.already_exists:
        console.print(f"[yellow]Remediation PR already open:[/yellow] #{result.pr_number} {result.pr_url}")
    else:
        console.print(f"[green]Opened PR[/green] #{result.pr_number} {result.pr_url}")


@click.command("bump")
@click.option("--project", "project_id", required=True, help="Project id from .depguard.yml.")
@click.option("--package", "package", required=True, help="Direct dependency to bump.")
@click.option("--to", "target_version", required=True, help="Target version, e.g. 4.18.2.")
@click.option("--from", "current_version", default=None, help="Current version, shown in the PR body.")
@click.pass_context
def bump_cmd(ctx, project_id: str, package: str, target_version: str, current_version: str | None):
    """Open a PR bumping PACKAGE to a new version.

    The existing range prefix (^ or ~) is kept. Older bump PRs for the same
    package are closed.
    """
    _report(_service(ctx).bump(project_id, package, target_version, current_version))


@click.command("remove")
@click.option("--project", "project_id", required=True, help="Project id from .depguard.yml.")
@click.option("--package", "package", required=True, help="Unused dependency to remove.")
@click.pass_context
def remove_cmd(ctx, project_id: str, package: str):
    """Open a PR removing PACKAGE from package.json."""
    _report(_service(ctx).remove(project_id, package))
