"""guard / webhook commands: run PR guardrails from the command line or CI."""

from __future__ import annotations

import json
from pathlib import Path

import click
from rich.console import Console
from rich.markdown import Markdown

from depguard_core.config import get_projects, resolve_installation_id
from depguard_core.errors import DepguardError
from depguard_core.gh.client import GitHubClientFactory
from depguard_core.guardrails import GuardrailEngine, GuardrailRunner, PullRequestEvent, handle_github_event
from depguard_core.policy import PolicyEvaluator
from depguard_core.sources.npm import NpmRegistryLicenseSource
from depguard_core.sources.osv import OSVAdvisorySource
from depguard_core.sources.tracked import TrackedLicenseSource

console = Console()


def build_engine(config: dict, store, client_factory: GitHubClientFactory | None = None) -> GuardrailEngine:
    """Wire the guardrail engine: OSV advisories, then catalog and npm registry licenses."""
    timeout = config.get("request_timeout", 15)
    evaluator = PolicyEvaluator(
        OSVAdvisorySource(ecosystem=config.get("ecosystem", "npm"), timeout=timeout),
        licenses=[TrackedLicenseSource(store), NpmRegistryLicenseSource(timeout=timeout)],
        max_workers=config.get("max_workers", 4),
    )
    return GuardrailEngine(config, client_factory or GitHubClientFactory(config), evaluator)


def _installation_for_repo(config: dict, repo: str) -> int | None:
    for project in get_projects(config):
        if project.repo and project.repo.lower() == repo.lower():
            installation_id = resolve_installation_id(config, project)
            if installation_id:
                return installation_id
    return None


@click.command("guard")
@click.option("--repo", required=True, help="GitHub repository in owner/name format.")
@click.option("--pr", "pr_number", type=int, required=True, help="Pull request number.")
@click.option("--dry-run", is_flag=True, help="Print the reports without commenting or creating a check run.")
@click.pass_context
def guard_cmd(ctx, repo: str, pr_number: int, dry_run: bool):
    """Evaluate a pull request's dependency changes now.

    Exits with status 1 when any workspace is blocked.
    """
    config = ctx.obj["config"]
    client_factory = GitHubClientFactory(config)
    engine = build_engine(config, ctx.obj["store"], client_factory)
    installation_id = _installation_for_repo(config, repo)

    try:
        client = client_factory(installation_id)
        base_sha, head_sha = client.get_pull_request_shas(repo, pr_number)
        event = PullRequestEvent(repo, base_sha, head_sha, pr_number, installation_id)
        verdict = engine.run(event, dry_run=dry_run)
    except DepguardError as e:
        raise click.ClickException(str(e))

    if verdict is None:
        console.print("[yellow]No configured workspace changed in this PR.[/yellow]")
        return

    for report in verdict.per_workspace:
        console.print(Markdown(report.report_text))
        console.rule()

    if dry_run:
        console.print("[dim]Dry run: nothing was posted.[/dim]")
    if verdict.overall_blocked:
        console.print("[bold red]PR guardrails failed.[/bold red]")
        ctx.exit(1)
    console.print("[bold green]PR guardrails passed.[/bold green]")


@click.command("webhook")
@click.option("--event", "event_name", default="pull_request", show_default=True, help="X-GitHub-Event value.")
@click.argument("payload_path", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def webhook_cmd(ctx, event_name: str, payload_path: str):
    """Process a GitHub webhook payload (e.g. $GITHUB_EVENT_PATH) and wait for it."""
    try:
        payload = json.loads(Path(payload_path).read_text())
    except json.JSONDecodeError as e:
        raise click.ClickException(f"{payload_path} is not valid JSON: {e}")

    runner = GuardrailRunner(build_engine(ctx.obj["config"], ctx.obj["store"]))
    try:
        ack = handle_github_event(event_name, payload, runner)
    finally:
        runner.shutdown(wait=True)
    console.print_json(data=ack)
