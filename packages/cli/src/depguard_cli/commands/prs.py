"""prs command: list recorded remediation PRs."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

console = Console()


@click.command("prs")
@click.option("--project", "project_id", required=True, help="Project id from .depguard.yml.")
@click.pass_context
def prs_cmd(ctx, project_id: str):
    """Show the open remediation PRs depguard has recorded for a project."""
    store = ctx.obj["store"]
    records = store.list_remediations(project_id)
    if not records:
        console.print("[yellow]No remediation PRs recorded.[/yellow]")
        return

    names = {d.id: d.name for d in store.list_dependencies()}

    table = Table(title=f"Remediation PRs: {project_id}", show_header=True, header_style="bold cyan")
    table.add_column("PR", style="bold", width=6)
    table.add_column("Type", width=7)
    table.add_column("Package")
    table.add_column("Target")
    table.add_column("Branch")
    table.add_column("Created At", width=20)

    _type_style = {"bump": "green", "remove": "red"}

    for r in records:
        style = _type_style.get(r.type, "white")
        table.add_row(
            f"#{r.pr_number}",
            f"[{style}]{r.type}[/{style}]",
            names.get(r.dependency_id, r.dependency_id),
            "" if r.type == "remove" else r.target_version,
            r.branch_name,
            r.created_at[:19].replace("T", " "),
        )

    console.print(table)
