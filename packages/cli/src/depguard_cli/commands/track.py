"""track command: register packages in the tracked-dependency catalog."""

from __future__ import annotations

import json
from pathlib import Path

import click
from rich.console import Console

from depguard_core.diff import direct_dependencies

console = Console()


@click.command("track")
@click.argument("names", nargs=-1)
@click.option("--license", "license_name", default=None, help="License to record for NAMES.")
@click.option(
    "--manifest",
    "manifest_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Track every direct dependency of this package.json.",
)
@click.pass_context
def track_cmd(ctx, names: tuple[str, ...], license_name: str | None, manifest_path: str | None):
    """Add packages to the catalog so remediation PRs can be opened for them."""
    if not names and not manifest_path:
        raise click.UsageError("Give package names or --manifest.")

    wanted = list(names)
    if manifest_path:
        try:
            manifest = json.loads(Path(manifest_path).read_text())
        except json.JSONDecodeError as e:
            raise click.ClickException(f"{manifest_path} is not valid JSON: {e}")
        wanted.extend(n for n in direct_dependencies(manifest) if n not in wanted)

    store = ctx.obj["store"]
    for name in wanted:
        # Only NAMES get --license; a None license keeps what is already recorded.
        dep = store.save_dependency(name, license=license_name if name in names else None)
        console.print(f"  [green]✓[/green] {dep.name}" + (f" ({dep.license})" if dep.license else ""))

    console.print(f"[bold]Tracking {len(wanted)} package(s).[/bold]")
