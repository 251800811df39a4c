"""CLI entry point for depguard.

Commands:
  bump     open (or reuse) a PR that bumps a direct dependency
  remove   open (or reuse) a PR that removes an unused dependency
  prs      list the remediation PRs recorded for a project
  track    add packages to the tracked-dependency catalog
  guard    evaluate a pull request against its projects' guardrails
  webhook  process a GitHub webhook payload from a file
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from depguard_cli.commands.guard import guard_cmd, webhook_cmd
from depguard_cli.commands.prs import prs_cmd
from depguard_cli.commands.remediate import bump_cmd, remove_cmd
from depguard_cli.commands.track import track_cmd

console = Console()


def _build_store(config: dict):
    """Instantiate the store named by ``store`` in .depguard.yml.

      store: sqlite → SQLiteStore at store_path (default .depguard.db)
      store: memory → MemoryStore (nothing survives the process)
    """
    store_type = config.get("store", "sqlite")

    if store_type == "memory":
        from depguard_store.memory import MemoryStore

        return MemoryStore()

    if store_type != "sqlite":
        console.print(f"[yellow]Unknown store {store_type!r}; using sqlite.[/yellow]")

    from depguard_store.sqlite import SQLiteStore

    return SQLiteStore(db_path=config.get("store_path", ".depguard.db"))


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )
    # PyGithub and urllib3 are chatty at DEBUG.
    logging.getLogger("github").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


@click.group()
@click.version_option(
    version=importlib.metadata.version("depguard"),
    prog_name="depguard",
)
@click.option(
    "--config",
    "config_path",
    default=".depguard.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="DEPGUARD_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """Dependency remediation PRs and PR guardrails for npm projects."""
    from depguard_core.config import load_config

    _setup_logging(verbose)
    ctx.ensure_object(dict)

    config = load_config(config_path)

    store = _build_store(config)
    ctx.obj["store"] = store
    ctx.obj["config"] = config
    ctx.call_on_close(store.close)


main.add_command(bump_cmd)
main.add_command(remove_cmd)
main.add_command(prs_cmd)
main.add_command(track_cmd)
main.add_command(guard_cmd)
main.add_command(webhook_cmd)
