"""
Command-line entry point for the Research Planner.

``research-planner serve`` starts the REST API under uvicorn with an
in-memory store (optionally seeded from a YAML plan); ``research-planner
check`` dry-runs a plan file against a throwaway store.
"""

import logging
import os
import sys
from typing import Optional

import click

from . import api
from .importer import import_plan_from_file
from .storage import PlannerStorage

logger = logging.getLogger(__name__)

DEFAULT_HOST = os.getenv("PLANNER_HOST", "127.0.0.1")
DEFAULT_PORT = int(os.getenv("PLANNER_PORT", "8000"))


def print_startup_banner(host: str, port: int, seed_file: Optional[str] = None) -> None:
    click.echo("Research Planner")
    click.echo(f"  REST API:    http://{host}:{port}/api")
    click.echo(f"  Health:      http://{host}:{port}/healthz")
    click.echo(f"  Auth header: {api.AUTH_HEADER}")
    if seed_file:
        click.echo(f"  Seed plan:   {seed_file}")


@click.group()
@click.option("--log-level", default="info", show_default=True,
              type=click.Choice(["debug", "info", "warning", "error"]),
              help="Logging verbosity")
@click.pass_context
def main(ctx: click.Context, log_level: str):
    """Research project planning service."""
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level
    logging.getLogger().setLevel(getattr(logging, log_level.upper()))


@main.command()
@click.option("--host", default=DEFAULT_HOST, show_default=True, help="Interface to bind")
@click.option("--port", default=DEFAULT_PORT, show_default=True, type=int, help="Port to listen on")
@click.option("--seed", "seed_file", type=click.Path(exists=True, dir_okay=False),
              default=api.SEED_FILE, help="YAML plan imported at startup")
@click.pass_context
def serve(ctx: click.Context, host: str, port: int, seed_file: Optional[str]):
    """Run the REST API."""
    import uvicorn

    try:
        api.storage_instance = api.build_storage(seed_file)
    except (FileNotFoundError, ValueError) as e:
        raise click.ClickException(f"Failed to load seed plan: {e}")

    print_startup_banner(host, port, seed_file)
    uvicorn.run(api.app, host=host, port=port, log_level=ctx.obj["log_level"])


@main.command()
@click.argument("plan_file", type=click.Path(dir_okay=False))
def check(plan_file: str):
    """Validate a YAML plan by importing it into a throwaway store."""
    storage = PlannerStorage()
    try:
        result = import_plan_from_file(storage, plan_file)
    except (FileNotFoundError, ValueError) as e:
        raise click.ClickException(str(e))

    click.echo(
        f"{result['projects_created']} projects, {result['milestones_created']} milestones, "
        f"{result['tasks_created']} tasks"
    )
    if result["errors"]:
        for error in result["errors"]:
            click.echo(f"  error: {error}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
