"""
Conveyor Controller - command line entry point.
"""

import asyncio
import logging
import sys
from typing import List, Optional

import typer

from conveyor_controller.src.controller import build_controller
from conveyor_controller.src.models.run import EventKind, Run, RunState, TriggerEvent
from conveyor_controller.src.services.loader import ConfigError, load_pipelines_file
from conveyor_controller.src.services.trigger import evaluate

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="conveyor",
    help="Minimal CI pipeline orchestrator",
    no_args_is_help=True,
)

def render_transition(run: Run):
    """Print one line per run transition."""
    line = f"[{run.pipeline}] {run.id[:8]} {run.state.value}"
    if run.steps:
        last = run.steps[-1]
        line += f" | step {last.position} '{last.name}' exit={last.exit_code} ({last.duration:.1f}s)"
    if run.error and run.is_terminal:
        line += f" | {run.error}"
    typer.echo(line)

def _load(path: str):
    try:
        return load_pipelines_file(path)
    except ConfigError as e:
        typer.echo(f"Invalid pipeline configuration: {e}", err=True)
        raise typer.Exit(code=2)

@app.command()
def validate(pipelines: str = typer.Argument("pipelines.yml", help="Pipeline definition file")):
    """Validate a pipeline file and list its pipelines."""
    definitions = _load(pipelines)
    for definition in definitions:
        rules = ", ".join(str(rule) for rule in definition.trigger.branches) or "all refs"
        typer.echo(f"{definition.name}: {len(definition.steps)} steps, timeout {definition.timeout_seconds:g}s, branches {rules}")

@app.command()
def trigger(
    pipelines: str = typer.Argument("pipelines.yml", help="Pipeline definition file"),
    ref: str = typer.Option(..., help="Ref that changed, e.g. refs/heads/main"),
    sha: str = typer.Option(..., help="Commit SHA"),
    repository: str = typer.Option("", help="owner/name of the repository"),
    clone_url: str = typer.Option("", help="URL to clone the repository from"),
    changed: Optional[List[str]] = typer.Option(None, help="Changed path (repeatable)"),
    kind: EventKind = typer.Option(EventKind.MANUAL, help="Event kind"),
):
    """Run the pipelines an event triggers and print every run transition."""
    definitions = _load(pipelines)
    event = TriggerEvent(
        kind=kind,
        ref=ref,
        commit_sha=sha,
        changed_paths=frozenset(changed) if changed else None,
        repository=repository,
        clone_url=clone_url or (f"https://github.com/{repository}.git" if repository else ""),
    )

    if not evaluate(event, definitions):
        typer.echo(f"No pipeline is triggered by {ref}")
        raise typer.Exit(code=0)

    runs = asyncio.run(_run_event(definitions, event))
    failed = [run for run in runs if run.state != RunState.SUCCEEDED]
    raise typer.Exit(code=1 if failed else 0)

async def _run_event(definitions, event: TriggerEvent) -> List[Run]:
    controller = build_controller(definitions, observers=[render_transition])
    await controller.start()
    try:
        handles = await controller.handle_event(event)
        return [await handle.wait() for handle in handles]
    finally:
        await controller.stop("drain")

@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Bind address"),
    port: Optional[int] = typer.Option(None, help="Bind port"),
):
    """Start the webhook API and the scheduler."""
    import uvicorn
    from conveyor_api.src.config import get_settings as get_api_settings

    settings = get_api_settings()
    logger.info("Starting Conveyor")
    uvicorn.run(
        "conveyor_api.src.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
    )

def main():
    """Main entry point."""
    app()

if __name__ == "__main__":
    main()
