"""Command-line utilities for the bot_evolution package."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
import ujson as json
from rich.console import Console
from rich.table import Table

from . import get_version
from .api import extract_log, load_spec, run_worker
from .logs import setup_logging
from .orchestrator import EvolutionRunner

app = typer.Typer(help="Distributed bot evolution utilities")
console = Console()


@app.callback()
def main_callback(
    log_level: Annotated[str, typer.Option(help="Logging level (DEBUG/INFO/WARNING).")] = "INFO",
    log_file: Annotated[Path | None, typer.Option(help="Also write logs to this file.")] = None,
) -> None:
    """Configure logging before any command runs."""
    try:
        setup_logging(log_level, log_file)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


@app.command()
def version() -> None:
    """Print the installed package version."""
    typer.echo(get_version())


@app.command()
def run(
    config: Annotated[Path, typer.Argument(..., exists=True, readable=True)],
    generations: Annotated[int | None, typer.Option(min=1)] = None,
    mode: Annotated[str, typer.Option(help="Trial backend (simulate/live).")] = "simulate",
    seed: Annotated[int, typer.Option()] = 0,
    state: Annotated[Path, typer.Option(help="Where to persist run state.")] = Path(
        "runs/state.json"
    ),
) -> None:
    """Execute an evolution run."""
    try:
        spec = load_spec(config)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    runner = EvolutionRunner(spec, mode=mode, seed=seed, state_path=state)
    runner.run(generations)
    console.print(runner.generation_table())
    console.print(f"[bold green]State written:[/] {state}")


@app.command("resume-state")
def resume_state(
    state_path: Annotated[Path, typer.Argument(help="Path to saved runner state JSON.")],
    generations: Annotated[int | None, typer.Option(min=1)] = None,
    mode: Annotated[str | None, typer.Option(help="Override the saved trial backend.")] = None,
) -> None:
    """Resume from a saved state and continue for more generations."""
    if not state_path.exists():
        raise typer.BadParameter(f"{state_path} does not exist")
    runner = EvolutionRunner.load_state(state_path, mode=mode)
    runner.run(generations)
    console.print(runner.generation_table())
    console.print(f"[bold green]State written:[/] {state_path}")


@app.command()
def worker(
    config: Annotated[Path, typer.Argument(..., exists=True, readable=True)],
    url: Annotated[str | None, typer.Option(help="Coordinator URL (default from config).")] = None,
    mode: Annotated[str, typer.Option(help="Trial backend (simulate/live).")] = "live",
    seed: Annotated[int, typer.Option()] = 0,
    max_concurrent: Annotated[int | None, typer.Option(min=1)] = None,
    name: Annotated[str, typer.Option()] = "worker",
) -> None:
    """Pull trials from a coordinator and run them on this machine."""
    try:
        spec = load_spec(config)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    stats = run_worker(
        spec,
        url=url,
        mode=mode,
        seed=seed,
        max_concurrent_trials=max_concurrent,
        name=name,
    )
    console.print(
        f"[bold]{name}:[/] granted={stats.granted} completed={stats.completed} "
        f"failed={stats.failed} peak={stats.peak_concurrency}"
    )


@app.command()
def extract(
    log: Annotated[Path, typer.Argument(..., exists=True, readable=True)],
    as_json: Annotated[bool, typer.Option("--json", help="Emit JSON lines.")] = False,
) -> None:
    """Print the events extracted from a trial log."""
    events = extract_log(log)
    if as_json:
        for event in events:
            typer.echo(json.dumps(event.to_json()))
        return
    table = Table(title=f"Events ({log})")
    table.add_column("time")
    table.add_column("type")
    table.add_column("entity")
    table.add_column("target")
    table.add_column("amount")
    for event in events:
        table.add_row(
            f"{event.timestamp:.1f}" if event.timed else f"#{int(event.timestamp)}",
            event.kind,
            event.entity,
            event.target or "-",
            f"{event.amount:g}" if event.amount is not None else "-",
        )
    console.print(table)


@app.command()
def scores(path: Annotated[Path, typer.Argument()] = Path("runs/state.json")) -> None:
    """Print the latest scored population from a state file."""
    if not path.exists():
        raise typer.BadParameter(f"{path} does not exist")
    data = json.loads(path.read_text())
    table = Table(title=f"Generation {data.get('generation', '?')} ({path})")
    table.add_column("ID")
    table.add_column("Parents")
    table.add_column("Operator")
    table.add_column("fitness")
    table.add_column("failed")
    rows = sorted(
        data.get("population", []),
        key=lambda row: float(row.get("fitness") or 0.0),
        reverse=True,
    )
    for row in rows:
        table.add_row(
            row["id"],
            ",".join(row.get("parents") or []) or "-",
            str(row.get("operator", "-")),
            f"{float(row.get('fitness') or 0.0):.3f}",
            f"{row.get('failed_trials', 0)}/{row.get('trials', 0)}",
        )
    console.print(table)


def main() -> None:
    """Entry point for `python -m bot_evolution.cli`."""
    app()


if __name__ == "__main__":
    main()
