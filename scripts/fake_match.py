"""Stand-in simulation executable for live-mode smoke runs.

Reads a genotype config written by ``ProcessTrialRunner`` and writes a
synthetic match log, so the full subprocess path can be exercised without the
real game.

Usage (trial.command in a run config):
  ["python", "scripts/fake_match.py", "{config}", "--log", "{log}", "--trial", "{trial}"]
"""

from __future__ import annotations

import random
import sys
from pathlib import Path

import typer
import ujson as json

from bot_evolution.dsl import GenomeConfig, Genotype
from bot_evolution.simulators import SimulatedTrialRunner
from bot_evolution.trials import TrialRequest

app = typer.Typer(help="Write a synthetic match log for one genotype.")


@app.command()
def main(
    config: Path = typer.Argument(..., exists=True, readable=True, help="Genotype JSON"),
    log: Path | None = typer.Option(None, help="Log destination (stdout when omitted)"),
    trial: int = typer.Option(0, help="Trial index, salts the match RNG"),
    seed: int = typer.Option(0, help="Hidden optimum seed"),
    entity: str = typer.Option("radiant", help="Entity controlled by the genotype"),
    exit_code: int = typer.Option(0, help="Exit with this status after writing"),
) -> None:
    genotype = Genotype.from_json(json.loads(config.read_text()))
    first = genotype.weights(genotype.state_ids[0])
    genome = GenomeConfig(states=genotype.state_ids, weights_per_state=len(first))
    sim = SimulatedTrialRunner(genome=genome, entity=entity, seed=seed)
    request = TrialRequest(generation=0, trial_index=trial, entity_id="fake", genotype=genotype)
    rng = random.Random(seed * 1_000_003 + trial)  # noqa: S311  # nosec B311 - fake match
    lines = sim.render_log(request, rng)
    text = "\n".join(lines) + "\n"
    if log is None:
        sys.stdout.write(text)
    else:
        log.write_text(text)
    raise typer.Exit(code=exit_code)


if __name__ == "__main__":
    app()
