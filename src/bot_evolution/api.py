"""Public API for downstream modules."""

from __future__ import annotations

import threading
from pathlib import Path

from .dsl import RunSpec, load_run_spec, save_run_spec
from .events import Event
from .extractor import EventExtractor
from .orchestrator import EvolutionRunner, GenerationSummary
from .simulators import runner_for_mode
from .worker import CoordinatorClient, WorkerAgent, WorkerStats

__all__ = [
    "RunSpec",
    "load_spec",
    "save_spec",
    "run_evolution",
    "resume_evolution",
    "run_worker",
    "extract_log",
]


def load_spec(path: str | Path) -> RunSpec:
    """Read a run spec from disk."""
    return load_run_spec(path)


def save_spec(spec: RunSpec, path: str | Path) -> None:
    """Persist a run spec to disk."""
    save_run_spec(spec, path)


def run_evolution(
    config_path: str | Path,
    generations: int | None = None,
    mode: str = "simulate",
    seed: int = 0,
    state_path: str | Path = "runs/state.json",
) -> list[GenerationSummary]:
    """Entry point used by the CLI to run a full search."""
    spec = load_spec(config_path)
    runner = EvolutionRunner(spec, mode=mode, seed=seed, state_path=Path(state_path))
    return runner.run(generations)


def resume_evolution(
    state_path: str | Path,
    generations: int | None = None,
    mode: str | None = None,
) -> list[GenerationSummary]:
    """Continue a run from its last scored generation."""
    runner = EvolutionRunner.load_state(Path(state_path), mode=mode)
    return runner.run(generations)


def run_worker(
    spec: RunSpec,
    url: str | None = None,
    mode: str = "live",
    seed: int = 0,
    max_concurrent_trials: int | None = None,
    name: str = "worker",
    stop_event: threading.Event | None = None,
) -> WorkerStats:
    """Serve trials for a remote coordinator until it reports the run done."""
    fleet = spec.fleet
    stop_event = stop_event or threading.Event()
    client = CoordinatorClient(
        url or fleet.url,
        timeout=fleet.request_timeout,
        backoff_initial=fleet.backoff_initial,
        backoff_max=fleet.backoff_max,
        stop_event=stop_event,
    )
    agent = WorkerAgent(
        link=client,
        runner=runner_for_mode(mode, spec, seed=seed),
        max_concurrent_trials=max_concurrent_trials or fleet.max_concurrent_trials,
        name=name,
        poll_interval=fleet.poll_interval,
        stop_event=stop_event,
    )
    try:
        return agent.serve()
    finally:
        client.close()


def extract_log(path: str | Path) -> list[Event]:
    """Run the default extractor over a trial log file."""
    return EventExtractor().extract_file(path)
