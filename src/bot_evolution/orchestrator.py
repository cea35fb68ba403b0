"""Evolution loop orchestration."""

from __future__ import annotations

import contextlib
import logging
import math
import random
import statistics
import threading
import time
from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import ujson as json
from rich.console import Console
from rich.table import Table

from .candidates import Candidate, candidate_id
from .coordinator import Coordinator, QuotaInvariantError
from .crossover import uniform_state_crossover
from .dsl import RunSpec
from .evaluation import FitnessEvaluator
from .mutations import mutate, random_genotype, seeded_genotype
from .selection import sample, selection_probabilities
from .server import CoordinatorServer
from .simulators import runner_for_mode
from .trials import TrialRequest, TrialResult, TrialRunner
from .worker import CoordinatorClient, WorkerAgent

console = Console()
logger = logging.getLogger(__name__)


class Phase(str, Enum):
    INIT = "init"
    RUNNING_GENERATION = "running_generation"
    SCORING = "scoring"
    SELECTING = "selecting"
    DONE = "done"


@dataclass
class GenerationSummary:
    """Score distribution of one finished generation."""

    generation: int
    scores: dict[str, float] = field(default_factory=dict)
    best_id: str | None = None
    best: float = 0.0
    mean: float = 0.0
    worst: float = 0.0
    stdev: float = 0.0
    trials: int = 0
    failed_trials: int = 0
    uniform_fallback: bool = False

    def to_json(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> GenerationSummary:
        return cls(
            generation=int(data["generation"]),
            scores={str(k): float(v) for k, v in (data.get("scores") or {}).items()},
            best_id=data.get("best_id"),
            best=float(data.get("best", 0.0)),
            mean=float(data.get("mean", 0.0)),
            worst=float(data.get("worst", 0.0)),
            stdev=float(data.get("stdev", 0.0)),
            trials=int(data.get("trials", 0)),
            failed_trials=int(data.get("failed_trials", 0)),
            uniform_fallback=bool(data.get("uniform_fallback", False)),
        )


class EvolutionRunner:
    """Drives generations: dispatch trials, score, select, breed."""

    def __init__(
        self,
        spec: RunSpec,
        mode: str = "simulate",
        seed: int = 0,
        state_path: Path | None = None,
        trial_runner: TrialRunner | None = None,
    ) -> None:
        self.spec = spec
        self.cfg = spec.evolution
        self.mode = mode
        self.seed = seed
        self.rng = random.Random(seed)  # noqa: S311  # nosec B311 - seeded per run
        self.trial_runner = trial_runner or runner_for_mode(mode, spec, seed=seed)
        self.evaluator = FitnessEvaluator(spec.fitness, failure_score=self.cfg.failure_score)
        self.phase = Phase.INIT
        self.generation = 0
        self.population: list[Candidate] = []
        self.history: list[GenerationSummary] = []
        self.best_fitness: float | None = None
        self.best_candidate: Candidate | None = None
        self.stagnant_generations = 0
        self.state_path = Path(state_path) if state_path else None
        self.server: CoordinatorServer | None = None
        self.stop_event = threading.Event()
        self._probabilities: list[float] | None = None

    # ------------------------------------------------------------------
    def run(self, generations: int | None = None) -> list[GenerationSummary]:
        """Run ``generations`` more generations (default: what the config has left)."""
        budget = (
            max(0, self.cfg.generations - len(self.history)) if generations is None else generations
        )
        if self.phase is Phase.DONE:
            self.phase = Phase.SELECTING
        if self.phase is Phase.INIT:
            self.population = self._initial_population()
            self.phase = Phase.RUNNING_GENERATION
            console.print(f"[bold]Run[/] {self.spec.summary()}")
        ran = 0
        with self._fleet():
            while ran < budget and not self._stagnated():
                if self.phase is Phase.SELECTING:
                    self.population = self._select_next()
                    self.generation += 1
                    self.phase = Phase.RUNNING_GENERATION
                results = self._run_generation()
                self.phase = Phase.SCORING
                summary = self._score(results)
                self.phase = Phase.SELECTING
                self.save_state()
                self._archive_generation(summary)
                self._report(summary)
                ran += 1
        if self._stagnated():
            console.print(
                f"[yellow]Stopping early:[/] best fitness flat for "
                f"{self.stagnant_generations} generations"
            )
        self.phase = Phase.DONE
        return self.history

    def _stagnated(self) -> bool:
        limit = self.cfg.stagnation_generations
        return limit is not None and self.stagnant_generations >= limit

    # ------------------------------------------------------------------ INIT
    def _initial_population(self) -> list[Candidate]:
        genome = self.spec.genome
        population: list[Candidate] = []
        if genome.init == "seeded":
            base = seeded_genotype(genome)
            population.append(Candidate(ident=candidate_id(0, 0), genotype=base, operator="seed"))
            while len(population) < self.cfg.population:
                name, genotype = mutate(base, self.rng, self.spec.mutation, genome)
                population.append(
                    Candidate(
                        ident=candidate_id(0, len(population)),
                        genotype=genotype,
                        operator=f"seed+{name}",
                    )
                )
            return population
        for idx in range(self.cfg.population):
            population.append(
                Candidate(ident=candidate_id(0, idx), genotype=random_genotype(genome, self.rng))
            )
        return population

    # ------------------------------------------------------ RUNNING_GENERATION
    def _trial_requests(self) -> list[TrialRequest]:
        requests: list[TrialRequest] = []
        for _ in range(self.cfg.trials_per_config):
            for cand in self.population:
                requests.append(
                    TrialRequest(
                        generation=self.generation,
                        trial_index=len(requests),
                        entity_id=cand.ident,
                        genotype=cand.genotype,
                    )
                )
        return requests

    def _run_generation(self) -> list[TrialResult]:
        coordinator = Coordinator(self.generation, self._trial_requests())
        for cand in self.population:
            cand.status = "running"
        console.print(
            f"[cyan]Generation {self.generation}[/]: {coordinator.initial_quota} trials "
            f"for {len(self.population)} configurations"
        )
        if self.server is not None:
            self._dispatch_http(coordinator, self.server)
        else:
            self._dispatch_local(coordinator)
        results = coordinator.close()
        if len(results) != coordinator.initial_quota or coordinator.granted != len(results):
            raise QuotaInvariantError(
                f"generation {self.generation}: {coordinator.granted} grants, "
                f"{len(results)} results, quota {coordinator.initial_quota}"
            )
        return results

    def _dispatch_local(self, coordinator: Coordinator) -> None:
        fleet = self.spec.fleet
        agents = [
            WorkerAgent(
                link=coordinator,
                runner=self.trial_runner,
                max_concurrent_trials=fleet.max_concurrent_trials,
                name=f"local-{idx}",
                poll_interval=fleet.poll_interval,
                stop_event=self.stop_event,
            )
            for idx in range(fleet.local_workers)
        ]
        with ThreadPoolExecutor(max_workers=len(agents), thread_name_prefix="agent") as pool:
            futures = [pool.submit(agent.run_generation) for agent in agents]
            for future in futures:
                future.result()
        if not coordinator.await_generation_complete(timeout=0):
            raise QuotaInvariantError(
                f"generation {self.generation}: workers drained with "
                f"{coordinator.completed}/{coordinator.initial_quota} results"
            )

    def _dispatch_http(self, coordinator: Coordinator, server: CoordinatorServer) -> None:
        fleet = self.spec.fleet
        server.install(coordinator)
        clients: list[CoordinatorClient] = []
        agents: list[WorkerAgent] = []
        for idx in range(fleet.local_workers):
            client = CoordinatorClient(
                server.url,
                timeout=fleet.request_timeout,
                backoff_initial=fleet.backoff_initial,
                backoff_max=fleet.backoff_max,
                stop_event=self.stop_event,
            )
            clients.append(client)
            agents.append(
                WorkerAgent(
                    link=client,
                    runner=self.trial_runner,
                    max_concurrent_trials=fleet.max_concurrent_trials,
                    name=f"local-{idx}",
                    poll_interval=fleet.poll_interval,
                    stop_event=self.stop_event,
                )
            )
        try:
            with ThreadPoolExecutor(
                max_workers=max(1, len(agents)), thread_name_prefix="agent"
            ) as pool:
                futures = [pool.submit(agent.run_generation) for agent in agents]
                while not coordinator.await_generation_complete(timeout=fleet.poll_interval):
                    failed = [f for f in futures if f.done() and f.exception() is not None]
                    if failed:
                        raise failed[0].exception()  # type: ignore[misc]
                for future in futures:
                    future.result()
        finally:
            for client in clients:
                client.close()

    @contextlib.contextmanager
    def _fleet(self) -> Iterator[None]:
        fleet = self.spec.fleet
        if fleet.transport != "http" or self.server is not None:
            yield
            return
        server = CoordinatorServer(fleet.host, fleet.port).start()
        self.server = server
        try:
            yield
        finally:
            server.finish()
            # Let polling remote workers observe ``done`` before the socket closes.
            time.sleep(fleet.poll_interval * 2)
            server.shutdown()
            self.server = None

    # ---------------------------------------------------------------- SCORING
    def _score(self, results: list[TrialResult]) -> GenerationSummary:
        entity = self.spec.trial.entity
        scores = self.evaluator.score_results(results, entity=entity, generation=self.generation)
        trials: dict[str, int] = {}
        failures: dict[str, int] = {}
        for result in results:
            trials[result.entity_id] = trials.get(result.entity_id, 0) + 1
            if result.failed:
                failures[result.entity_id] = failures.get(result.entity_id, 0) + 1
        for cand in self.population:
            score = scores.get(cand.ident)
            value = score.value if score is not None else self.cfg.failure_score
            cand.record_score(value, trials.get(cand.ident, 0), failures.get(cand.ident, 0))
        values = [float(c.fitness or 0.0) for c in self.population]
        best = max(self.population, key=lambda c: float(c.fitness or 0.0))
        summary = GenerationSummary(
            generation=self.generation,
            scores={c.ident: float(c.fitness or 0.0) for c in self.population},
            best_id=best.ident,
            best=float(best.fitness or 0.0),
            mean=statistics.fmean(values),
            worst=min(values),
            stdev=statistics.pstdev(values) if len(values) > 1 else 0.0,
            trials=len(results),
            failed_trials=sum(1 for r in results if r.failed),
        )
        summary.uniform_fallback = self._prepare_selection()
        self.history.append(summary)
        tol = self.cfg.stagnation_tolerance
        if self.best_fitness is None or summary.best > self.best_fitness + tol:
            self.best_fitness = summary.best
            self.best_candidate = best
            self.stagnant_generations = 0
        else:
            self.stagnant_generations += 1
        return summary

    # -------------------------------------------------------------- SELECTING
    def _prepare_selection(self) -> bool:
        """Compute roulette odds for the scored population; True on uniform fallback."""
        fitness = [
            float(c.fitness) if c.fitness is not None else self.cfg.failure_score
            for c in self.population
        ]
        self._probabilities, fallback = selection_probabilities(
            fitness, self.cfg.selection_offset
        )
        return fallback

    def _select_next(self) -> list[Candidate]:
        population = self.population
        if self._probabilities is None or len(self._probabilities) != len(population):
            self._prepare_selection()
        probabilities = self._probabilities or []
        self._probabilities = None
        next_gen = self.generation + 1
        children: list[Candidate] = []
        if self.cfg.elite_count:
            ranked = sorted(population, key=lambda c: float(c.fitness or 0.0), reverse=True)
            for elite in ranked[: self.cfg.elite_count]:
                children.append(
                    Candidate(
                        ident=candidate_id(next_gen, len(children)),
                        genotype=elite.genotype,
                        generation=next_gen,
                        parents=[elite.ident],
                        operator="elite",
                    )
                )
        while len(children) < self.cfg.population:
            (parent_a,) = sample(population, probabilities, self.rng, k=1)
            parents = [parent_a.ident]
            genotype = parent_a.genotype
            operator = ""
            if len(population) > 1 and self.rng.random() < self.cfg.crossover_prob:
                (parent_b,) = sample(population, probabilities, self.rng, k=1)
                genotype = uniform_state_crossover(genotype, parent_b.genotype, self.rng)
                parents.append(parent_b.ident)
                operator = "crossover"
            name, genotype = mutate(genotype, self.rng, self.spec.mutation, self.spec.genome)
            children.append(
                Candidate(
                    ident=candidate_id(next_gen, len(children)),
                    genotype=genotype,
                    generation=next_gen,
                    parents=parents,
                    operator=f"{operator}+{name}" if operator else name,
                )
            )
        return children

    # -------------------------------------------------------------- reporting
    def generation_table(self) -> Table:
        table = Table(title="Generations")
        table.add_column("Gen")
        table.add_column("best")
        table.add_column("mean")
        table.add_column("worst")
        table.add_column("failed")
        table.add_column("best id")
        for summary in self.history:
            table.add_row(
                str(summary.generation),
                f"{summary.best:.3f}",
                f"{summary.mean:.3f}",
                f"{summary.worst:.3f}",
                f"{summary.failed_trials}/{summary.trials}",
                summary.best_id or "-",
            )
        return table

    def _report(self, summary: GenerationSummary) -> None:
        console.print(
            f"[green]Generation {summary.generation}[/] best={summary.best:.3f} "
            f"mean={summary.mean:.3f} worst={summary.worst:.3f} sd={summary.stdev:.3f} "
            f"failed={summary.failed_trials}/{summary.trials}"
        )
        if summary.failed_trials:
            logger.warning(
                "Generation %d: %d of %d trials failed",
                summary.generation,
                summary.failed_trials,
                summary.trials,
            )

    # ------------------------------------------------------------ persistence
    def _archive_generation(self, summary: GenerationSummary) -> None:
        if self.state_path is None:
            return
        archive_dir = self.state_path.parent / "generations"
        archive_dir.mkdir(parents=True, exist_ok=True)
        path = archive_dir / f"gen_{summary.generation:04d}.json"
        payload = {
            "summary": summary.to_json(),
            "population": [c.serialize() for c in self.population],
        }
        path.write_text(json.dumps(payload, indent=2))

    def save_state(self, path: Path | None = None) -> None:
        """Persist runner state for resuming at the last scored generation."""
        path = Path(path) if path is not None else self.state_path
        if path is None:
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        state: dict[str, Any] = {
            "spec": self.spec.model_dump(mode="json"),
            "mode": self.mode,
            "seed": self.seed,
            "rng_state": self.rng.getstate(),
            "phase": self.phase.value,
            "generation": self.generation,
            "population": [c.serialize() for c in self.population],
            "history": [s.to_json() for s in self.history],
            "best_fitness": self.best_fitness,
            "best_candidate": self.best_candidate.serialize() if self.best_candidate else None,
            "stagnant_generations": self.stagnant_generations,
        }
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(state, indent=2))
        tmp.replace(path)
        logger.debug("State saved to %s", path)

    @classmethod
    def load_state(
        cls,
        path: Path,
        mode: str | None = None,
        trial_runner: TrialRunner | None = None,
    ) -> EvolutionRunner:
        """Rehydrate a runner from a saved state manifest."""
        data = json.loads(Path(path).read_text())
        spec = RunSpec(**data["spec"])
        seed_val = data.get("seed")
        runner = cls(
            spec,
            mode=mode or str(data.get("mode", "simulate")),
            seed=seed_val if isinstance(seed_val, int) else 0,
            state_path=Path(path),
            trial_runner=trial_runner,
        )
        population = [Candidate.from_json(item) for item in data.get("population", [])]
        if not population:
            raise ValueError(f"State file {path} contains no population.")
        runner.population = population
        runner.history = [GenerationSummary.from_json(s) for s in data.get("history", [])]
        runner.generation = int(data.get("generation", 0))
        runner.phase = Phase(data.get("phase", Phase.SELECTING.value))
        if runner.phase in {Phase.RUNNING_GENERATION, Phase.SCORING}:
            # Partial generations are not resumable; rerun it from scratch.
            runner.phase = Phase.RUNNING_GENERATION
        best = data.get("best_fitness")
        runner.best_fitness = float(best) if best is not None and math.isfinite(best) else None
        best_cand = data.get("best_candidate")
        runner.best_candidate = Candidate.from_json(best_cand) if best_cand else None
        runner.stagnant_generations = int(data.get("stagnant_generations", 0))
        rng_state = data.get("rng_state")
        if isinstance(rng_state, (list, tuple)) and len(rng_state) == 3:
            version, internal, gauss_next = rng_state
            runner.rng.setstate((version, tuple(internal), gauss_next))
        return runner
