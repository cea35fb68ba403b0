"""Synthetic match generator used to debug the dispatch + selection stack quickly."""

from __future__ import annotations

import random
import zlib

import ujson as json

from .dsl import GenomeConfig, Genotype, RunSpec
from .extractor import EventExtractor
from .trials import ProcessTrialRunner, TrialRequest, TrialResult, TrialRunner, build_result


class SimulatedTrialRunner:
    """Produces deterministic-yet-random match logs for quick iteration.

    Match odds improve as a genotype approaches a hidden optimum drawn from
    ``seed``; the log goes through the real extractor so the whole pipeline
    is exercised.
    """

    def __init__(
        self,
        genome: GenomeConfig,
        entity: str = "radiant",
        seed: int = 0,
        failure_rate: float = 0.0,
        extractor: EventExtractor | None = None,
    ) -> None:
        self.genome = genome
        self.entity = entity
        self.opponent = "dire" if entity != "dire" else "radiant"
        self.seed = seed
        self.failure_rate = failure_rate
        self.extractor = extractor or EventExtractor()
        target_rng = random.Random(seed)  # noqa: S311  # nosec B311 - deterministic seed
        self.optimum = {
            state: [
                target_rng.uniform(genome.lower_bound, genome.upper_bound)
                for _ in range(genome.weights_per_state)
            ]
            for state in genome.states
        }

    def _rng(self, request: TrialRequest) -> random.Random:
        genotype_key = json.dumps(request.genotype.to_json(), sort_keys=True)
        salt = zlib.crc32(
            f"{self.seed}|{request.generation}|{request.trial_index}|{genotype_key}".encode()
        )
        return random.Random(salt)  # noqa: S311  # nosec B311 - deterministic seed

    def skill(self, genotype: Genotype) -> float:
        """Closeness to the hidden optimum in [0, 1]."""
        span = self.genome.upper_bound - self.genome.lower_bound
        gaps: list[float] = []
        for state, target in self.optimum.items():
            if state not in genotype.states:
                gaps.extend(1.0 for _ in target)
                continue
            weights = genotype.weights(state)
            for idx, goal in enumerate(target):
                value = weights[idx] if idx < len(weights) else self.genome.lower_bound
                gaps.append(min(1.0, abs(value - goal) / span))
        if not gaps:
            return 0.0
        return 1.0 - sum(gaps) / len(gaps)

    def render_log(self, request: TrialRequest, rng: random.Random) -> list[str]:
        skill = self.skill(request.genotype)
        us, them = self.entity, self.opponent
        minutes = rng.uniform(25.0, 50.0)
        lines = ["[0.0] Game started"]
        towers = 0
        for minute in range(int(minutes)):
            t = minute * 60.0 + rng.uniform(0.0, 59.0)
            stamp = f"[{t:.1f}]"
            if rng.random() < 0.15 + 0.35 * skill:
                lines.append(f"{stamp} {us} killed {them}")
                lines.append(f"{stamp} {them} died")
                if rng.random() < 0.6:
                    lines.append(f"{stamp} {us} assisted in killing {them}")
            if rng.random() < 0.5 - 0.35 * skill:
                lines.append(f"{stamp} {them} killed {us}")
                lines.append(f"{stamp} {us} died")
            gold = max(0, int(rng.gauss(300 + 250 * skill, 40)))
            lines.append(f"{stamp} {us} gained {gold} gold")
            lines.append(f"{stamp} {them} gained {max(0, int(rng.gauss(420, 40)))} gold")
            lines.append(f"{stamp} {us} gained {max(0, int(rng.gauss(350 + 200 * skill, 50)))} xp")
            if towers < 11 and rng.random() < 0.04 + 0.08 * skill:
                towers += 1
                lines.append(f"{stamp} Building: npc_dota_badguys_tower{towers} destroyed")
            if rng.random() < 0.2:
                lines.append(f"{stamp} Server tick {rng.randrange(1_000_000)}")
        winner = us if rng.random() < 0.2 + 0.6 * skill else them
        lines.append(f"[{minutes * 60.0:.1f}] Game over: {winner} wins")
        return lines

    def run(self, request: TrialRequest) -> TrialResult:
        rng = self._rng(request)
        if rng.random() < self.failure_rate:
            return build_result(request, [], exit_code=1, error="simulated crash")
        events = self.extractor.extract_lines(self.render_log(request, rng))
        return build_result(request, events, exit_code=0)


def runner_for_mode(mode: str, spec: RunSpec, seed: int = 0) -> TrialRunner:
    if mode == "simulate":
        return SimulatedTrialRunner(
            genome=spec.genome,
            entity=spec.trial.entity,
            seed=seed,
            failure_rate=spec.trial.failure_rate,
        )
    if mode == "live":
        return ProcessTrialRunner(
            command=spec.trial.command,
            work_dir=spec.trial.work_dir,
            timeout=spec.trial.timeout,
            keep_artifacts=spec.trial.keep_artifacts,
        )
    raise ValueError(f"Unsupported trial mode '{mode}'")
