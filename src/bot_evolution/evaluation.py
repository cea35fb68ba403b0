"""Reduction of trial events into scalar fitness scores."""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from .dsl import FitnessWeights
from .events import Event
from .trials import TrialResult


@dataclass
class EntityStats:
    """Per-entity counters accumulated over one trial."""

    wins: int = 0
    kills: int = 0
    assists: int = 0
    deaths: int = 0
    gold: float = 0.0
    experience: float = 0.0
    structures: int = 0
    duration: float = 0.0

    def per_minute(self, value: float) -> float:
        minutes = self.duration / 60.0
        if minutes <= 0.0:
            return 0.0
        return value / minutes

    def rates(self) -> dict[str, float]:
        return {
            "winrate": float(min(self.wins, 1)),
            "kills_per_min": self.per_minute(self.kills),
            "assists_per_min": self.per_minute(self.assists),
            "deaths_per_min": self.per_minute(self.deaths),
            "gold_per_min": self.per_minute(self.gold),
            "experience_per_min": self.per_minute(self.experience),
        }


@dataclass(frozen=True)
class FitnessScore:
    entity: str
    generation: int
    value: float


def trial_duration(events: Sequence[Event]) -> float:
    """Seconds from game start to game end, falling back to the timed span."""
    start = next((e.timestamp for e in events if e.kind == "game_start" and e.timed), None)
    end = next((e.timestamp for e in reversed(events) if e.kind == "game_end" and e.timed), None)
    if start is not None and end is not None and end > start:
        return end - start
    stamps = [e.timestamp for e in events if e.timed]
    if len(stamps) < 2:
        return 0.0
    return max(0.0, max(stamps) - min(stamps))


def tally(events: Sequence[Event]) -> dict[str, EntityStats]:
    """Accumulate counters for every acting entity in ``events``."""
    stats: dict[str, EntityStats] = {}
    duration = trial_duration(events)

    def _entry(name: str) -> EntityStats:
        entry = stats.get(name)
        if entry is None:
            entry = stats[name] = EntityStats(duration=duration)
        return entry

    for event in events:
        if event.kind == "game_start":
            continue
        entry = _entry(event.entity)
        if event.kind == "game_end":
            entry.wins = 1
        elif event.kind == "kill":
            entry.kills += 1
        elif event.kind == "assist":
            entry.assists += 1
        elif event.kind == "death":
            entry.deaths += 1
        elif event.kind == "gold_gain":
            entry.gold += float(event.amount or 0.0)
        elif event.kind == "experience_gain":
            entry.experience += float(event.amount or 0.0)
        elif event.kind == "structure_destroyed":
            entry.structures += 1
    return stats


def fitness_score(stats: EntityStats, weights: FitnessWeights) -> float:
    rates = stats.rates()
    return (
        weights.win * rates["winrate"]
        + weights.kills * rates["kills_per_min"]
        + weights.assists * rates["assists_per_min"]
        + weights.gold * rates["gold_per_min"]
        - weights.deaths * rates["deaths_per_min"]
        + weights.experience * rates["experience_per_min"]
    )


def aggregate(values: Iterable[float]) -> float:
    """Mean across an entity's trials; empty input scores 0."""
    items = [float(v) for v in values]
    if not items:
        return 0.0
    return math.fsum(items) / len(items)


class FitnessEvaluator:
    """Pure scorer: identical event sequences always give identical scores."""

    def __init__(self, weights: FitnessWeights | None = None, failure_score: float = 0.0) -> None:
        self.weights = weights or FitnessWeights()
        self.failure_score = failure_score

    def score_trial(self, events: Sequence[Event]) -> dict[str, float]:
        return {
            entity: fitness_score(stats, self.weights) for entity, stats in tally(events).items()
        }

    def score_entity(self, events: Sequence[Event], entity: str) -> float:
        stats = tally(events).get(entity)
        if stats is None:
            stats = EntityStats(duration=trial_duration(events))
        return fitness_score(stats, self.weights)

    def score_result(self, result: TrialResult, entity: str) -> float:
        if result.failed:
            return self.failure_score
        return self.score_entity(result.events, entity)

    def score_results(
        self, results: Iterable[TrialResult], entity: str, generation: int
    ) -> dict[str, FitnessScore]:
        """Mean score per configuration (``result.entity_id``)."""
        grouped: dict[str, list[float]] = {}
        for result in sorted(results, key=lambda r: r.trial_index):
            grouped.setdefault(result.entity_id, []).append(self.score_result(result, entity))
        return {
            ident: FitnessScore(entity=ident, generation=generation, value=aggregate(values))
            for ident, values in grouped.items()
        }
