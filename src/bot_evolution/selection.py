"""Fitness-proportional parent selection."""

from __future__ import annotations

import logging
import math
import random
from collections.abc import Sequence
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def selection_probabilities(
    fitness: Sequence[float], offset: float = 0.0
) -> tuple[list[float], bool]:
    """Return roulette-wheel probabilities and whether uniform fallback kicked in.

    Values are shifted by ``max(0, -min(fitness)) + offset`` so negatives still
    yield valid probabilities. Non-finite values count as the worst finite
    value. A total of zero (e.g. every candidate tied at the minimum) falls
    back to uniform odds.
    """
    n = len(fitness)
    if n == 0:
        return [], False
    finite = [f for f in fitness if math.isfinite(f)]
    floor = min(finite) if finite else 0.0
    values = [f if math.isfinite(f) else floor for f in fitness]
    shift = max(0.0, -min(values)) + offset
    shifted = [v + shift for v in values]
    total = math.fsum(shifted)
    if not math.isfinite(total) or total <= 0.0:
        logger.warning(
            "Selection fallback: total fitness %.6g after offset; using uniform odds for %d "
            "candidates",
            total,
            n,
        )
        return [1.0 / n] * n, True
    return [v / total for v in shifted], False


def sample(
    population: Sequence[T], probabilities: Sequence[float], rng: random.Random, k: int
) -> list[T]:
    """Weighted sampling with replacement."""
    if len(population) != len(probabilities):
        raise ValueError("population and probabilities must have the same length")
    if not population or k <= 0:
        return []
    return rng.choices(list(population), weights=list(probabilities), k=k)
