"""Crossover helpers for combining parent genotypes."""

from __future__ import annotations

import random

from .dsl import Genotype


def uniform_state_crossover(a: Genotype, b: Genotype, rng: random.Random) -> Genotype:
    """Take each state's whole weight vector from either parent with equal odds.

    States only ``a`` knows are inherited from ``a``; the child keeps ``a``'s
    state order.
    """
    states: dict[str, tuple[float, ...]] = {}
    for state, weights in a.states.items():
        other = b.states.get(state)
        if other is not None and len(other) == len(weights) and rng.random() < 0.5:
            states[state] = other
        else:
            states[state] = weights
    return Genotype(states=states)
