"""Bounded mutation operators over genotypes."""

from __future__ import annotations

import random
from collections.abc import Callable

from .dsl import GenomeConfig, Genotype, MutationConfig

MutationFn = Callable[[Genotype, random.Random, MutationConfig, GenomeConfig], Genotype]


def _jitter(value: float, rng: random.Random, magnitude: float, genome: GenomeConfig) -> float:
    return genome.clamp(value + rng.uniform(-magnitude, magnitude))


def perturb(
    genotype: Genotype, rng: random.Random, cfg: MutationConfig, genome: GenomeConfig
) -> Genotype:
    """Jitter a random subset of weights (each with probability ``cfg.rate``).

    At least one weight always moves so a mutated child differs from its
    parent unless the move is clamped away at a bound.
    """
    flat = [
        (state, idx) for state, weights in genotype.states.items() for idx in range(len(weights))
    ]
    chosen = {pos for pos in flat if rng.random() < cfg.rate}
    if not chosen:
        chosen = {rng.choice(flat)}
    states: dict[str, tuple[float, ...]] = {}
    for state, weights in genotype.states.items():
        states[state] = tuple(
            _jitter(w, rng, cfg.magnitude, genome) if (state, idx) in chosen else w
            for idx, w in enumerate(weights)
        )
    return Genotype(states=states)


def nudge_state(
    genotype: Genotype, rng: random.Random, cfg: MutationConfig, genome: GenomeConfig
) -> Genotype:
    """Shift every weight of one randomly chosen state."""
    state = rng.choice(genotype.state_ids)
    weights = [_jitter(w, rng, cfg.magnitude, genome) for w in genotype.weights(state)]
    return genotype.with_state(state, weights)


REGISTRY: dict[str, MutationFn] = {
    "perturb": perturb,
    "nudge_state": nudge_state,
}


def mutate(
    genotype: Genotype,
    rng: random.Random,
    cfg: MutationConfig,
    genome: GenomeConfig,
) -> tuple[str, Genotype]:
    """Pick one registered operator by weight and apply it."""
    names = [name for name, weight in cfg.operators.items() if name in REGISTRY and weight > 0]
    if not names:
        raise ValueError(f"No known mutation operators in {sorted(cfg.operators)}")
    weights = [cfg.operators[name] for name in names]
    name = rng.choices(names, weights=weights, k=1)[0]
    return name, REGISTRY[name](genotype, rng, cfg, genome)


def random_genotype(genome: GenomeConfig, rng: random.Random) -> Genotype:
    return Genotype(
        states={
            state: tuple(
                rng.uniform(genome.lower_bound, genome.upper_bound)
                for _ in range(genome.weights_per_state)
            )
            for state in genome.states
        }
    )


def seeded_genotype(genome: GenomeConfig) -> Genotype:
    """Seed weights for configured states; unlisted states sit mid-range."""
    seed = genome.seed or {}
    middle = (genome.lower_bound + genome.upper_bound) / 2.0
    return Genotype(
        states={
            state: tuple(seed.get(state) or [middle] * genome.weights_per_state)
            for state in genome.states
        }
    )
