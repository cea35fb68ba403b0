"""Typed configuration DSL for distributed bot evolution runs."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import ujson as json
import yaml
from pydantic import (
    BaseModel,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

DEFAULT_STATES = ["laning", "farming", "pushing", "defending", "retreating", "fighting"]
MUTATION_OPERATORS = ("perturb", "nudge_state")


class Genotype(BaseModel):
    """Ordered mapping from FSM state id to that state's precedence weights."""

    states: dict[str, tuple[float, ...]]

    model_config = {"frozen": True}

    @field_validator("states")
    @classmethod
    def non_empty(cls, value: dict[str, tuple[float, ...]]) -> dict[str, tuple[float, ...]]:
        if not value:
            raise ValueError("Genotype requires at least one state.")
        for state, weights in value.items():
            if not weights:
                raise ValueError(f"State '{state}' has no weights.")
        return value

    @property
    def state_ids(self) -> list[str]:
        return list(self.states)

    def weights(self, state: str) -> tuple[float, ...]:
        return self.states[state]

    def with_state(self, state: str, weights: tuple[float, ...] | list[float]) -> Genotype:
        """Return a copy with ``state`` replaced; the original is untouched."""
        if state not in self.states:
            raise KeyError(state)
        data = dict(self.states)
        data[state] = tuple(float(w) for w in weights)
        return Genotype(states=data)

    def flat(self) -> list[float]:
        return [w for weights in self.states.values() for w in weights]

    def to_json(self) -> dict[str, Any]:
        return {"states": {state: list(weights) for state, weights in self.states.items()}}

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> Genotype:
        states = data.get("states")
        if not isinstance(states, dict):
            raise ValueError("Genotype payload missing 'states'.")
        return cls(states={str(k): tuple(float(w) for w in v) for k, v in states.items()})


class GenomeConfig(BaseModel):
    """Shape and initialisation of the evolved weight sets."""

    states: list[str] = Field(default_factory=lambda: list(DEFAULT_STATES))
    weights_per_state: int = Field(default=4, gt=0)
    lower_bound: float = 0.0
    upper_bound: float = 1.0
    init: Literal["random", "seeded"] = "random"
    seed: dict[str, list[float]] | None = None

    @field_validator("states")
    @classmethod
    def unique_states(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("genome.states must not be empty")
        if len(set(value)) != len(value):
            raise ValueError("genome.states must be unique")
        return value

    @model_validator(mode="after")
    def validate_bounds(self) -> GenomeConfig:
        if self.lower_bound >= self.upper_bound:
            raise ValueError("genome.lower_bound must be < genome.upper_bound")
        if self.init == "seeded" and not self.seed:
            raise ValueError("genome.init=seeded requires genome.seed")
        if self.seed:
            for state, weights in self.seed.items():
                if state not in self.states:
                    raise ValueError(f"genome.seed references unknown state '{state}'")
                if len(weights) != self.weights_per_state:
                    raise ValueError(
                        f"genome.seed['{state}'] needs {self.weights_per_state} weights"
                    )
                if any(w < self.lower_bound or w > self.upper_bound for w in weights):
                    raise ValueError(f"genome.seed['{state}'] is outside the weight bounds")
        return self

    def clamp(self, value: float) -> float:
        return min(self.upper_bound, max(self.lower_bound, value))


class EvolutionConfig(BaseModel):
    """Tunable parameters governing generations + selection."""

    population: int = Field(default=8, gt=0)
    trials_per_config: int = Field(default=1, gt=0)
    generations: int = Field(default=10, gt=0)
    # Early stop when the best fitness has not improved for this many generations.
    stagnation_generations: int | None = Field(default=3, gt=0)
    stagnation_tolerance: float = Field(default=1e-9, ge=0.0)
    crossover_prob: float = Field(default=0.7, ge=0.0, le=1.0)
    elite_count: int = Field(default=0, ge=0)
    selection_offset: float = Field(default=0.0, ge=0.0)
    failure_score: float = 0.0

    @model_validator(mode="after")
    def validate_elites(self) -> EvolutionConfig:
        if self.elite_count > self.population:
            raise ValueError("evolution.elite_count must be <= evolution.population")
        return self

    @property
    def quota(self) -> int:
        return self.population * self.trials_per_config


class FitnessWeights(BaseModel):
    """Coefficients of the fitness formula (tuning constants, not logic)."""

    win: float = Field(default=10.0, ge=0.0)
    kills: float = Field(default=1.0, ge=0.0)
    assists: float = Field(default=0.5, ge=0.0)
    gold: float = Field(default=0.01, ge=0.0)
    deaths: float = Field(default=1.0, ge=0.0)
    experience: float = Field(default=0.01, ge=0.0)


class MutationConfig(BaseModel):
    """Bounded perturbation applied to children."""

    rate: float = Field(default=0.2, ge=0.0, le=1.0)
    magnitude: float = Field(default=0.1, gt=0.0)
    operators: dict[str, float] = Field(
        default_factory=lambda: {"perturb": 1.0, "nudge_state": 0.25}
    )

    @field_validator("operators")
    @classmethod
    def positive_weights(cls, value: dict[str, float]) -> dict[str, float]:
        if not value or not any(w > 0 for w in value.values()):
            raise ValueError("mutation.operators needs at least one positive weight")
        if any(w < 0 for w in value.values()):
            raise ValueError("mutation.operators weights must be >= 0")
        unknown = sorted(set(value) - set(MUTATION_OPERATORS))
        if unknown:
            raise ValueError(
                f"mutation.operators has unknown operators {unknown}; "
                f"choose from {list(MUTATION_OPERATORS)}"
            )
        return value


class FleetConfig(BaseModel):
    """Coordinator endpoint and worker-side concurrency."""

    transport: Literal["local", "http"] = "local"
    host: str = "127.0.0.1"
    port: int = Field(default=8765, ge=0, le=65535)
    local_workers: int = Field(default=2, ge=0)
    max_concurrent_trials: int = Field(default=2, gt=0)
    poll_interval: float = Field(default=0.5, gt=0.0)
    backoff_initial: float = Field(default=0.5, gt=0.0)
    backoff_max: float = Field(default=30.0, gt=0.0)
    request_timeout: float = Field(default=10.0, gt=0.0)

    @model_validator(mode="after")
    def validate_fleet(self) -> FleetConfig:
        if self.transport == "local" and self.local_workers < 1:
            raise ValueError("fleet.transport=local requires fleet.local_workers >= 1")
        if self.backoff_initial > self.backoff_max:
            raise ValueError("fleet.backoff_initial must be <= fleet.backoff_max")
        return self

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"


class TrialConfig(BaseModel):
    """External simulation invocation."""

    command: list[str] = Field(default_factory=list)
    work_dir: str = "runs/trials"
    timeout: float | None = Field(default=None, gt=0.0)
    # In-game entity whose score is credited to the configuration under test.
    entity: str = "radiant"
    keep_artifacts: bool = True
    # Simulate mode only: probability that a trial crashes.
    failure_rate: float = Field(default=0.0, ge=0.0, le=1.0)


class RunSpec(BaseModel):
    """Top-level DSL entity."""

    name: str = "bot-evolution"
    genome: GenomeConfig = Field(default_factory=GenomeConfig)
    evolution: EvolutionConfig = Field(default_factory=EvolutionConfig)
    fitness: FitnessWeights = Field(default_factory=FitnessWeights)
    mutation: MutationConfig = Field(default_factory=MutationConfig)
    fleet: FleetConfig = Field(default_factory=FleetConfig)
    trial: TrialConfig = Field(default_factory=TrialConfig)

    def summary(self) -> dict[str, Any]:
        """Return a JSON-friendly summary for logging."""
        return {
            "name": self.name,
            "states": len(self.genome.states),
            "population": self.evolution.population,
            "quota": self.evolution.quota,
            "generations": self.evolution.generations,
            "transport": self.fleet.transport,
        }


def load_run_spec(path: str | Path) -> RunSpec:
    """Load a spec from YAML or JSON."""
    path = Path(path)
    data: Any
    text = path.read_text()
    if path.suffix in {".yaml", ".yml"}:
        data = yaml.safe_load(text)
    else:
        data = json.loads(text)
    try:
        return RunSpec(**(data or {}))
    except ValidationError as exc:
        raise ValueError(f"Invalid config {path}: {exc}") from exc


def save_run_spec(spec: RunSpec, path: str | Path) -> None:
    """Persist a spec as YAML or JSON based on file suffix."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix in {".yaml", ".yml"}:
        path.write_text(yaml.safe_dump(spec.model_dump(mode="json"), sort_keys=False))
    else:
        path.write_text(json.dumps(spec.model_dump(mode="json"), indent=2))
