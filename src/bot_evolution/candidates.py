"""Population member tracking utilities."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from .dsl import Genotype

Status = Literal["pending", "running", "scored"]


@dataclass
class Candidate:
    """One configuration in a generation's population."""

    ident: str
    genotype: Genotype
    generation: int = 0
    parents: list[str] = field(default_factory=list)
    operator: str = "init"
    status: Status = "pending"
    fitness: float | None = None
    trials: int = 0
    failed_trials: int = 0

    def record_score(self, value: float, trials: int, failed_trials: int) -> None:
        self.fitness = value
        self.trials = trials
        self.failed_trials = failed_trials
        self.status = "scored"

    def serialize(self) -> dict[str, Any]:
        return {
            "id": self.ident,
            "generation": self.generation,
            "parents": list(self.parents),
            "operator": self.operator,
            "status": self.status,
            "fitness": self.fitness,
            "trials": self.trials,
            "failed_trials": self.failed_trials,
            "genotype": self.genotype.to_json(),
        }

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> Candidate:
        genotype_data = data.get("genotype")
        if not isinstance(genotype_data, dict):
            raise ValueError("Candidate genotype missing in state.")
        fitness = data.get("fitness")
        parents = data.get("parents") or []
        if not isinstance(parents, list):
            parents = []
        return cls(
            ident=str(data.get("id")),
            genotype=Genotype.from_json(genotype_data),
            generation=int(data.get("generation", 0)),
            parents=[str(p) for p in parents],
            operator=str(data.get("operator", "init")),
            status=data.get("status", "pending"),
            fitness=float(fitness) if fitness is not None else None,
            trials=int(data.get("trials", 0)),
            failed_trials=int(data.get("failed_trials", 0)),
        )


def candidate_id(generation: int, index: int) -> str:
    return f"g{generation:03d}-{index:03d}"
