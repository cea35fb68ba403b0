"""Typed events extracted from trial logs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, get_args

EventKind = Literal[
    "game_start",
    "game_end",
    "structure_destroyed",
    "kill",
    "assist",
    "death",
    "gold_gain",
    "experience_gain",
]

EVENT_KINDS: tuple[str, ...] = get_args(EventKind)


@dataclass(frozen=True)
class Event:
    """One thing that happened during a trial.

    ``timestamp`` is in seconds when the source line carried a time stamp
    (``timed=True``); otherwise it is the line's extraction sequence number.
    """

    kind: EventKind
    entity: str
    timestamp: float
    timed: bool = False
    amount: float | None = None
    target: str | None = None

    def to_json(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": self.kind,
            "entity_id": self.entity,
            "timestamp": self.timestamp,
            "timed": self.timed,
        }
        if self.amount is not None:
            payload["amount"] = self.amount
        if self.target is not None:
            payload["target"] = self.target
        return payload

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> Event:
        kind = data.get("type")
        if kind not in EVENT_KINDS:
            raise ValueError(f"Unknown event type {kind!r}")
        entity = data.get("entity_id")
        if not isinstance(entity, str) or not entity:
            raise ValueError("Event payload missing entity_id.")
        amount = data.get("amount")
        target = data.get("target")
        return cls(
            kind=kind,
            entity=entity,
            timestamp=float(data.get("timestamp", 0.0)),
            timed=bool(data.get("timed", False)),
            amount=float(amount) if amount is not None else None,
            target=str(target) if target is not None else None,
        )
