"""Per-generation quota owner and result collection point."""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass

from .trials import TrialRequest, TrialResult


class QuotaInvariantError(RuntimeError):
    """More grants or results than the generation's quota: a programming error."""


@dataclass(frozen=True)
class Grant:
    """Answer to a start request; ``request`` is set only when granted."""

    ok: bool
    generation: int
    request: TrialRequest | None = None

    def to_json(self) -> dict:
        if self.ok and self.request is not None:
            return {"ok": True, "generation": self.generation, "trial": self.request.to_json()}
        return {"ok": False, "generation": self.generation}


class Coordinator:
    """Single source of truth for one generation's remaining trials.

    Every grant decision and every result append happens under one lock, so
    exactly ``initial_quota`` grants are issued no matter how many callers
    race. Once the quota is exhausted every later request is denied.
    """

    def __init__(self, generation: int, requests: Sequence[TrialRequest]) -> None:
        if not requests:
            raise ValueError("A generation needs at least one trial request.")
        for request in requests:
            if request.generation != generation:
                raise ValueError(
                    f"Trial {request.trial_index} belongs to generation {request.generation}"
                )
        self.generation = generation
        self.initial_quota = len(requests)
        self._pending: deque[TrialRequest] = deque(requests)
        self._results: list[TrialResult] = []
        self._granted_ids: set[int] = set()
        self._reported: dict[int, TrialResult] = {}
        self._granted = 0
        self._denied = 0
        self._closed = False
        self._cond = threading.Condition(threading.Lock())

    @property
    def remaining(self) -> int:
        with self._cond:
            return len(self._pending)

    @property
    def granted(self) -> int:
        with self._cond:
            return self._granted

    @property
    def denied(self) -> int:
        with self._cond:
            return self._denied

    @property
    def completed(self) -> int:
        with self._cond:
            return len(self._results)

    @property
    def is_complete(self) -> bool:
        with self._cond:
            return len(self._results) == self.initial_quota

    def request_start(self) -> Grant:
        with self._cond:
            if not self._pending:
                self._denied += 1
                return Grant(ok=False, generation=self.generation)
            request = self._pending.popleft()
            self._granted += 1
            if self._granted > self.initial_quota:
                raise QuotaInvariantError(
                    f"generation {self.generation}: {self._granted} grants for quota "
                    f"{self.initial_quota}"
                )
            self._granted_ids.add(request.trial_index)
            return Grant(ok=True, generation=self.generation, request=request)

    def submit_result(self, result: TrialResult) -> bool:
        """Record ``result``; False when an identical copy was already recorded."""
        with self._cond:
            previous = self._reported.get(result.trial_index)
            if previous is not None and previous == result:
                # A retry after a lost acknowledgement resends the same payload.
                return False
            if self._closed:
                raise QuotaInvariantError(f"generation {self.generation} is already closed")
            if result.generation != self.generation:
                raise QuotaInvariantError(
                    f"result for generation {result.generation} sent to generation "
                    f"{self.generation}"
                )
            if result.trial_index not in self._granted_ids:
                raise QuotaInvariantError(
                    f"result for trial {result.trial_index} that was never granted"
                )
            if previous is not None:
                raise QuotaInvariantError(f"trial {result.trial_index} reported twice")
            if len(self._results) >= self.initial_quota:
                raise QuotaInvariantError(
                    f"generation {self.generation}: result count would exceed quota "
                    f"{self.initial_quota}"
                )
            self._results.append(result)
            self._reported[result.trial_index] = result
            self._cond.notify_all()
            return True

    def await_generation_complete(self, timeout: float | None = None) -> bool:
        """Block until every granted trial has reported; False on timeout."""
        with self._cond:
            return self._cond.wait_for(
                lambda: len(self._results) >= self.initial_quota, timeout=timeout
            )

    def results(self) -> list[TrialResult]:
        with self._cond:
            return sorted(self._results, key=lambda r: r.trial_index)

    def close(self) -> list[TrialResult]:
        """Freeze the generation and hand back its results in trial order."""
        with self._cond:
            self._closed = True
            return sorted(self._results, key=lambda r: r.trial_index)

    def status(self) -> dict:
        with self._cond:
            return {
                "generation": self.generation,
                "quota": self.initial_quota,
                "remaining": len(self._pending),
                "granted": self._granted,
                "completed": len(self._results),
            }
