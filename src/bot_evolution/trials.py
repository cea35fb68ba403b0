"""Trial request/result records and the subprocess-backed trial runner."""

from __future__ import annotations

import logging
import re
import subprocess  # nosec B404 - the simulation is an external executable
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, Protocol

import ujson as json

from .dsl import Genotype
from .events import Event
from .extractor import EventExtractor

logger = logging.getLogger(__name__)

TrialStatus = Literal["completed", "failed"]

PLACEHOLDER = re.compile(r"\{(config|log|generation|trial|entity)\}")


class TrialError(RuntimeError):
    """Raised inside a runner when a trial cannot produce a usable log."""


@dataclass(frozen=True)
class TrialRequest:
    generation: int
    trial_index: int
    entity_id: str
    genotype: Genotype

    def to_json(self) -> dict[str, Any]:
        return {
            "generation": self.generation,
            "trial_index": self.trial_index,
            "entity_id": self.entity_id,
            "genotype": self.genotype.to_json(),
        }

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> TrialRequest:
        return cls(
            generation=int(data["generation"]),
            trial_index=int(data["trial_index"]),
            entity_id=str(data["entity_id"]),
            genotype=Genotype.from_json(data["genotype"]),
        )


@dataclass(frozen=True)
class TrialResult:
    generation: int
    trial_index: int
    entity_id: str
    events: tuple[Event, ...] = field(default_factory=tuple)
    status: TrialStatus = "completed"
    exit_code: int | None = 0
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    def to_json(self) -> dict[str, Any]:
        return {
            "generation": self.generation,
            "trial_index": self.trial_index,
            "entity_id": self.entity_id,
            "events": [event.to_json() for event in self.events],
            "status": self.status,
            "exit_code": self.exit_code,
            "error": self.error,
        }

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> TrialResult:
        status = data.get("status")
        if status not in {"completed", "failed"}:
            raise ValueError(f"Invalid trial status {status!r}")
        exit_code = data.get("exit_code")
        return cls(
            generation=int(data["generation"]),
            trial_index=int(data["trial_index"]),
            entity_id=str(data["entity_id"]),
            events=tuple(Event.from_json(item) for item in data.get("events") or []),
            status=status,
            exit_code=int(exit_code) if exit_code is not None else None,
            error=data.get("error"),
        )


def build_result(
    request: TrialRequest,
    events: Sequence[Event],
    exit_code: int | None,
    error: str | None = None,
) -> TrialResult:
    """Classify a finished trial: non-zero exit or no events means failure."""
    if exit_code != 0:
        status: TrialStatus = "failed"
        error = error or f"exit code {exit_code}"
    elif not events:
        status = "failed"
        error = error or "no parseable events in trial output"
    else:
        status = "completed"
    return TrialResult(
        generation=request.generation,
        trial_index=request.trial_index,
        entity_id=request.entity_id,
        events=tuple(events),
        status=status,
        exit_code=exit_code,
        error=error,
    )


def failed_result(request: TrialRequest, error: str, exit_code: int | None = None) -> TrialResult:
    return TrialResult(
        generation=request.generation,
        trial_index=request.trial_index,
        entity_id=request.entity_id,
        status="failed",
        exit_code=exit_code,
        error=error,
    )


class TrialRunner(Protocol):
    def run(self, request: TrialRequest) -> TrialResult: ...


class ProcessTrialRunner:
    """Runs the external simulation once per request.

    ``command`` is a template; ``{config}``, ``{log}``, ``{generation}``,
    ``{trial}`` and ``{entity}`` are substituted per trial; any other braces pass
    through untouched. When no ``{log}`` placeholder is present the process's
    stdout becomes the trial log.
    """

    def __init__(
        self,
        command: Sequence[str],
        work_dir: str | Path = "runs/trials",
        extractor: EventExtractor | None = None,
        timeout: float | None = None,
        keep_artifacts: bool = True,
    ) -> None:
        if not command:
            raise ValueError("ProcessTrialRunner requires a non-empty trial.command")
        self.command = list(command)
        self.work_dir = Path(work_dir)
        self.extractor = extractor or EventExtractor()
        self.timeout = timeout
        self.keep_artifacts = keep_artifacts

    def trial_dir(self, request: TrialRequest) -> Path:
        return self.work_dir / f"gen{request.generation:04d}" / f"trial{request.trial_index:05d}"

    def _format(self, request: TrialRequest, config_path: Path, log_path: Path) -> list[str]:
        values = {
            "config": str(config_path),
            "log": str(log_path),
            "generation": str(request.generation),
            "trial": str(request.trial_index),
            "entity": request.entity_id,
        }
        return [PLACEHOLDER.sub(lambda m: values[m.group(1)], part) for part in self.command]

    def run(self, request: TrialRequest) -> TrialResult:
        trial_dir = self.trial_dir(request).resolve()
        trial_dir.mkdir(parents=True, exist_ok=True)
        config_path = trial_dir / "config.json"
        log_path = trial_dir / "trial.log"
        config_path.write_text(json.dumps(request.genotype.to_json(), indent=2))
        cmd = self._format(request, config_path, log_path)
        capture_stdout = not any("{log}" in part for part in self.command)
        try:
            exit_code = self._execute(cmd, log_path, trial_dir, capture_stdout)
            events = self._read_events(log_path) if exit_code == 0 else []
        except TrialError as exc:
            logger.warning("Trial %s/%s failed: %s", request.generation, request.trial_index, exc)
            return failed_result(request, str(exc))
        finally:
            if not self.keep_artifacts:
                config_path.unlink(missing_ok=True)
                log_path.unlink(missing_ok=True)
        result = build_result(request, events, exit_code)
        if result.failed:
            logger.warning(
                "Trial %s/%s failed: %s", request.generation, request.trial_index, result.error
            )
        return result

    def _execute(self, cmd: list[str], log_path: Path, cwd: Path, capture_stdout: bool) -> int:
        try:
            if capture_stdout:
                with log_path.open("w", encoding="utf-8") as log_file:
                    completed = subprocess.run(  # noqa: S603  # nosec B603 - configured command
                        cmd,
                        stdout=log_file,
                        stderr=subprocess.DEVNULL,
                        cwd=str(cwd),
                        timeout=self.timeout,
                        check=False,
                    )
            else:
                completed = subprocess.run(  # noqa: S603  # nosec B603 - configured command
                    cmd,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                    cwd=str(cwd),
                    timeout=self.timeout,
                    check=False,
                )
        except subprocess.TimeoutExpired as exc:
            raise TrialError(f"timed out after {exc.timeout}s") from exc
        except OSError as exc:
            raise TrialError(f"could not launch simulation: {exc}") from exc
        return completed.returncode

    def _read_events(self, log_path: Path) -> list[Event]:
        if not log_path.exists():
            raise TrialError(f"log file {log_path} was not written")
        if log_path.stat().st_size == 0:
            raise TrialError(f"log file {log_path} is empty")
        return self.extractor.extract_file(log_path)
