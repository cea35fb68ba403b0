"""Machine-side agent: pulls grants, runs bounded concurrent trials, reports results."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Protocol

import requests
import ujson as json

from .coordinator import Grant
from .trials import TrialRequest, TrialResult, TrialRunner, failed_result

logger = logging.getLogger(__name__)


class ProtocolError(RuntimeError):
    """The coordinator answered, but with something the worker cannot use."""


class WorkerStopped(RuntimeError):
    """Raised from blocking calls once the worker has been asked to stop."""


class CoordinatorLink(Protocol):
    def request_start(self) -> Grant: ...

    def submit_result(self, result: TrialResult) -> bool | None: ...


class CoordinatorClient:
    """``requests``-based client for :class:`~bot_evolution.server.CoordinatorServer`.

    Connection errors, timeouts and 5xx answers are retried with exponential
    backoff until the coordinator is reachable again; the worker stalls rather
    than dies. Setting ``stop_event`` aborts the retry loop.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        backoff_initial: float = 0.5,
        backoff_max: float = 30.0,
        stop_event: threading.Event | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.url = url.rstrip("/")
        self.timeout = timeout
        self.backoff_initial = backoff_initial
        self.backoff_max = max(backoff_initial, backoff_max)
        self.stop_event = stop_event or threading.Event()
        self._session = session or requests.Session()
        self.retries = 0

    def _call(self, method: str, route: str, payload: dict[str, Any] | None = None) -> dict:
        delay = self.backoff_initial
        while True:
            try:
                resp = self._session.request(
                    method,
                    f"{self.url}{route}",
                    data=json.dumps(payload) if payload is not None else None,
                    headers={"Content-Type": "application/json"},
                    timeout=self.timeout,
                )
            except requests.RequestException as exc:
                reason = f"{type(exc).__name__}: {exc}"
            else:
                if resp.status_code < 400:
                    try:
                        data = json.loads(resp.text)
                    except ValueError as exc:
                        raise ProtocolError(f"{route}: invalid JSON response") from exc
                    if not isinstance(data, dict):
                        raise ProtocolError(f"{route}: expected a JSON object")
                    return data
                if resp.status_code < 500:
                    raise ProtocolError(f"{route}: HTTP {resp.status_code} {resp.text}")
                reason = f"HTTP {resp.status_code}"
            if self.stop_event.is_set():
                raise WorkerStopped(f"stopped while contacting coordinator ({reason})")
            self.retries += 1
            logger.warning("Coordinator unreachable (%s); retrying in %.1fs", reason, delay)
            if self.stop_event.wait(delay):
                raise WorkerStopped(f"stopped while contacting coordinator ({reason})")
            delay = min(self.backoff_max, delay * 2.0)

    def request_start(self) -> Grant:
        data = self._call("POST", "/start", {})
        generation = int(data.get("generation", -1))
        trial = data.get("trial")
        if data.get("ok") and isinstance(trial, dict):
            request = TrialRequest.from_json(trial)
            return Grant(ok=True, generation=request.generation, request=request)
        return Grant(ok=False, generation=generation)

    def submit_result(self, result: TrialResult) -> None:
        data = self._call("POST", "/result", result.to_json())
        if not data.get("accepted"):
            raise ProtocolError(f"result for trial {result.trial_index} rejected: {data}")
        if data.get("duplicate"):
            logger.info("Trial %s was already recorded; acknowledgement resent", result.trial_index)

    def status(self) -> dict:
        return self._call("GET", "/status")

    def close(self) -> None:
        self._session.close()


@dataclass
class WorkerStats:
    granted: int = 0
    denied: int = 0
    completed: int = 0
    failed: int = 0
    dropped: int = 0
    peak_concurrency: int = 0
    generations: int = 0


class WorkerAgent:
    """Turns one machine's slot budget into a bounded stream of trials."""

    def __init__(
        self,
        link: CoordinatorLink,
        runner: TrialRunner,
        max_concurrent_trials: int = 1,
        name: str = "worker",
        poll_interval: float = 0.5,
        stop_event: threading.Event | None = None,
    ) -> None:
        if max_concurrent_trials < 1:
            raise ValueError("max_concurrent_trials must be >= 1")
        self.link = link
        self.runner = runner
        self.max_concurrent_trials = max_concurrent_trials
        self.name = name
        self.poll_interval = poll_interval
        self.stop_event = stop_event or threading.Event()
        self.stats = WorkerStats()
        self.last_generation: int | None = None
        self._lock = threading.Lock()
        self._active = 0

    def stop(self) -> None:
        self.stop_event.set()

    def run_generation(self) -> WorkerStats:
        """Request and run trials until denied; in-flight trials always finish."""
        slots = threading.BoundedSemaphore(self.max_concurrent_trials)
        futures: list[Future[None]] = []
        with ThreadPoolExecutor(
            max_workers=self.max_concurrent_trials, thread_name_prefix=self.name
        ) as pool:
            while not self.stop_event.is_set():
                if not slots.acquire(timeout=self.poll_interval):
                    continue
                try:
                    grant = self.link.request_start()
                except WorkerStopped:
                    slots.release()
                    break
                except Exception:
                    slots.release()
                    raise
                if not grant.ok or grant.request is None:
                    slots.release()
                    with self._lock:
                        self.stats.denied += 1
                    self.last_generation = grant.generation
                    break
                with self._lock:
                    self.stats.granted += 1
                self.last_generation = grant.request.generation
                futures.append(pool.submit(self._run_trial, grant.request, slots))
        with self._lock:
            self.stats.generations += 1
        for future in futures:
            future.result()
        return self.stats

    def serve(self) -> WorkerStats:
        """Keep serving generations until the coordinator reports the run done."""
        status_fn = getattr(self.link, "status", None)
        if status_fn is None:
            raise TypeError("serve() needs a link that exposes status()")
        served: int | None = None
        while not self.stop_event.is_set():
            try:
                status = status_fn()
            except WorkerStopped:
                break
            if status.get("done"):
                logger.info("%s: coordinator reports run finished", self.name)
                break
            generation = status.get("generation")
            if generation is None or generation == served or int(status.get("remaining", 0)) <= 0:
                self.stop_event.wait(self.poll_interval)
                continue
            logger.info("%s: joining generation %s", self.name, generation)
            self.run_generation()
            served = self.last_generation if self.last_generation is not None else generation
        return self.stats

    def _run_trial(self, request: TrialRequest, slots: threading.BoundedSemaphore) -> None:
        with self._lock:
            self._active += 1
            self.stats.peak_concurrency = max(self.stats.peak_concurrency, self._active)
        try:
            try:
                result = self.runner.run(request)
            except Exception as exc:  # a crashed runner still owes the coordinator a result
                logger.exception(
                    "%s: trial %s/%s crashed", self.name, request.generation, request.trial_index
                )
                result = failed_result(request, f"runner crashed: {exc}")
        finally:
            with self._lock:
                self._active -= 1
            slots.release()
        with self._lock:
            if result.failed:
                self.stats.failed += 1
            else:
                self.stats.completed += 1
        try:
            self.link.submit_result(result)
        except WorkerStopped:
            with self._lock:
                self.stats.dropped += 1
            logger.warning(
                "%s: dropped result for trial %s after stop", self.name, request.trial_index
            )
        except ProtocolError as exc:
            with self._lock:
                self.stats.dropped += 1
            logger.error(
                "%s: coordinator refused trial %s: %s", self.name, request.trial_index, exc
            )
