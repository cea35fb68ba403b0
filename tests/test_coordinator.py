import threading
import time

import pytest

from bot_evolution.coordinator import Coordinator, QuotaInvariantError
from bot_evolution.dsl import Genotype
from bot_evolution.trials import TrialRequest, TrialResult, failed_result
from bot_evolution.worker import WorkerAgent

GENOTYPE = Genotype(states={"laning": (0.5, 0.5)})


def _requests(count: int, generation: int = 0) -> list[TrialRequest]:
    return [
        TrialRequest(
            generation=generation,
            trial_index=idx,
            entity_id=f"g{generation:03d}-{idx:03d}",
            genotype=GENOTYPE,
        )
        for idx in range(count)
    ]


def _ok(request: TrialRequest) -> TrialResult:
    return TrialResult(
        generation=request.generation,
        trial_index=request.trial_index,
        entity_id=request.entity_id,
    )


class SlowRunner:
    def __init__(self, delay: float = 0.05) -> None:
        self.delay = delay

    def run(self, request: TrialRequest) -> TrialResult:
        time.sleep(self.delay)
        return _ok(request)


def test_grants_exactly_quota_then_denies():
    coordinator = Coordinator(0, _requests(3))
    grants = [coordinator.request_start() for _ in range(5)]
    assert [g.ok for g in grants] == [True, True, True, False, False]
    assert coordinator.granted == 3
    assert coordinator.denied == 2
    assert coordinator.remaining == 0
    assert sorted(g.request.trial_index for g in grants if g.request) == [0, 1, 2]


def test_concurrent_callers_never_over_grant():
    quota = 25
    coordinator = Coordinator(0, _requests(quota))
    barrier = threading.Barrier(16)
    granted: list[int] = []
    lock = threading.Lock()

    def hammer() -> None:
        barrier.wait()
        while True:
            grant = coordinator.request_start()
            if not grant.ok:
                return
            with lock:
                granted.append(grant.request.trial_index)

    threads = [threading.Thread(target=hammer) for _ in range(16)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert len(granted) == quota
    assert sorted(granted) == list(range(quota))
    assert coordinator.granted == quota


def test_two_machines_share_quota_of_four():
    coordinator = Coordinator(0, _requests(4))
    machine_a = [coordinator.request_start() for _ in range(3)]
    machine_b = coordinator.request_start()
    fifth = coordinator.request_start()
    assert all(g.ok for g in machine_a) and machine_b.ok
    assert not fifth.ok
    for grant in [*machine_a, machine_b]:
        coordinator.submit_result(_ok(grant.request))
    assert coordinator.await_generation_complete(timeout=1.0)
    assert [r.trial_index for r in coordinator.close()] == [0, 1, 2, 3]


def test_two_agents_with_different_slot_budgets():
    coordinator = Coordinator(0, _requests(4))
    agent_a = WorkerAgent(coordinator, SlowRunner(), max_concurrent_trials=3, name="a")
    agent_b = WorkerAgent(coordinator, SlowRunner(), max_concurrent_trials=2, name="b")
    threads = [threading.Thread(target=agent.run_generation) for agent in (agent_a, agent_b)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert agent_a.stats.granted + agent_b.stats.granted == 4
    assert agent_a.stats.peak_concurrency <= 3
    assert agent_b.stats.peak_concurrency <= 2
    assert coordinator.is_complete
    assert coordinator.granted == 4
    assert not coordinator.request_start().ok


class RecordingLink:
    """Forwards to the coordinator and logs every grant decision in order."""

    def __init__(self, coordinator: Coordinator, log: list[tuple[str, bool]], lock, name: str):
        self.coordinator = coordinator
        self.log = log
        self.lock = lock
        self.name = name

    def request_start(self):
        with self.lock:
            grant = self.coordinator.request_start()
            self.log.append((self.name, grant.ok))
        return grant

    def submit_result(self, result: TrialResult) -> bool:
        return self.coordinator.submit_result(result)


def test_two_machines_with_two_slots_each_share_quota_of_four():
    coordinator = Coordinator(0, _requests(4))
    log: list[tuple[str, bool]] = []
    lock = threading.Lock()
    runners = {"a": SlowRunner(), "b": SlowRunner()}
    agents = [
        WorkerAgent(
            RecordingLink(coordinator, log, lock, name),
            runners[name],
            max_concurrent_trials=2,
            name=name,
            poll_interval=0.05,
        )
        for name in ("a", "b")
    ]
    threads = [threading.Thread(target=agent.run_generation) for agent in agents]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    decisions = [ok for _, ok in log]
    assert decisions[:4] == [True] * 4
    assert decisions[4:] == [False, False]
    assert {name for name, ok in log if not ok} == {"a", "b"}
    assert sum(agent.stats.completed for agent in agents) == 4
    assert all(agent.stats.peak_concurrency <= 2 for agent in agents)
    assert [r.trial_index for r in coordinator.close()] == [0, 1, 2, 3]
    for agent in agents:
        assert not agent.link.request_start().ok


def test_await_times_out_until_last_result():
    coordinator = Coordinator(2, _requests(2, generation=2))
    first, second = coordinator.request_start(), coordinator.request_start()
    coordinator.submit_result(_ok(first.request))
    assert not coordinator.await_generation_complete(timeout=0.01)

    threading.Timer(0.05, coordinator.submit_result, args=(_ok(second.request),)).start()
    assert coordinator.await_generation_complete(timeout=2.0)
    assert coordinator.completed == 2


def test_failed_results_count_toward_completion():
    coordinator = Coordinator(0, _requests(1))
    grant = coordinator.request_start()
    coordinator.submit_result(failed_result(grant.request, "exit code 1", exit_code=1))
    assert coordinator.is_complete
    assert coordinator.results()[0].failed


def test_invariant_violations_raise():
    coordinator = Coordinator(0, _requests(2))
    grant = coordinator.request_start()
    with pytest.raises(QuotaInvariantError):
        coordinator.submit_result(_ok(_requests(2)[1]))  # never granted
    with pytest.raises(QuotaInvariantError):
        coordinator.submit_result(_ok(_requests(1, generation=5)[0]))
    assert coordinator.submit_result(_ok(grant.request))
    # an identical resend is acknowledged without being counted again
    assert not coordinator.submit_result(_ok(grant.request))
    assert coordinator.completed == 1
    with pytest.raises(QuotaInvariantError):
        coordinator.submit_result(failed_result(grant.request, "late crash"))
    coordinator.close()
    late = coordinator.request_start()
    with pytest.raises(QuotaInvariantError):
        coordinator.submit_result(_ok(late.request))


def test_constructor_rejects_bad_requests():
    with pytest.raises(ValueError):
        Coordinator(0, [])
    with pytest.raises(ValueError):
        Coordinator(1, _requests(2, generation=0))


def test_status_snapshot():
    coordinator = Coordinator(3, _requests(2, generation=3))
    coordinator.request_start()
    assert coordinator.status() == {
        "generation": 3,
        "quota": 2,
        "remaining": 1,
        "granted": 1,
        "completed": 0,
    }
