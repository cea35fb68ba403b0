from pathlib import Path

import ujson as json

from bot_evolution.api import run_evolution, save_spec
from bot_evolution.orchestrator import EvolutionRunner, Phase
from bot_evolution.trials import TrialRequest, TrialResult, failed_result


class AlwaysFails:
    def run(self, request: TrialRequest) -> TrialResult:
        return failed_result(request, "exit code 1", exit_code=1)


def test_simulated_run_scores_every_generation(tmp_path: Path, tiny_spec):
    state = tmp_path / "runs" / "state.json"
    runner = EvolutionRunner(tiny_spec, mode="simulate", seed=123, state_path=state)
    history = runner.run()
    assert [s.generation for s in history] == [0, 1, 2]
    assert runner.phase is Phase.DONE
    assert all(s.trials == tiny_spec.evolution.quota for s in history)
    assert all(c.status == "scored" for c in runner.population)
    assert runner.best_candidate is not None
    assert runner.best_fitness == max(s.best for s in history)
    assert state.exists()
    archived = sorted((state.parent / "generations").glob("gen_*.json"))
    assert [p.name for p in archived] == ["gen_0000.json", "gen_0001.json", "gen_0002.json"]
    payload = json.loads(archived[-1].read_text())
    assert len(payload["population"]) == tiny_spec.evolution.population


def test_children_are_bounded_and_traceable(tiny_spec):
    runner = EvolutionRunner(tiny_spec, seed=4)
    runner.run(generations=2)
    genome = tiny_spec.genome
    for cand in runner.population:
        assert cand.generation == 1
        assert cand.parents
        assert all(p.startswith("g000-") for p in cand.parents)
        assert all(genome.lower_bound <= w <= genome.upper_bound for w in cand.genotype.flat())


def test_same_seed_same_history(tiny_spec):
    first = EvolutionRunner(tiny_spec, seed=9).run()
    second = EvolutionRunner(tiny_spec, seed=9).run()
    assert [s.scores for s in first] == [s.scores for s in second]


def test_stagnation_stops_early(tiny_spec):
    spec = tiny_spec.model_copy(deep=True)
    spec.evolution.generations = 10
    spec.evolution.stagnation_generations = 2
    runner = EvolutionRunner(spec, seed=0, trial_runner=AlwaysFails())
    history = runner.run()
    assert len(history) == 3
    assert runner.stagnant_generations == 2
    assert all(s.failed_trials == s.trials for s in history)
    # every candidate scored 0, so roulette selection had nothing to work with
    assert history[0].uniform_fallback and history[1].uniform_fallback


def test_archived_summary_records_uniform_fallback(tmp_path: Path, tiny_spec):
    spec = tiny_spec.model_copy(deep=True)
    spec.evolution.generations = 1
    state = tmp_path / "state.json"
    EvolutionRunner(spec, seed=0, state_path=state, trial_runner=AlwaysFails()).run()
    archived = json.loads((tmp_path / "generations" / "gen_0000.json").read_text())
    assert archived["summary"]["uniform_fallback"] is True
    saved = json.loads(state.read_text())
    assert saved["history"][0]["uniform_fallback"] is True


def test_elites_survive_selection(tiny_spec):
    spec = tiny_spec.model_copy(deep=True)
    spec.evolution.elite_count = 1
    runner = EvolutionRunner(spec, seed=2)
    runner.run(generations=1)
    best = max(runner.population, key=lambda c: c.fitness or 0.0)
    runner.run(generations=1)
    elite = runner.population[0]
    assert elite.operator == "elite"
    assert elite.parents == [best.ident]
    assert elite.genotype == best.genotype


def test_resume_matches_uninterrupted_run(tmp_path: Path, tiny_spec):
    straight = EvolutionRunner(tiny_spec, seed=17, state_path=tmp_path / "a" / "state.json")
    straight.run()

    state = tmp_path / "b" / "state.json"
    interrupted = EvolutionRunner(tiny_spec, seed=17, state_path=state)
    interrupted.run(generations=2)

    resumed = EvolutionRunner.load_state(state)
    assert resumed.phase is Phase.SELECTING
    assert resumed.generation == 1
    resumed.run()
    assert [s.scores for s in resumed.history] == [s.scores for s in straight.history]
    assert [c.ident for c in resumed.population] == [c.ident for c in straight.population]


def test_http_transport_run(tiny_spec):
    spec = tiny_spec.model_copy(deep=True)
    spec.fleet.transport = "http"
    spec.fleet.port = 0
    spec.fleet.local_workers = 2
    runner = EvolutionRunner(spec, seed=3)
    history = runner.run(generations=2)
    assert len(history) == 2
    assert all(s.trials == spec.evolution.quota for s in history)
    assert runner.server is None


def test_run_evolution_api(tmp_path: Path, tiny_spec):
    cfg = tmp_path / "spec.yaml"
    save_spec(tiny_spec, cfg)
    history = run_evolution(cfg, generations=1, seed=1, state_path=tmp_path / "state.json")
    assert len(history) == 1
    assert (tmp_path / "state.json").exists()
