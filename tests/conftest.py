import pytest

from bot_evolution.dsl import RunSpec


@pytest.fixture()
def tiny_spec() -> RunSpec:
    return RunSpec(
        name="tiny-fsm",
        genome={
            "states": ["laning", "farming", "fighting"],
            "weights_per_state": 3,
            "lower_bound": 0.0,
            "upper_bound": 1.0,
        },
        evolution={
            "population": 4,
            "trials_per_config": 1,
            "generations": 3,
            "stagnation_generations": None,
            "crossover_prob": 0.5,
        },
        mutation={"rate": 0.3, "magnitude": 0.2},
        fleet={
            "transport": "local",
            "local_workers": 2,
            "max_concurrent_trials": 2,
            "poll_interval": 0.05,
            "backoff_initial": 0.05,
            "backoff_max": 0.2,
        },
    )
