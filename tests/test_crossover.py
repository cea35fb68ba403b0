import random

from bot_evolution.crossover import uniform_state_crossover
from bot_evolution.dsl import Genotype

PARENT_A = Genotype(states={"laning": (0.0, 0.0), "farming": (0.1, 0.1), "pushing": (0.2, 0.2)})
PARENT_B = Genotype(states={"laning": (1.0, 1.0), "farming": (0.9, 0.9), "pushing": (0.8, 0.8)})


def test_each_state_comes_whole_from_one_parent():
    rng = random.Random(0)  # noqa: S311
    for _ in range(20):
        child = uniform_state_crossover(PARENT_A, PARENT_B, rng)
        assert child.state_ids == PARENT_A.state_ids
        for state in child.state_ids:
            assert child.weights(state) in (PARENT_A.weights(state), PARENT_B.weights(state))


def test_both_parents_contribute_over_many_children():
    rng = random.Random(1)  # noqa: S311
    seen_a = seen_b = False
    for _ in range(50):
        child = uniform_state_crossover(PARENT_A, PARENT_B, rng)
        seen_a |= child.weights("laning") == PARENT_A.weights("laning")
        seen_b |= child.weights("laning") == PARENT_B.weights("laning")
    assert seen_a and seen_b


def test_mismatched_states_inherit_from_first_parent():
    other = Genotype(states={"laning": (1.0, 1.0, 1.0), "roaming": (0.5,)})
    rng = random.Random(2)  # noqa: S311
    for _ in range(10):
        child = uniform_state_crossover(PARENT_A, other, rng)
        assert child == PARENT_A


def test_parents_are_not_modified():
    before_a, before_b = PARENT_A.to_json(), PARENT_B.to_json()
    uniform_state_crossover(PARENT_A, PARENT_B, random.Random(3))  # noqa: S311
    assert PARENT_A.to_json() == before_a
    assert PARENT_B.to_json() == before_b
