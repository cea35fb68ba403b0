from pathlib import Path

import pytest
from pydantic import ValidationError

from bot_evolution.dsl import (
    EvolutionConfig,
    FleetConfig,
    GenomeConfig,
    Genotype,
    RunSpec,
    load_run_spec,
    save_run_spec,
)


def test_yaml_round_trip(tmp_path: Path, tiny_spec):
    path = tmp_path / "spec.yaml"
    save_run_spec(tiny_spec, path)
    loaded = load_run_spec(path)
    assert loaded == tiny_spec
    assert loaded.evolution.quota == 4


def test_json_round_trip(tmp_path: Path, tiny_spec):
    path = tmp_path / "nested" / "spec.json"
    save_run_spec(tiny_spec, path)
    assert load_run_spec(path).genome.states == ["laning", "farming", "fighting"]


def test_example_config_loads():
    spec = load_run_spec(Path(__file__).resolve().parents[1] / "configs" / "example.yaml")
    assert spec.evolution.quota == spec.evolution.population * spec.evolution.trials_per_config


def test_invalid_bounds_rejected():
    with pytest.raises(ValidationError):
        GenomeConfig(lower_bound=1.0, upper_bound=1.0)


def test_seeded_genome_validation():
    with pytest.raises(ValidationError):
        GenomeConfig(init="seeded")
    with pytest.raises(ValidationError):
        GenomeConfig(states=["laning"], weights_per_state=2, seed={"laning": [0.5, 2.0]})
    with pytest.raises(ValidationError):
        GenomeConfig(states=["laning"], weights_per_state=2, seed={"roaming": [0.5, 0.5]})


def test_elites_cannot_exceed_population():
    with pytest.raises(ValidationError):
        EvolutionConfig(population=2, elite_count=3)


def test_local_fleet_needs_workers():
    with pytest.raises(ValidationError):
        FleetConfig(transport="local", local_workers=0)
    assert FleetConfig(transport="http", local_workers=0).url == "http://127.0.0.1:8765"


def test_invalid_file_reports_path(tmp_path: Path):
    path = tmp_path / "bad.yaml"
    path.write_text("evolution:\n  population: 0\n")
    with pytest.raises(ValueError, match="Invalid config"):
        load_run_spec(path)


def test_genotype_copy_on_write():
    genotype = Genotype(states={"laning": (0.1, 0.2), "fighting": (0.3, 0.4)})
    changed = genotype.with_state("laning", [0.9, 0.9])
    assert genotype.weights("laning") == (0.1, 0.2)
    assert changed.weights("laning") == (0.9, 0.9)
    assert changed.state_ids == ["laning", "fighting"]
    with pytest.raises(KeyError):
        genotype.with_state("roaming", [0.5])
    assert Genotype.from_json(changed.to_json()) == changed


def test_empty_genotype_rejected():
    with pytest.raises(ValidationError):
        Genotype(states={})
    with pytest.raises(ValidationError):
        Genotype(states={"laning": ()})


def test_summary_is_json_friendly():
    summary = RunSpec().summary()
    assert summary["quota"] == 8
    assert summary["transport"] == "local"
