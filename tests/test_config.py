import pytest

from neuroevolution_library.config import EvolutionConfig, write_config_file
from neuroevolution_library.exceptions import ConfigurationError


def test_defaults_are_valid():
    config = EvolutionConfig()
    assert config.validate() is config
    assert config.layer_sizes == (8, 12, 2)


def test_layer_sizes_become_int_tuple():
    assert EvolutionConfig(layer_sizes=[3, "5", 2]).layer_sizes == (3, 5, 2)


@pytest.mark.parametrize("changes", [
    dict(layer_sizes=(4,)),
    dict(layer_sizes=(4, 0, 2)),
    dict(hidden_activation="nope"),
    dict(hidden_activation="relu"),
    dict(hidden_activation="identity"),
    dict(hidden_activation="exp"),
    dict(population_size=1),
    dict(elite_count=30),
    dict(elite_count=-1),
    dict(mutation_rate=1.5),
    dict(mutation_strength=-0.1),
    dict(crossover_recipe_probability=0.5),
    dict(tournament_size_start=3, tournament_size_max=2),
    dict(tournament_size_interval=0),
    dict(stagnation_threshold=0),
    dict(tick_seconds=0),
    dict(warmup_time=-1.0),
    dict(time_scale=500.0),
    dict(parallel_workers=-1),
    dict(checkpoint_interval=0),
    dict(load_policy="random"),
])
def test_invalid_values_rejected(changes):
    with pytest.raises(ConfigurationError):
        EvolutionConfig(**changes).validate()


@pytest.mark.parametrize("activation", ["tanh", "sigmoid", "clamped", "gelu"])
def test_bounded_activations_accepted(activation):
    EvolutionConfig(hidden_activation=activation).validate()


def test_replace_copies(small_config):
    changed = small_config.replace(population_size=40)
    assert changed.population_size == 40
    assert small_config.population_size == 20


def test_file_round_trip(small_config, tmp_path):
    path = tmp_path / "evolution.ini"
    write_config_file(str(path), small_config.replace(poisoned_fitness_values=(-1.5, 99.0)))
    loaded = EvolutionConfig.from_file(str(path))
    assert loaded == small_config.replace(poisoned_fitness_values=(-1.5, 99.0))


def test_file_without_seed(tmp_path):
    path = tmp_path / "evolution.ini"
    write_config_file(str(path), EvolutionConfig())
    assert EvolutionConfig.from_file(str(path)).seed is None


def test_overrides_win_over_file(small_config, tmp_path):
    path = tmp_path / "evolution.ini"
    write_config_file(str(path), small_config)
    loaded = EvolutionConfig.from_file(str(path), population_size=50, seed=3)
    assert loaded.population_size == 50
    assert loaded.seed == 3


def test_partial_file_uses_defaults(tmp_path):
    path = tmp_path / "evolution.ini"
    path.write_text("[Evolution]\npopulation_size = 12\nlayer_sizes = 6 4 2\n")
    loaded = EvolutionConfig.from_file(str(path))
    assert loaded.population_size == 12
    assert loaded.layer_sizes == (6, 4, 2)
    assert loaded.elite_count == EvolutionConfig().elite_count


@pytest.mark.parametrize("content", [
    "[Evolution]\nno_such_tunable = 1\n",
    "[Something]\npopulation_size = 10\n",
    "[Evolution]\npopulation_size = lots\n",
    "[Evolution]\npopulation_size = 1\n",
    "not an ini file",
])
def test_bad_files_rejected(tmp_path, content):
    path = tmp_path / "evolution.ini"
    path.write_text(content)
    with pytest.raises(ConfigurationError):
        EvolutionConfig.from_file(str(path))


def test_missing_file(tmp_path):
    with pytest.raises(ConfigurationError):
        EvolutionConfig.from_file(str(tmp_path / "missing.ini"))
