import io
import os
from unittest.mock import MagicMock

import pytest

import run_simulation
import view_genome
from neuroevolution_library import codec
from neuroevolution_library.orchestrator import GenerationOrchestrator
from neuroevolution_library.population import GenerationStats
from neuroevolution_library.reporting import FitnessHistoryReporter


def _stats(generation, stagnating=False):
    return GenerationStats(generation=generation, best_fitness=1.0 + generation, mean_fitness=0.5,
                           median_fitness=0.5, worst_fitness=0.0, best_fitness_ever=1.0 + generation,
                           diversity=0.4, stagnating=stagnating, tournament_size=3,
                           mutation_rate=0.1 - generation * 0.01)


class TestPlots:

    def test_plots_written(self, tmp_path):
        history = FitnessHistoryReporter()
        history.generations = [0, 1, 2]
        history.best_fitness = [1.0, 2.0, 3.0]
        history.mean_fitness = [0.5, 1.0, 1.5]
        history.median_fitness = [0.4, 0.9, 1.4]
        stats = [_stats(0), _stats(1, stagnating=True), _stats(2)]
        output_dir = tmp_path / "plots"
        run_simulation.generate_and_save_plots(history, stats, str(output_dir))
        assert sorted(os.listdir(output_dir)) == ["diversity_over_generations.png",
                                                  "fitness_over_generations.png"]

    def test_nothing_to_plot(self, tmp_path, capsys):
        output_dir = tmp_path / "plots"
        run_simulation.generate_and_save_plots(FitnessHistoryReporter(), [], str(output_dir))
        assert not output_dir.exists()
        assert "Skipping plot generation" in capsys.readouterr().out


class TestInteractiveLoop:

    def test_commands_dispatched(self, capsys):
        orchestrator = MagicMock()
        orchestrator.is_running = True
        orchestrator.set_time_scale.return_value = 3.0
        commands = io.StringIO("speed 3\nnext\nsave\n\nbogus\nhelp\nstop\n")
        run_simulation.interactive_loop(orchestrator, commands)

        orchestrator.set_time_scale.assert_called_once_with("3")
        orchestrator.force_advance.assert_called_once_with()
        orchestrator.request_checkpoint.assert_called_once_with()
        # Once for "stop", once more at end of input
        assert orchestrator.stop.call_count == 2
        out = capsys.readouterr().out
        assert "Time scale is now 3" in out
        assert "Unknown command 'bogus'" in out

    def test_returns_when_loop_finishes(self):
        orchestrator = MagicMock()
        orchestrator.is_running = False
        run_simulation.interactive_loop(orchestrator, io.StringIO("next\n"))
        orchestrator.force_advance.assert_not_called()

    def test_status(self, small_config, scripted_environment, capsys):
        orchestrator = GenerationOrchestrator(scripted_environment(), small_config)
        orchestrator.run_generation()
        run_simulation.print_status(orchestrator)
        out = capsys.readouterr().out
        assert "Generation 1" in out
        assert "best ever 19.000" in out
        assert "ended by 'budget'" in out


class TestRunSimulation:

    def test_bad_config_exit_code(self, capsys):
        assert run_simulation.main(["--population", "1"]) == 2
        assert "Invalid configuration" in capsys.readouterr().out

    def test_write_config(self, small_config, tmp_path):
        path = tmp_path / "evolution.ini"
        assert run_simulation.ensure_evolution_config(str(path), small_config)
        assert not run_simulation.ensure_evolution_config(str(path), small_config)
        assert path.exists()

    def test_short_run(self, small_config, tmp_path):
        config = small_config.replace(layer_sizes=(8, 6, 2), population_size=6, elite_count=1,
                                      generation_time=0.2, tick_seconds=0.05, warmup_time=0.1)
        plot_dir = tmp_path / "plots"
        orchestrator = run_simulation.run_simulation(config, max_generations=2, plot_dir=str(plot_dir))
        assert orchestrator.generation == 2
        assert (plot_dir / "fitness_over_generations.png").exists()
        assert codec.find_checkpoints(config.checkpoint_dir, config.checkpoint_tag)


class TestViewGenome:

    def test_describe(self, genome):
        text = view_genome.describe_genome(genome)
        assert "Parameters: 58" in text
        assert "transition 1 (8 -> 2)" in text

    def test_visualize(self, genome, tmp_path):
        path = codec.save(genome, str(tmp_path), "limb", 3)
        output = tmp_path / "net.png"
        loaded = view_genome.visualize_genome(path, str(output))
        assert loaded.same_parameters(genome)
        assert output.exists()

    def test_visualize_unreadable(self, tmp_path):
        path = tmp_path / "limb_gen1_fit0.00.json"
        path.write_text("{}")
        assert view_genome.visualize_genome(str(path), str(tmp_path / "net.png")) is None

    def test_main_without_checkpoints(self, tmp_path, capsys):
        assert view_genome.main(["--dir", str(tmp_path / "empty")]) == 1
        assert "no checkpoint found" in capsys.readouterr().out

    @pytest.mark.parametrize("policy", ["latest", "fittest"])
    def test_main_picks_checkpoint(self, genome, tmp_path, policy):
        codec.save(genome, str(tmp_path), "limb", 1)
        output = tmp_path / "net.png"
        assert view_genome.main(["--dir", str(tmp_path), "--policy", policy, "--output", str(output)]) == 0
        assert output.exists()
