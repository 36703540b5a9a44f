# run_simulation.py
import argparse
import os
import sys

import matplotlib.pyplot as plt
from neat.reporting import ReporterSet

from neuroevolution_library import (
    Checkpointer,
    ConfigurationError,
    ConsoleReporter,
    EvolutionConfig,
    FitnessHistoryReporter,
    GenerationOrchestrator,
    ReachingWorld,
    setup_logger,
    write_config_file,
    config as sim_config
)

plt.switch_backend('Agg')


def ensure_evolution_config(config_path, config):
    """Writes `config` to `config_path` unless a config file is already there."""
    if os.path.exists(config_path):
        print(f"Using existing evolution config '{config_path}'")
        return False
    write_config_file(config_path, config)
    print(f"Evolution config file '{config_path}' created.")
    return True


def generate_and_save_plots(history, stats_history, output_dir):
    """
    Saves fitness, diversity and mutation-rate curves of a finished run.

    Args:
        history (FitnessHistoryReporter): Per-generation best/mean/median fitness.
        stats_history (list of GenerationStats): Per-generation engine statistics.
        output_dir (str): Directory for the PNG files.
    """
    if not history.generations:
        print("No completed generations. Skipping plot generation.")
        return
    try:
        os.makedirs(output_dir, exist_ok=True)
    except OSError as e:
        print(f"Error creating plot directory {output_dir}: {e}. Plots will not be saved.")
        return

    plt.figure(figsize=(12, 7))
    plt.plot(history.generations, history.best_fitness, label="Best Fitness", marker='o', linestyle='-')
    plt.plot(history.generations, history.mean_fitness, label="Average Fitness", marker='x', linestyle='--')
    plt.plot(history.generations, history.median_fitness, label="Median Fitness", linestyle=':')
    plt.title("Fitness over Generations", fontsize=16)
    plt.xlabel("Generation", fontsize=14)
    plt.ylabel("Fitness", fontsize=14)
    plt.legend(fontsize=12)
    plt.grid(True, linestyle=':', alpha=0.7)
    plt.tight_layout()
    _save_current_figure(os.path.join(output_dir, "fitness_over_generations.png"), "fitness")

    if stats_history:
        generations = [s.generation for s in stats_history]
        fig, ax_diversity = plt.subplots(figsize=(12, 7))
        ax_diversity.plot(generations, [s.diversity for s in stats_history], label="Diversity", color='green')
        ax_diversity.set_xlabel("Generation", fontsize=14)
        ax_diversity.set_ylabel("Diversity", fontsize=14)
        ax_rate = ax_diversity.twinx()
        ax_rate.plot(generations, [s.mutation_rate for s in stats_history], label="Mutation Rate",
                     color='purple', linestyle='--')
        ax_rate.set_ylabel("Mutation Rate", fontsize=14)
        stagnating = [s.generation for s in stats_history if s.stagnating]
        if stagnating:
            ax_diversity.scatter(stagnating, [0.0] * len(stagnating), marker='|', color='red',
                                 label="Stagnating")
        fig.legend(loc='upper right', fontsize=12)
        ax_diversity.grid(True, linestyle=':', alpha=0.7)
        plt.title("Diversity and Mutation Rate over Generations", fontsize=16)
        fig.tight_layout()
        _save_current_figure(os.path.join(output_dir, "diversity_over_generations.png"), "diversity")


def _save_current_figure(plot_path, label):
    try:
        plt.savefig(plot_path)
        print(f"Saved {label} plot to {plot_path}")
    except (OSError, ValueError) as e:
        print(f"Error saving {label} plot: {e}")
    plt.close()


def print_status(orchestrator):
    snapshot = orchestrator.population.snapshot()
    best = snapshot.best_fitness_ever
    print(f"Generation {snapshot.generation} | state {orchestrator.state.value} | "
          f"best ever {best:.3f} | mutation rate {snapshot.mutation_rate:.4f} | "
          f"time scale {orchestrator.time_scale:g}")
    if orchestrator.last_termination:
        print(f"Last evaluation ended by '{orchestrator.last_termination}' "
              f"after {orchestrator.last_evaluation_time:.2f}s")


def interactive_loop(orchestrator, stream=sys.stdin):
    """
    Reads control commands from `stream` while the orchestrator runs in the background:
    stop, next, save, speed <factor>, status, help.
    """
    print("Commands: stop | next | save | speed <factor> | status | help")
    while orchestrator.is_running:
        line = stream.readline()
        if not line:
            orchestrator.stop()
            break
        command, _, argument = line.strip().partition(" ")
        command = command.lower()
        if not command:
            continue
        if command in ("stop", "quit", "exit"):
            print("Stopping after the current tick...")
            orchestrator.stop()
        elif command == "next":
            orchestrator.force_advance()
            print("Advancing to the next generation.")
        elif command == "save":
            if orchestrator.request_checkpoint() is not None:
                print("Checkpoint queued.")
        elif command == "speed":
            applied = orchestrator.set_time_scale(argument)
            print(f"Time scale is now {applied:g}")
        elif command == "status":
            print_status(orchestrator)
        elif command == "help":
            print("Commands: stop | next | save | speed <factor> | status | help")
        else:
            print(f"Unknown command '{command}'. Type 'help' for the list.")


def run_simulation(config, max_generations=None, resume=False, interactive=False,
                   plot_dir=sim_config.PLOT_OUTPUT_DIR):
    """
    Trains controllers for the reaching limb and writes plots at the end.

    Returns:
        GenerationOrchestrator: The finished orchestrator, for inspection.
    """
    world = ReachingWorld(seed=config.seed)
    reporters = ReporterSet()
    reporters.add(ConsoleReporter())
    history = FitnessHistoryReporter()
    reporters.add(history)
    checkpointer = Checkpointer(config.checkpoint_dir, config.checkpoint_tag, config.max_snapshots)
    orchestrator = GenerationOrchestrator(world, config, checkpointer=checkpointer, reporters=reporters)

    print(f"Population size: {config.population_size}, layers: {list(config.layer_sizes)}")
    try:
        if interactive:
            orchestrator.start(max_generations, resume)
            interactive_loop(orchestrator)
        else:
            orchestrator.run(max_generations, resume)
    except KeyboardInterrupt:
        print("\nInterrupted, stopping.")
        orchestrator.stop()

    best = orchestrator.population.best_genome_ever
    if best is not None:
        print(f"\nBest genome found overall: {best!r}")
        orchestrator.request_checkpoint()
    orchestrator.close()
    if checkpointer.last_path:
        print(f"Latest checkpoint: {checkpointer.last_path}")
    print("Simulation finished.")

    generate_and_save_plots(history, orchestrator.population.stats_history, plot_dir)
    return orchestrator


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Evolve neural controllers for a two-joint reaching limb.")
    parser.add_argument("--config", help="INI file with an [Evolution] section")
    parser.add_argument("--write-config", metavar="PATH",
                        help="write the effective config to PATH if no file exists there")
    parser.add_argument("--generations", type=int, default=None, help="stop after this many generations")
    parser.add_argument("--population", type=int, default=None, help="population size")
    parser.add_argument("--time-scale", type=float, default=None, help="simulated-time multiplier")
    parser.add_argument("--checkpoint-dir", default=None, help="where checkpoints are written")
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--resume", action="store_true", help="seed the population from the best checkpoint")
    parser.add_argument("--interactive", action="store_true", help="accept control commands on stdin")
    parser.add_argument("--plot-dir", default=sim_config.PLOT_OUTPUT_DIR)
    parser.add_argument("--log-dir", default=None, help="also log to a file in this directory")
    parser.add_argument("--log-level", default="INFO")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    setup_logger(args.log_dir, args.log_level)

    overrides = {}
    if args.population is not None:
        overrides["population_size"] = args.population
    if args.time_scale is not None:
        overrides["time_scale"] = args.time_scale
    if args.checkpoint_dir is not None:
        overrides["checkpoint_dir"] = args.checkpoint_dir
    if args.seed is not None:
        overrides["seed"] = args.seed

    try:
        if args.config:
            config = EvolutionConfig.from_file(args.config, **overrides)
        else:
            config = EvolutionConfig(**overrides).validate()
    except ConfigurationError as e:
        print(f"Invalid configuration: {e}")
        return 2

    if args.write_config:
        ensure_evolution_config(args.write_config, config)

    run_simulation(config, max_generations=args.generations, resume=args.resume,
                   interactive=args.interactive, plot_dir=args.plot_dir)
    return 0


if __name__ == '__main__':
    sys.exit(main())
