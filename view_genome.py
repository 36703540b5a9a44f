# view_genome.py
import argparse
import os

import matplotlib.pyplot as plt
import numpy as np

from neuroevolution_library import codec, GenomeFormatError
from neuroevolution_library import config as sim_config

plt.switch_backend('Agg')

OUTPUT_IMAGE_FILENAME = "best_network.png"


def describe_genome(genome):
    """Textual summary: shape, fitness and per-transition parameter statistics."""
    lines = [repr(genome), f"Parameters: {genome.parameter_count}"]
    for i, (w, b) in enumerate(zip(genome.weights, genome.biases)):
        lines.append(
            f"  transition {i} ({w.shape[1]} -> {w.shape[0]}): "
            f"weights mean {w.mean():+.3f} std {w.std():.3f} max|w| {np.abs(w).max():.3f}, "
            f"biases mean {b.mean():+.3f}")
    return "\n".join(lines)


def draw_weight_heatmaps(genome, output_path):
    """One heatmap per layer transition: rows are target neurons, the last column is the bias."""
    transitions = len(genome.weights)
    fig, axes = plt.subplots(1, transitions, figsize=(5 * transitions, 5), squeeze=False)
    limit = max(float(np.abs(p).max()) for p in genome.weights + genome.biases) or 1.0
    for i, (ax, w, b) in enumerate(zip(axes[0], genome.weights, genome.biases)):
        image = ax.imshow(np.column_stack([w, b]), cmap='coolwarm', vmin=-limit, vmax=limit, aspect='auto')
        ax.set_title(f"Layer {i} -> {i + 1}")
        ax.set_xlabel("Input neuron (last column: bias)")
        ax.set_ylabel("Output neuron")
        fig.colorbar(image, ax=ax, fraction=0.046, pad=0.04)
    fig.suptitle(f"Genome {list(genome.layer_sizes)} - fitness {genome.fitness:.2f}")
    fig.tight_layout()
    fig.savefig(output_path)
    plt.close(fig)


def visualize_genome(genome_path, output_path):
    """
    Loads a saved genome checkpoint and renders its weights.
    """
    try:
        genome = codec.load(genome_path)
    except GenomeFormatError as e:
        print(f"Error loading genome from '{genome_path}': {e}")
        return None

    print(f"\nLoaded genome from '{genome_path}':")
    print(describe_genome(genome))

    try:
        draw_weight_heatmaps(genome, output_path)
        print(f"\nWeight heatmaps saved to '{output_path}'")
    except (OSError, ValueError) as e:
        print(f"\nError during visualization: {e}")
    return genome


def main(argv=None):
    parser = argparse.ArgumentParser(description="Summarize a genome checkpoint and plot its weights.")
    parser.add_argument("path", nargs="?", help="checkpoint file; defaults to the best one in --dir")
    parser.add_argument("--dir", default=sim_config.CHECKPOINT_DIR)
    parser.add_argument("--tag", default=sim_config.CHECKPOINT_TAG)
    parser.add_argument("--policy", choices=sim_config.LOAD_POLICIES, default=sim_config.LOAD_POLICY)
    parser.add_argument("--output", default=OUTPUT_IMAGE_FILENAME)
    args = parser.parse_args(argv)

    genome_path = args.path or codec.select_checkpoint(codec.find_checkpoints(args.dir, args.tag), args.policy)
    if genome_path is None or not os.path.exists(genome_path):
        print(f"Error: no checkpoint found (looked for '{args.path or args.tag}' in '{args.dir}').")
        return 1
    return 0 if visualize_genome(genome_path, args.output) is not None else 1


if __name__ == '__main__':
    raise SystemExit(main())
