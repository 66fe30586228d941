"""
Benchmark and verification helpers: time the pipeline on several backends,
compare device output against the host engine and plot the timings.
"""

import time

import matplotlib
import matplotlib.pyplot as plt
import numpy as np

from .kernels import KERNEL_NAMES
from .pipeline import run_pipeline


def compare_results(result, reference):
    """Max absolute difference per output"""
    diffs = {}
    for name, output in result.outputs().items():
        expected = reference.outputs()[name]
        if output.shape != expected.shape:
            raise ValueError(
                f"{name}: shape {output.shape} does not match {expected.shape}")
        if output.size == 0:
            diffs[name] = 0
            continue
        diffs[name] = int(np.max(np.abs(output.astype(np.int16) - expected.astype(np.int16))))
    return diffs


def benchmark_backends(image, backends, config=None, repeats=5, verbose=False):
    """
    Run the pipeline ``repeats`` times on each backend (after one warm-up).

    Parameters:
    - image: (H, W) uint8 array
    - backends: {label: Backend}
    - config: PipelineConfig, or None to derive it from the image
    - repeats: timed runs per backend

    Returns:
    - {label: {kernel name: mean ms, ..., "total": mean end-to-end ms}}
    """
    results = {}
    for label, backend in backends.items():
        if verbose:
            print(f"\nBenchmarking {label} ({backend.name}), {repeats} runs...")

        run_pipeline(image, backend, config)  # Warm-up

        kernel_times = {name: [] for name in KERNEL_NAMES}
        totals = []
        for _ in range(repeats):
            start = time.perf_counter()
            result = run_pipeline(image, backend, config)
            totals.append((time.perf_counter() - start) * 1000)
            for name in KERNEL_NAMES:
                kernel_times[name].append(result.timings[name])

        summary = {name: float(np.mean(times)) for name, times in kernel_times.items()}
        summary["total"] = float(np.mean(totals))
        results[label] = summary

        if verbose:
            for name, ms in summary.items():
                print(f"  {name:10} {ms:10.3f} ms")
    return results


def plot_benchmark(results, path):
    """Grouped bar chart of mean times per kernel and backend"""
    labels = list(KERNEL_NAMES) + ["total"]
    x = np.arange(len(labels))
    width = 0.8 / max(len(results), 1)

    fig, ax = plt.subplots(figsize=(10, 5))
    for i, (backend, summary) in enumerate(results.items()):
        ax.bar(x + i * width, [summary[name] for name in labels], width, label=backend)

    ax.set_xticks(x + width * (len(results) - 1) / 2)
    ax.set_xticklabels(labels)
    ax.set_ylabel('Time (ms)')
    ax.set_title('Kernel Execution Time per Device')
    ax.legend()
    ax.grid(True, axis='y', alpha=0.3)
    if results and all(v > 0 for summary in results.values() for v in summary.values()):
        ax.set_yscale('log')

    fig.tight_layout()
    fig.savefig(path, dpi=150)
    plt.close(fig)
    return path


def use_headless_backend():
    """Switch matplotlib to Agg when no display is needed."""
    matplotlib.use("Agg")
