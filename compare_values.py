import os
import pandas as pd
import matplotlib.pyplot as plt

# --- Configuration ---
RESULTS_DIR = "results"
PLOTS_DIR = "plots"
FILE_FORMAT = "png"


METRICS_TO_PLOT = {
    "best_fitness": "Best Fitness per Generation",
    "avg_fitness": "Average Fitness per Generation",
    "score": "Pipes Passed per Generation",
    "ticks": "Ticks Survived per Generation"
}


def load_runs(results_dir):
    """Read every experiment CSV, keyed by a label made from its filename."""
    csv_files = sorted(f for f in os.listdir(results_dir) if f.endswith('.csv'))
    runs = {}
    for filename in csv_files:
        label = os.path.splitext(filename)[0].replace('_', ' ').title()
        runs[label] = pd.read_csv(os.path.join(results_dir, filename))
    return runs


def metric_table(runs, metric):
    # One column per experiment, indexed by generation; runs of unequal length leave NaN
    columns = {}
    for label, df in runs.items():
        if metric not in df.columns:
            print(f"Warning: '{label}' has no '{metric}' column, left out of the plot.")
            continue
        columns[label] = df.set_index('generation')[metric]
    return pd.DataFrame(columns)


def plot_metric(table, metric, title, plots_dir):
    fig, ax = plt.subplots(figsize=(10, 6))
    if not table.empty:
        table.plot(ax=ax, marker='.', linewidth=1.2)
        ax.legend(title='Experiment', loc='best', fontsize='small')
    ax.set(title=title, xlabel="Generation", ylabel=metric.replace('_', ' '))
    ax.grid(alpha=0.3)
    fig.tight_layout()

    path = os.path.join(plots_dir, f"{metric}_comparison.{FILE_FORMAT}")
    fig.savefig(path, dpi=120)
    plt.close(fig)
    return path


def create_comparison_plots(results_dir=RESULTS_DIR, plots_dir=PLOTS_DIR):
    """
    Plot each metric in METRICS_TO_PLOT across all runs found in results_dir.
    Returns the saved image paths, empty when there is nothing to plot.
    """
    if not os.path.isdir(results_dir):
        print(f"No results directory '{results_dir}'; run experiment_runner.py first.")
        return []
    runs = load_runs(results_dir)
    if not runs:
        print(f"No .csv files in '{results_dir}'; run experiment_runner.py first.")
        return []

    os.makedirs(plots_dir, exist_ok=True)
    print(f"Plotting {len(runs)} runs from '{results_dir}/'")
    saved = []
    for metric, title in METRICS_TO_PLOT.items():
        path = plot_metric(metric_table(runs, metric), metric, title, plots_dir)
        print(f"  - {path}")
        saved.append(path)
    return saved


if __name__ == "__main__":
    create_comparison_plots()
