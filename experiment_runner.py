from flappy_core import run_headless_simulation, ConfigurationError
import os
import sys
import time

RESULTS_DIR = "results"

experiments = [

    {
        "name": "Baseline",
        "config": {
            # Using all defaults
        },
        "results_file": "baseline.csv"
    },
    {
        "name": "Classic",
        "preset": "classic", # Only the first layer is bred
        "config": {},
        "results_file": "classic.csv"
    },
    {
        "name": "Relative_Senses",
        "preset": "relative",
        "config": {},
        "results_file": "relative_senses.csv"
    },
    {
        "name": "More_Neurons",
        "config": {
            "hidden_size": 16, # Changed parameter
        },
        "results_file": "more_neurons.csv"
    },
    {
        "name": "Constant_Mutation",
        "config": {
            "mutation_policy": "constant",
            "mutation_rate": 0.1
        },
        "results_file": "constant_mutation.csv"
    },
    {
        "name": "Fitness_Carry_Over",
        "config": {
            "fitness_carries_over": True
        },
        "results_file": "fitness_carry_over.csv"
    }
]


def run_experiments(experiments, total_generations, results_dir=RESULTS_DIR):
    start_time = time.time()
    print(f"Starting {len(experiments)} experiments, each running for {total_generations} generations.")

    written = []
    for i, exp in enumerate(experiments):
        print(f"\n--- Running Experiment {i+1}/{len(experiments)}: {exp['name']} ---")

        # Add the experiment name to its config for logging purposes
        config = {**exp['config'], 'name': exp['name']}
        results_path = os.path.join(results_dir, exp['results_file'])

        run_headless_simulation(
            config=config,
            total_generations=total_generations,
            results_csv_path=results_path,
            preset=exp.get('preset')
        )
        written.append(results_path)
        print(f"--- Finished Experiment: {exp['name']}. Results saved to {results_path} ---")

    print(f"\nAll experiments completed in {time.time() - start_time:.2f} seconds.")
    return written


# --- Main Runner ---
if __name__ == "__main__":
    TOTAL_GENERATIONS_PER_RUN = 50 # Set how many generations each experiment should last
    try:
        run_experiments(experiments, TOTAL_GENERATIONS_PER_RUN)
    except ConfigurationError as e:
        print(f"Error: {e}")
        sys.exit(1)
