"""
Flappy Core - headless neuroevolution loop

Birds steered by tiny feed-forward networks fly through a scrolling field of
pipes. When every bird has died the population is bred into the next
generation (elite selection, uniform crossover, gaussian mutation) and the
course is rebuilt. Nothing in here draws or reads input; flappy_evolution.py
renders the state and experiment_runner.py drives it without a window.
"""

import numpy as np
import math
import time
import os
import csv

# --- Constants ---
SCREEN_WIDTH = 800
SCREEN_HEIGHT = 600
GAME_SPEED = 1.5

# Keeps sigmoid overflow-free and strictly inside (0, 1)
SIGMOID_CLAMP = 30.0
FLAP_THRESHOLD = 0.5

FEATURES = ("velocity", "pipe_distance", "gap_top", "gap_bottom", "height")
SECOND_LAYER_POLICIES = ("crossover", "inherit", "randomize")
MUTATION_POLICIES = ("constant", "decaying")

STATS_FIELDS = ['generation', 'ticks', 'score', 'best_fitness', 'avg_fitness', 'worst_fitness', 'mutation_rate']

# --- Default Simulation Parameters ---
# These can be overridden by a preset or by experiment-specific config
DEFAULT_CONFIG = {
    "screen_width": SCREEN_WIDTH,
    "screen_height": SCREEN_HEIGHT,
    "gravity": 0.5 * GAME_SPEED,
    "flap_strength": -6 * GAME_SPEED,
    "max_speed": 5.0 * GAME_SPEED,
    "scroll_speed": 1 * GAME_SPEED,
    "pipe_count": 3,
    "pipe_width": 70,
    "pipe_gap": 200,
    "pipe_spacing": 300,
    "first_pipe_x": 500,
    "gap_margin": 50,
    "bird_x": 30,
    "bird_y": SCREEN_HEIGHT / 2,
    "bird_size": 20,
    "boundary_margin": 15,
    "boundary_penalty": 50.0,
    "survival_reward": 0.5,
    "pass_reward": 100.0,
    "collision_penalty_scale": 0.1,
    "population_size": 30,
    "hidden_size": 8,
    "output_size": 1,
    "features": FEATURES,
    "elite_fraction": 0.3,
    "mutation_rate": 0.1,
    "mutation_strength": 0.1,
    "mutation_policy": "decaying",
    "second_layer_policy": "crossover",
    "mutate_second_layer": True,
    "fitness_carries_over": False,
    "generation_time": 5000, # Tick cap used by headless runs, None to disable
    "seed": None,
    "verbose": False,
}

PRESETS = {
    # The first single-window trainer: only the first layer is bred,
    # the output layer of every child is drawn fresh.
    "classic": {
        "second_layer_policy": "randomize",
        "mutate_second_layer": False,
        "mutation_policy": "decaying",
        "fitness_carries_over": True,
        "features": FEATURES,
    },
    # Relative senses only, no absolute height
    "relative": {
        "features": ("velocity", "pipe_distance", "gap_top", "gap_bottom"),
        "hidden_size": 6,
        "mutation_policy": "constant",
        "mutation_rate": 0.05,
    },
}


# --- Errors ---
class FlappyError(Exception):
    pass


class ConfigurationError(FlappyError, ValueError):
    pass


class TopologyMismatchError(ConfigurationError):
    pass


class InputShapeError(FlappyError, ValueError):
    pass


class EmptyPopulationError(FlappyError, ValueError):
    pass


class GenerationOverError(FlappyError, RuntimeError):
    pass


# --- Configuration ---
def _require_positive_int(name, value):
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)) or value <= 0:
        raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")


def build_config(overrides=None, preset=None):
    """Layer DEFAULT_CONFIG, a named preset and explicit overrides, then validate."""
    cfg = dict(DEFAULT_CONFIG)
    if preset is not None:
        if preset not in PRESETS:
            raise ConfigurationError(f"Unknown preset '{preset}', expected one of {sorted(PRESETS)}")
        cfg.update(PRESETS[preset])
    if overrides:
        cfg.update(overrides)
    cfg["features"] = tuple(cfg["features"])
    validate_config(cfg)
    return cfg


def validate_config(cfg):
    for key in ("population_size", "hidden_size", "output_size", "pipe_count"):
        _require_positive_int(key, cfg[key])

    if not cfg["features"]:
        raise ConfigurationError("At least one sensory feature is required")
    unknown = [f for f in cfg["features"] if f not in FEATURES]
    if unknown:
        raise ConfigurationError(f"Unknown features {unknown}, expected a subset of {list(FEATURES)}")

    if cfg["second_layer_policy"] not in SECOND_LAYER_POLICIES:
        raise ConfigurationError(f"second_layer_policy must be one of {SECOND_LAYER_POLICIES}")
    if cfg["mutation_policy"] not in MUTATION_POLICIES:
        raise ConfigurationError(f"mutation_policy must be one of {MUTATION_POLICIES}")
    if not 0.0 <= cfg["elite_fraction"] <= 1.0:
        raise ConfigurationError("elite_fraction must lie in [0, 1]")
    if not 0.0 <= cfg["mutation_rate"] <= 1.0:
        raise ConfigurationError("mutation_rate must lie in [0, 1]")
    if cfg["mutation_strength"] < 0:
        raise ConfigurationError("mutation_strength must not be negative")

    if cfg["bird_size"] <= 0:
        raise ConfigurationError("bird_size must be positive")
    if cfg["pipe_width"] <= 0 or cfg["pipe_gap"] <= 0:
        raise ConfigurationError("pipe_width and pipe_gap must be positive")
    if cfg["screen_height"] - cfg["pipe_gap"] - 2 * cfg["gap_margin"] < 0:
        raise ConfigurationError("pipe_gap and gap_margin leave no room for the gap on screen")
    if cfg["scroll_speed"] <= 0:
        raise ConfigurationError("scroll_speed must be positive")
    if cfg["generation_time"] is not None:
        _require_positive_int("generation_time", cfg["generation_time"])


def network_topology(cfg):
    return len(cfg["features"]), cfg["hidden_size"], cfg["output_size"]


# --- Neural Network Class ---
def sigmoid(x):
    return 1.0 / (1.0 + np.exp(-np.clip(x, -SIGMOID_CLAMP, SIGMOID_CLAMP)))


class NeuralNetwork:
    def __init__(self, input_size, hidden_size, output_size, rng=None):
        _require_positive_int("input_size", input_size)
        _require_positive_int("hidden_size", hidden_size)
        _require_positive_int("output_size", output_size)
        rng = rng if rng is not None else np.random.default_rng()
        self.input_size, self.hidden_size, self.output_size = input_size, hidden_size, output_size
        self.weights1 = rng.uniform(-1.0, 1.0, (input_size, hidden_size))
        self.weights2 = rng.uniform(-1.0, 1.0, (hidden_size, output_size))

    @property
    def topology(self):
        return self.input_size, self.hidden_size, self.output_size

    def predict(self, inputs):
        """Forward pass; returns the first output unit, the flap probability."""
        inputs = np.asarray(inputs, dtype=np.float64)
        if inputs.shape != (self.input_size,):
            raise InputShapeError(f"Expected a flat vector of {self.input_size} inputs, got shape {inputs.shape}")
        hidden = sigmoid(np.dot(inputs, self.weights1))
        output = sigmoid(np.dot(hidden, self.weights2))
        return float(output[0])

    def get_weights(self):
        return np.concatenate([self.weights1.flatten(), self.weights2.flatten()])

    def mutate(self, rate, strength, rng=None, include_second_layer=False):
        # Each gene is nudged with probability `rate`; rate 0 leaves weights untouched
        rng = rng if rng is not None else np.random.default_rng()
        layers = [self.weights1]
        if include_second_layer:
            layers.append(self.weights2)
        for weights in layers:
            mask = rng.random(weights.shape) < rate
            weights += np.where(mask, rng.standard_normal(weights.shape) * strength, 0.0)


# --- Simulation Object Classes ---
class Bird:
    def __init__(self, nn, config):
        self.nn = nn
        self.config = config
        self.fitness = 0.0
        self.respawn()

    def respawn(self, keep_fitness=False):
        self.x = float(self.config['bird_x'])
        self.y = float(self.config['bird_y'])
        self.velocity = 0.0
        self.alive = True
        self.size = float(self.config['bird_size'])
        self.pipes_passed = 0
        self.credited_serial = None
        if not keep_fitness:
            self.fitness = 0.0

    def kill(self, penalty=0.0):
        """Mark the bird dead once; later calls change nothing."""
        if not self.alive:
            return False
        self.alive = False
        self.fitness -= penalty
        return True


class Pipe:
    def __init__(self, x, gap_y, width, gap, serial):
        self.x = x
        self.gap_y = gap_y # Top edge of the gap
        self.width = width
        self.gap = gap
        self.serial = serial # Changes every time the pipe is recycled

    @property
    def gap_bottom(self):
        return self.gap_y + self.gap

    @property
    def gap_center(self):
        return self.gap_y + self.gap / 2


class ObstacleField:
    """Fixed-size queue of pipes scrolling left, recycled to the right edge."""

    def __init__(self, config, rng):
        self.config = config
        self.rng = rng
        self.width = config['pipe_width']
        self.gap = config['pipe_gap']
        self.pipes = []
        self._next_serial = 0
        self.reset()

    def reset(self):
        cfg = self.config
        self._next_serial = 0
        self.pipes = [self._new_pipe(float(cfg['first_pipe_x'] + i * cfg['pipe_spacing']))
                      for i in range(cfg['pipe_count'])]

    def _take_serial(self):
        serial = self._next_serial
        self._next_serial += 1
        return serial

    def _new_pipe(self, x):
        return Pipe(x, self.random_gap_y(), self.width, self.gap, self._take_serial())

    def random_gap_y(self):
        low = self.config['gap_margin']
        high = self.config['screen_height'] - self.gap - self.config['gap_margin']
        return float(self.rng.uniform(low, high))

    @property
    def front(self):
        return self.pipes[0]

    def next_ahead(self, x):
        """First pipe whose trailing edge is still right of x."""
        for pipe in self.pipes:
            if pipe.x + pipe.width > x:
                return pipe
        return self.front

    def advance(self):
        for pipe in self.pipes:
            pipe.x -= self.config['scroll_speed']

        recycled = 0
        while self.pipes[0].x < -self.width:
            pipe = self.pipes.pop(0)
            last_x = self.pipes[-1].x if self.pipes else -math.inf
            pipe.x = max(float(self.config['screen_width']), last_x + self.config['pipe_spacing'])
            pipe.gap_y = self.random_gap_y()
            pipe.serial = self._take_serial()
            self.pipes.append(pipe)
            recycled += 1
        return recycled


# --- Sensing ---
SENSORS = {
    "velocity": lambda bird, pipe: bird.velocity,
    "pipe_distance": lambda bird, pipe: pipe.x - bird.x,
    "gap_top": lambda bird, pipe: pipe.gap_y - bird.y,
    "gap_bottom": lambda bird, pipe: pipe.gap_bottom - bird.y,
    "height": lambda bird, pipe: bird.y,
}


def sense(bird, field, features):
    pipe = field.next_ahead(bird.x - bird.size)
    return np.array([SENSORS[name](bird, pipe) for name in features], dtype=np.float64)


# --- Simulation State ---
class SimulationState:
    """Everything one run mutates; owned by the GenerationController."""

    def __init__(self, config, rng, birds, field):
        self.config = config
        self.rng = rng
        self.birds = birds
        self.field = field
        self.score = 0
        self.high_score = 0
        self.generation = 0
        self.ticks = 0
        self.generation_over = False
        self.started = time.time()
        self._flapped = set()

    @property
    def alive_count(self):
        return sum(1 for bird in self.birds if bird.alive)

    def request_flap(self, index):
        # -1 and len - 1 name the same bird
        index = range(len(self.birds))[index]
        bird = self.birds[index]
        if index in self._flapped or not bird.alive:
            return False
        self._flapped.add(index)
        bird.velocity = self.config['flap_strength']
        return True


# --- Simulation Step ---
def is_collision_with_pipe(pipe, bird):
    # Within the horizontal bounds of the pipe
    if bird.x + bird.size > pipe.x and bird.x - bird.size < pipe.x + pipe.width:
        # Above the gap (top pipe) or below it (bottom pipe)
        if bird.y - bird.size < pipe.gap_y or bird.y + bird.size > pipe.gap_bottom:
            return True
    return False


def collision_penalty(pipe, bird, config):
    return config['collision_penalty_scale'] * abs(bird.y - pipe.gap_center)


def resolve_collisions(state):
    for pipe in state.field.pipes:
        for bird in state.birds:
            if bird.alive and is_collision_with_pipe(pipe, bird):
                bird.kill(collision_penalty(pipe, bird, state.config))


def simulation_step(state):
    """Advance the world by one tick. Returns True once every bird is dead."""
    if state.generation_over:
        raise GenerationOverError("Generation already finished; reset it before stepping again")
    cfg = state.config
    front = state.field.front
    lower_bound = cfg['screen_height'] + cfg['boundary_margin']

    for bird in state.birds:
        if not bird.alive:
            continue

        bird.y += bird.velocity
        if bird.velocity < cfg['max_speed']:
            bird.velocity += cfg['gravity']

        if bird.y < 0 or bird.y > lower_bound:
            bird.kill(cfg['boundary_penalty'])
            continue
        bird.fitness += cfg['survival_reward']

        if bird.x + bird.size > front.x + front.width and bird.credited_serial != front.serial:
            bird.credited_serial = front.serial
            bird.pipes_passed += 1
            bird.fitness += cfg['pass_reward']
            if bird.pipes_passed > state.score:
                state.score = bird.pipes_passed

        if bird.nn.predict(sense(bird, state.field, cfg['features'])) >= FLAP_THRESHOLD:
            bird.velocity = cfg['flap_strength']

    state.field.advance()
    resolve_collisions(state)

    state.ticks += 1
    state._flapped.clear()
    if state.alive_count == 0:
        state.generation_over = True
    return state.generation_over


# --- Evolution ---
def elite_size(count, fraction):
    # round() guards against 10 * 0.3 == 3.0000000000000004
    return min(count, max(1, math.ceil(round(count * fraction, 9))))


def mutation_rate_for(config, generation):
    if config['mutation_policy'] == "decaying":
        return config['mutation_rate'] / (generation + 1)
    return config['mutation_rate']


def select_parents(top, rng):
    parent_a = int(rng.integers(len(top)))
    while True:
        parent_b = int(rng.integers(len(top)))
        if parent_b != parent_a or len(top) == 1:
            break
    return top[parent_a], top[parent_b]


def crossover(parent_a, parent_b, rng, second_layer_policy="crossover"):
    """Uniform per-gene crossover: every weight is copied from exactly one parent."""
    child = NeuralNetwork(*parent_a.topology, rng=rng)
    mask = rng.random(parent_a.weights1.shape) < 0.5
    child.weights1 = np.where(mask, parent_a.weights1, parent_b.weights1)

    if second_layer_policy == "crossover":
        mask = rng.random(parent_a.weights2.shape) < 0.5
        child.weights2 = np.where(mask, parent_a.weights2, parent_b.weights2)
    elif second_layer_policy == "inherit":
        child.weights2 = parent_a.weights2.copy()
    # "randomize" keeps the fresh weights the child was created with
    return child


def evolve(population, config, rng, generation=0):
    if not population:
        raise EmptyPopulationError("Cannot evolve an empty population")
    topology = network_topology(config)
    for bird in population:
        if bird.nn.topology != topology:
            raise TopologyMismatchError(f"Network topology {bird.nn.topology} does not match {topology}")

    ranked = sorted(population, key=lambda b: b.fitness, reverse=True)
    top = ranked[:elite_size(len(ranked), config['elite_fraction'])]
    rate = mutation_rate_for(config, generation)

    next_networks = []
    while len(next_networks) < len(population):
        parent_a, parent_b = select_parents(top, rng)
        child = crossover(parent_a.nn, parent_b.nn, rng, config['second_layer_policy'])
        child.mutate(rate, config['mutation_strength'], rng, config['mutate_second_layer'])
        next_networks.append(child)
    return next_networks


# --- Generation Controller ---
class GenerationController:
    def __init__(self, config=None, preset=None):
        self.config = build_config(config, preset)
        self.rng = np.random.default_rng(self.config['seed'])
        topology = network_topology(self.config)
        birds = [Bird(NeuralNetwork(*topology, rng=self.rng), self.config)
                 for _ in range(self.config['population_size'])]
        field = ObstacleField(self.config, self.rng)
        self.state = SimulationState(self.config, self.rng, birds, field)
        self.history = []

    def tick(self):
        """One frame. Returns True when this tick ended (and reset) a generation."""
        if simulation_step(self.state):
            self.reset_generation()
            return True
        return False

    def run_generation(self, max_ticks=None):
        max_ticks = max_ticks if max_ticks is not None else self.config['generation_time']
        state = self.state
        while not simulation_step(state):
            if max_ticks is not None and state.ticks >= max_ticks:
                # Out of time: close the generation without penalising survivors
                for bird in state.birds:
                    bird.kill()
                state.generation_over = True
                break
        return self.reset_generation()

    def generation_stats(self):
        state = self.state
        fitnesses = [bird.fitness for bird in state.birds]
        return {
            'generation': state.generation,
            'ticks': state.ticks,
            'score': state.score,
            'best_fitness': max(fitnesses),
            'avg_fitness': sum(fitnesses) / len(fitnesses),
            'worst_fitness': min(fitnesses),
            'mutation_rate': mutation_rate_for(self.config, state.generation + 1),
        }

    def reset_generation(self):
        state = self.state
        stats = self.generation_stats()
        self.history.append(stats)
        if state.score > state.high_score:
            state.high_score = state.score

        networks = evolve(state.birds, self.config, self.rng, state.generation + 1)
        for bird, nn in zip(state.birds, networks):
            bird.nn = nn
            bird.respawn(keep_fitness=self.config['fitness_carries_over'])
        state.field.reset()

        if self.config['verbose']:
            print(f"Generation: {state.generation} ({time.time() - state.started:.2f}s) "
                  f"score {state.score}, best fitness {stats['best_fitness']:.2f}")
        state.score = 0
        state.ticks = 0
        state.generation += 1
        state.generation_over = False
        state.started = time.time()
        return stats

    def request_flap(self, index):
        return self.state.request_flap(index)

    def best_bird(self):
        return max(self.state.birds, key=lambda b: b.fitness)

    def snapshot(self):
        state = self.state
        return {
            'birds': [{'x': b.x, 'y': b.y, 'size': b.size, 'alive': b.alive, 'fitness': b.fitness}
                      for b in state.birds],
            'pipes': [{'x': p.x, 'width': p.width, 'gap_top': p.gap_y, 'gap_bottom': p.gap_bottom}
                      for p in state.field.pipes],
            'score': state.score,
            'high_score': state.high_score,
            'generation': state.generation,
            'ticks': state.ticks,
            'elapsed': time.time() - state.started,
            'alive': state.alive_count,
        }


# --- Data Logging ---
def setup_csv_logger(filename):
    # Ensure the directory for the results file exists
    directory = os.path.dirname(filename)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(filename, mode='w', newline='') as f:
        csv.writer(f).writerow(STATS_FIELDS)


def log_to_csv(filename, stats):
    with open(filename, mode='a', newline='') as f:
        csv.DictWriter(f, fieldnames=STATS_FIELDS).writerow(stats)


# --- Headless Simulation Runner ---
def run_headless_simulation(config, total_generations, results_csv_path, preset=None):
    controller = GenerationController(config, preset)
    setup_csv_logger(results_csv_path)

    for gen in range(1, total_generations + 1):
        stats = controller.run_generation()
        print(f"  Gen {gen}/{total_generations} complete for '{config.get('name', 'N/A')}'. "
              f"Score: {stats['score']}, best fitness: {stats['best_fitness']:.2f}")
        log_to_csv(results_csv_path, {
            **stats,
            'best_fitness': f"{stats['best_fitness']:.2f}",
            'avg_fitness': f"{stats['avg_fitness']:.2f}",
            'worst_fitness': f"{stats['worst_fitness']:.2f}",
            'mutation_rate': f"{stats['mutation_rate']:.5f}",
        })
    return controller
