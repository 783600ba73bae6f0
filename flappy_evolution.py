import argparse
import sys

import numpy as np
import pygame

from flappy_core import GenerationController, ConfigurationError, PRESETS

# --- Colours ---
BACKGROUND_COLOR = (245, 245, 245)
BIRD_COLOR = (255, 161, 0)
PLAYER_COLOR = (230, 41, 55)
PIPE_COLOR = (0, 158, 47)
TEXT_COLOR = (0, 0, 0)

FPS = 60


def draw_pipes(screen, snapshot):
    screen_height = screen.get_height()
    for pipe in snapshot['pipes']:
        x, width = int(pipe['x']), int(pipe['width'])
        # Top block runs from the ceiling to the gap, bottom block from the gap to the floor
        pygame.draw.rect(screen, PIPE_COLOR, (x, 0, width, int(pipe['gap_top'])))
        pygame.draw.rect(screen, PIPE_COLOR, (x, int(pipe['gap_bottom']), width, screen_height))


def draw_birds(screen, snapshot, player_index=0):
    for i, bird in enumerate(snapshot['birds']):
        if not bird['alive']:
            continue
        color = PLAYER_COLOR if i == player_index else BIRD_COLOR
        pygame.draw.circle(screen, color, (int(bird['x']), int(bird['y'])), int(bird['size']))


def draw_hud(screen, font, snapshot):
    width = screen.get_width()
    score_text = font.render(f"{snapshot['score']}", True, TEXT_COLOR)
    high_text = font.render(f"{snapshot['high_score']}", True, TEXT_COLOR)
    gen_text = font.render(f"Generation: {snapshot['generation']}", True, TEXT_COLOR)
    time_text = font.render(f"Time: {snapshot['elapsed']:.2f}s", True, TEXT_COLOR)
    alive_text = font.render(f"Alive: {snapshot['alive']}/{len(snapshot['birds'])}", True, TEXT_COLOR)

    screen.blit(score_text, (width - 60, 20))
    screen.blit(high_text, (width - 60, 50))
    screen.blit(gen_text, (20, 20))
    screen.blit(time_text, (20, 45))
    screen.blit(alive_text, (20, 70))


def draw_world(screen, snapshot, font=None, player_index=0):
    screen.fill(BACKGROUND_COLOR)
    draw_pipes(screen, snapshot)
    draw_birds(screen, snapshot, player_index)
    if font is not None:
        draw_hud(screen, font, snapshot)


def print_summary(controller):
    best = controller.best_bird()
    state = controller.state
    print(f"Best fitness: {best.fitness:.2f}")
    print(f"Highest pipes passed: {max(state.score, state.high_score)}")
    print(f"Generations: {state.generation}")
    with np.printoptions(precision=3, suppress=True):
        print(f"\nBird weights {best.nn.topology}:")
        print(best.nn.get_weights())


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Watch a population of birds evolve through the pipes.")
    parser.add_argument("--preset", choices=sorted(PRESETS), default=None)
    parser.add_argument("--population", type=int, default=None, help="number of birds per generation")
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--fps", type=int, default=FPS, help="0 runs as fast as possible")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    overrides = {"verbose": True}
    if args.population is not None:
        overrides["population_size"] = args.population
    if args.seed is not None:
        overrides["seed"] = args.seed

    try:
        controller = GenerationController(overrides, preset=args.preset)
    except ConfigurationError as e:
        print(f"Error: {e}")
        return 1

    pygame.init()
    cfg = controller.config
    screen = pygame.display.set_mode((cfg['screen_width'], cfg['screen_height']))
    pygame.display.set_caption("Flappy Bird - Neuroevolution")
    clock = pygame.time.Clock()
    font = pygame.font.SysFont(None, 28)

    running = True
    while running:
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                running = False

        # Holding space flaps the first bird by hand
        if pygame.key.get_pressed()[pygame.K_SPACE]:
            controller.request_flap(0)

        controller.tick()

        draw_world(screen, controller.snapshot(), font)
        pygame.display.flip()
        clock.tick(args.fps)

    pygame.quit()
    print_summary(controller)
    return 0


if __name__ == "__main__":
    sys.exit(main())
