"""
Test Case Generator - Generates seeded, nested interpreter programs
"""
import random
import logging
from typing import Iterator, Tuple
from ..models import (
    TestConfiguration, Program, Command, IncrementCommand, CallNextLayerObject,
    INCREMENT_COMMAND_TYPES, MAX_LAYERS
)
from ..interfaces import IProgramGenerator
from ..errors import InvariantViolation

logger = logging.getLogger(__name__)

# Chance that a position of a program (below the deepest layer) calls the next layer
CALL_NEXT_LAYER_PROBABILITY = 0.2


def create_rng(seed: str) -> random.Random:
    """Random source that replays the same decisions for the same seed"""
    return random.Random(seed)


class ProgramGenerator(IProgramGenerator):
    """Builds random program trees bounded by size and layer depth"""

    def __init__(self, rng: random.Random, keys: int, max_program_size: int):
        if keys < 1:
            raise ValueError(f"keys must be >= 1, got {keys}")
        if max_program_size < 1:
            raise ValueError(f"max_program_size must be >= 1, got {max_program_size}")
        self.rng = rng
        self.keys = keys
        self.max_program_size = max_program_size
        self.max_layer = MAX_LAYERS - 1

    def generate_program(self, layer: int) -> Program:
        """
        Generate a program to be interpreted at `layer`.

        `max_program_size` bounds the number of top level commands only, nested
        programs add their own commands on top of that.
        """
        if layer < 0 or layer > self.max_layer:
            raise InvariantViolation(f"Cannot generate a program for layer {layer}")

        size = self.rng.randint(1, self.max_program_size)
        commands = [self._generate_command(layer) for _ in range(size)]
        return Program(commands=tuple(commands))

    def _generate_command(self, layer: int) -> Command:
        if layer < self.max_layer and self.rng.random() < CALL_NEXT_LAYER_PROBABILITY:
            key = self.rng.randrange(self.keys)
            return CallNextLayerObject(key=key, program=self.generate_program(layer + 1))
        return IncrementCommand(self.rng.choice(INCREMENT_COMMAND_TYPES))


class TestCaseGenerator:
    """Produces the (key, program) pairs of a run, lazily and only once"""
    __test__ = False

    def __init__(self, config: TestConfiguration):
        self.config = config
        self.rng = create_rng(config.seed)
        self.program_generator = ProgramGenerator(self.rng, config.keys, config.max_program_size)

    def generate(self) -> Iterator[Tuple[int, Program]]:
        for _ in range(self.config.tests):
            program = self.program_generator.generate_program(0)
            key = self.rng.randrange(self.config.keys)
            yield key, program
