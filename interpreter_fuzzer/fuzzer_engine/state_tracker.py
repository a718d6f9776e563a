"""
State Tracker - Expected counter of every interpreter object
"""
from typing import List, Union
from ..models import Program, CallNextLayerObject, MAX_LAYERS
from ..errors import InvariantViolation


class StateTracker:
    """
    Ground truth for the verification phase.

    Holds counters[layer][key] and folds every generated program into it, the
    same way the interpreter objects are expected to execute it. Every command
    kind the generator can emit must be handled here.
    """

    def __init__(self, num_interpreters: int, num_layers: int = MAX_LAYERS):
        self.num_layers = num_layers
        self.num_interpreters = num_interpreters
        self._states: List[List[int]] = [[0] * num_interpreters for _ in range(num_layers)]

    def update(self, layer: int, key: Union[int, str], program: Program) -> None:
        if layer < 0 or layer >= self.num_layers:
            raise InvariantViolation(
                f"Layer {layer} is outside of the {self.num_layers} tracked layers, "
                f"generator and state tracker are out of sync"
            )
        index = self._key_index(key)
        for command in program:
            if isinstance(command, CallNextLayerObject):
                self.update(layer + 1, command.key, command.program)
            else:
                self._states[layer][index] += 1

    def _key_index(self, key: Union[int, str]) -> int:
        try:
            index = int(key)
        except (TypeError, ValueError):
            raise InvariantViolation(f"Interpreter key {key!r} is not numeric")
        if index < 0 or index >= self.num_interpreters:
            raise InvariantViolation(f"Interpreter key {index} is outside of [0, {self.num_interpreters})")
        return index

    def get_layer(self, layer: int) -> List[int]:
        return list(self._states[layer])

    def get_states(self) -> List[List[int]]:
        return [list(layer) for layer in self._states]

    def total(self) -> int:
        return sum(sum(layer) for layer in self._states)
