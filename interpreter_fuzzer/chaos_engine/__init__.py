"""
Chaos Engine - Injects container failures into the cluster under test

Components:
- ContainerChaosEngine: Core chaos injection (restart, hard restart, rolling upgrade)
- ChaosTargetSelector: Target node selection
"""
from .base import ContainerChaosEngine, ChaosTargetSelector

__all__ = [
    'ContainerChaosEngine',
    'ChaosTargetSelector'
]
