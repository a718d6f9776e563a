"""
Fuzzer Engine - Central orchestrator for durable execution consistency testing
"""
from .test_case_generator import ProgramGenerator, TestCaseGenerator
from .state_tracker import StateTracker
from .execution_driver import ExecutionDriver
from .state_validator import ConvergenceVerifier
from .chaos_coordinator import ChaosCoordinator
from .test_logger import FuzzerLogger
from .fuzzer_engine import FuzzerEngine
from .config_loader import ConfigLoader

__all__ = [
    'FuzzerEngine',
    'ProgramGenerator',
    'TestCaseGenerator',
    'StateTracker',
    'ExecutionDriver',
    'ConvergenceVerifier',
    'ChaosCoordinator',
    'FuzzerLogger',
    'ConfigLoader',
]
