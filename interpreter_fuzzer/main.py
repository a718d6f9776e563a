"""
Main entry point for the Interpreter Fuzzer
"""
import asyncio
import logging
from typing import Iterator, Optional, Tuple
from .models import TestConfiguration, ClusterSpec, ExecutionResult, Program
from .fuzzer_engine import FuzzerEngine, TestCaseGenerator

logger = logging.getLogger(__name__)


class InterpreterFuzzer:
    """Main orchestrator for the Interpreter Fuzzer system"""

    def __init__(self, cluster_factory=None):
        self.cluster_factory = cluster_factory
        self.last_engine: Optional[FuzzerEngine] = None

    def run_test(self, config: TestConfiguration, cluster_spec: Optional[ClusterSpec] = None) -> ExecutionResult:
        """
        Run one test to completion and return its result. Failures are
        reported through the result, the engine has already logged them.
        """
        engine = FuzzerEngine(config, cluster_spec=cluster_spec, cluster_factory=self.cluster_factory)
        self.last_engine = engine
        try:
            asyncio.run(engine.run())
        except Exception as e:
            logger.debug(f"Run {engine.run_id} failed: {e}")
        return engine.result()

    def generate_programs(self, config: TestConfiguration) -> Iterator[Tuple[int, Program]]:
        """
        The seeded workload of a configuration, without sending it anywhere.
        """
        return TestCaseGenerator(config).generate()
