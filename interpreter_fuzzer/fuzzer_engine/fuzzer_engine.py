"""
Fuzzer Engine - Main orchestrator for a test run
"""
import asyncio
import time
import uuid
import random
import logging
from typing import Awaitable, Callable, List, Optional
from ..models import (
    TestConfiguration, TestStatus, ClusterSpec, ExecutionResult, VerificationProgress
)
from ..interfaces import ICluster
from ..errors import ConfigurationError, InvariantViolation
from ..restate_client.raw_client import RestateClient
from ..cluster_orchestrator.orchestrator import DockerCluster
from .test_case_generator import TestCaseGenerator
from .state_tracker import StateTracker
from .execution_driver import ExecutionDriver
from .chaos_coordinator import ChaosCoordinator
from .state_validator import ConvergenceVerifier
from .test_logger import FuzzerLogger
from .error_handler import ErrorHandler, ErrorContext, ErrorCategory, ErrorSeverity, RetryConfig

logging.basicConfig(format='%(levelname)-5s | %(filename)s:%(lineno)-3d | %(message)s', level=logging.INFO, force=True)
logger = logging.getLogger(__name__)

cli_logger = logging.getLogger('cli')
cli_logger.addHandler(logging.StreamHandler())
cli_logger.propagate = False

READINESS_RETRY_DELAY = 2.0

ClusterFactory = Callable[[ClusterSpec], ICluster]


class FuzzerEngine:
    """
    Runs one test end-to-end.

    The run optionally bootstraps a cluster, registers the interpreter
    deployments, then sends the seeded workload while chaos is injected next
    to it, and finally waits for the cluster to converge to the expected
    state. The cluster is cleaned up whatever the outcome.
    """

    def __init__(self, config: TestConfiguration,
                 cluster_spec: Optional[ClusterSpec] = None,
                 cluster_factory: Optional[ClusterFactory] = None,
                 client: Optional[RestateClient] = None,
                 fuzzer_logger: Optional[FuzzerLogger] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.config = config
        self.cluster_spec = cluster_spec
        self.cluster_factory = cluster_factory or self._docker_cluster
        self._owns_client = client is None
        self.client = client
        self.fuzzer_logger = fuzzer_logger or FuzzerLogger(config.log_dir)
        self._sleep = sleep

        self.run_id = f"run-{str(uuid.uuid4())[:8]}"
        self.error_handler = ErrorHandler(sleep=sleep)
        self.state_tracker = StateTracker(config.keys)
        self.cluster: Optional[ICluster] = None
        self.driver: Optional[ExecutionDriver] = None
        self.chaos_coordinator: Optional[ChaosCoordinator] = None
        self.verifier: Optional[ConvergenceVerifier] = None
        self._chaos_task: Optional[asyncio.Task] = None
        self._status = TestStatus.NOT_STARTED
        self.start_time = 0.0
        self.end_time = 0.0
        self.error_message: Optional[str] = None

        logger.info(f"Fuzzer Engine initialized for {self.run_id}")

    def _docker_cluster(self, spec: ClusterSpec) -> ICluster:
        return DockerCluster(spec, disable_cleanup=self.config.disable_cleanup)

    @property
    def status(self) -> TestStatus:
        return self._status

    def _set_status(self, new_status: TestStatus) -> None:
        if not self._status.can_transition_to(new_status):
            raise InvariantViolation(f"Illegal status transition {self._status.value} -> {new_status.value}")
        logger.info(f"Test status: {self._status.value} -> {new_status.value}")
        self._status = new_status

    async def run(self) -> TestStatus:
        """Run the test. Any error marks the run FAILED and is re-raised after cleanup."""
        self.start_time = time.time()
        if self.client is None:
            self.client = RestateClient()

        try:
            await self._start_testing()
            return self.status
        except Exception as e:
            self.error_message = str(e) or type(e).__name__
            logger.error(f"Test execution failed: {self.error_message}")
            self.fuzzer_logger.log_error(f"Test execution failed: {self.error_message}")
            self.error_handler.handle_error(ErrorContext(
                category=self._categorize(e),
                severity=ErrorSeverity.FATAL,
                message=self.error_message,
                exception=e,
                component="engine"
            ))
            raise
        finally:
            if not self.status.is_terminal:
                self._set_status(TestStatus.FAILED)
            await self._cleanup()
            self.end_time = time.time()
            result = self.result()
            self.fuzzer_logger.log_test_completion(result)
            self.fuzzer_logger.generate_report(result, self.error_handler.get_error_summary())

    async def _start_testing(self) -> None:
        self._set_status(TestStatus.RUNNING)
        self.fuzzer_logger.log_test_start(self.run_id, self.config)

        if self.config.bootstrap:
            await self._bootstrap_cluster()

        ingress_urls = self.ingress_urls()
        # Resolved up front so a missing admin url fails before anything is sent
        self.admin_url()

        deployments = self._deployments()
        if deployments:
            cli_logger.info("")
            await self._register_deployments(deployments)

        cli_logger.info("")
        for url in ingress_urls:
            await self._wait_until_ready(self.client.ingress_healthy, url, "ingress")

        cli_logger.info("")
        logger.info("Generating ...")
        self.driver = ExecutionDriver(
            client=self.client,
            state_tracker=self.state_tracker,
            ingress_urls=ingress_urls,
            error_handler=self.error_handler,
            batch_size=self.config.batch_size,
            retry_config=RetryConfig(
                max_attempts=self.config.retry_attempts,
                attempt_timeout=self.config.send_timeout,
                delay=self.config.retry_delay
            ),
            fuzzer_logger=self.fuzzer_logger
        )
        self.chaos_coordinator = ChaosCoordinator(
            cluster=self.cluster,
            config=self.config,
            status_provider=lambda: self.status,
            on_ingress_change=self.driver.update_ingress_urls,
            rng=random.Random(),
            sleep=self._sleep,
            error_handler=self.error_handler,
            fuzzer_logger=self.fuzzer_logger
        )
        self._chaos_task = asyncio.ensure_future(self.chaos_coordinator.run())

        await self.driver.run(TestCaseGenerator(self.config).generate())
        self._set_status(TestStatus.VALIDATING)

        cli_logger.info("")
        self.verifier = ConvergenceVerifier(
            query_counts=lambda: self.client.get_all_counts(self.admin_url(), self.config.keys),
            expected=self.state_tracker.get_states(),
            poll_interval=self.config.poll_interval,
            timeout=self.config.verify_timeout,
            error_handler=self.error_handler,
            retry_config=RetryConfig(
                max_attempts=self.config.retry_attempts,
                attempt_timeout=self.config.query_timeout,
                delay=self.config.retry_delay
            ),
            sleep=self._sleep,
            on_progress=self._on_progress
        )
        self._set_status(await self.verifier.verify())

    async def _bootstrap_cluster(self) -> None:
        if self.cluster_spec is None:
            raise ConfigurationError("bootstrap requires a cluster spec (--cluster-spec or UNIVERSE_ENV_JSON)")

        logger.info("Bootstrapping cluster")
        self.cluster = self.cluster_factory(self.cluster_spec)
        await self.cluster.start(self.config.rolling_upgrade)

        leader = self.config.server_nodes[0]
        logger.info(f"Mapped ports of the restate leader {leader}: {self.cluster.container(leader).ports()}")

        await self._sleep(self.config.bootstrap_settle_time)

    def ingress_urls(self) -> List[str]:
        if self.cluster is not None:
            return [
                self.cluster.host_container_url(node, self.config.ingress_port)
                for node in self.config.server_nodes
            ]
        return [self.config.ingress]

    def admin_url(self) -> str:
        """Resolved on every call, the leader may have moved after a restart"""
        if self.cluster is not None:
            return self.cluster.host_container_url(self.config.server_nodes[0], self.config.admin_port)
        if self.config.register is not None:
            return self.config.register.admin_url
        raise ConfigurationError("No admin url: configure register.adminUrl or bootstrap a cluster")

    def _deployments(self) -> List[str]:
        if self.config.register is not None:
            return list(self.config.register.deployments)
        if self.cluster is not None:
            return list(self.config.default_deployments)
        return []

    async def _register_deployments(self, deployments: List[str]) -> None:
        await self._wait_until_ready(self.client.admin_healthy, self.admin_url(), "admin")

        retry_config = RetryConfig(
            max_attempts=self.config.retry_attempts,
            attempt_timeout=self.config.query_timeout,
            delay=READINESS_RETRY_DELAY
        )
        for uri in deployments:
            await self.error_handler.retry_with_timeout(
                lambda: self.client.register_deployment(self.admin_url(), uri),
                retry_config,
                ErrorCategory.REGISTRATION,
                operation_name=f"register {uri}"
            )
            logger.info(f"Registered deployment {uri}")
        logger.info("Registered deployments")

    async def _wait_until_ready(self, probe, url: str, what: str) -> None:
        async def check():
            if not await probe(url):
                raise ConnectionError(f"{what} {url} is not healthy yet")

        await self.error_handler.retry_with_timeout(
            check,
            RetryConfig(
                max_attempts=self.config.retry_attempts,
                attempt_timeout=self.config.query_timeout,
                delay=READINESS_RETRY_DELAY
            ),
            ErrorCategory.READINESS,
            operation_name=f"waiting for {url}"
        )
        logger.info(f"{what.capitalize()} is ready. {url}")

    def _on_progress(self, progress: VerificationProgress) -> None:
        self.fuzzer_logger.log_verification_progress(progress)

    async def _cleanup(self) -> None:
        cluster = self.cluster
        self.cluster = None
        if cluster is not None and self.config.disable_cleanup:
            logger.info("Cleanup disabled, leaving containers running")
            cluster = None

        logger.info("Cleaning up resources")
        await self.error_handler.cleanup_after_failure(cluster=cluster, chaos_task=self._chaos_task)

        if self._owns_client and self.client is not None:
            await self.client.aclose()

    def _categorize(self, error: Exception) -> ErrorCategory:
        if isinstance(error, InvariantViolation):
            return ErrorCategory.INVARIANT
        if isinstance(error, ConfigurationError):
            return ErrorCategory.CONFIGURATION
        if self.status == TestStatus.VALIDATING:
            return ErrorCategory.VERIFICATION
        return ErrorCategory.DISPATCH

    def result(self) -> ExecutionResult:
        return ExecutionResult(
            run_id=self.run_id,
            seed=self.config.seed,
            status=self.status,
            start_time=self.start_time,
            end_time=self.end_time or time.time(),
            programs_sent=self.driver.sent if self.driver else 0,
            expected_total=self.state_tracker.total(),
            chaos_events=list(self.chaos_coordinator.chaos_history) if self.chaos_coordinator else [],
            last_progress=self.verifier.last_progress if self.verifier else None,
            error_message=self.error_message
        )
