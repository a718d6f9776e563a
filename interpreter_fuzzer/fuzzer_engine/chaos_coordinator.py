"""
Chaos Coordinator - Periodic chaos injection running next to the workload
"""
import asyncio
import logging
import random
from typing import Awaitable, Callable, List, Optional
from ..models import ChaosResult, TestConfiguration, TestStatus
from ..interfaces import ICluster
from ..chaos_engine.base import ContainerChaosEngine, ChaosTargetSelector
from .error_handler import ErrorHandler, ErrorContext, ErrorCategory, ErrorSeverity

logger = logging.getLogger(__name__)


class ChaosCoordinator:
    """
    Every `crash_interval` milliseconds picks a random server node and applies
    exactly one action to it:

    - a hard crash wiping its data if `crash_hard` is set,
    - otherwise the next rolling upgrade step if the node has an upgrade mode,
    - otherwise a plain restart.

    Afterwards the ingress endpoints of all server nodes are resolved again and
    handed to `on_ingress_change`, since restarted containers may publish their
    ports elsewhere. The loop stops on its own once the run reaches a terminal
    status.
    """

    def __init__(self, cluster: Optional[ICluster], config: TestConfiguration,
                 status_provider: Callable[[], TestStatus],
                 on_ingress_change: Optional[Callable[[List[str]], None]] = None,
                 rng: Optional[random.Random] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 error_handler: Optional[ErrorHandler] = None,
                 fuzzer_logger=None):
        self.cluster = cluster
        self.config = config
        self.status_provider = status_provider
        self.on_ingress_change = on_ingress_change
        self.target_selector = ChaosTargetSelector(rng)
        self.chaos_engine = ContainerChaosEngine(cluster) if cluster is not None else None
        self.error_handler = error_handler or ErrorHandler()
        self.fuzzer_logger = fuzzer_logger
        self._sleep = sleep
        self.chaos_history: List[ChaosResult] = []

    @property
    def enabled(self) -> bool:
        return self.chaos_engine is not None and bool(self.config.crash_interval)

    async def run(self) -> None:
        if not self.enabled:
            logger.info("Chaos disabled")
            return

        interval = self.config.crash_interval / 1000
        logger.info(f"Injecting chaos every {interval}s into {', '.join(self.config.server_nodes)}")

        while True:
            await self._sleep(interval)
            status = self.status_provider()
            if status.is_terminal:
                logger.info(f"Test is {status.value}, stopping chaos")
                return
            await self.inject_once()

    async def inject_once(self) -> Optional[ChaosResult]:
        """Apply one chaos action and refresh the ingress endpoints"""
        if self.chaos_engine is None:
            return None

        node = self.target_selector.select_target(self.config.server_nodes)
        if node is None:
            return None

        if self.config.crash_hard:
            chaos_result = await self.chaos_engine.inject_hard_restart(node)
        elif node in self.config.rolling_upgrade:
            chaos_result = await self.chaos_engine.inject_rolling_upgrade(node)
        else:
            chaos_result = await self.chaos_engine.inject_restart(node)

        self.chaos_history.append(chaos_result)
        if self.fuzzer_logger is not None:
            self.fuzzer_logger.log_chaos_event(chaos_result)

        if not chaos_result.success:
            self.error_handler.handle_error(ErrorContext(
                category=ErrorCategory.CHAOS_INJECTION,
                severity=ErrorSeverity.MEDIUM,
                message=chaos_result.error_message or f"{chaos_result.chaos_type.value} failed",
                component="chaos",
                node_id=node
            ))

        self._refresh_ingress_urls()
        return chaos_result

    def _refresh_ingress_urls(self) -> None:
        try:
            urls = [
                self.cluster.host_container_url(node, self.config.ingress_port)
                for node in self.config.server_nodes
            ]
        except Exception as e:
            # The driver keeps the previous endpoints and relies on its retries
            self.error_handler.handle_error(ErrorContext(
                category=ErrorCategory.CHAOS_INJECTION,
                severity=ErrorSeverity.MEDIUM,
                message=f"Failed to resolve ingress endpoints: {e}",
                exception=e,
                component="chaos"
            ))
            return

        logger.info(f"Ingress endpoints after chaos: {', '.join(urls)}")
        if self.on_ingress_change is not None:
            self.on_ingress_change(urls)
