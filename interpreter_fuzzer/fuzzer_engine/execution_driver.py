"""
Execution Driver - Sends generated programs to the ingress in bounded batches
"""
import asyncio
import itertools
import logging
import random
from typing import Iterable, List, Optional, Sequence, Tuple
from ..models import Program
from ..errors import ConfigurationError
from .error_handler import ErrorHandler, ErrorCategory, RetryConfig
from .state_tracker import StateTracker
from ..utils.run_utils import batched

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 256

# Shared by every driver of the process so a key is never handed out twice
_idempotency_keys = itertools.count(1)


def next_idempotency_key() -> str:
    return str(next(_idempotency_keys))


class ExecutionDriver:
    """
    Dispatches (key, program) pairs with at-least-once delivery.

    Every program gets its own idempotency key, so retrying a send any number
    of times has a single logical effect on the receiver.
    """

    def __init__(self, client, state_tracker: StateTracker, ingress_urls: Sequence[str],
                 error_handler: Optional[ErrorHandler] = None,
                 batch_size: int = DEFAULT_BATCH_SIZE,
                 retry_config: Optional[RetryConfig] = None,
                 rng: Optional[random.Random] = None,
                 fuzzer_logger=None):
        if batch_size < 1:
            raise ConfigurationError(f"batch_size must be >= 1, got {batch_size}")
        self.client = client
        self.state_tracker = state_tracker
        self.error_handler = error_handler or ErrorHandler()
        self.batch_size = batch_size
        self.retry_config = retry_config or RetryConfig(attempt_timeout=1.0)
        # Ingress selection is not part of the seeded workload
        self.rng = rng or random.Random()
        self.fuzzer_logger = fuzzer_logger
        self.sent = 0
        self._ingress_urls: Tuple[str, ...] = ()
        self.update_ingress_urls(ingress_urls)

    @property
    def ingress_urls(self) -> Tuple[str, ...]:
        return self._ingress_urls

    def update_ingress_urls(self, urls: Sequence[str]) -> None:
        """Swap the whole endpoint list at once, readers never see a partial list"""
        if not urls:
            raise ConfigurationError("At least one ingress url is required")
        self._ingress_urls = tuple(urls)
        logger.debug(f"Ingress endpoints: {', '.join(self._ingress_urls)}")

    def pick_ingress(self) -> str:
        urls = self._ingress_urls
        return urls[self.rng.randrange(len(urls))]

    async def run(self, test_cases: Iterable[Tuple[int, Program]]) -> int:
        """Send every test case. Returns the number of programs sent."""
        for batch in batched(test_cases, self.batch_size):
            await self.send_batch(batch)

        logger.info(f"Done generating, {self.sent} programs sent")
        return self.sent

    async def send_batch(self, batch: List[Tuple[int, Program]]) -> None:
        """Send a batch concurrently and wait until every send resolved"""
        # The whole batch is in the model before any delivery attempt of it
        pending = []
        for key, program in batch:
            self.state_tracker.update(0, key, program)
            pending.append((key, next_idempotency_key(), program))

        tasks = [
            asyncio.ensure_future(self._send_with_retry(key, idempotency_key, program))
            for key, idempotency_key, program in pending
        ]

        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        self.sent += len(batch)
        logger.info(f"Sent {len(batch)} programs ({self.sent} total)")
        if self.fuzzer_logger is not None:
            self.fuzzer_logger.log_batch_sent(len(batch), self.sent)

    async def _send_with_retry(self, key: int, idempotency_key: str, program: Program) -> None:
        async def send():
            # Re-read the endpoints on every attempt, chaos may have moved them
            return await self.client.send_interpreter(
                ingress_url=self.pick_ingress(),
                interpreter_id=str(key),
                idempotency_key=idempotency_key,
                program=program
            )

        await self.error_handler.retry_with_timeout(
            send,
            self.retry_config,
            ErrorCategory.DISPATCH,
            operation_name=f"send {idempotency_key}"
        )
