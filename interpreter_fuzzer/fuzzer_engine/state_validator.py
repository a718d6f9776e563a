"""
State Validator - Polls the cluster until its counters match the expected state
"""
import asyncio
import time
import logging
from typing import Awaitable, Callable, List, Optional, Sequence
from ..models import Divergence, VerificationProgress, TestStatus
from ..errors import ConvergenceTimeoutError
from ..utils.run_utils import format_duration
from .error_handler import ErrorHandler, ErrorCategory, RetryConfig

logger = logging.getLogger(__name__)


def compute_divergence(expected: Sequence[Sequence[int]], observed: Sequence[Sequence[int]]) -> Divergence:
    """
    Compare two [layer][key] tables.

    count_diff is the number of cells that differ, total_diff the sum of the
    absolute differences and max_diff the largest amount by which an observed
    counter lags behind its expected value. Cells missing from `observed`
    count as 0.
    """
    count_diff = 0
    total_diff = 0
    max_diff = 0
    for layer, expected_row in enumerate(expected):
        observed_row = observed[layer] if layer < len(observed) else ()
        for key, expected_value in enumerate(expected_row):
            observed_value = observed_row[key] if key < len(observed_row) else 0
            d = expected_value - observed_value
            if d != 0:
                count_diff += 1
                total_diff += abs(d)
            if d > max_diff:
                max_diff = d
    return Divergence(count_diff=count_diff, total_diff=total_diff, max_diff=max_diff)


def estimate_progress(divergence: Divergence, expected_total: int, elapsed: float):
    """Returns (percent_done, remaining seconds or None when it cannot be estimated)"""
    if expected_total <= 0:
        return 0.0, None
    percent_done = (expected_total - divergence.total_diff) / expected_total * 100
    if percent_done <= 0:
        return percent_done, None
    return percent_done, elapsed * (100.0 / percent_done) - elapsed


class ConvergenceVerifier:
    """
    Waits for the observed state to catch up with the expected state.

    Lagging counters are progress, not failure: the verifier keeps polling
    until every cell matches. Only an explicit `timeout` bounds the wait.
    """

    def __init__(self, query_counts: Callable[[], Awaitable[List[List[int]]]],
                 expected: List[List[int]],
                 poll_interval: float = 10.0,
                 timeout: Optional[float] = None,
                 error_handler: Optional[ErrorHandler] = None,
                 retry_config: Optional[RetryConfig] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 clock: Callable[[], float] = time.monotonic,
                 on_progress: Optional[Callable[[VerificationProgress], None]] = None):
        self.query_counts = query_counts
        self.expected = [list(row) for row in expected]
        self.expected_total = sum(sum(row) for row in self.expected)
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.error_handler = error_handler or ErrorHandler(sleep=sleep)
        self.retry_config = retry_config or RetryConfig()
        self._sleep = sleep
        self._clock = clock
        self.on_progress = on_progress
        self.last_progress: Optional[VerificationProgress] = None
        self.polls = 0

    async def verify(self) -> TestStatus:
        start = self._clock()
        last_count_diff = len(self.expected[0]) if self.expected else 0
        last_total_diff = self.expected_total

        logger.info(f"Verifying {self.expected_total} expected increments")
        while True:
            await self._sleep(self.poll_interval)

            observed = await self.error_handler.retry_with_timeout(
                self.query_counts,
                self.retry_config,
                ErrorCategory.VERIFICATION,
                operation_name="getCounts"
            )
            self.polls += 1
            divergence = compute_divergence(self.expected, observed)

            if divergence.converged:
                logger.info("Done. Observed state matches the expected state")
                return TestStatus.FINISHED

            elapsed = self._clock() - start
            percent_done, remaining = estimate_progress(divergence, self.expected_total, elapsed)
            progress = VerificationProgress(
                divergence=divergence,
                percent_done=percent_done,
                elapsed=elapsed,
                remaining=remaining,
                count_diff_change=divergence.count_diff - last_count_diff,
                total_diff_change=divergence.total_diff - last_total_diff,
                timestamp=time.time()
            )
            self.last_progress = progress
            self._log_progress(progress)
            if self.on_progress is not None:
                self.on_progress(progress)

            last_count_diff = divergence.count_diff
            last_total_diff = divergence.total_diff

            if self.timeout is not None and elapsed > self.timeout:
                raise ConvergenceTimeoutError(
                    f"State did not converge within {format_duration(self.timeout)}: "
                    f"{divergence.count_diff} keys differ by {divergence.total_diff} in total"
                )

    def _log_progress(self, progress: VerificationProgress) -> None:
        divergence = progress.divergence
        remaining = format_duration(progress.remaining) if progress.remaining is not None else "N/A"
        logger.info(
            f"Verification: keys differ: {divergence.count_diff}, "
            f"total difference: {divergence.total_diff}, "
            f"settled change: {progress.count_diff_change}, "
            f"total change: {progress.total_diff_change}, "
            f"max difference: {divergence.max_diff}"
        )
        logger.info(
            f"Percent done: {progress.percent_done:.2f}%, "
            f"time elapsed: {format_duration(progress.elapsed)}, "
            f"estimated time remaining: {remaining}"
        )
