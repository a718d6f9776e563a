"""
Tests for error handling and retry mechanisms
"""
import asyncio
import pytest
from unittest.mock import AsyncMock
from interpreter_fuzzer.fuzzer_engine.error_handler import (
    ErrorHandler, ErrorContext, ErrorCategory, ErrorSeverity, RetryConfig
)
from interpreter_fuzzer.errors import (
    AttemptTimeoutError, DispatchError, InvariantViolation, ContainerError
)


class TestErrorHandler:
    """Test error bookkeeping"""

    def test_handle_error_recoverable(self):
        handler = ErrorHandler()
        context = ErrorContext(
            category=ErrorCategory.DISPATCH,
            severity=ErrorSeverity.MEDIUM,
            message="Ingress returned 503"
        )

        assert handler.handle_error(context) is True
        assert handler.error_history == [context]

    def test_handle_error_fatal(self):
        handler = ErrorHandler()
        context = ErrorContext(
            category=ErrorCategory.DISPATCH,
            severity=ErrorSeverity.FATAL,
            message="Ran out of attempts"
        )

        assert handler.handle_error(context) is False

    def test_invariant_never_recoverable(self):
        handler = ErrorHandler()
        context = ErrorContext(
            category=ErrorCategory.INVARIANT,
            severity=ErrorSeverity.LOW,
            message="Tracker out of sync"
        )

        assert handler.handle_error(context) is False

    def test_chaos_failure_recoverable(self):
        """Test failed chaos never decides the outcome of a run"""
        handler = ErrorHandler()
        context = ErrorContext(
            category=ErrorCategory.CHAOS_INJECTION,
            severity=ErrorSeverity.HIGH,
            message="restart failed",
            node_id="n2"
        )

        assert handler.handle_error(context) is True

    def test_error_summary(self):
        handler = ErrorHandler()
        handler.handle_error(ErrorContext(ErrorCategory.DISPATCH, ErrorSeverity.MEDIUM, "first"))
        handler.handle_error(ErrorContext(ErrorCategory.DISPATCH, ErrorSeverity.HIGH, "second"))
        handler.handle_error(ErrorContext(ErrorCategory.VERIFICATION, ErrorSeverity.MEDIUM, "third"))

        summary = handler.get_error_summary()

        assert summary['total_errors'] == 3
        assert summary['by_category'] == {'dispatch': 2, 'verification': 1}
        assert summary['by_severity'] == {'medium': 2, 'high': 1}
        assert [e['message'] for e in summary['recent_errors']] == ["first", "second", "third"]


class TestRetryWithTimeout:
    """Test retries with a per-attempt timeout"""

    @pytest.mark.asyncio
    async def test_success_first_attempt(self, recording_sleep):
        handler = ErrorHandler(sleep=recording_sleep)
        operation = AsyncMock(return_value="ok")

        result = await handler.retry_with_timeout(
            operation, RetryConfig(max_attempts=3, attempt_timeout=1.0, delay=5.0),
            ErrorCategory.DISPATCH, "send"
        )

        assert result == "ok"
        assert operation.await_count == 1
        assert recording_sleep.calls == []

    @pytest.mark.asyncio
    async def test_success_after_failures(self, recording_sleep):
        """Test the fixed delay is slept between attempts"""
        handler = ErrorHandler(sleep=recording_sleep)
        operation = AsyncMock(side_effect=[DispatchError("503"), DispatchError("503"), "ok"])

        result = await handler.retry_with_timeout(
            operation, RetryConfig(max_attempts=5, attempt_timeout=1.0, delay=5.0),
            ErrorCategory.DISPATCH, "send"
        )

        assert result == "ok"
        assert operation.await_count == 3
        assert recording_sleep.calls == [5.0, 5.0]
        assert len(handler.error_history) == 2

    @pytest.mark.asyncio
    async def test_exhaustion_raises_last_error(self, recording_sleep):
        handler = ErrorHandler(sleep=recording_sleep)
        errors = [DispatchError("first"), DispatchError("second"), DispatchError("last")]
        operation = AsyncMock(side_effect=errors)

        with pytest.raises(DispatchError, match="last"):
            await handler.retry_with_timeout(
                operation, RetryConfig(max_attempts=3, attempt_timeout=1.0, delay=1.0),
                ErrorCategory.DISPATCH, "send"
            )

        # No sleep after the final attempt
        assert recording_sleep.calls == [1.0, 1.0]
        assert handler.error_history[-1].severity == ErrorSeverity.HIGH

    @pytest.mark.asyncio
    async def test_attempt_timeout_cancels_operation(self, recording_sleep):
        handler = ErrorHandler(sleep=recording_sleep)
        cancelled = []

        async def hangs():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.append(True)
                raise

        with pytest.raises(AttemptTimeoutError):
            await handler.retry_with_timeout(
                hangs, RetryConfig(max_attempts=2, attempt_timeout=0.01, delay=0.0),
                ErrorCategory.VERIFICATION, "getCounts"
            )

        assert cancelled == [True, True]

    @pytest.mark.asyncio
    async def test_invariant_violation_not_retried(self, recording_sleep):
        handler = ErrorHandler(sleep=recording_sleep)
        operation = AsyncMock(side_effect=InvariantViolation("out of sync"))

        with pytest.raises(InvariantViolation):
            await handler.retry_with_timeout(
                operation, RetryConfig(max_attempts=5, attempt_timeout=1.0, delay=1.0),
                ErrorCategory.DISPATCH, "send"
            )

        assert operation.await_count == 1
        assert recording_sleep.calls == []


class TestCleanupAfterFailure:
    """Test best-effort cleanup"""

    @pytest.mark.asyncio
    async def test_stops_cluster_and_cancels_chaos(self):
        handler = ErrorHandler()
        cluster = AsyncMock()

        async def chaos_loop():
            await asyncio.sleep(10)

        chaos_task = asyncio.ensure_future(chaos_loop())
        await asyncio.sleep(0)

        assert await handler.cleanup_after_failure(cluster=cluster, chaos_task=chaos_task) is True
        assert chaos_task.cancelled()
        cluster.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_failure_recorded(self):
        handler = ErrorHandler()
        cluster = AsyncMock()
        cluster.stop.side_effect = ContainerError("network in use")

        assert await handler.cleanup_after_failure(cluster=cluster) is False
        assert handler.error_history[-1].category == ErrorCategory.RESOURCE_CLEANUP

    @pytest.mark.asyncio
    async def test_nothing_to_clean(self):
        handler = ErrorHandler()
        assert await handler.cleanup_after_failure() is True
