"""
Error Handler - Error taxonomy and retry mechanisms

Centralized error bookkeeping, retry with a per-attempt timeout and cleanup
procedures for failed runs.
"""
import asyncio
import logging
from typing import Optional, Callable, Any, Awaitable, Dict, List
from enum import Enum
from dataclasses import dataclass
from ..errors import FuzzerError, InvariantViolation, AttemptTimeoutError

logger = logging.getLogger(__name__)


class ErrorSeverity(Enum):
    """Severity levels for errors"""
    LOW = "low"  # Non-critical, can continue
    MEDIUM = "medium"  # Retried
    HIGH = "high"  # Retries exhausted
    FATAL = "fatal"  # Unrecoverable, must abort


class ErrorCategory(Enum):
    """Categories of errors for targeted handling"""
    CLUSTER_STARTUP = "cluster_startup"
    READINESS = "readiness"
    REGISTRATION = "registration"
    DISPATCH = "dispatch"
    CHAOS_INJECTION = "chaos_injection"
    VERIFICATION = "verification"
    RESOURCE_CLEANUP = "resource_cleanup"
    INVARIANT = "invariant"
    CONFIGURATION = "configuration"


@dataclass
class ErrorContext:
    """Context information for an error"""
    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    exception: Optional[BaseException] = None
    component: Optional[str] = None
    node_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


@dataclass
class RetryConfig:
    """Configuration for retry behavior"""
    max_attempts: int = 360
    attempt_timeout: float = 10.0
    delay: float = 10.0


class ErrorHandler:
    """
    Centralized error handling for the Interpreter Fuzzer.

    Provides:
    - Retry with a fixed delay, racing every attempt against a timeout
    - Error categorization and severity assessment
    - Best-effort cleanup for failed runs
    """

    def __init__(self, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.error_history: List[ErrorContext] = []
        self._sleep = sleep

    def handle_error(self, error_context: ErrorContext) -> bool:
        """Record an error. Returns True if the run can continue."""
        self._log_error(error_context)
        self.error_history.append(error_context)

        if error_context.severity == ErrorSeverity.FATAL:
            return False
        if error_context.category in (ErrorCategory.INVARIANT, ErrorCategory.CONFIGURATION):
            return False

        # Chaos failures and cleanup problems never decide the outcome of a run
        if error_context.category in (ErrorCategory.CHAOS_INJECTION, ErrorCategory.RESOURCE_CLEANUP):
            return True

        return error_context.severity in (ErrorSeverity.LOW, ErrorSeverity.MEDIUM)

    async def retry_with_timeout(
        self,
        operation: Callable[[], Awaitable[Any]],
        config: RetryConfig,
        error_category: ErrorCategory,
        operation_name: str = "operation"
    ) -> Any:
        """
        Run `operation` until it succeeds, at most `config.max_attempts` times.

        Each attempt races against `config.attempt_timeout`; the attempt that
        loses is cancelled. Raises the last error once all attempts failed.
        """
        last_exception: Optional[BaseException] = None

        for attempt in range(config.max_attempts):
            try:
                return await asyncio.wait_for(operation(), timeout=config.attempt_timeout)
            except asyncio.TimeoutError:
                last_exception = AttemptTimeoutError(
                    f"{operation_name} timed out after {config.attempt_timeout}s"
                )
            except InvariantViolation:
                raise
            except Exception as e:
                last_exception = e

            logger.warning(f"retrying {operation_name} (attempt {attempt + 1}/{config.max_attempts}): {last_exception}")
            self.error_history.append(ErrorContext(
                category=error_category,
                severity=ErrorSeverity.MEDIUM if attempt < config.max_attempts - 1 else ErrorSeverity.HIGH,
                message=f"{operation_name} failed: {last_exception}",
                exception=last_exception,
                metadata={'attempt': attempt + 1, 'max_attempts': config.max_attempts}
            ))

            if attempt < config.max_attempts - 1:
                await self._sleep(config.delay)

        logger.error(f"{operation_name} failed after {config.max_attempts} attempts")
        if last_exception is None:
            raise FuzzerError(f"{operation_name} was attempted 0 times")
        raise last_exception

    async def cleanup_after_failure(self, cluster=None, chaos_task: Optional[asyncio.Task] = None) -> bool:
        """Best-effort cleanup. Never raises."""
        cleanup_success = True

        if chaos_task is not None and not chaos_task.done():
            chaos_task.cancel()
            try:
                await chaos_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"Chaos loop ended with an error: {e}")

        if cluster is not None:
            try:
                logger.info("Cleaning up containers")
                await cluster.stop()
            except Exception as e:
                cleanup_success = False
                self.handle_error(ErrorContext(
                    category=ErrorCategory.RESOURCE_CLEANUP,
                    severity=ErrorSeverity.MEDIUM,
                    message=f"Failed to stop cluster: {e}",
                    exception=e
                ))

        if cleanup_success:
            logger.info("Cleanup completed successfully")
        else:
            logger.warning("Cleanup completed with errors")

        return cleanup_success

    def _log_error(self, error_context: ErrorContext):
        """Log error with appropriate level based on severity"""
        log_message = f"[{error_context.category.value}] {error_context.message}"

        if error_context.component:
            log_message = f"[{error_context.component}] {log_message}"

        if error_context.node_id:
            log_message += f" (node: {error_context.node_id})"

        if error_context.severity == ErrorSeverity.FATAL:
            logger.critical(log_message)
        elif error_context.severity == ErrorSeverity.HIGH:
            logger.error(log_message)
        elif error_context.severity == ErrorSeverity.MEDIUM:
            logger.warning(log_message)
        else:
            logger.info(log_message)

    def get_error_summary(self) -> Dict[str, Any]:
        """Get summary of all errors encountered"""
        errors_by_category: Dict[str, int] = {}
        errors_by_severity: Dict[str, int] = {}

        for error in self.error_history:
            category = error.category.value
            errors_by_category[category] = errors_by_category.get(category, 0) + 1

            severity = error.severity.value
            errors_by_severity[severity] = errors_by_severity.get(severity, 0) + 1

        return {
            'total_errors': len(self.error_history),
            'by_category': errors_by_category,
            'by_severity': errors_by_severity,
            'recent_errors': [
                {
                    'category': e.category.value,
                    'severity': e.severity.value,
                    'message': e.message
                }
                for e in self.error_history[-10:]
            ]
        }
