"""
Exception hierarchy shared by all components
"""
from typing import Optional


class FuzzerError(Exception):
    """Base class for all fuzzer errors"""


class ConfigurationError(FuzzerError):
    """Missing or invalid configuration"""


class InvariantViolation(FuzzerError):
    """Generator, model or status machine got out of sync. Never retried."""


class DispatchError(FuzzerError):
    """Ingress did not accept a program"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RegistrationError(FuzzerError):
    """Admin API refused a deployment registration"""


class QueryError(FuzzerError):
    """Admin query failed or returned an unexpected payload"""


class AttemptTimeoutError(FuzzerError):
    """A single attempt did not complete within its timeout"""


class ContainerError(FuzzerError):
    """Container infrastructure failure"""


class ConvergenceTimeoutError(FuzzerError):
    """Observed state did not converge within the configured bound"""
