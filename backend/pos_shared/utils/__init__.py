"""
Utilities module: Exceptions, health checks.
"""

from pos_shared.utils.exceptions import (
    AppException,
    NotFoundError,
    ValidationError,
    InsufficientStockError,
    UnsupportedFilterError,
    ConflictError,
    InvalidTransitionError,
    TransactionAbortedError,
    StoreUnavailableError,
)
from pos_shared.utils.health import (
    HealthStatus,
    HealthCheckResult,
    run_with_timeout,
)

__all__ = [
    # exceptions
    "AppException",
    "NotFoundError",
    "ValidationError",
    "InsufficientStockError",
    "UnsupportedFilterError",
    "ConflictError",
    "InvalidTransitionError",
    "TransactionAbortedError",
    "StoreUnavailableError",
    # health
    "HealthStatus",
    "HealthCheckResult",
    "run_with_timeout",
]
