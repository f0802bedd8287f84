"""Utility modules."""

from .cache import MemoryCache
from .health import HealthChecker, HealthCheckResult, HealthStatus
from .logging import setup_logging

__all__ = [
    "setup_logging",
    "MemoryCache",
    "HealthChecker",
    "HealthStatus",
    "HealthCheckResult",
]
