"""
Health monitoring utilities for Inferloop MCP Server.

Provides health checks for the server, the Inferloop Cloud Platform
connection and the result cache.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List

import structlog

logger = structlog.get_logger(__name__)

HEALTHY = "healthy"
DEGRADED = "degraded"
UNHEALTHY = "unhealthy"


@dataclass
class HealthCheckResult:
    """Result of a health check."""

    name: str
    status: str  # "healthy", "unhealthy", "degraded"
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    duration_ms: float = 0.0
    timestamp: float = field(default_factory=time.time)

    @property
    def is_healthy(self) -> bool:
        """Check if result indicates healthy status."""
        return self.status == HEALTHY


@dataclass
class HealthStatus:
    """Overall health status aggregation."""

    status: str
    checks: List[HealthCheckResult]
    timestamp: float = field(default_factory=time.time)

    @property
    def is_healthy(self) -> bool:
        """Check if overall status is healthy."""
        return self.status == HEALTHY

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format."""
        return {
            "status": self.status,
            "timestamp": self.timestamp,
            "checks": [
                {
                    "name": check.name,
                    "status": check.status,
                    "message": check.message,
                    "duration_ms": check.duration_ms,
                    "details": check.details,
                }
                for check in self.checks
            ],
        }


HealthCheckFunc = Callable[[], Awaitable[HealthCheckResult]]


class HealthChecker:
    """
    Health monitoring system for MCP server components.

    Checks run concurrently, each with its own timeout. A failing critical
    check makes the server unhealthy, a failing non-critical one degraded.
    """

    def __init__(self):
        self._checks: Dict[str, HealthCheckFunc] = {}
        self._check_configs: Dict[str, Dict[str, Any]] = {}

    def register_check(
        self,
        name: str,
        check_func: HealthCheckFunc,
        timeout_seconds: float = 5.0,
        critical: bool = True,
    ) -> None:
        """
        Register a health check function.

        Args:
            name: Unique name for the health check
            check_func: Async function that returns HealthCheckResult
            timeout_seconds: Timeout for the check
            critical: Whether this check affects overall health
        """
        self._checks[name] = check_func
        self._check_configs[name] = {
            "timeout_seconds": timeout_seconds,
            "critical": critical,
        }

        logger.debug(
            "Registered health check",
            name=name,
            critical=critical,
            timeout=timeout_seconds,
        )

    def unregister_check(self, name: str) -> None:
        """Unregister a health check."""
        self._checks.pop(name, None)
        self._check_configs.pop(name, None)
        logger.debug("Unregistered health check", name=name)

    async def run_check(self, name: str) -> HealthCheckResult:
        """
        Run a specific health check.

        Args:
            name: Name of the check to run

        Returns:
            Health check result
        """
        if name not in self._checks:
            return HealthCheckResult(
                name=name,
                status=UNHEALTHY,
                message=f"Unknown health check: {name}",
            )

        check_func = self._checks[name]
        config = self._check_configs[name]
        start_time = time.monotonic()

        try:
            result = await asyncio.wait_for(check_func(), timeout=config["timeout_seconds"])
            result.duration_ms = (time.monotonic() - start_time) * 1000

            logger.debug(
                "Health check completed",
                name=name,
                status=result.status,
                duration_ms=result.duration_ms,
            )
            return result

        except asyncio.TimeoutError:
            duration_ms = (time.monotonic() - start_time) * 1000
            logger.warning(
                "Health check timed out",
                name=name,
                timeout=config["timeout_seconds"],
                duration_ms=duration_ms,
            )
            return HealthCheckResult(
                name=name,
                status=UNHEALTHY,
                message=f"Health check timed out after {config['timeout_seconds']}s",
                duration_ms=duration_ms,
            )

        except Exception as e:
            duration_ms = (time.monotonic() - start_time) * 1000
            logger.error(
                "Health check failed",
                name=name,
                error=str(e),
                duration_ms=duration_ms,
                exc_info=True,
            )
            return HealthCheckResult(
                name=name,
                status=UNHEALTHY,
                message=f"Health check failed: {e}",
                duration_ms=duration_ms,
                details={"exception": str(e)},
            )

    async def run_all_checks(self) -> HealthStatus:
        """
        Run all registered health checks.

        Returns:
            Aggregated health status
        """
        if not self._checks:
            return HealthStatus(status=HEALTHY, checks=[])

        names = list(self._checks.keys())
        check_results = await asyncio.gather(*(self.run_check(name) for name in names))

        overall_status = self._determine_overall_status(check_results)

        logger.info(
            "Health checks completed",
            overall_status=overall_status,
            total_checks=len(check_results),
            healthy_checks=sum(1 for r in check_results if r.is_healthy),
        )

        return HealthStatus(status=overall_status, checks=list(check_results))

    def _determine_overall_status(self, results: List[HealthCheckResult]) -> str:
        """Determine overall health status from individual check results."""
        critical_failures = 0
        other_failures = 0

        for result in results:
            if result.is_healthy:
                continue
            config = self._check_configs.get(result.name, {})
            if config.get("critical", True) and result.status == UNHEALTHY:
                critical_failures += 1
            else:
                other_failures += 1

        if critical_failures:
            return UNHEALTHY
        if other_failures:
            return DEGRADED
        return HEALTHY

    def get_registered_checks(self) -> List[str]:
        """Get list of registered health check names."""
        return list(self._checks.keys())


def create_server_health_checks(started_at: float) -> HealthChecker:
    """
    Create the baseline health checker for Inferloop MCP Server.

    Args:
        started_at: Server start time (``time.time()``)
    """
    health_checker = HealthChecker()

    async def server_health() -> HealthCheckResult:
        return HealthCheckResult(
            name="server",
            status=HEALTHY,
            message="MCP server is running",
            details={"uptime_seconds": round(time.time() - started_at, 3)},
        )

    health_checker.register_check("server", server_health, timeout_seconds=1.0, critical=True)
    return health_checker


def create_icp_health_check(icp_client) -> HealthCheckFunc:
    """
    Create health check for the Inferloop Cloud Platform connection.

    The platform is treated as a dependency: losing it degrades the server
    rather than taking it down, since local tools keep working.
    """

    async def icp_connection_health() -> HealthCheckResult:
        # Probe even when disconnected; a successful probe marks the client connected
        try:
            details = await icp_client.health()
        except Exception as e:
            return HealthCheckResult(
                name="icp_connection",
                status=UNHEALTHY,
                message=f"Inferloop Cloud Platform health probe failed: {e}",
                details={"exception": str(e)},
            )

        return HealthCheckResult(
            name="icp_connection",
            status=HEALTHY,
            message="Inferloop Cloud Platform connection is healthy",
            details=details if isinstance(details, dict) else {},
        )

    return icp_connection_health


def create_cache_health_check(cache) -> HealthCheckFunc:
    """Create health check for the result cache."""

    async def cache_health() -> HealthCheckResult:
        stats = await cache.get_stats()
        utilization = stats["active_items"] / stats["max_size"] if stats["max_size"] > 0 else 0

        status = HEALTHY
        message = "Cache system is healthy"
        if utilization > 0.9:
            status = DEGRADED
            message = "Cache utilization is high"

        return HealthCheckResult(
            name="cache",
            status=status,
            message=message,
            details={"utilization": utilization, **stats},
        )

    return cache_health
