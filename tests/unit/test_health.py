"""
Unit tests for health monitoring.
"""

import asyncio
import time
from unittest.mock import AsyncMock

from inferloop_mcp_server.utils.cache import MemoryCache
from inferloop_mcp_server.utils.health import (
    DEGRADED,
    HEALTHY,
    UNHEALTHY,
    HealthChecker,
    HealthCheckResult,
    create_cache_health_check,
    create_icp_health_check,
    create_server_health_checks,
)


def static_check(name, status):
    async def check():
        return HealthCheckResult(name=name, status=status, message=status)

    return check


class TestHealthChecker:
    async def test_no_checks_is_healthy(self):
        status = await HealthChecker().run_all_checks()

        assert status.is_healthy
        assert status.to_dict()["checks"] == []

    async def test_critical_failure_is_unhealthy(self):
        checker = HealthChecker()
        checker.register_check("ok", static_check("ok", HEALTHY))
        checker.register_check("db", static_check("db", UNHEALTHY))

        status = await checker.run_all_checks()

        assert status.status == UNHEALTHY

    async def test_non_critical_failure_is_degraded(self):
        checker = HealthChecker()
        checker.register_check("ok", static_check("ok", HEALTHY))
        checker.register_check("icp", static_check("icp", UNHEALTHY), critical=False)

        status = await checker.run_all_checks()

        assert status.status == DEGRADED

    async def test_timeout(self):
        async def hang():
            await asyncio.sleep(1)

        checker = HealthChecker()
        checker.register_check("hang", hang, timeout_seconds=0.01)

        result = await checker.run_check("hang")

        assert result.status == UNHEALTHY
        assert "timed out" in result.message

    async def test_exception_is_unhealthy(self):
        async def broken():
            raise RuntimeError("boom")

        checker = HealthChecker()
        checker.register_check("broken", broken)

        result = await checker.run_check("broken")

        assert result.status == UNHEALTHY
        assert result.details == {"exception": "boom"}

    async def test_unknown_check(self):
        result = await HealthChecker().run_check("missing")

        assert result.status == UNHEALTHY

    def test_unregister(self):
        checker = create_server_health_checks(time.time())
        assert checker.get_registered_checks() == ["server"]

        checker.unregister_check("server")

        assert checker.get_registered_checks() == []


class TestComponentChecks:
    async def test_server_check_reports_uptime(self):
        checker = create_server_health_checks(time.time() - 5)

        result = await checker.run_check("server")

        assert result.is_healthy
        assert result.details["uptime_seconds"] >= 5

    async def test_icp_disconnected_still_checks_platform(self, mock_icp_client):
        mock_icp_client.connected = False

        result = await create_icp_health_check(mock_icp_client)()

        assert result.is_healthy
        mock_icp_client.health.assert_awaited_once()

    async def test_icp_probe(self, mock_icp_client):
        result = await create_icp_health_check(mock_icp_client)()

        assert result.is_healthy
        assert result.details == {"status": "ok"}

    async def test_icp_probe_failure(self, mock_icp_client):
        mock_icp_client.health = AsyncMock(side_effect=ConnectionError("refused"))

        result = await create_icp_health_check(mock_icp_client)()

        assert result.status == UNHEALTHY
        assert "refused" in result.message

    async def test_cache_utilization(self):
        cache = MemoryCache(max_size=10)
        check = create_cache_health_check(cache)

        assert (await check()).status == HEALTHY

        for i in range(10):
            await cache.set("op", i, n=i)

        result = await check()
        assert result.status == DEGRADED
        assert result.details["utilization"] == 1.0
