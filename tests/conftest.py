"""
Pytest configuration and fixtures for Inferloop MCP Server tests.
"""

import asyncio
from typing import Any, Dict

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer, unused_port
from unittest.mock import AsyncMock

from inferloop_mcp_server.client.icp_client import ICPClient
from inferloop_mcp_server.config.settings import ICPConfig, IMCPConfig, ServerConfig
from inferloop_mcp_server.context.manager import ContextManager
from inferloop_mcp_server.protocol.handlers import MCPHandler
from inferloop_mcp_server.protocol.schemas import ServerInfo, Tool
from inferloop_mcp_server.resources.registry import ResourceRegistry
from inferloop_mcp_server.tools.base import BaseTool, ToolError, ToolResult
from inferloop_mcp_server.tools.registry import ToolRegistry
from inferloop_mcp_server.utils.cache import MemoryCache
from inferloop_mcp_server.workflow.engine import WorkflowEngine


GENERATORS = [
    {"name": "tabular", "description": "Tabular data via CTGAN", "data_types": ["tabular"]},
    {"name": "timeseries", "description": "Time series via DoppelGANger"},
]


class EchoTool(BaseTool):
    """Returns its message; fails on demand."""

    name = "echo"
    description = "Echo a message back"

    def __init__(self):
        super().__init__()
        self.calls = 0

    def get_schema(self) -> Tool:
        return self._create_schema(
            parameters={
                "message": self._create_parameter("string", "Message to echo"),
                "count": self._create_parameter("integer", "Repeat count", minimum=1, maximum=5),
                "fail": self._create_parameter("boolean", "Raise a tool error"),
            },
            required=["message"],
        )

    async def execute(self, arguments: Dict[str, Any]) -> ToolResult:
        self.calls += 1
        if arguments.get("fail"):
            raise ToolError("Echo refused", code="echo_refused")
        message = arguments["message"] * arguments.get("count", 1)
        return ToolResult.success(text=message, data={"message": message, "length": len(message)})


class CachedEchoTool(EchoTool):
    name = "cached_echo"
    cacheable = True


class SleepyTool(BaseTool):
    """Sleeps far longer than any test waits."""

    name = "sleepy"
    description = "Sleep for a long time"

    def __init__(self):
        super().__init__()
        self.started = asyncio.Event()

    def get_schema(self) -> Tool:
        return self._create_schema(parameters={}, required=[])

    async def execute(self, arguments: Dict[str, Any]) -> ToolResult:
        self.started.set()
        await asyncio.sleep(60)
        return ToolResult.success("awake")


@pytest.fixture
def icp_config():
    return ICPConfig(
        api_url="http://icp.test",
        api_key="test-api-key",
        timeout_ms=5000,
        max_retries=1,
        retry_base_delay_seconds=0,
        poll_interval_seconds=0.01,
        job_timeout_seconds=5,
    )


@pytest.fixture
def test_config(icp_config):
    """Create a test configuration."""
    return IMCPConfig(
        version="0.1.0-test",
        icp=icp_config,
        server=ServerConfig(log_level="DEBUG", max_concurrent_requests=5, cache_enabled=True),
    )


@pytest.fixture
def mock_icp_client(icp_config):
    """Create a mock ICP client."""
    client = AsyncMock(spec=ICPClient)
    client.config = icp_config
    client.connected = True

    client.health.return_value = {"status": "ok"}
    client.list_generators.return_value = list(GENERATORS)
    client.create_generation_job.return_value = {
        "id": "job-1",
        "status": "queued",
        "generator": "tabular",
        "num_rows": 100,
    }
    client.get_job.return_value = {
        "id": "job-1",
        "status": "running",
        "progress": 40,
    }
    client.wait_for_job.return_value = {
        "id": "job-1",
        "status": "completed",
        "dataset_id": "ds-1",
    }
    client.cancel_job.return_value = {"id": "job-1", "status": "cancelled"}
    client.list_datasets.return_value = [
        {"id": "ds-1", "name": "customers", "row_count": 100},
        {"id": "ds-2", "name": "orders", "row_count": 2500},
    ]
    client.get_dataset_sample.return_value = [
        {"id": 1, "age": 34, "plan": "pro"},
        {"id": 2, "age": 51, "plan": "free"},
        {"id": 3, "age": 27, "plan": "pro"},
    ]

    return client


@pytest.fixture
def context_manager():
    return ContextManager(session_ttl_seconds=60, max_sessions=10, cache=MemoryCache())


@pytest.fixture
def echo_tool():
    return EchoTool()


@pytest.fixture
def tool_registry(context_manager, echo_tool):
    registry = ToolRegistry(
        max_concurrent_calls=4, call_timeout_seconds=2.0, context_manager=context_manager
    )
    registry.register(echo_tool)
    registry.register(CachedEchoTool())
    return registry


@pytest.fixture
def sleepy_tool(tool_registry):
    tool = SleepyTool()
    tool_registry.register(tool)
    return tool


@pytest.fixture
def workflow_engine(tool_registry):
    return WorkflowEngine(tool_registry, max_concurrent_pipelines=2, max_steps=5, max_runs=10)


@pytest.fixture
def handler(tool_registry, context_manager, workflow_engine):
    """Create MCP handler instance."""
    return MCPHandler(
        ServerInfo(version="0.1.0-test"),
        tool_registry,
        ResourceRegistry(),
        context_manager,
        workflow_engine=workflow_engine,
    )


class FakeICP:
    """In-memory Inferloop Cloud Platform served by aiohttp."""

    def __init__(self):
        self.jobs: Dict[str, Dict[str, Any]] = {}
        self.requests = []
        self.fail_next = 0
        self.polls_until_complete = 1

    def app(self) -> web.Application:
        app = web.Application(middlewares=[self._record])
        app.router.add_get("/health", self.health)
        app.router.add_get("/api/v1/generators", self.generators)
        app.router.add_post("/api/v1/jobs", self.create_job)
        app.router.add_get("/api/v1/jobs/{job_id}", self.get_job)
        app.router.add_post("/api/v1/jobs/{job_id}/cancel", self.cancel_job)
        app.router.add_get("/api/v1/datasets", self.datasets)
        app.router.add_get("/api/v1/datasets/{dataset_id}", self.dataset)
        app.router.add_get("/api/v1/datasets/{dataset_id}/sample", self.sample)
        return app

    @web.middleware
    async def _record(self, request, handler):
        self.requests.append((request.method, request.path, dict(request.headers)))
        if self.fail_next > 0:
            self.fail_next -= 1
            return web.json_response({"error": "temporarily unavailable"}, status=503)
        return await handler(request)

    async def health(self, request):
        return web.json_response({"status": "ok"})

    async def generators(self, request):
        return web.json_response({"generators": GENERATORS})

    async def create_job(self, request):
        body = await request.json()
        if body.get("generator") not in {g["name"] for g in GENERATORS}:
            return web.json_response({"error": "unknown generator"}, status=400)
        job_id = f"job-{len(self.jobs) + 1}"
        self.jobs[job_id] = {"id": job_id, "status": "queued", "polls": 0, **body}
        return web.json_response(self.jobs[job_id], status=201)

    async def get_job(self, request):
        job = self.jobs.get(request.match_info["job_id"])
        if job is None:
            return web.json_response({"error": "job not found"}, status=404)
        job["polls"] += 1
        if job["status"] == "queued" and job["polls"] >= self.polls_until_complete:
            job["status"] = "completed"
            job["dataset_id"] = f"ds-{job['id']}"
        return web.json_response(job)

    async def cancel_job(self, request):
        job = self.jobs.get(request.match_info["job_id"])
        if job is None:
            return web.json_response({"error": "job not found"}, status=404)
        job["status"] = "cancelled"
        return web.json_response(job)

    async def datasets(self, request):
        limit = int(request.query.get("limit", 20))
        datasets = [{"id": f"ds-{i}", "name": f"dataset {i}"} for i in range(1, 4)]
        return web.json_response({"datasets": datasets[:limit]})

    async def dataset(self, request):
        dataset_id = request.match_info["dataset_id"]
        if dataset_id not in {"ds-1", "ds-2", "ds-3"}:
            return web.json_response({"error": "dataset not found"}, status=404)
        return web.json_response(
            {"id": dataset_id, "name": f"dataset {dataset_id[3:]}", "row_count": 5}
        )

    async def sample(self, request):
        limit = int(request.query.get("limit", 1000))
        rows = [{"id": i, "value": i * 10} for i in range(1, 6)]
        return web.json_response({"rows": rows[:limit]})


@pytest.fixture
async def fake_icp():
    """Run a fake ICP backend and yield (state, base_url)."""
    state = FakeICP()
    server = TestServer(state.app())
    await server.start_server()
    try:
        yield state, f"http://{server.host}:{server.port}"
    finally:
        await server.close()


@pytest.fixture
async def delayed_fake_icp():
    """Reserve a port for a fake ICP backend that the test starts on demand."""
    state = FakeICP()
    server = TestServer(state.app(), port=unused_port())
    try:
        yield state, f"http://{server.host}:{server.port}", server.start_server
    finally:
        await server.close()
