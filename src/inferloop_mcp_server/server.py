"""
Main Inferloop MCP Server implementation.

Coordinates all components to expose the Inferloop Cloud Platform to MCP
hosts over stdio or HTTP.
"""

import asyncio
import signal
import sys
import time
from typing import Any, Dict, List, Optional

import structlog

from .client.icp_client import ICPClient, ICPClientError
from .config.settings import IMCPConfig
from .context.manager import ContextManager
from .protocol.handlers import MCPHandler
from .protocol.http import HttpTransport
from .protocol.schemas import MCPInternalError, Resource, ServerInfo
from .protocol.transport import StdioTransport
from .resources.registry import ResourceNotFoundError, ResourceRegistry
from .tools.base import BaseTool
from .tools.cancel_job import CancelJobTool
from .tools.generate_synthetic_data import GenerateSyntheticDataTool
from .tools.get_job_status import GetJobStatusTool
from .tools.list_datasets import ListDatasetsTool
from .tools.list_generators import ListGeneratorsTool
from .tools.registry import ToolRegistry
from .tools.validate_dataset import ValidateDatasetTool
from .utils.cache import MemoryCache
from .utils.health import (
    create_cache_health_check,
    create_icp_health_check,
    create_server_health_checks,
)
from .validation.gatf import GATFValidator
from .workflow.engine import WorkflowEngine

logger = structlog.get_logger(__name__)

RUNS_URI_PREFIX = "imcp://runs/"
DATASETS_URI_PREFIX = "icp://datasets/"
MAINTENANCE_INTERVAL_SECONDS = 60.0

INSTRUCTIONS = (
    "Tools for the Inferloop Cloud Platform: discover generators, generate synthetic "
    "datasets, track generation jobs and validate datasets against GATF rules. "
    "Multi-step workflows can run as pipelines via pipeline/execute."
)


class InferloopMCPServer:
    """
    Main MCP server for Inferloop Cloud Platform integration.

    Builds the cache, context manager, ICP client, tool registry, workflow
    engine, resource registry and health checks, and runs them behind the
    stdio or HTTP transport.
    """

    def __init__(self, config: IMCPConfig):
        """
        Initialize the MCP server.

        Args:
            config: Server configuration

        Raises:
            PipelineError: If a configured pipeline is invalid
        """
        self.config = config
        self._running = False
        self._started_at = time.time()
        self._shutdown_event: Optional[asyncio.Event] = None
        self._maintenance_task: Optional[asyncio.Task] = None

        self.cache: Optional[MemoryCache] = None
        if config.server.cache_enabled:
            self.cache = MemoryCache(
                default_ttl_seconds=config.server.cache_ttl_seconds,
                max_size=config.server.cache_max_size,
            )

        self.context_manager = ContextManager(
            session_ttl_seconds=config.sessions.ttl_seconds,
            max_sessions=config.sessions.max_sessions,
            cache=self.cache,
        )
        self.icp_client = ICPClient(config.icp)
        self.validator = GATFValidator(
            max_null_ratio=config.validation.max_null_ratio,
            max_duplicate_ratio=config.validation.max_duplicate_ratio,
            min_rows=config.validation.min_rows,
            pass_threshold=config.validation.pass_threshold,
        )

        self.tool_registry = ToolRegistry(
            max_concurrent_calls=config.server.max_concurrent_requests,
            call_timeout_seconds=config.server.request_timeout_ms / 1000,
            context_manager=self.context_manager,
        )
        self._register_tools()

        self.workflow_engine: Optional[WorkflowEngine] = None
        if config.workflow.enabled:
            self.workflow_engine = WorkflowEngine(
                self.tool_registry,
                max_concurrent_pipelines=config.workflow.max_concurrent_pipelines,
                max_steps=config.workflow.max_steps,
                step_timeout_seconds=config.workflow.step_timeout_seconds,
                max_runs=config.workflow.max_runs,
            )
            for pipeline in config.pipelines:
                self.workflow_engine.register_pipeline(pipeline)

        self.resource_registry = ResourceRegistry()
        self._register_resources()

        self.health_checker = create_server_health_checks(self._started_at)
        self._setup_health_checks()

        self.mcp_handler = MCPHandler(
            ServerInfo(name="inferloop-mcp-server", version=config.version),
            self.tool_registry,
            self.resource_registry,
            self.context_manager,
            workflow_engine=self.workflow_engine,
            instructions=INSTRUCTIONS,
        )
        self.transport = StdioTransport()
        self.http_transport: Optional[HttpTransport] = None

    async def start(self) -> None:
        """Start the MCP server; an unreachable platform leaves it degraded."""
        if self._running:
            return

        logger.info("Starting Inferloop MCP Server")

        try:
            await self.icp_client.connect()
        except ICPClientError as e:
            logger.warning(
                "Inferloop Cloud Platform unavailable, continuing in degraded mode",
                error=e.message,
                api_url=self.config.icp.api_url,
            )

        self.transport.set_message_handler(self.mcp_handler.handle_request)
        self.transport.set_notification_handler(self.mcp_handler.handle_notification)

        self._maintenance_task = asyncio.create_task(self._maintenance_loop())
        self._running = True

        logger.info(
            "Server started successfully",
            tools_registered=len(self.tool_registry),
            icp_connected=self.icp_client.connected,
            cache_enabled=self.cache is not None,
            workflow_enabled=self.workflow_engine is not None,
            health_checks=len(self.health_checker.get_registered_checks()),
        )

    async def stop(self) -> None:
        """Stop the MCP server."""
        if not self._running:
            return

        logger.info("Stopping Inferloop MCP Server")
        self._running = False
        if self._shutdown_event is not None:
            self._shutdown_event.set()

        if self._maintenance_task is not None:
            self._maintenance_task.cancel()
            try:
                await self._maintenance_task
            except asyncio.CancelledError:
                pass
            self._maintenance_task = None

        await self.transport.stop()
        if self.http_transport is not None:
            await self.http_transport.stop()
            self.http_transport = None

        if self.workflow_engine is not None:
            await self.workflow_engine.shutdown()

        await self.icp_client.disconnect()
        logger.info("Server stopped")

    def request_shutdown(self) -> None:
        """Ask a running ``run_stdio``/``run_http`` loop to exit."""
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    async def run_stdio(self) -> None:
        """Serve MCP over stdin/stdout until EOF or a shutdown signal."""
        self._shutdown_event = asyncio.Event()
        self._setup_signal_handlers()

        try:
            await self.start()

            transport_task = asyncio.create_task(self.transport.start())
            shutdown_task = asyncio.create_task(self._shutdown_event.wait())
            done, pending = await asyncio.wait(
                {transport_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED
            )

            for task in pending:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

            if transport_task in done:
                # Surface transport failures; EOF returns normally
                transport_task.result()

        except Exception as e:
            logger.error("Server error", error=str(e), exc_info=True)
            raise
        finally:
            await self.stop()

    async def run_http(self, host: Optional[str] = None, port: Optional[int] = None) -> None:
        """Serve MCP over HTTP and WebSocket until a shutdown signal."""
        self._shutdown_event = asyncio.Event()
        self._setup_signal_handlers()

        try:
            await self.start()

            self.http_transport = HttpTransport(
                self.mcp_handler,
                self.context_manager,
                self.tool_registry,
                health_checker=self.health_checker,
                host=host or self.config.server.host,
                port=port if port is not None else self.config.server.port,
                api_keys=self.config.server.api_keys,
            )
            await self.http_transport.start()
            await self._shutdown_event.wait()

        except Exception as e:
            logger.error("Server error", error=str(e), exc_info=True)
            raise
        finally:
            await self.stop()

    def _register_tools(self) -> None:
        """Register every enabled tool."""
        tools_config = self.config.tools
        candidates: List[BaseTool] = []

        if tools_config.list_generators.enabled:
            candidates.append(
                ListGeneratorsTool(self.icp_client, tools_config.list_generators.model_dump())
            )
        if tools_config.generate_synthetic_data.enabled:
            candidates.append(
                GenerateSyntheticDataTool(
                    self.icp_client, tools_config.generate_synthetic_data.model_dump()
                )
            )
        if tools_config.get_job_status.enabled:
            candidates.append(
                GetJobStatusTool(self.icp_client, tools_config.get_job_status.model_dump())
            )
        if tools_config.cancel_job.enabled:
            candidates.append(CancelJobTool(self.icp_client, tools_config.cancel_job.model_dump()))
        if tools_config.list_datasets.enabled:
            candidates.append(
                ListDatasetsTool(self.icp_client, tools_config.list_datasets.model_dump())
            )
        if tools_config.validate_dataset.enabled:
            validate_config = {
                **tools_config.validate_dataset.model_dump(),
                "default_sample_size": self.config.validation.default_sample_size,
                "max_sample_size": self.config.validation.max_sample_size,
            }
            candidates.append(
                ValidateDatasetTool(self.icp_client, validate_config, validator=self.validator)
            )

        for tool in candidates:
            self.tool_registry.register(tool)

        logger.info(
            "Tools registered successfully",
            enabled_tools=self.tool_registry.names,
            total_tools=len(self.tool_registry),
        )

    def _register_resources(self) -> None:
        self.resource_registry.register(
            Resource(
                uri="icp://generators",
                name="ICP generators",
                description="Synthetic data generators available on the platform",
            ),
            self._read_generators,
        )
        self.resource_registry.register_provider(
            DATASETS_URI_PREFIX, self._list_dataset_resources, self._read_dataset
        )
        self.resource_registry.register(
            Resource(
                uri="imcp://health",
                name="Server health",
                description="Health report of the MCP server and its dependencies",
            ),
            self.health_check,
        )

        if self.workflow_engine is not None:
            self.resource_registry.register(
                Resource(
                    uri="imcp://pipelines",
                    name="Registered pipelines",
                    description="Pipeline definitions available to pipeline/execute",
                ),
                self._read_pipelines,
            )
            self.resource_registry.register_provider(
                RUNS_URI_PREFIX, self._list_run_resources, self._read_run
            )

    async def _read_generators(self) -> Dict[str, Any]:
        try:
            generators = await self.icp_client.list_generators()
        except ICPClientError as e:
            raise MCPInternalError(f"Failed to list generators: {e.message}")
        return {"generators": generators}

    async def _list_dataset_resources(self) -> List[Resource]:
        if not self.icp_client.connected:
            return []
        datasets = await self.icp_client.list_datasets(
            limit=self.config.tools.list_datasets.default_limit
        )
        return [
            Resource(
                uri=f"{DATASETS_URI_PREFIX}{dataset['id']}",
                name=f"Dataset {dataset.get('name') or dataset['id']}",
                description="Dataset metadata from the Inferloop Cloud Platform",
            )
            for dataset in datasets
            if dataset.get("id")
        ]

    async def _read_dataset(self, uri: str) -> Dict[str, Any]:
        try:
            return await self.icp_client.get_dataset(uri[len(DATASETS_URI_PREFIX):])
        except ICPClientError as e:
            if e.status == 404:
                raise ResourceNotFoundError(uri)
            raise MCPInternalError(f"Failed to read dataset: {e.message}")

    async def _read_pipelines(self) -> Dict[str, Any]:
        return {"pipelines": [p.to_dict() for p in self.workflow_engine.list_pipelines()]}

    async def _list_run_resources(self) -> List[Resource]:
        return [
            Resource(
                uri=f"{RUNS_URI_PREFIX}{run.run_id}",
                name=f"Pipeline run {run.pipeline.name}",
                description=f"Run {run.run_id} ({run.status.value})",
            )
            for run in self.workflow_engine.list_runs()
        ]

    async def _read_run(self, uri: str) -> Dict[str, Any]:
        run = self.workflow_engine.get_run(uri[len(RUNS_URI_PREFIX):])
        if run is None:
            raise ResourceNotFoundError(uri)
        return run.to_dict()

    def _setup_health_checks(self) -> None:
        """Set up health monitoring checks."""
        # Losing the platform degrades the server instead of failing it
        self.health_checker.register_check(
            "icp_connection",
            create_icp_health_check(self.icp_client),
            timeout_seconds=10.0,
            critical=False,
        )

        if self.cache is not None:
            self.health_checker.register_check(
                "cache",
                create_cache_health_check(self.cache),
                timeout_seconds=2.0,
                critical=False,
            )

        logger.debug(
            "Health checks configured",
            registered_checks=self.health_checker.get_registered_checks(),
        )

    def _setup_signal_handlers(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        if sys.platform == "win32":
            return

        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, self._on_signal, signum)

    def _on_signal(self, signum: int) -> None:
        logger.info("Received signal, initiating shutdown", signal=signum)
        self.request_shutdown()

    async def _maintenance_loop(self) -> None:
        """Periodically reconnect to the platform and drop expired sessions and cache entries."""
        while True:
            await asyncio.sleep(MAINTENANCE_INTERVAL_SECONDS)
            await self._reconnect_icp()
            self.context_manager.cleanup_expired()
            if self.cache is not None:
                await self.cache.cleanup_expired()

    async def _reconnect_icp(self) -> None:
        if self.icp_client.connected:
            return
        try:
            await self.icp_client.connect()
        except ICPClientError as e:
            logger.debug("Inferloop Cloud Platform still unavailable", error=e.message)

    @property
    def running(self) -> bool:
        """Check if server is running."""
        return self._running

    async def health_check(self) -> Dict[str, Any]:
        """
        Perform comprehensive health check of server components.

        Returns:
            Health status information
        """
        health_status = await self.health_checker.run_all_checks()

        status: Dict[str, Any] = {
            "server_running": self._running,
            "icp_connected": self.icp_client.connected,
            "tools_registered": len(self.tool_registry),
            "enabled_tools": self.tool_registry.names,
            "tool_stats": self.tool_registry.get_stats(),
            "context": await self.context_manager.get_stats(),
            "cache_enabled": self.cache is not None,
        }

        if self.workflow_engine is not None:
            status["workflow_stats"] = self.workflow_engine.get_stats()

        return {**status, "health_status": health_status.to_dict()}
