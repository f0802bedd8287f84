"""
MCP Protocol message handlers.

Implements the core logic for handling MCP protocol messages,
routing them to the tool registry, resource registry and workflow
engine, and managing per-session protocol state.
"""

import asyncio
import json
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple, Union

import structlog
from pydantic import ValidationError

from ..context.manager import ContextManager, Session
from ..resources.registry import ResourceNotFoundError, ResourceRegistry
from ..tools.base import ToolNotFoundError
from ..tools.registry import ToolRegistry
from ..workflow.engine import WorkflowEngine
from ..workflow.models import PipelineError, PipelineRun
from .schemas import (
    INTERNAL_ERROR,
    SUPPORTED_PROTOCOL_VERSIONS,
    MCPCallToolRequest,
    MCPCallToolResponse,
    MCPError,
    MCPExecutePipelineRequest,
    MCPInitializeRequest,
    MCPInitializeResponse,
    MCPListResourcesRequest,
    MCPListToolsRequest,
    MCPListToolsResponse,
    MCPMethodNotFoundError,
    MCPNotification,
    MCPNotInitializedError,
    MCPReadResourceRequest,
    MCPRequest,
    MCPRequestCancelledError,
    MCPResponse,
    MCPSessionNotFoundError,
    MCPValidationError,
    Resource,
    ServerInfo,
)

logger = structlog.get_logger(__name__)

MethodHandler = Callable[[MCPRequest, Session], Awaitable[MCPResponse]]

SESSION_RESOURCE_URI = "imcp://session"
_HISTORY_LIMIT = 50


class MCPHandler:
    """
    Main handler for MCP protocol messages.

    Routes incoming requests to the appropriate component and tracks
    initialization per session. Requests without a session id use the
    handler's default session, which is what the stdio transport relies on.
    """

    def __init__(
        self,
        server_info: ServerInfo,
        tool_registry: ToolRegistry,
        resource_registry: ResourceRegistry,
        context_manager: ContextManager,
        workflow_engine: Optional[WorkflowEngine] = None,
        instructions: Optional[str] = None,
    ):
        self.server_info = server_info
        self.tool_registry = tool_registry
        self.resource_registry = resource_registry
        self.context_manager = context_manager
        self.workflow_engine = workflow_engine
        self.instructions = instructions
        self._default_session_id: Optional[str] = None
        self._in_flight: Dict[Tuple[str, Union[str, int]], asyncio.Task] = {}
        self._cancelled_by_client: Set[asyncio.Task] = set()

        self._capabilities: Dict[str, Any] = {
            "tools": {"listChanged": False},
            "resources": {"subscribe": False, "listChanged": False},
        }
        if workflow_engine is not None:
            self._capabilities["experimental"] = {"pipelines": {}}

        self._methods: Dict[str, MethodHandler] = {
            "initialize": self._handle_initialize,
            "ping": self._handle_ping,
            "tools/list": self._handle_list_tools,
            "tools/call": self._handle_call_tool,
            "resources/list": self._handle_list_resources,
            "resources/read": self._handle_read_resource,
            "pipeline/list": self._handle_list_pipelines,
            "pipeline/execute": self._handle_execute_pipeline,
            "pipeline/status": self._handle_pipeline_status,
            "pipeline/cancel": self._handle_cancel_pipeline,
        }

    async def handle_request(
        self, request: MCPRequest, session_id: Optional[str] = None
    ) -> MCPResponse:
        """
        Handle incoming MCP request.

        Never raises: protocol errors become their own error object and
        anything unexpected becomes a generic internal error.

        Args:
            request: Incoming request
            session_id: Session to run the request in; None for the default session

        Returns:
            Response to send back to client
        """
        logger.debug(
            "Handling request",
            method=request.method,
            request_id=request.id,
            session_id=session_id,
        )

        try:
            session = self._resolve_session(session_id)

            method_handler = self._methods.get(request.method)
            if method_handler is None:
                raise MCPMethodNotFoundError(request.method)

            if request.method not in ("initialize", "ping") and not session.initialized:
                raise MCPNotInitializedError()

            if request.method == "initialize":
                return await method_handler(request, session)
            return await self._run_cancellable(method_handler, request, session)

        except MCPError as e:
            logger.warning(
                "MCP error handling request",
                method=request.method,
                request_id=request.id,
                error_code=e.code,
                error_message=e.message,
            )
            return MCPResponse.from_error(request.id, e)

        except Exception as e:
            logger.error(
                "Unexpected error handling request",
                method=request.method,
                request_id=request.id,
                error=str(e),
                exc_info=True,
            )
            return MCPResponse(
                id=request.id,
                error={
                    "code": INTERNAL_ERROR,
                    "message": "Internal error",
                    "data": {"details": str(e)},
                },
            )

    async def handle_notification(
        self, notification: MCPNotification, session_id: Optional[str] = None
    ) -> None:
        """Handle a client notification; notifications never get a response."""
        if notification.method == "notifications/initialized":
            logger.info("Client finished initialization", session_id=session_id)
        elif notification.method == "notifications/cancelled":
            self._cancel_in_flight(notification.params or {}, session_id)
        else:
            logger.debug("Ignoring notification", method=notification.method)

    def _cancel_in_flight(self, params: Dict[str, Any], session_id: Optional[str]) -> None:
        request_id = params.get("requestId")
        if session_id is None:
            session_id = self._default_session_id

        task = self._in_flight.get((session_id, request_id))
        if task is None or task.done():
            logger.info(
                "Cancellation for unknown or finished request",
                request_id=request_id,
                session_id=session_id,
            )
            return

        self._cancelled_by_client.add(task)
        task.cancel()
        logger.info(
            "Client cancelled request",
            request_id=request_id,
            session_id=session_id,
            reason=params.get("reason"),
        )

    async def _run_cancellable(
        self, method_handler: MethodHandler, request: MCPRequest, session: Session
    ) -> MCPResponse:
        """Run a method in its own task so notifications/cancelled can stop it."""
        key = (session.session_id, request.id)
        task = asyncio.ensure_future(method_handler(request, session))
        self._in_flight[key] = task
        try:
            return await task
        except asyncio.CancelledError:
            if task not in self._cancelled_by_client:
                raise
            raise MCPRequestCancelledError(request.id)
        finally:
            self._cancelled_by_client.discard(task)
            if self._in_flight.get(key) is task:
                del self._in_flight[key]

    def _resolve_session(self, session_id: Optional[str]) -> Session:
        if session_id is not None:
            session = self.context_manager.get_session(session_id)
            if session is None:
                raise MCPSessionNotFoundError(session_id)
            return session

        if self._default_session_id is not None:
            session = self.context_manager.get_session(self._default_session_id)
            if session is not None:
                return session

        # The default session outlives idle expiry and LRU eviction
        session = self.context_manager.create_session(pinned=True)
        self._default_session_id = session.session_id
        return session

    def _remember(self, session: Session, key: str, value: Any) -> None:
        """Append to a bounded per-session history list."""
        history: List[Any] = list(self.context_manager.get_state(session.session_id, key, []))
        if value in history:
            return
        history.append(value)
        self.context_manager.set_state(session.session_id, key, history[-_HISTORY_LIMIT:])

    async def _handle_initialize(self, request: MCPRequest, session: Session) -> MCPResponse:
        """Handle initialize request."""
        try:
            init_request = MCPInitializeRequest(id=request.id, params=request.arguments)
            client_info = init_request.client_info
        except (ValidationError, TypeError) as e:
            raise MCPValidationError(f"Invalid initialize request: {e}")

        requested = init_request.protocol_version
        if requested in SUPPORTED_PROTOCOL_VERSIONS:
            negotiated = requested
        else:
            negotiated = SUPPORTED_PROTOCOL_VERSIONS[0]
            logger.warning(
                "Unsupported protocol version, offering latest",
                requested=requested,
                negotiated=negotiated,
            )

        session.initialized = True
        session.protocol_version = negotiated
        session.client_info = client_info.model_dump() if client_info else None

        logger.info(
            "Initialized MCP session",
            session_id=session.session_id,
            protocol_version=negotiated,
            client_info=session.client_info,
        )

        return MCPInitializeResponse(
            request_id=request.id,
            protocol_version=negotiated,
            server_info=self.server_info,
            capabilities=self._capabilities,
            instructions=self.instructions,
        )

    async def _handle_ping(self, request: MCPRequest, session: Session) -> MCPResponse:
        return MCPResponse(id=request.id, result={})

    async def _handle_list_tools(self, request: MCPRequest, session: Session) -> MCPResponse:
        """Handle list tools request."""
        try:
            MCPListToolsRequest(id=request.id, params=request.params)
        except ValidationError as e:
            raise MCPValidationError(f"Invalid list tools request: {e}")

        tools = self.tool_registry.list_tools()
        logger.info("Listing tools", tool_count=len(tools))
        return MCPListToolsResponse(request.id, tools)

    async def _handle_call_tool(self, request: MCPRequest, session: Session) -> MCPResponse:
        """Handle call tool request."""
        call_request = MCPCallToolRequest(id=request.id, params=request.arguments)
        tool_name = call_request.tool_name
        if not tool_name:
            raise MCPValidationError("Missing tool name")

        logger.info("Calling tool", tool_name=tool_name, session_id=session.session_id)

        try:
            result = await self.tool_registry.call(tool_name, call_request.tool_arguments)
        except ToolNotFoundError:
            raise MCPError(f"Unknown tool: {tool_name}", code=-32601, data={"tool": tool_name})

        job_id = result.metadata.get("job_id")
        if job_id and not result.is_error:
            self._remember(session, "jobs", job_id)

        logger.info("Tool execution completed", tool_name=tool_name, success=not result.is_error)
        return MCPCallToolResponse(request.id, result.to_dict())

    async def _handle_list_resources(self, request: MCPRequest, session: Session) -> MCPResponse:
        try:
            MCPListResourcesRequest(id=request.id, params=request.params)
        except ValidationError as e:
            raise MCPValidationError(f"Invalid list resources request: {e}")

        resources = await self.resource_registry.list_resources()
        resources.append(
            Resource(
                uri=SESSION_RESOURCE_URI,
                name="Current session",
                description="This session's protocol state, job ids and pipeline run ids",
            )
        )
        return MCPResponse(
            id=request.id,
            result={"resources": [resource.to_dict() for resource in resources]},
        )

    async def _handle_read_resource(self, request: MCPRequest, session: Session) -> MCPResponse:
        read_request = MCPReadResourceRequest(id=request.id, params=request.arguments)
        if not read_request.uri:
            raise MCPValidationError("Missing resource uri")

        if read_request.uri == SESSION_RESOURCE_URI:
            text = json.dumps(session.to_dict(), indent=2, default=str)
            return MCPResponse(
                id=request.id,
                result={
                    "contents": [
                        {"uri": SESSION_RESOURCE_URI, "mimeType": "application/json", "text": text}
                    ]
                },
            )

        try:
            contents = await self.resource_registry.read(read_request.uri)
        except ResourceNotFoundError as e:
            raise MCPValidationError(str(e), data={"uri": e.uri})

        return MCPResponse(id=request.id, result=contents)

    def _require_workflow_engine(self, method: str) -> WorkflowEngine:
        if self.workflow_engine is None:
            raise MCPMethodNotFoundError(method)
        return self.workflow_engine

    async def _handle_list_pipelines(self, request: MCPRequest, session: Session) -> MCPResponse:
        engine = self._require_workflow_engine(request.method)
        return MCPResponse(
            id=request.id,
            result={"pipelines": [p.to_dict() for p in engine.list_pipelines()]},
        )

    async def _handle_execute_pipeline(
        self, request: MCPRequest, session: Session
    ) -> MCPResponse:
        """Run a registered or inline pipeline, waiting for it unless ``wait`` is false."""
        engine = self._require_workflow_engine(request.method)
        execute_request = MCPExecutePipelineRequest(id=request.id, params=request.arguments)
        inputs = execute_request.inputs
        wait = execute_request.wait

        try:
            definition = engine.resolve(
                pipeline=execute_request.pipeline_name,
                steps=execute_request.steps,
                name=execute_request.params.get("name"),
            )
        except PipelineError as e:
            raise MCPValidationError(str(e))

        run = engine.submit(definition, inputs, session.session_id)
        self._remember(session, "pipeline_runs", run.run_id)
        if wait:
            await engine.wait(run.run_id)

        logger.info(
            "Pipeline request handled",
            pipeline=definition.name,
            run_id=run.run_id,
            status=run.status.value,
        )
        return MCPResponse(id=request.id, result=run.to_dict())

    def _require_run(
        self, engine: WorkflowEngine, request: MCPRequest, session: Session
    ) -> PipelineRun:
        """Look up a run owned by the requesting session."""
        run_id = request.arguments.get("run_id")
        if not isinstance(run_id, str) or not run_id:
            raise MCPValidationError("Missing run_id")

        run = engine.get_run(run_id)
        if run is None or run.session_id not in (None, session.session_id):
            raise MCPValidationError(f"Unknown pipeline run: {run_id}", data={"run_id": run_id})
        return run

    async def _handle_pipeline_status(self, request: MCPRequest, session: Session) -> MCPResponse:
        engine = self._require_workflow_engine(request.method)
        run = self._require_run(engine, request, session)
        return MCPResponse(id=request.id, result=run.to_dict())

    async def _handle_cancel_pipeline(self, request: MCPRequest, session: Session) -> MCPResponse:
        engine = self._require_workflow_engine(request.method)
        run = self._require_run(engine, request, session)

        cancelled = await engine.cancel(run.run_id)
        return MCPResponse(
            id=request.id,
            result={"cancelled": cancelled, "run": run.to_dict()},
        )

    @property
    def capabilities(self) -> Dict[str, Any]:
        return dict(self._capabilities)
