"""
HTTP transport for MCP communication.

Serves JSON-RPC over ``POST /mcp`` with ``Mcp-Session-Id`` sessions, a
WebSocket on ``GET /mcp``, a small REST facade over the tool registry and
a health endpoint, all on one aiohttp application.
"""

import asyncio
import hmac
import json
from typing import Any, Dict, Iterable, Optional, Set, Tuple

import structlog
from aiohttp import WSCloseCode, WSMsgType, web
from pydantic import ValidationError

from ..context.manager import ContextManager
from ..tools.registry import ToolRegistry
from ..utils.health import UNHEALTHY, HealthChecker
from .handlers import MCPHandler
from .schemas import (
    INVALID_REQUEST,
    PARSE_ERROR,
    MCPNotification,
    MCPNotInitializedError,
    MCPRequest,
    MCPResponse,
    MCPSessionNotFoundError,
)
from .transport import error_response, recover_id

logger = structlog.get_logger(__name__)

SESSION_HEADER = "Mcp-Session-Id"
_PUBLIC_PATHS = frozenset({"/health"})


class HttpTransport:
    """
    aiohttp server exposing the MCP handler over HTTP and WebSocket.

    When ``api_keys`` is non-empty every route except ``/health`` requires
    a matching ``X-API-Key`` header or ``Authorization: Bearer`` token.
    """

    def __init__(
        self,
        handler: MCPHandler,
        context_manager: ContextManager,
        tool_registry: ToolRegistry,
        health_checker: Optional[HealthChecker] = None,
        host: str = "127.0.0.1",
        port: int = 8765,
        api_keys: Iterable[str] = (),
    ):
        self.handler = handler
        self.context_manager = context_manager
        self.tool_registry = tool_registry
        self.health_checker = health_checker
        self.host = host
        self.port = port
        self.api_keys = [key for key in api_keys if key]
        self._runner: Optional[web.AppRunner] = None
        self._websockets: Set[web.WebSocketResponse] = set()

    def create_app(self) -> web.Application:
        """Build the aiohttp application with all routes."""
        app = web.Application(middlewares=[self._auth_middleware])
        app.router.add_post("/mcp", self.handle_mcp_post)
        app.router.add_delete("/mcp", self.handle_mcp_delete)
        app.router.add_get("/mcp", self.handle_websocket)
        app.router.add_get("/api/v1/tools", self.handle_list_tools)
        app.router.add_post("/api/v1/tools/{tool_name}", self.handle_call_tool)
        app.router.add_get("/health", self.handle_health)
        app.on_shutdown.append(self._close_websockets)
        return app

    async def start(self) -> None:
        """Start serving on the configured host and port."""
        if self._runner is not None:
            raise RuntimeError("HTTP transport is already running")

        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()

        logger.info(
            "HTTP transport started",
            host=self.host,
            port=self.port,
            auth_enabled=bool(self.api_keys),
        )

    async def stop(self) -> None:
        if self._runner is None:
            return
        await self._runner.cleanup()
        self._runner = None
        logger.info("HTTP transport stopped")

    @web.middleware
    async def _auth_middleware(self, request: web.Request, handler):
        if not self.api_keys or request.path in _PUBLIC_PATHS:
            return await handler(request)

        presented = request.headers.get("X-API-Key")
        if presented is None:
            authorization = request.headers.get("Authorization", "")
            if authorization.startswith("Bearer "):
                presented = authorization[len("Bearer "):].strip()

        if presented and any(hmac.compare_digest(presented, key) for key in self.api_keys):
            return await handler(request)

        logger.warning("Rejected unauthenticated request", path=request.path, remote=request.remote)
        return web.json_response({"error": "Unauthorized"}, status=401)

    async def handle_mcp_post(self, request: web.Request) -> web.Response:
        """JSON-RPC over HTTP POST."""
        try:
            message_data = json.loads(await request.text())
        except json.JSONDecodeError:
            return _rpc_response(error_response(None, PARSE_ERROR, "Parse error"), status=400)

        if not isinstance(message_data, dict) or "method" not in message_data:
            return _rpc_response(
                error_response(recover_id(message_data), INVALID_REQUEST, "Invalid request"),
                status=400,
            )

        session_id = request.headers.get(SESSION_HEADER)
        is_request = "id" in message_data
        created = False

        if session_id is None:
            if message_data["method"] == "initialize" and is_request:
                session_id = self.context_manager.create_session().session_id
                created = True
            elif is_request:
                return _rpc_response(
                    MCPResponse.from_error(recover_id(message_data), MCPNotInitializedError()),
                    status=400,
                )
            else:
                return web.Response(status=202)
        elif self.context_manager.get_session(session_id) is None:
            return _rpc_response(
                MCPResponse.from_error(
                    recover_id(message_data), MCPSessionNotFoundError(session_id)
                ),
                status=404,
            )

        response = await self._dispatch(message_data, session_id)
        if response is None:
            return web.Response(status=202)

        http_response = _rpc_response(response)
        if created:
            if response.error is not None:
                self.context_manager.close_session(session_id)
            else:
                http_response.headers[SESSION_HEADER] = session_id
        return http_response

    async def handle_mcp_delete(self, request: web.Request) -> web.Response:
        """Close the session named by the session header."""
        session_id = request.headers.get(SESSION_HEADER)
        if not session_id:
            return web.json_response({"error": f"Missing {SESSION_HEADER} header"}, status=400)

        if not self.context_manager.close_session(session_id):
            return web.json_response({"error": "Session not found"}, status=404)

        logger.info("Closed HTTP session", session_id=session_id)
        return web.Response(status=204)

    async def handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        """One MCP session per WebSocket connection."""
        ws = web.WebSocketResponse()
        await ws.prepare(request)

        session_id = self.context_manager.create_session().session_id
        self._websockets.add(ws)
        pending: Set[asyncio.Task] = set()
        logger.info("WebSocket connected", session_id=session_id, remote=request.remote)

        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    message_data, error = _decode_frame(msg.data)
                    if error is not None:
                        await _send_frame(ws, error)
                    elif "id" in message_data and message_data["method"] != "initialize":
                        # Requests run concurrently so notifications/cancelled can reach them
                        task = asyncio.ensure_future(
                            self._answer_frame(ws, message_data, session_id)
                        )
                        pending.add(task)
                        task.add_done_callback(pending.discard)
                    else:
                        response = await self._dispatch(message_data, session_id)
                        if response is not None:
                            await _send_frame(ws, response)
                elif msg.type == WSMsgType.ERROR:
                    logger.warning(
                        "WebSocket error", session_id=session_id, error=str(ws.exception())
                    )
                    break
        finally:
            for task in pending:
                task.cancel()
            self._websockets.discard(ws)
            self.context_manager.close_session(session_id)
            logger.info("WebSocket disconnected", session_id=session_id)

        return ws

    async def _answer_frame(
        self, ws: web.WebSocketResponse, message_data: Dict[str, Any], session_id: str
    ) -> None:
        response = await self._dispatch(message_data, session_id)
        if response is not None and not ws.closed:
            await _send_frame(ws, response)

    async def _dispatch(
        self, message_data: Dict[str, Any], session_id: str
    ) -> Optional[MCPResponse]:
        """Route a decoded message; notifications return None."""
        if "id" not in message_data:
            try:
                notification = MCPNotification.model_validate(message_data)
            except ValidationError as e:
                logger.error("Invalid notification format", error=str(e))
                return None
            await self.handler.handle_notification(notification, session_id)
            return None

        try:
            request = MCPRequest.model_validate(message_data)
        except ValidationError as e:
            logger.error("Invalid request format", error=str(e))
            return error_response(recover_id(message_data), INVALID_REQUEST, "Invalid request")

        return await self.handler.handle_request(request, session_id)

    async def handle_list_tools(self, request: web.Request) -> web.Response:
        tools = self.tool_registry.list_tools()
        return web.json_response({"tools": [tool.to_dict() for tool in tools]})

    async def handle_call_tool(self, request: web.Request) -> web.Response:
        """REST facade: the body is the tool's argument object."""
        tool_name = request.match_info["tool_name"]
        if tool_name not in self.tool_registry:
            return web.json_response({"error": f"Unknown tool: {tool_name}"}, status=404)

        body = await request.text()
        if body.strip():
            try:
                arguments = json.loads(body)
            except json.JSONDecodeError:
                return web.json_response({"error": "Request body is not valid JSON"}, status=400)
        else:
            arguments = {}

        if not isinstance(arguments, dict):
            return web.json_response({"error": "Request body must be a JSON object"}, status=400)

        logger.info("REST tool call", tool_name=tool_name)
        result = await self.tool_registry.call(tool_name, arguments)

        status = 422 if result.error_code == "validation_error" else 200
        return web.json_response(result.to_dict(), status=status, dumps=_dumps)

    async def handle_health(self, request: web.Request) -> web.Response:
        if self.health_checker is None:
            return web.json_response({"status": "healthy", "checks": []})

        health = await self.health_checker.run_all_checks()
        status = 503 if health.status == UNHEALTHY else 200
        return web.json_response(health.to_dict(), status=status, dumps=_dumps)

    async def _close_websockets(self, app: web.Application) -> None:
        for ws in list(self._websockets):
            await ws.close(code=WSCloseCode.GOING_AWAY, message=b"Server shutdown")


def _dumps(value: Any) -> str:
    return json.dumps(value, default=str)


def _rpc_response(response: MCPResponse, status: int = 200) -> web.Response:
    return web.json_response(response.to_dict(), status=status, dumps=_dumps)


def _decode_frame(data: str) -> Tuple[Dict[str, Any], Optional[MCPResponse]]:
    """Parse a WebSocket text frame into a message or an error response."""
    try:
        message_data = json.loads(data)
    except json.JSONDecodeError:
        return {}, error_response(None, PARSE_ERROR, "Parse error")

    if not isinstance(message_data, dict) or "method" not in message_data:
        return {}, error_response(recover_id(message_data), INVALID_REQUEST, "Invalid request")

    return message_data, None


async def _send_frame(ws: web.WebSocketResponse, response: MCPResponse) -> None:
    await ws.send_str(_dumps(response.to_dict()))
