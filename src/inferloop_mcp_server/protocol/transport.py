"""
Stdio transport for MCP protocol communication.

Exchanges newline-delimited JSON-RPC messages over stdin/stdout for
CLI-based MCP hosts.
"""

import asyncio
import json
import sys
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Set, TextIO

import structlog
from pydantic import ValidationError

from .schemas import (
    INTERNAL_ERROR,
    INVALID_REQUEST,
    PARSE_ERROR,
    MCPMessage,
    MCPNotification,
    MCPRequest,
    MCPResponse,
)

logger = structlog.get_logger(__name__)

RequestHandler = Callable[[MCPRequest], Awaitable[MCPResponse]]
NotificationHandler = Callable[[MCPNotification], Awaitable[None]]


class TransportError(Exception):
    """Base exception for transport errors."""


def error_response(
    request_id: Any, code: int, message: str, data: Optional[Dict[str, Any]] = None
) -> MCPResponse:
    """Build a JSON-RPC error response."""
    error: Dict[str, Any] = {"code": code, "message": message}
    if data:
        error["data"] = data
    return MCPResponse(id=request_id, error=error)


def recover_id(message_data: Any) -> Any:
    """Best-effort request id from a malformed message, None if unusable."""
    if isinstance(message_data, dict):
        request_id = message_data.get("id")
        if isinstance(request_id, (str, int)) and not isinstance(request_id, bool):
            return request_id
    return None


class StdioTransport:
    """
    Stdio transport for MCP communication.

    Reads one JSON-RPC message per stdin line and writes one compact JSON
    object per stdout line. Only protocol messages go to stdout; logging
    is configured to use stderr.
    """

    def __init__(self, stdin: Optional[TextIO] = None, stdout: Optional[TextIO] = None):
        self._stdin = stdin
        self._stdout = stdout
        self._running = False
        self._message_handler: Optional[RequestHandler] = None
        self._notification_handler: Optional[NotificationHandler] = None
        self._pending: Set[asyncio.Task] = set()
        self._write_lock = asyncio.Lock()

    @property
    def stdin(self) -> TextIO:
        return self._stdin or sys.stdin

    @property
    def stdout(self) -> TextIO:
        return self._stdout or sys.stdout

    @property
    def running(self) -> bool:
        return self._running

    def set_message_handler(self, handler: RequestHandler) -> None:
        """Set the handler for incoming requests."""
        self._message_handler = handler

    def set_notification_handler(self, handler: NotificationHandler) -> None:
        """Set the handler for incoming notifications."""
        self._notification_handler = handler

    async def start(self) -> None:
        """Run the transport loop until EOF on stdin or stop()."""
        if self._running:
            raise TransportError("Transport is already running")

        if not self._message_handler:
            raise TransportError("Message handler not set")

        self._running = True
        logger.info("Starting stdio transport")

        try:
            await self._run_transport_loop()
        except Exception as e:
            logger.error("Transport loop error", error=str(e), exc_info=True)
            raise
        finally:
            self._running = False
            logger.info("Stdio transport stopped")

    async def stop(self) -> None:
        """Stop the stdio transport."""
        self._running = False

    async def send_message(self, message: MCPMessage) -> None:
        """
        Send a message via stdout.

        Raises:
            TransportError: If the message cannot be written
        """
        try:
            if isinstance(message, (MCPResponse, MCPNotification)):
                message_dict = message.to_dict()
            else:
                message_dict = message.model_dump(exclude_none=True)
            message_json = json.dumps(message_dict, separators=(",", ":"), default=str)

            loop = asyncio.get_running_loop()
            async with self._write_lock:
                await loop.run_in_executor(None, self._write_line, message_json)

            logger.debug("Sent message", message_type=type(message).__name__)

        except (OSError, TypeError, ValueError) as e:
            logger.error("Failed to send message", error=str(e), exc_info=True)
            raise TransportError(f"Failed to send message: {e}") from e

    def _write_line(self, message_json: str) -> None:
        self.stdout.write(message_json + "\n")
        self.stdout.flush()

    async def send_response(self, response: MCPResponse) -> None:
        """Send a response message."""
        logger.debug(
            "Sending MCP response",
            response_id=response.id,
            has_error=response.error is not None,
        )
        await self.send_message(response)

    async def send_notification(self, notification: MCPNotification) -> None:
        """Send a notification message."""
        await self.send_message(notification)

    async def _run_transport_loop(self) -> None:
        try:
            async for line in self._read_lines():
                if not self._running:
                    break

                try:
                    await self._process_line(line, concurrent=True)
                except TransportError:
                    raise
                except Exception as e:
                    # One bad message must not end the session
                    logger.error("Error processing line", error=str(e), line=line[:100])
        except asyncio.CancelledError:
            for task in self._pending:
                task.cancel()
            raise

        # Answer requests still in flight at EOF
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def _read_lines(self) -> AsyncIterator[str]:
        loop = asyncio.get_running_loop()

        while self._running:
            line = await loop.run_in_executor(None, self.stdin.readline)

            if not line:
                logger.info("Received EOF on stdin")
                break

            line = line.strip()
            if line:
                yield line

    async def process_line(self, line: str) -> None:
        """
        Process a single JSON-RPC line and write any response.

        Args:
            line: Raw line read from stdin
        """
        await self._process_line(line, concurrent=False)

    async def _process_line(self, line: str, concurrent: bool) -> None:
        """
        Decode one line and dispatch it.

        With ``concurrent`` set, requests other than initialize run as
        background tasks so a later notifications/cancelled line can reach
        them while they are in flight.
        """
        if not line.strip():
            return

        try:
            message_data = json.loads(line)
        except json.JSONDecodeError as e:
            logger.error("Invalid JSON received", error=str(e), line=line[:100])
            await self.send_response(error_response(None, PARSE_ERROR, "Parse error"))
            return

        if not isinstance(message_data, dict):
            await self.send_response(
                error_response(None, INVALID_REQUEST, "Invalid request: expected an object")
            )
            return

        if "method" not in message_data:
            logger.warning(
                "Ignoring response message in server mode", message_id=message_data.get("id")
            )
            return

        if "id" not in message_data:
            await self._handle_notification(message_data)
        elif concurrent and message_data["method"] != "initialize":
            task = asyncio.ensure_future(self._handle_request_in_background(message_data))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        else:
            await self._handle_request(message_data)

    async def _handle_request_in_background(self, message_data: Dict[str, Any]) -> None:
        try:
            await self._handle_request(message_data)
        except TransportError as e:
            logger.error(
                "Failed to answer request", error=str(e), request_id=recover_id(message_data)
            )

    async def _handle_request(self, message_data: Dict[str, Any]) -> None:
        try:
            request = MCPRequest.model_validate(message_data)
        except ValidationError as e:
            logger.error("Invalid request format", error=str(e))
            await self.send_response(
                error_response(recover_id(message_data), INVALID_REQUEST, "Invalid request")
            )
            return

        logger.info("Processing request", method=request.method, request_id=request.id)
        response = await self._safe_call_handler(request)
        await self.send_response(response)

    async def _handle_notification(self, message_data: Dict[str, Any]) -> None:
        try:
            notification = MCPNotification.model_validate(message_data)
        except ValidationError as e:
            logger.error("Invalid notification format", error=str(e))
            return

        logger.info("Received notification", method=notification.method)
        if self._notification_handler is not None:
            try:
                await self._notification_handler(notification)
            except Exception as e:
                logger.error("Notification handler error", error=str(e), exc_info=True)

    async def _safe_call_handler(self, request: MCPRequest) -> MCPResponse:
        try:
            return await self._message_handler(request)
        except Exception as e:
            logger.error("Handler error", error=str(e), exc_info=True)
            return error_response(
                request.id, INTERNAL_ERROR, "Internal error", {"details": str(e)}
            )
