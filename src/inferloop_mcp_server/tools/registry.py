"""
Tool registry.

Holds the enabled tools, bounds how many run at once, applies the call
timeout and serves cacheable results from the context manager.
"""

import asyncio
import time
from typing import Any, Dict, List, Optional

import structlog

from ..context.manager import ContextManager
from ..protocol.schemas import Tool
from .base import BaseTool, ToolNotFoundError, ToolResult

logger = structlog.get_logger(__name__)


class ToolRegistry:
    """Registry and executor for MCP tools."""

    def __init__(
        self,
        max_concurrent_calls: int = 10,
        call_timeout_seconds: float = 30.0,
        context_manager: Optional[ContextManager] = None,
    ):
        self.call_timeout_seconds = call_timeout_seconds
        self.context_manager = context_manager
        self._tools: Dict[str, BaseTool] = {}
        self._semaphore = asyncio.Semaphore(max_concurrent_calls)
        self._max_concurrent_calls = max_concurrent_calls
        self._stats = {"calls": 0, "errors": 0, "timeouts": 0, "cache_hits": 0}

    def register(self, tool: BaseTool) -> None:
        """
        Register a tool instance.

        Raises:
            ValueError: If a tool with the same name is already registered
        """
        if not tool.name:
            raise ValueError(f"Tool {type(tool).__name__} has no name")
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")

        self._tools[tool.name] = tool
        logger.info("Registered tool", tool_name=tool.name, cacheable=tool.cacheable)

    def unregister(self, name: str) -> bool:
        removed = self._tools.pop(name, None) is not None
        if removed:
            logger.info("Unregistered tool", tool_name=name)
        return removed

    def get(self, name: str) -> Optional[BaseTool]:
        return self._tools.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    @property
    def names(self) -> List[str]:
        return list(self._tools)

    def list_tools(self) -> List[Tool]:
        """Tool schemas in registration order."""
        return [tool.get_schema() for tool in self._tools.values()]

    async def call(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> ToolResult:
        """
        Execute a registered tool.

        Args:
            name: Tool name
            arguments: Tool arguments

        Returns:
            Tool result; failures are error results, not exceptions

        Raises:
            ToolNotFoundError: If no tool with that name is registered
        """
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)

        arguments = arguments or {}
        self._stats["calls"] += 1
        start = time.monotonic()

        if tool.cacheable and self.context_manager is not None:
            cached = await self.context_manager.get_cached_result(name, arguments)
            if cached is not None:
                self._stats["cache_hits"] += 1
                logger.debug("Serving cached tool result", tool_name=name)
                duration_ms = (time.monotonic() - start) * 1000
                return cached.clone(duration_ms=round(duration_ms, 3), cached=True)

        timeout = tool.timeout_seconds or self.call_timeout_seconds
        async with self._semaphore:
            try:
                result = await asyncio.wait_for(tool.run(arguments), timeout)
            except asyncio.TimeoutError:
                self._stats["timeouts"] += 1
                logger.warning("Tool call timed out", tool_name=name, timeout_seconds=timeout)
                result = ToolResult.error(
                    f"Tool '{name}' timed out after {timeout:g}s",
                    "timeout",
                    {"timeout_seconds": timeout},
                )

        duration_ms = (time.monotonic() - start) * 1000
        result.metadata.setdefault("duration_ms", round(duration_ms, 3))

        if result.is_error:
            self._stats["errors"] += 1
        elif tool.cacheable and self.context_manager is not None:
            await self.context_manager.cache_result(name, arguments, result.clone())

        return result

    def get_stats(self) -> Dict[str, Any]:
        return {
            "registered_tools": self.names,
            "max_concurrent_calls": self._max_concurrent_calls,
            "call_timeout_seconds": self.call_timeout_seconds,
            **self._stats,
        }
