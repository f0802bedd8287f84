"""
List Generators tool for the Inferloop MCP Server.

Lists the synthetic data generators available on the Inferloop Cloud
Platform. Results are cached since the catalogue changes rarely.
"""

from typing import Any, Dict

from ..client.icp_client import ICPClient, ICPClientError
from ..protocol.schemas import Tool
from .base import BaseTool, ToolResult


class ListGeneratorsTool(BaseTool):
    """Tool for listing available synthetic data generators."""

    name = "list_generators"
    description = (
        "List the synthetic data generators available on the Inferloop Cloud Platform, "
        "with their supported data types and options"
    )
    cacheable = True

    def __init__(self, icp_client: ICPClient, config: Dict[str, Any]):
        super().__init__(config)
        self.icp_client = icp_client

    def get_schema(self) -> Tool:
        return self._create_schema(parameters={}, required=[])

    async def execute(self, arguments: Dict[str, Any]) -> ToolResult:
        try:
            generators = await self.icp_client.list_generators()
        except ICPClientError as e:
            self.logger.error("ICP API error", error=e.message, status=e.status)
            return ToolResult.error(
                f"Failed to list generators: {e.message}",
                error_code="icp_error",
                details={"status": e.status},
            )

        if not generators:
            text = "No generators are available on the platform"
        else:
            lines = [f"Found {len(generators)} generators:"]
            for generator in generators:
                name = generator.get("name") or generator.get("id", "unknown")
                summary = generator.get("description")
                lines.append(f"- {name}: {summary}" if summary else f"- {name}")
            text = "\n".join(lines)

        return ToolResult.success(
            text=text,
            data={"generators": generators, "count": len(generators)},
            metadata={"operation": "list_generators", "result_count": len(generators)},
        )
