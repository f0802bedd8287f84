"""
List Datasets tool for the Inferloop MCP Server.

Lists datasets produced by generation jobs, most recent first as
returned by the platform.
"""

from typing import Any, Dict

from ..client.icp_client import ICPClient, ICPClientError
from ..protocol.schemas import Tool
from .base import BaseTool, ToolResult


class ListDatasetsTool(BaseTool):
    """Tool for listing generated datasets."""

    name = "list_datasets"
    description = "List synthetic datasets stored on the Inferloop Cloud Platform"

    def __init__(self, icp_client: ICPClient, config: Dict[str, Any]):
        super().__init__(config)
        self.icp_client = icp_client
        self.max_results = config.get("max_results", 100)
        self.default_limit = config.get("default_limit", 20)

    def get_schema(self) -> Tool:
        return self._create_schema(
            parameters={
                "limit": self._create_parameter(
                    "integer",
                    f"Maximum number of datasets to return (1-{self.max_results}, "
                    f"default: {self.default_limit})",
                    default=self.default_limit,
                    minimum=1,
                    maximum=self.max_results,
                ),
            },
            required=[],
        )

    async def execute(self, arguments: Dict[str, Any]) -> ToolResult:
        limit = arguments.get("limit", self.default_limit)

        try:
            datasets = await self.icp_client.list_datasets(limit=limit)
        except ICPClientError as e:
            self.logger.error("ICP API error", error=e.message, status=e.status)
            return ToolResult.error(
                f"Failed to list datasets: {e.message}",
                error_code="icp_error",
                details={"status": e.status},
            )

        datasets = datasets[:limit]
        if not datasets:
            text = "No datasets found"
        else:
            lines = [f"Found {len(datasets)} datasets:"]
            for dataset in datasets:
                rows = dataset.get("row_count")
                suffix = f" ({rows} rows)" if rows is not None else ""
                lines.append(f"- {dataset.get('id', 'unknown')}: {dataset.get('name', '')}{suffix}")
            text = "\n".join(lines)

        return ToolResult.success(
            text=text,
            data={"datasets": datasets, "count": len(datasets)},
            metadata={"operation": "list_datasets", "result_count": len(datasets)},
        )
