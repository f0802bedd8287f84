"""Get Job Status tool for the Inferloop MCP Server."""

from typing import Any, Dict

from ..client.icp_client import ICPClient, ICPClientError
from ..protocol.schemas import Tool
from .base import BaseTool, ToolResult


class GetJobStatusTool(BaseTool):
    """Tool for checking the status of a generation job."""

    name = "get_job_status"
    description = "Get the current status and progress of a synthetic data generation job"

    def __init__(self, icp_client: ICPClient, config: Dict[str, Any]):
        super().__init__(config)
        self.icp_client = icp_client

    def get_schema(self) -> Tool:
        return self._create_schema(
            parameters={
                "job_id": self._create_parameter("string", "ID of the generation job"),
            },
            required=["job_id"],
        )

    async def execute(self, arguments: Dict[str, Any]) -> ToolResult:
        job_id = arguments["job_id"]

        try:
            job = await self.icp_client.get_job(job_id)
        except ICPClientError as e:
            if e.status == 404:
                return ToolResult.error(
                    f"Job not found: {job_id}", error_code="not_found", details={"job_id": job_id}
                )
            self.logger.error("ICP API error", error=e.message, status=e.status)
            return ToolResult.error(
                f"Failed to get job status: {e.message}",
                error_code="icp_error",
                details={"status": e.status, "job_id": job_id},
            )

        status = job.get("status", "unknown")
        text = f"Job {job_id} is {status}"
        if job.get("progress") is not None:
            text += f" ({job['progress']}% complete)"
        if job.get("dataset_id"):
            text += f", dataset {job['dataset_id']}"

        return ToolResult.success(
            text=text,
            data={"job": job},
            metadata={"operation": "get_job_status", "job_id": job_id},
        )
