"""Cancel Job tool for the Inferloop MCP Server."""

from typing import Any, Dict

from ..client.icp_client import ICPClient, ICPClientError
from ..protocol.schemas import Tool
from .base import BaseTool, ToolResult


class CancelJobTool(BaseTool):
    """Tool for cancelling a running generation job."""

    name = "cancel_job"
    description = "Cancel a pending or running synthetic data generation job"

    def __init__(self, icp_client: ICPClient, config: Dict[str, Any]):
        super().__init__(config)
        self.icp_client = icp_client

    def get_schema(self) -> Tool:
        return self._create_schema(
            parameters={
                "job_id": self._create_parameter("string", "ID of the job to cancel"),
            },
            required=["job_id"],
        )

    async def execute(self, arguments: Dict[str, Any]) -> ToolResult:
        job_id = arguments["job_id"]

        try:
            job = await self.icp_client.cancel_job(job_id)
        except ICPClientError as e:
            if e.status == 404:
                return ToolResult.error(
                    f"Job not found: {job_id}", error_code="not_found", details={"job_id": job_id}
                )
            if e.status == 409:
                return ToolResult.error(
                    f"Job {job_id} can no longer be cancelled",
                    error_code="conflict",
                    details={"job_id": job_id, "reason": e.message},
                )
            self.logger.error("ICP API error", error=e.message, status=e.status)
            return ToolResult.error(
                f"Failed to cancel job: {e.message}",
                error_code="icp_error",
                details={"status": e.status, "job_id": job_id},
            )

        self.logger.info("Cancelled generation job", job_id=job_id)
        return ToolResult.success(
            text=f"Cancelled job {job_id} (status: {job.get('status', 'cancelled')})",
            data={"job_id": job_id, "job": job},
            metadata={"operation": "cancel_job", "job_id": job_id},
        )
