"""
Generate Synthetic Data tool for the Inferloop MCP Server.

Submits a generation job to the Inferloop Cloud Platform and optionally
waits for it to finish.
"""

from typing import Any, Dict

from ..client.icp_client import ICPClient, ICPClientError
from ..protocol.schemas import Tool
from .base import BaseTool, ToolError, ToolResult


class GenerateSyntheticDataTool(BaseTool):
    """
    Tool for creating synthetic data generation jobs.

    With ``wait`` the tool polls the job until it completes and reports a
    failed or cancelled job as an error result, so pipelines stop on it.
    Without ``wait`` it returns the submitted job immediately.
    """

    name = "generate_synthetic_data"
    description = (
        "Generate a synthetic dataset on the Inferloop Cloud Platform using a named "
        "generator, optionally waiting for the job to complete"
    )

    def __init__(self, icp_client: ICPClient, config: Dict[str, Any]):
        """
        Initialize generate synthetic data tool.

        Args:
            icp_client: Inferloop Cloud Platform client
            config: Tool configuration
        """
        super().__init__(config)
        self.icp_client = icp_client
        self.max_rows = config.get("max_rows", 1_000_000)
        self.job_timeout_seconds = icp_client.config.job_timeout_seconds
        # Waiting on a job may legitimately outlast the normal call timeout
        self.timeout_seconds = self.job_timeout_seconds + icp_client.config.timeout_ms / 1000

    def get_schema(self) -> Tool:
        return self._create_schema(
            parameters={
                "generator": self._create_parameter(
                    "string",
                    "Generator to use (see list_generators), e.g. 'tabular' or 'timeseries'",
                ),
                "num_rows": self._create_parameter(
                    "integer",
                    f"Number of rows to generate (1-{self.max_rows})",
                    minimum=1,
                    maximum=self.max_rows,
                ),
                "schema": self._create_parameter(
                    "object",
                    "Target schema, e.g. {'columns': {'age': {'type': 'integer', 'min': 0}}}",
                ),
                "seed": self._create_parameter(
                    "integer",
                    "Random seed for reproducible output",
                ),
                "options": self._create_parameter(
                    "object",
                    "Generator-specific options",
                ),
                "wait": self._create_parameter(
                    "boolean",
                    "Wait for the job to finish before returning (default: false)",
                    default=False,
                ),
                "wait_timeout_seconds": self._create_parameter(
                    "number",
                    f"Maximum seconds to wait when wait is true (default: {self.job_timeout_seconds:g})",
                    minimum=1,
                    maximum=self.job_timeout_seconds,
                ),
            },
            required=["generator", "num_rows"],
        )

    async def execute(self, arguments: Dict[str, Any]) -> ToolResult:
        generator = arguments["generator"].strip()
        num_rows = arguments["num_rows"]
        wait = arguments.get("wait", False)

        if not generator:
            raise ToolError("Generator name cannot be empty", code="empty_generator")

        try:
            job = await self.icp_client.create_generation_job(
                generator=generator,
                num_rows=num_rows,
                schema=arguments.get("schema"),
                seed=arguments.get("seed"),
                options=arguments.get("options"),
            )

            job_id = job.get("id")
            if wait and job_id:
                job = await self.icp_client.wait_for_job(
                    job_id, timeout=arguments.get("wait_timeout_seconds")
                )

        except ICPClientError as e:
            self.logger.error("ICP API error", error=e.message, status=e.status)
            return ToolResult.error(
                f"Failed to generate synthetic data: {e.message}",
                error_code="icp_error",
                details={"status": e.status, "generator": generator},
            )

        status = job.get("status", "unknown")
        if wait and status in ("failed", "cancelled"):
            return ToolResult.error(
                f"Generation job {job.get('id')} {status}: {job.get('error') or 'no details'}",
                error_code=f"job_{status}",
                details={"job": job},
            )

        if status == "completed":
            text = (
                f"Generated {num_rows} rows with '{generator}' "
                f"(job {job.get('id')}, dataset {job.get('dataset_id')})"
            )
        else:
            text = f"Submitted generation job {job.get('id')} with '{generator}' (status: {status})"

        return ToolResult.success(
            text=text,
            data={"job": job, "waited": wait},
            metadata={"operation": "generate_synthetic_data", "job_id": job.get("id")},
        )
