"""
Validate Dataset tool for the Inferloop MCP Server.

Runs GATF acceptance checks over a dataset stored on the platform or
over rows passed inline.
"""

from typing import Any, Dict, List, Optional

from ..client.icp_client import ICPClient, ICPClientError
from ..protocol.schemas import Tool
from ..validation.gatf import GATFValidator
from .base import BaseTool, ToolResult, ToolValidationError


class ValidateDatasetTool(BaseTool):
    """
    Tool for GATF validation of synthetic datasets.

    A dataset that fails validation is still a successful tool call: the
    report says ``passed: false``. Only unusable input or platform errors
    produce error results.
    """

    name = "validate_dataset"
    description = (
        "Validate a synthetic dataset against GATF quality rules (row count, null ratio, "
        "duplicates and an optional column schema). Pass a dataset_id or inline rows."
    )

    def __init__(
        self,
        icp_client: ICPClient,
        config: Dict[str, Any],
        validator: Optional[GATFValidator] = None,
    ):
        """
        Initialize validate dataset tool.

        Args:
            icp_client: Inferloop Cloud Platform client
            config: Tool configuration, including sampling limits
            validator: Validator with the configured default thresholds
        """
        super().__init__(config)
        self.icp_client = icp_client
        self.validator = validator or GATFValidator()
        self.default_sample_size = config.get("default_sample_size", 1000)
        self.max_sample_size = config.get("max_sample_size", 10000)

    def get_schema(self) -> Tool:
        return self._create_schema(
            parameters={
                "dataset_id": self._create_parameter(
                    "string",
                    "ID of a dataset stored on the platform",
                ),
                "rows": self._create_parameter(
                    "array",
                    "Inline rows to validate instead of a stored dataset",
                    items={"type": "object"},
                ),
                "schema": self._create_parameter(
                    "object",
                    "Column rules: {'columns': {name: {type, nullable, min, max, allowed, unique}}}",
                ),
                "rules": self._create_parameter(
                    "object",
                    "Threshold overrides: min_rows, max_null_ratio, max_duplicate_ratio, "
                    "pass_threshold",
                ),
                "sample_size": self._create_parameter(
                    "integer",
                    f"Rows to sample from a stored dataset (1-{self.max_sample_size}, "
                    f"default: {self.default_sample_size})",
                    minimum=1,
                    maximum=self.max_sample_size,
                ),
            },
            required=[],
        )

    async def execute(self, arguments: Dict[str, Any]) -> ToolResult:
        dataset_id = arguments.get("dataset_id")
        rows = arguments.get("rows")

        if (dataset_id is None) == (rows is None):
            raise ToolValidationError(
                "Provide exactly one of dataset_id or rows",
                details={"dataset_id": dataset_id, "rows_given": rows is not None},
            )

        if dataset_id is not None:
            sample_size = arguments.get("sample_size", self.default_sample_size)
            try:
                rows = await self.icp_client.get_dataset_sample(dataset_id, limit=sample_size)
            except ICPClientError as e:
                if e.status == 404:
                    return ToolResult.error(
                        f"Dataset not found: {dataset_id}",
                        error_code="not_found",
                        details={"dataset_id": dataset_id},
                    )
                self.logger.error("ICP API error", error=e.message, status=e.status)
                return ToolResult.error(
                    f"Failed to fetch dataset sample: {e.message}",
                    error_code="icp_error",
                    details={"status": e.status, "dataset_id": dataset_id},
                )

        try:
            report = self.validator.validate(
                rows, schema=arguments.get("schema"), rules=arguments.get("rules")
            )
        except (TypeError, ValueError) as e:
            raise ToolValidationError(f"Cannot validate dataset: {e}")

        data = report.to_dict()
        data["dataset_id"] = dataset_id
        return ToolResult.success(
            text=self._summary(dataset_id, report.passed, report.score, data["checks"]),
            data=data,
            metadata={"operation": "validate_dataset", "passed": report.passed},
        )

    @staticmethod
    def _summary(
        dataset_id: Optional[str], passed: bool, score: float, checks: List[Dict[str, Any]]
    ) -> str:
        subject = f"Dataset {dataset_id}" if dataset_id else "Inline dataset"
        verdict = "passed" if passed else "failed"
        text = f"{subject} {verdict} GATF validation (score {score:.2%})"

        failed = [check for check in checks if not check["passed"]]
        if failed:
            text += "\nFailed checks:"
            for check in failed[:5]:
                text += f"\n- {check['name']}: {check['message']}"
            if len(failed) > 5:
                text += f"\n... and {len(failed) - 5} more"
        return text
