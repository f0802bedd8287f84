"""
Inferloop MCP tools implementation.

This module provides the tool implementations that expose Inferloop Cloud
Platform capabilities through the MCP protocol.
"""

from .base import (
    BaseTool,
    ToolError,
    ToolExecutionError,
    ToolNotFoundError,
    ToolResult,
    ToolValidationError,
)
from .cancel_job import CancelJobTool
from .generate_synthetic_data import GenerateSyntheticDataTool
from .get_job_status import GetJobStatusTool
from .list_datasets import ListDatasetsTool
from .list_generators import ListGeneratorsTool
from .registry import ToolRegistry
from .validate_dataset import ValidateDatasetTool

__all__ = [
    "BaseTool",
    "ToolError",
    "ToolExecutionError",
    "ToolNotFoundError",
    "ToolResult",
    "ToolValidationError",
    "ToolRegistry",
    "ListGeneratorsTool",
    "GenerateSyntheticDataTool",
    "GetJobStatusTool",
    "CancelJobTool",
    "ListDatasetsTool",
    "ValidateDatasetTool",
]
