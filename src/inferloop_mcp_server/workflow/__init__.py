"""Pipeline workflow engine."""

from .engine import WorkflowEngine
from .models import (
    PipelineDefinition,
    PipelineError,
    PipelineRun,
    PipelineStep,
    RunStatus,
    StepResult,
    StepStatus,
)

__all__ = [
    "WorkflowEngine",
    "PipelineDefinition",
    "PipelineStep",
    "PipelineRun",
    "PipelineError",
    "RunStatus",
    "StepResult",
    "StepStatus",
]
