"""
Pipeline definitions and run records.

A pipeline is an ordered list of tool calls. Step arguments may reference
pipeline inputs (``${inputs.<path>}``) or the structured output of an
earlier step (``${steps.<step>.<path>}``).
"""

import re
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

REFERENCE_PATTERN = re.compile(r"\$\{([^}]+)\}")


class PipelineError(Exception):
    """Invalid pipeline definition or unresolved argument reference."""


class PipelineStep(BaseModel):
    """One tool call inside a pipeline."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, description="Step name, unique within the pipeline")
    tool: str = Field(min_length=1, description="Registered tool to call")
    arguments: Dict[str, Any] = Field(default_factory=dict, description="Tool arguments")
    on_failure: Literal["stop", "continue"] = Field(
        default="stop", description="Whether a failure stops the pipeline"
    )
    timeout_seconds: Optional[float] = Field(default=None, gt=0, description="Step timeout")


class PipelineDefinition(BaseModel):
    """A named, ordered sequence of steps."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(default="inline", min_length=1, description="Pipeline name")
    description: str = Field(default="", description="What the pipeline does")
    steps: List[PipelineStep] = Field(min_length=1, description="Steps in execution order")

    @model_validator(mode="after")
    def check_step_references(self) -> "PipelineDefinition":
        seen: List[str] = []
        for step in self.steps:
            if step.name in seen:
                raise ValueError(f"Duplicate step name: {step.name}")
            for reference in iter_references(step.arguments):
                parts = reference.split(".")
                if parts[0] == "steps" and (len(parts) < 2 or parts[1] not in seen):
                    raise ValueError(
                        f"Step '{step.name}' references '{reference}' "
                        "which is not an earlier step"
                    )
                if parts[0] not in ("steps", "inputs"):
                    raise ValueError(
                        f"Step '{step.name}' has unsupported reference '{reference}'"
                    )
            seen.append(step.name)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump()


def iter_references(value: Any):
    """Yield every ``${...}`` reference inside a nested argument structure."""
    if isinstance(value, str):
        for match in REFERENCE_PATTERN.finditer(value):
            yield match.group(1).strip()
    elif isinstance(value, dict):
        for item in value.values():
            yield from iter_references(item)
    elif isinstance(value, list):
        for item in value:
            yield from iter_references(item)


def resolve_arguments(value: Any, context: Dict[str, Any]) -> Any:
    """
    Substitute references using ``context`` (``{"inputs": ..., "steps": ...}``).

    A string that is exactly one reference resolves to the referenced value
    unchanged; references embedded in longer strings are stringified.

    Raises:
        PipelineError: If a reference cannot be resolved
    """
    if isinstance(value, dict):
        return {key: resolve_arguments(item, context) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve_arguments(item, context) for item in value]
    if not isinstance(value, str):
        return value

    whole = REFERENCE_PATTERN.fullmatch(value.strip())
    if whole:
        return _lookup(whole.group(1).strip(), context)

    return REFERENCE_PATTERN.sub(
        lambda match: str(_lookup(match.group(1).strip(), context)), value
    )


def _lookup(reference: str, context: Dict[str, Any]) -> Any:
    current: Any = context
    for part in reference.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            raise PipelineError(f"Unresolved reference: ${{{reference}}}")
    return current


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED)


class StepStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class StepResult:
    """Outcome of one pipeline step."""

    name: str
    tool: str
    status: StepStatus
    output: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "tool": self.tool,
            "status": self.status.value,
            "output": self.output,
            "error": self.error,
            "duration_ms": self.duration_ms,
        }


@dataclass
class PipelineRun:
    """Execution record of a pipeline."""

    pipeline: PipelineDefinition
    inputs: Dict[str, Any] = field(default_factory=dict)
    session_id: Optional[str] = None
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: RunStatus = RunStatus.PENDING
    steps: List[StepResult] = field(default_factory=list)
    error: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    started_at: Optional[float] = None
    finished_at: Optional[float] = None

    @property
    def outputs(self) -> Dict[str, Any]:
        """Outputs of completed steps keyed by step name."""
        return {
            step.name: step.output
            for step in self.steps
            if step.status == StepStatus.COMPLETED
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "pipeline": self.pipeline.name,
            "status": self.status.value,
            "inputs": self.inputs,
            "steps": [step.to_dict() for step in self.steps],
            "outputs": self.outputs,
            "error": self.error,
            "session_id": self.session_id,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }
