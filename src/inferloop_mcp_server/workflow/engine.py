"""
Pipeline execution engine.

Runs pipeline steps sequentially through the tool registry, schedules
background runs, and keeps a bounded history of run records.
"""

import asyncio
import time
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Union

import structlog
from pydantic import ValidationError

from ..tools.base import ToolNotFoundError, ToolResult
from ..tools.registry import ToolRegistry
from .models import (
    PipelineDefinition,
    PipelineError,
    PipelineRun,
    RunStatus,
    StepResult,
    StepStatus,
    resolve_arguments,
)

logger = structlog.get_logger(__name__)


class WorkflowEngine:
    """
    Executes pipelines of tool calls.

    At most ``max_concurrent_pipelines`` runs execute at once; extra runs
    wait in ``pending``.
    """

    def __init__(
        self,
        tool_registry: ToolRegistry,
        max_concurrent_pipelines: int = 4,
        max_steps: int = 50,
        step_timeout_seconds: float = 300.0,
        max_runs: int = 200,
    ):
        self.tool_registry = tool_registry
        self.max_steps = max_steps
        self.step_timeout_seconds = step_timeout_seconds
        self.max_runs = max_runs
        self._pipelines: Dict[str, PipelineDefinition] = {}
        self._runs: "OrderedDict[str, PipelineRun]" = OrderedDict()
        self._tasks: Dict[str, asyncio.Task] = {}
        self._semaphore = asyncio.Semaphore(max_concurrent_pipelines)

    def register_pipeline(
        self, pipeline: Union[PipelineDefinition, Dict[str, Any]]
    ) -> PipelineDefinition:
        """
        Register a named pipeline.

        Raises:
            PipelineError: If the definition is invalid
        """
        definition = self._build_definition(pipeline)
        self._pipelines[definition.name] = definition
        logger.info("Registered pipeline", pipeline=definition.name, steps=len(definition.steps))
        return definition

    def get_pipeline(self, name: str) -> Optional[PipelineDefinition]:
        return self._pipelines.get(name)

    def list_pipelines(self) -> List[PipelineDefinition]:
        return list(self._pipelines.values())

    def resolve(
        self,
        pipeline: Optional[str] = None,
        steps: Optional[List[Dict[str, Any]]] = None,
        name: Optional[str] = None,
    ) -> PipelineDefinition:
        """
        Resolve a registered pipeline name or an inline step list.

        Raises:
            PipelineError: If neither or both are given, the name is
                unknown, or the inline steps are invalid
        """
        if (pipeline is None) == (steps is None):
            raise PipelineError("Provide either a pipeline name or inline steps")

        if pipeline is not None:
            definition = self._pipelines.get(pipeline)
            if definition is None:
                raise PipelineError(f"Unknown pipeline: {pipeline}")
            return definition

        return self._build_definition({"name": name or "inline", "steps": steps})

    def _build_definition(
        self, pipeline: Union[PipelineDefinition, Dict[str, Any]]
    ) -> PipelineDefinition:
        try:
            definition = (
                pipeline
                if isinstance(pipeline, PipelineDefinition)
                else PipelineDefinition.model_validate(pipeline)
            )
        except ValidationError as e:
            raise PipelineError(f"Invalid pipeline definition: {e}") from e

        if len(definition.steps) > self.max_steps:
            raise PipelineError(
                f"Pipeline '{definition.name}' has {len(definition.steps)} steps "
                f"(maximum {self.max_steps})"
            )
        return definition

    async def execute(
        self,
        pipeline: PipelineDefinition,
        inputs: Optional[Dict[str, Any]] = None,
        session_id: Optional[str] = None,
    ) -> PipelineRun:
        """Run a pipeline to completion and return its record."""
        run = self._new_run(pipeline, inputs, session_id)
        await self._run(run)
        return run

    def submit(
        self,
        pipeline: PipelineDefinition,
        inputs: Optional[Dict[str, Any]] = None,
        session_id: Optional[str] = None,
    ) -> PipelineRun:
        """Schedule a pipeline in the background and return its pending record."""
        run = self._new_run(pipeline, inputs, session_id)
        task = asyncio.get_running_loop().create_task(self._run(run))
        self._tasks[run.run_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(run.run_id, None))

        logger.info("Scheduled pipeline run", pipeline=pipeline.name, run_id=run.run_id)
        return run

    async def wait(self, run_id: str) -> Optional[PipelineRun]:
        """
        Wait for a submitted run to finish.

        Cancelling the waiter cancels the run; a run cancelled elsewhere
        just ends the wait.
        """
        task = self._tasks.get(run_id)
        if task is not None:
            try:
                await asyncio.wait({task})
            except asyncio.CancelledError:
                task.cancel()
                raise
        return self._runs.get(run_id)

    def get_run(self, run_id: str) -> Optional[PipelineRun]:
        return self._runs.get(run_id)

    def list_runs(self) -> List[PipelineRun]:
        return list(self._runs.values())

    async def cancel(self, run_id: str) -> bool:
        """
        Cancel a scheduled or running pipeline.

        Returns:
            True if the run was cancelled, False if unknown or already finished
        """
        run = self._runs.get(run_id)
        if run is None or run.status.is_terminal:
            return False

        task = self._tasks.get(run_id)
        if task is None:
            return False

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

        # A task cancelled before its first step never reached _run
        if not run.status.is_terminal:
            self._mark_cancelled(run)
        return run.status == RunStatus.CANCELLED

    async def shutdown(self) -> None:
        """Cancel every background run."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            for run in self._runs.values():
                if not run.status.is_terminal:
                    self._mark_cancelled(run)
            logger.info("Cancelled pipeline runs on shutdown", count=len(tasks))

    def _new_run(
        self,
        pipeline: PipelineDefinition,
        inputs: Optional[Dict[str, Any]],
        session_id: Optional[str],
    ) -> PipelineRun:
        run = PipelineRun(pipeline=pipeline, inputs=inputs or {}, session_id=session_id)
        self._runs[run.run_id] = run
        self._prune_runs()
        return run

    def _prune_runs(self) -> None:
        excess = len(self._runs) - self.max_runs
        if excess <= 0:
            return
        finished = [run_id for run_id, run in self._runs.items() if run.status.is_terminal]
        for run_id in finished[:excess]:
            del self._runs[run_id]

    async def _run(self, run: PipelineRun) -> None:
        try:
            async with self._semaphore:
                run.status = RunStatus.RUNNING
                run.started_at = time.time()
                logger.info("Pipeline started", pipeline=run.pipeline.name, run_id=run.run_id)
                await self._execute_steps(run)
        except asyncio.CancelledError:
            self._mark_cancelled(run)
            logger.info("Pipeline cancelled", pipeline=run.pipeline.name, run_id=run.run_id)
            raise
        except Exception as e:
            run.status = RunStatus.FAILED
            run.error = f"Pipeline error: {e}"
            self._skip_remaining(run)
            logger.error(
                "Pipeline crashed",
                pipeline=run.pipeline.name,
                run_id=run.run_id,
                error=str(e),
                exc_info=True,
            )
        finally:
            run.finished_at = time.time()
            self._prune_runs()

    async def _execute_steps(self, run: PipelineRun) -> None:
        context: Dict[str, Any] = {"inputs": run.inputs, "steps": {}}

        for step in run.pipeline.steps:
            start = time.monotonic()
            try:
                arguments = resolve_arguments(step.arguments, context)
                result = await self._call_step(step.tool, arguments, step.timeout_seconds)
            except (PipelineError, ToolNotFoundError) as e:
                result = ToolResult.error(str(e), "pipeline_error")

            duration_ms = round((time.monotonic() - start) * 1000, 3)

            if result.is_error:
                error_message = (result.data or {}).get("message") or result.output.get("text")
                run.steps.append(
                    StepResult(
                        name=step.name,
                        tool=step.tool,
                        status=StepStatus.FAILED,
                        output=result.data,
                        error=error_message,
                        duration_ms=duration_ms,
                    )
                )
                logger.warning(
                    "Pipeline step failed",
                    pipeline=run.pipeline.name,
                    run_id=run.run_id,
                    step=step.name,
                    error=error_message,
                )
                if step.on_failure == "stop":
                    run.status = RunStatus.FAILED
                    run.error = f"Step '{step.name}' failed: {error_message}"
                    self._skip_remaining(run)
                    return
                continue

            output = result.output
            context["steps"][step.name] = output
            run.steps.append(
                StepResult(
                    name=step.name,
                    tool=step.tool,
                    status=StepStatus.COMPLETED,
                    output=output,
                    duration_ms=duration_ms,
                )
            )

        run.status = RunStatus.COMPLETED
        logger.info(
            "Pipeline completed",
            pipeline=run.pipeline.name,
            run_id=run.run_id,
            failed_steps=sum(1 for s in run.steps if s.status == StepStatus.FAILED),
        )

    async def _call_step(
        self, tool: str, arguments: Dict[str, Any], timeout_seconds: Optional[float]
    ) -> ToolResult:
        timeout = timeout_seconds
        if timeout is None:
            # A tool that declares a longer timeout keeps it inside pipelines
            registered = self.tool_registry.get(tool)
            tool_timeout = registered.timeout_seconds if registered is not None else None
            timeout = max(self.step_timeout_seconds, tool_timeout or 0)
        try:
            return await asyncio.wait_for(self.tool_registry.call(tool, arguments), timeout)
        except asyncio.TimeoutError:
            return ToolResult.error(f"Step timed out after {timeout:g}s", "timeout")

    def _mark_cancelled(self, run: PipelineRun) -> None:
        run.status = RunStatus.CANCELLED
        run.error = "Pipeline run cancelled"
        run.finished_at = time.time()
        self._skip_remaining(run)

    def _skip_remaining(self, run: PipelineRun) -> None:
        done = {step.name for step in run.steps}
        for step in run.pipeline.steps:
            if step.name not in done:
                run.steps.append(
                    StepResult(name=step.name, tool=step.tool, status=StepStatus.SKIPPED)
                )

    def get_stats(self) -> Dict[str, Any]:
        by_status: Dict[str, int] = {}
        for run in self._runs.values():
            by_status[run.status.value] = by_status.get(run.status.value, 0) + 1
        return {
            "pipelines": sorted(self._pipelines),
            "runs": len(self._runs),
            "active_runs": len(self._tasks),
            "runs_by_status": by_status,
        }
