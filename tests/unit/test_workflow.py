"""
Unit tests for the pipeline workflow engine.
"""

import asyncio
from typing import Any, Dict

import pytest

from inferloop_mcp_server.protocol.schemas import Tool
from inferloop_mcp_server.tools.base import BaseTool, ToolResult
from inferloop_mcp_server.workflow.engine import WorkflowEngine
from inferloop_mcp_server.workflow.models import (
    PipelineDefinition,
    PipelineError,
    RunStatus,
    StepStatus,
    resolve_arguments,
)


class BlockingTool(BaseTool):
    name = "block"
    description = "Waits until released"

    def __init__(self):
        super().__init__()
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    def get_schema(self) -> Tool:
        return self._create_schema(parameters={}, required=[])

    async def execute(self, arguments: Dict[str, Any]) -> ToolResult:
        self.started.set()
        await self.release.wait()
        return ToolResult.success("released", data={"released": True})


def pipeline(*steps, name="test"):
    return PipelineDefinition.model_validate({"name": name, "steps": list(steps)})


def echo_step(name, message, **extra):
    return {"name": name, "tool": "echo", "arguments": {"message": message}, **extra}


class TestTemplating:
    def test_whole_reference_keeps_type(self):
        context = {"inputs": {"schema": {"columns": {}}, "n": 5}, "steps": {}}

        assert resolve_arguments({"rows": "${inputs.n}"}, context) == {"rows": 5}
        assert resolve_arguments("${inputs.schema}", context) == {"columns": {}}

    def test_embedded_reference_is_stringified(self):
        context = {"inputs": {"n": 5}, "steps": {"gen": {"job": {"id": "job-1"}}}}

        assert resolve_arguments("rows=${inputs.n} job=${steps.gen.job.id}", context) == (
            "rows=5 job=job-1"
        )

    def test_list_index_lookup(self):
        context = {"inputs": {}, "steps": {"ls": {"datasets": [{"id": "ds-1"}]}}}

        assert resolve_arguments("${steps.ls.datasets.0.id}", context) == "ds-1"

    def test_unresolved_reference(self):
        with pytest.raises(PipelineError):
            resolve_arguments("${inputs.missing}", {"inputs": {}, "steps": {}})


class TestPipelineDefinition:
    def test_requires_steps(self):
        with pytest.raises(ValueError):
            PipelineDefinition.model_validate({"name": "empty", "steps": []})

    def test_duplicate_step_names(self):
        with pytest.raises(ValueError):
            pipeline(echo_step("a", "x"), echo_step("a", "y"))

    def test_reference_to_later_step(self):
        with pytest.raises(ValueError):
            pipeline(echo_step("a", "${steps.b.message}"), echo_step("b", "x"))

    def test_unsupported_reference_root(self):
        with pytest.raises(ValueError):
            pipeline(echo_step("a", "${env.HOME}"))


class TestWorkflowEngine:
    async def test_sequential_execution_with_references(self, workflow_engine):
        definition = pipeline(
            echo_step("first", "${inputs.word}"),
            echo_step("second", "${steps.first.message}-${steps.first.length}"),
        )

        run = await workflow_engine.execute(definition, {"word": "abc"})

        assert run.status == RunStatus.COMPLETED
        assert run.outputs["second"]["message"] == "abc-3"
        assert [step.status for step in run.steps] == [StepStatus.COMPLETED] * 2
        assert run.started_at is not None and run.finished_at is not None

    async def test_stop_on_failure_skips_remaining(self, workflow_engine):
        definition = pipeline(
            echo_step("ok", "x"),
            {"name": "bad", "tool": "echo", "arguments": {"message": "x", "fail": True}},
            echo_step("never", "x"),
        )

        run = await workflow_engine.execute(definition)

        assert run.status == RunStatus.FAILED
        assert [step.status for step in run.steps] == [
            StepStatus.COMPLETED,
            StepStatus.FAILED,
            StepStatus.SKIPPED,
        ]
        assert run.steps[1].error == "Echo refused"
        assert "bad" in run.error

    async def test_continue_on_failure(self, workflow_engine):
        definition = pipeline(
            {
                "name": "bad",
                "tool": "echo",
                "arguments": {"message": "x", "fail": True},
                "on_failure": "continue",
            },
            echo_step("after", "y"),
        )

        run = await workflow_engine.execute(definition)

        assert run.status == RunStatus.COMPLETED
        assert run.steps[0].status == StepStatus.FAILED
        assert run.outputs == {"after": {"message": "y", "length": 1}}

    async def test_unknown_tool_fails_step(self, workflow_engine):
        run = await workflow_engine.execute(pipeline({"name": "a", "tool": "missing"}))

        assert run.status == RunStatus.FAILED
        assert run.steps[0].output["error_code"] == "pipeline_error"

    async def test_unresolved_input_fails_step(self, workflow_engine):
        run = await workflow_engine.execute(pipeline(echo_step("a", "${inputs.nope}")))

        assert run.status == RunStatus.FAILED
        assert "inputs.nope" in run.steps[0].error

    def test_register_and_resolve(self, workflow_engine):
        workflow_engine.register_pipeline({"name": "named", "steps": [echo_step("a", "x")]})

        assert workflow_engine.resolve(pipeline="named").name == "named"
        assert workflow_engine.resolve(steps=[echo_step("a", "x")]).name == "inline"
        assert [p.name for p in workflow_engine.list_pipelines()] == ["named"]

    def test_resolve_errors(self, workflow_engine):
        with pytest.raises(PipelineError):
            workflow_engine.resolve()
        with pytest.raises(PipelineError):
            workflow_engine.resolve(pipeline="unknown")
        with pytest.raises(PipelineError):
            workflow_engine.resolve(steps=[{"name": "a"}])

    def test_max_steps(self, workflow_engine):
        steps = [echo_step(f"s{i}", "x") for i in range(6)]

        with pytest.raises(PipelineError):
            workflow_engine.register_pipeline({"name": "long", "steps": steps})

    async def test_submit_and_cancel(self, tool_registry):
        blocking = BlockingTool()
        tool_registry.register(blocking)
        engine = WorkflowEngine(tool_registry)

        run = engine.submit(pipeline({"name": "wait", "tool": "block"}, echo_step("b", "x")))
        assert run.status == RunStatus.PENDING

        await asyncio.wait_for(blocking.started.wait(), 1)
        assert engine.get_run(run.run_id).status == RunStatus.RUNNING

        assert await engine.cancel(run.run_id)
        assert run.status == RunStatus.CANCELLED
        assert [step.status for step in run.steps] == [StepStatus.SKIPPED] * 2
        assert not await engine.cancel(run.run_id)

    async def test_cancel_before_start(self, workflow_engine):
        run = workflow_engine.submit(pipeline(echo_step("a", "x")))

        assert await workflow_engine.cancel(run.run_id)
        assert run.status == RunStatus.CANCELLED

    async def test_submitted_run_completes(self, workflow_engine):
        run = workflow_engine.submit(pipeline(echo_step("a", "x")))

        for _ in range(50):
            if run.status.is_terminal:
                break
            await asyncio.sleep(0.01)

        assert run.status == RunStatus.COMPLETED

    async def test_old_runs_are_pruned(self, tool_registry):
        engine = WorkflowEngine(tool_registry, max_runs=3)
        definition = pipeline(echo_step("a", "x"))

        runs = [await engine.execute(definition) for _ in range(5)]

        assert len(engine.list_runs()) == 3
        assert engine.get_run(runs[0].run_id) is None
        assert engine.get_run(runs[-1].run_id) is not None

    async def test_shutdown_cancels_background_runs(self, tool_registry):
        blocking = BlockingTool()
        tool_registry.register(blocking)
        engine = WorkflowEngine(tool_registry)
        run = engine.submit(pipeline({"name": "wait", "tool": "block"}))
        await asyncio.wait_for(blocking.started.wait(), 1)

        await engine.shutdown()

        assert run.status == RunStatus.CANCELLED
        assert engine.get_stats()["active_runs"] == 0

    async def test_tool_timeout_outlasts_step_default(self, tool_registry):
        class PatientTool(BlockingTool):
            name = "patient"
            timeout_seconds = 1.0

        patient = PatientTool()
        tool_registry.register(patient)
        engine = WorkflowEngine(tool_registry, step_timeout_seconds=0.05)

        run = engine.submit(pipeline({"name": "wait", "tool": "patient"}))
        await asyncio.wait_for(patient.started.wait(), 1)
        await asyncio.sleep(0.2)
        patient.release.set()
        await engine.wait(run.run_id)

        assert run.status == RunStatus.COMPLETED
        assert run.steps[0].status == StepStatus.COMPLETED

    async def test_step_timeout_still_applies_to_plain_tools(self, tool_registry):
        blocking = BlockingTool()
        tool_registry.register(blocking)
        engine = WorkflowEngine(tool_registry, step_timeout_seconds=0.05)

        run = await engine.execute(pipeline({"name": "wait", "tool": "block"}))

        assert run.status == RunStatus.FAILED
        assert run.steps[0].status == StepStatus.FAILED
        assert "timed out" in run.steps[0].error

    async def test_wait_returns_finished_run(self, workflow_engine):
        run = workflow_engine.submit(pipeline(echo_step("a", "x")))

        assert await workflow_engine.wait(run.run_id) is run
        assert run.status == RunStatus.COMPLETED

    async def test_cancelling_waiter_cancels_run(self, tool_registry):
        blocking = BlockingTool()
        tool_registry.register(blocking)
        engine = WorkflowEngine(tool_registry)
        run = engine.submit(pipeline({"name": "wait", "tool": "block"}))
        waiter = asyncio.ensure_future(engine.wait(run.run_id))
        await asyncio.wait_for(blocking.started.wait(), 1)

        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        for _ in range(50):
            if run.status.is_terminal:
                break
            await asyncio.sleep(0.01)
        assert run.status == RunStatus.CANCELLED
