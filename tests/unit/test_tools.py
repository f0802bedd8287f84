"""
Unit tests for MCP tools.
"""

import pytest

from inferloop_mcp_server.client.icp_client import ICPClientError
from inferloop_mcp_server.tools.base import ToolResult
from inferloop_mcp_server.tools.cancel_job import CancelJobTool
from inferloop_mcp_server.tools.generate_synthetic_data import GenerateSyntheticDataTool
from inferloop_mcp_server.tools.get_job_status import GetJobStatusTool
from inferloop_mcp_server.tools.list_datasets import ListDatasetsTool
from inferloop_mcp_server.tools.list_generators import ListGeneratorsTool
from inferloop_mcp_server.tools.validate_dataset import ValidateDatasetTool
from inferloop_mcp_server.validation.gatf import GATFValidator


class TestToolResult:
    """Test ToolResult class."""

    def test_success_result(self):
        """Test creating success result."""
        result = ToolResult.success("Operation completed", data={"id": 123})

        result_dict = result.to_dict()
        assert result_dict["isError"] is False
        assert "Operation completed" in result_dict["content"][0]["text"]
        assert '"id": 123' in result_dict["content"][0]["text"]
        assert result_dict["structuredContent"] == {"id": 123}

    def test_error_result(self):
        """Test creating error result."""
        result = ToolResult.error("Something went wrong", "test_error", {"detail": "info"})

        result_dict = result.to_dict()
        assert result_dict["isError"] is True
        assert result.error_code == "test_error"
        assert "Error: Something went wrong" in result_dict["content"][0]["text"]
        assert result_dict["structuredContent"]["details"] == {"detail": "info"}

    def test_output_falls_back_to_text(self):
        result = ToolResult(content=[{"type": "text", "text": "plain"}])

        assert result.output == {"text": "plain"}
        assert "structuredContent" not in result.to_dict()


class TestArgumentValidation:
    """Test BaseTool argument validation through run()."""

    async def test_missing_required_parameter(self, echo_tool):
        result = await echo_tool.run({})

        assert result.is_error
        assert result.error_code == "validation_error"
        assert result.data["details"] == {"missing_parameter": "message"}

    async def test_unknown_parameter(self, echo_tool):
        result = await echo_tool.run({"message": "hi", "colour": "red"})

        assert result.error_code == "validation_error"
        assert result.data["details"]["unknown_parameters"] == ["colour"]

    async def test_boolean_is_not_an_integer(self, echo_tool):
        result = await echo_tool.run({"message": "hi", "count": True})

        assert result.error_code == "validation_error"
        assert result.data["details"]["expected_type"] == "integer"

    async def test_numeric_bounds(self, echo_tool):
        too_big = await echo_tool.run({"message": "hi", "count": 6})
        too_small = await echo_tool.run({"message": "hi", "count": 0})

        assert too_big.data["details"]["maximum"] == 5
        assert too_small.data["details"]["minimum"] == 1
        assert echo_tool.calls == 0

    async def test_tool_error_becomes_error_result(self, echo_tool):
        result = await echo_tool({"message": "hi", "fail": True})

        assert result["isError"] is True
        assert result["structuredContent"]["error_code"] == "echo_refused"


class TestListGeneratorsTool:
    async def test_lists_generators(self, mock_icp_client):
        tool = ListGeneratorsTool(mock_icp_client, {})

        result = await tool.run({})

        assert not result.is_error
        assert result.data["count"] == 2
        assert "tabular" in result.content[0]["text"]
        assert tool.cacheable

    async def test_platform_error(self, mock_icp_client):
        mock_icp_client.list_generators.side_effect = ICPClientError("down", status=503)
        tool = ListGeneratorsTool(mock_icp_client, {})

        result = await tool.run({})

        assert result.error_code == "icp_error"
        assert result.data["details"] == {"status": 503}


class TestGenerateSyntheticDataTool:
    """Test generate_synthetic_data tool."""

    @pytest.fixture
    def tool(self, mock_icp_client):
        return GenerateSyntheticDataTool(mock_icp_client, {"max_rows": 1000})

    def test_schema(self, tool):
        schema = tool.get_schema()

        assert schema.name == "generate_synthetic_data"
        assert schema.inputSchema.required == ["generator", "num_rows"]
        assert schema.inputSchema.properties["num_rows"].maximum == 1000

    def test_waiting_extends_call_timeout(self, tool, icp_config):
        assert tool.timeout_seconds > icp_config.job_timeout_seconds

    async def test_submit_without_wait(self, tool, mock_icp_client):
        result = await tool.run({"generator": "tabular", "num_rows": 100, "seed": 7})

        assert not result.is_error
        assert result.data == {
            "job": mock_icp_client.create_generation_job.return_value,
            "waited": False,
        }
        mock_icp_client.create_generation_job.assert_called_once_with(
            generator="tabular", num_rows=100, schema=None, seed=7, options=None
        )
        mock_icp_client.wait_for_job.assert_not_called()

    async def test_submit_and_wait(self, tool, mock_icp_client):
        result = await tool.run({"generator": "tabular", "num_rows": 100, "wait": True})

        assert result.data["job"]["status"] == "completed"
        assert result.data["job"]["dataset_id"] == "ds-1"
        mock_icp_client.wait_for_job.assert_called_once_with("job-1", timeout=None)

    async def test_failed_job_is_error(self, tool, mock_icp_client):
        mock_icp_client.wait_for_job.return_value = {
            "id": "job-1",
            "status": "failed",
            "error": "schema mismatch",
        }

        result = await tool.run({"generator": "tabular", "num_rows": 100, "wait": True})

        assert result.is_error
        assert result.error_code == "job_failed"
        assert "schema mismatch" in result.data["message"]

    async def test_row_limit(self, tool, mock_icp_client):
        result = await tool.run({"generator": "tabular", "num_rows": 5000})

        assert result.error_code == "validation_error"
        mock_icp_client.create_generation_job.assert_not_called()

    async def test_blank_generator(self, tool):
        result = await tool.run({"generator": "  ", "num_rows": 10})

        assert result.error_code == "empty_generator"


class TestJobTools:
    async def test_get_job_status(self, mock_icp_client):
        tool = GetJobStatusTool(mock_icp_client, {})

        result = await tool.run({"job_id": "job-1"})

        assert result.data["job"]["status"] == "running"
        assert "40% complete" in result.content[0]["text"]

    async def test_get_job_status_not_found(self, mock_icp_client):
        mock_icp_client.get_job.side_effect = ICPClientError("missing", status=404)
        tool = GetJobStatusTool(mock_icp_client, {})

        result = await tool.run({"job_id": "job-9"})

        assert result.error_code == "not_found"

    async def test_cancel_job(self, mock_icp_client):
        tool = CancelJobTool(mock_icp_client, {})

        result = await tool.run({"job_id": "job-1"})

        assert not result.is_error
        assert result.data["job"]["status"] == "cancelled"
        mock_icp_client.cancel_job.assert_called_once_with("job-1")

    async def test_cancel_finished_job(self, mock_icp_client):
        mock_icp_client.cancel_job.side_effect = ICPClientError("already done", status=409)
        tool = CancelJobTool(mock_icp_client, {})

        result = await tool.run({"job_id": "job-1"})

        assert result.error_code == "conflict"


class TestListDatasetsTool:
    async def test_default_limit(self, mock_icp_client):
        tool = ListDatasetsTool(mock_icp_client, {"max_results": 50, "default_limit": 10})

        result = await tool.run({})

        assert result.data["count"] == 2
        mock_icp_client.list_datasets.assert_called_once_with(limit=10)

    async def test_limit_above_maximum(self, mock_icp_client):
        tool = ListDatasetsTool(mock_icp_client, {"max_results": 50, "default_limit": 10})

        result = await tool.run({"limit": 51})

        assert result.error_code == "validation_error"


class TestValidateDatasetTool:
    """Test validate_dataset tool."""

    @pytest.fixture
    def tool(self, mock_icp_client):
        return ValidateDatasetTool(
            mock_icp_client,
            {"default_sample_size": 500, "max_sample_size": 1000},
            validator=GATFValidator(),
        )

    async def test_validate_stored_dataset(self, tool, mock_icp_client):
        result = await tool.run(
            {
                "dataset_id": "ds-1",
                "schema": {"columns": {"age": {"type": "integer", "min": 18, "max": 99}}},
            }
        )

        assert not result.is_error
        assert result.data["passed"] is True
        assert result.data["dataset_id"] == "ds-1"
        assert result.data["row_count"] == 3
        mock_icp_client.get_dataset_sample.assert_called_once_with("ds-1", limit=500)

    async def test_failed_validation_is_not_a_tool_error(self, tool):
        result = await tool.run(
            {
                "rows": [{"plan": "pro"}, {"plan": "enterprise"}],
                "schema": {"columns": {"plan": {"allowed": ["free", "pro"]}}},
            }
        )

        assert not result.is_error
        assert result.data["passed"] is False
        assert "schema.plan.allowed" in result.content[0]["text"]

    async def test_requires_exactly_one_source(self, tool):
        neither = await tool.run({})
        both = await tool.run({"dataset_id": "ds-1", "rows": []})

        assert neither.error_code == "validation_error"
        assert both.error_code == "validation_error"

    async def test_rows_must_be_objects(self, tool):
        result = await tool.run({"rows": [1, 2, 3]})

        assert result.error_code == "validation_error"

    async def test_dataset_not_found(self, tool, mock_icp_client):
        mock_icp_client.get_dataset_sample.side_effect = ICPClientError("missing", status=404)

        result = await tool.run({"dataset_id": "ds-x"})

        assert result.error_code == "not_found"
