"""
Base classes for MCP tools.

Provides common functionality and interfaces for all Inferloop tools,
including validation, error handling, and result formatting.
"""

import copy
import json
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import structlog

from ..protocol.schemas import Tool, ToolParameter, ToolSchema

logger = structlog.get_logger(__name__)


class ToolError(Exception):
    """Base exception for tool execution errors."""

    def __init__(
        self, message: str, code: str = "tool_error", details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


class ToolValidationError(ToolError):
    """Error for invalid tool arguments."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="validation_error", details=details)


class ToolExecutionError(ToolError):
    """Error during tool execution."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="execution_error", details=details)


class ToolNotFoundError(ToolError):
    """Error for calls to a tool that is not registered."""

    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}", code="unknown_tool", details={"tool": name})


class ToolResult:
    """Standardized tool result format."""

    def __init__(
        self,
        content: List[Dict[str, Any]],
        is_error: bool = False,
        data: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ):
        self.content = content
        self.is_error = is_error
        self.data = data
        self.metadata = metadata or {}
        self.error_code = error_code

    @classmethod
    def success(
        cls,
        text: str,
        data: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "ToolResult":
        """Create a successful result with text content."""
        content = [{"type": "text", "text": text}]

        # Hosts without structuredContent support still see the data
        if data:
            content[0]["text"] += f"\n\nStructured Data:\n```json\n{_dump(data)}\n```"

        return cls(content=content, is_error=False, data=data, metadata=metadata)

    @classmethod
    def error(
        cls,
        message: str,
        error_code: str = "tool_error",
        details: Optional[Dict[str, Any]] = None,
    ) -> "ToolResult":
        """Create an error result."""
        error_text = f"Error: {message}"

        if details:
            error_text += (
                "\n\nError Details:\n```json\n"
                f"{_dump({'error_code': error_code, 'details': details})}\n```"
            )

        content = [{"type": "text", "text": error_text}]
        return cls(
            content=content,
            is_error=True,
            data={"error_code": error_code, "message": message, "details": details or {}},
            error_code=error_code,
        )

    @classmethod
    def data_result(
        cls,
        data: Dict[str, Any],
        description: str = "Tool execution result",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "ToolResult":
        """Create a result whose text is only a rendering of structured data."""
        content = [{"type": "text", "text": f"{description}\n\n```json\n{_dump(data)}\n```"}]
        return cls(content=content, is_error=False, data=data, metadata=metadata)

    def clone(self, **metadata: Any) -> "ToolResult":
        """Independent copy with extra metadata merged in."""
        return ToolResult(
            content=copy.deepcopy(self.content),
            is_error=self.is_error,
            data=copy.deepcopy(self.data),
            metadata={**copy.deepcopy(self.metadata), **metadata},
            error_code=self.error_code,
        )

    @property
    def output(self) -> Dict[str, Any]:
        """Structured output for pipeline chaining."""
        if self.data is not None:
            return self.data
        return {"text": "\n".join(item.get("text", "") for item in self.content)}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format for MCP response."""
        result: Dict[str, Any] = {
            "content": self.content,
            "isError": self.is_error,
        }

        if self.data is not None:
            result["structuredContent"] = self.data

        if self.metadata:
            result["_meta"] = self.metadata

        return result


def _dump(data: Any) -> str:
    return json.dumps(data, indent=2, default=str)


_JSON_TYPES = {
    "string": (str,),
    "number": (int, float),
    "integer": (int,),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list,),
}


class BaseTool(ABC):
    """
    Base class for all MCP tools.

    Provides common functionality including argument validation,
    error handling, and result formatting.
    """

    # Tool metadata (must be defined by subclasses)
    name: str = ""
    description: str = ""
    # Results of cacheable tools are reused for identical arguments
    cacheable: bool = False
    # Overrides the registry call timeout when set
    timeout_seconds: Optional[float] = None

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize tool with configuration.

        Args:
            config: Tool-specific configuration
        """
        self.config = config or {}
        self.logger = logger.bind(tool=self.name)

    @abstractmethod
    def get_schema(self) -> Tool:
        """
        Get the tool schema definition.

        Returns:
            Tool schema for MCP protocol
        """

    @abstractmethod
    async def execute(self, arguments: Dict[str, Any]) -> ToolResult:
        """
        Execute the tool with given arguments.

        Args:
            arguments: Validated tool arguments

        Returns:
            Tool execution result

        Raises:
            ToolError: If execution fails
        """

    async def run(self, arguments: Dict[str, Any]) -> ToolResult:
        """
        Validate arguments, execute, and turn failures into error results.

        Never raises for tool-level failures; cancellation propagates.
        """
        try:
            self.logger.info("Executing tool", arguments=arguments)

            self._validate_arguments(arguments)
            result = await self.execute(arguments)

            self.logger.info("Tool execution completed", success=not result.is_error)
            return result

        except ToolError as e:
            self.logger.warning(
                "Tool execution failed",
                error_code=e.code,
                error_message=e.message,
                details=e.details,
            )
            return ToolResult.error(e.message, e.code, e.details)

        except Exception as e:
            self.logger.error("Unexpected tool error", error=str(e), exc_info=True)
            return ToolResult.error(
                "Internal tool error",
                "internal_error",
                {"exception": str(e)},
            )

    async def __call__(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        """Make tool callable; returns the MCP result dictionary."""
        result = await self.run(arguments)
        return result.to_dict()

    def _validate_arguments(self, arguments: Dict[str, Any]) -> None:
        """
        Validate tool arguments against schema.

        Raises:
            ToolValidationError: If validation fails
        """
        if not isinstance(arguments, dict):
            raise ToolValidationError("Arguments must be an object")

        schema = self.get_schema()

        for required_param in schema.inputSchema.required:
            if arguments.get(required_param) is None:
                raise ToolValidationError(
                    f"Missing required parameter: {required_param}",
                    details={"missing_parameter": required_param},
                )

        unknown = sorted(set(arguments) - set(schema.inputSchema.properties))
        if unknown:
            raise ToolValidationError(
                f"Unknown parameters: {', '.join(unknown)}",
                details={"unknown_parameters": unknown},
            )

        for param_name, param_value in arguments.items():
            if param_value is None:
                continue
            self._validate_parameter(
                param_name, param_value, schema.inputSchema.properties[param_name]
            )

    def _validate_parameter(self, name: str, value: Any, definition: ToolParameter) -> None:
        """
        Validate a single parameter.

        Raises:
            ToolValidationError: If validation fails
        """
        expected = _JSON_TYPES.get(definition.type)
        # bool is a subclass of int but never a valid JSON number
        if expected and (
            not isinstance(value, expected)
            or (isinstance(value, bool) and definition.type != "boolean")
        ):
            raise ToolValidationError(
                f"Parameter '{name}' must be of type {definition.type}",
                details={
                    "parameter": name,
                    "expected_type": definition.type,
                    "actual_type": type(value).__name__,
                },
            )

        if definition.enum and value not in definition.enum:
            raise ToolValidationError(
                f"Parameter '{name}' must be one of: {definition.enum}",
                details={
                    "parameter": name,
                    "allowed_values": definition.enum,
                    "actual_value": value,
                },
            )

        if definition.type in ("number", "integer"):
            if definition.minimum is not None and value < definition.minimum:
                raise ToolValidationError(
                    f"Parameter '{name}' must be >= {definition.minimum:g}",
                    details={"parameter": name, "minimum": definition.minimum, "actual_value": value},
                )
            if definition.maximum is not None and value > definition.maximum:
                raise ToolValidationError(
                    f"Parameter '{name}' must be <= {definition.maximum:g}",
                    details={"parameter": name, "maximum": definition.maximum, "actual_value": value},
                )

    def _create_parameter(
        self,
        param_type: str,
        description: str,
        enum: Optional[List[Any]] = None,
        default: Optional[Any] = None,
        minimum: Optional[float] = None,
        maximum: Optional[float] = None,
        items: Optional[Dict[str, Any]] = None,
    ) -> ToolParameter:
        """Helper to create JSON Schema parameter definitions."""
        return ToolParameter(
            type=param_type,
            description=description,
            enum=enum,
            default=default,
            minimum=minimum,
            maximum=maximum,
            items=items,
        )

    def _create_schema(
        self,
        parameters: Dict[str, ToolParameter],
        required: List[str],
    ) -> Tool:
        """Helper to create tool schema with proper JSON Schema format."""
        return Tool(
            name=self.name,
            description=self.description,
            inputSchema=ToolSchema(type="object", properties=parameters, required=required),
        )
