"""
MCP Protocol message schemas and data structures.

Defines the JSON-RPC 2.0 message formats for the Model Context Protocol,
including requests, responses, and error handling.
"""

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

# Newest first; used for version negotiation during initialize
SUPPORTED_PROTOCOL_VERSIONS = ["2025-06-18", "2025-03-26", "2024-11-05"]
LATEST_PROTOCOL_VERSION = SUPPORTED_PROTOCOL_VERSIONS[0]

# JSON-RPC 2.0 error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
# Server-defined error codes
SESSION_NOT_FOUND = -32001
NOT_INITIALIZED = -32002
REQUEST_CANCELLED = -32800


class MCPError(Exception):
    """Base exception for MCP protocol errors."""

    def __init__(
        self,
        message: str,
        code: int = -32000,
        data: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.data = data or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to JSON-RPC error format."""
        error_dict: Dict[str, Any] = {
            "code": self.code,
            "message": self.message,
        }
        if self.data:
            error_dict["data"] = self.data
        return error_dict


class MCPValidationError(MCPError):
    """Error for invalid request parameters."""

    def __init__(self, message: str, data: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=INVALID_PARAMS, data=data)


class MCPMethodNotFoundError(MCPError):
    """Error for unknown method calls."""

    def __init__(self, method: str):
        super().__init__(f"Method not found: {method}", code=METHOD_NOT_FOUND)


class MCPInternalError(MCPError):
    """Error for internal server issues."""

    def __init__(self, message: str, data: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=INTERNAL_ERROR, data=data)


class MCPNotInitializedError(MCPError):
    """Request arrived before the session completed initialize."""

    def __init__(self):
        super().__init__("Session not initialized", code=NOT_INITIALIZED)


class MCPSessionNotFoundError(MCPError):
    """Request named a session that does not exist or has expired."""

    def __init__(self, session_id: str):
        super().__init__(
            f"Session not found: {session_id}",
            code=SESSION_NOT_FOUND,
            data={"session_id": session_id},
        )


class MCPRequestCancelledError(MCPError):
    """The client cancelled the request with notifications/cancelled."""

    def __init__(self, request_id: Union[str, int]):
        super().__init__(
            "Request cancelled",
            code=REQUEST_CANCELLED,
            data={"request_id": request_id},
        )


# Base message types
class MCPMessage(BaseModel):
    """Base class for all MCP messages."""

    model_config = ConfigDict(extra="forbid")

    jsonrpc: Literal["2.0"] = Field(default="2.0", description="JSON-RPC version")


class MCPRequest(MCPMessage):
    """Base class for MCP requests."""

    id: Union[str, int] = Field(description="Request ID")
    method: str = Field(description="Method name")
    params: Optional[Dict[str, Any]] = Field(default=None, description="Method parameters")

    @property
    def arguments(self) -> Dict[str, Any]:
        """Params as a dict, empty when omitted."""
        return self.params or {}


class MCPResponse(MCPMessage):
    """Base class for MCP responses."""

    id: Optional[Union[str, int]] = Field(description="Request ID")
    result: Optional[Dict[str, Any]] = Field(default=None, description="Response result")
    error: Optional[Dict[str, Any]] = Field(default=None, description="Error information")

    def to_dict(self) -> Dict[str, Any]:
        """Serialise in JSON-RPC 2.0 response format."""
        message: Dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}

        # A response carries either result or error, never both
        if self.error is not None:
            message["error"] = self.error
        else:
            message["result"] = self.result if self.result is not None else {}
        return message

    @classmethod
    def from_error(cls, request_id: Optional[Union[str, int]], error: MCPError) -> "MCPResponse":
        return cls(id=request_id, error=error.to_dict())


class MCPNotification(MCPMessage):
    """Base class for MCP notifications (no response expected)."""

    method: str = Field(description="Method name")
    params: Optional[Dict[str, Any]] = Field(default=None, description="Method parameters")

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


# Client info structures
class ClientInfo(BaseModel):
    """Information about the MCP client."""

    name: str = Field(description="Client name")
    version: str = Field(description="Client version")


class ServerInfo(BaseModel):
    """Information about the MCP server."""

    name: str = Field(default="inferloop-mcp-server", description="Server name")
    version: str = Field(default="0.1.0", description="Server version")


# Tool structures
class ToolParameter(BaseModel):
    """Tool parameter definition (a JSON Schema fragment)."""

    type: str = Field(description="Parameter type")
    description: Optional[str] = Field(default=None, description="Parameter description")
    enum: Optional[List[Any]] = Field(default=None, description="Allowed values")
    default: Optional[Any] = Field(default=None, description="Default value")
    minimum: Optional[float] = Field(default=None, description="Inclusive numeric minimum")
    maximum: Optional[float] = Field(default=None, description="Inclusive numeric maximum")
    items: Optional[Dict[str, Any]] = Field(default=None, description="Array item schema")


class ToolSchema(BaseModel):
    """Tool input schema definition."""

    type: str = Field(default="object", description="Schema type")
    properties: Dict[str, ToolParameter] = Field(description="Tool parameters")
    required: List[str] = Field(default_factory=list, description="Required parameters")


class Tool(BaseModel):
    """Tool definition."""

    name: str = Field(description="Tool name")
    description: str = Field(description="Tool description")
    inputSchema: ToolSchema = Field(description="Tool input schema")

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


# Resource structures
class Resource(BaseModel):
    """Resource definition exposed through resources/list."""

    uri: str = Field(description="Resource URI")
    name: str = Field(description="Human readable name")
    description: Optional[str] = Field(default=None, description="Resource description")
    mimeType: str = Field(default="application/json", description="Content MIME type")

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


# Initialize protocol
class MCPInitializeRequest(MCPRequest):
    """Initialize request from client."""

    method: str = Field(default="initialize", frozen=True)
    params: Dict[str, Any] = Field(default_factory=dict, description="Initialize parameters")

    @property
    def protocol_version(self) -> str:
        """Get protocol version from params."""
        version = self.params.get("protocolVersion", LATEST_PROTOCOL_VERSION)
        return str(version)

    @property
    def client_info(self) -> Optional[ClientInfo]:
        """Get client info from params."""
        client_data = self.params.get("clientInfo")
        return ClientInfo(**client_data) if client_data else None

    @property
    def capabilities(self) -> Dict[str, Any]:
        """Get client capabilities from params."""
        caps = self.params.get("capabilities", {})
        return caps if isinstance(caps, dict) else {}


class MCPInitializeResponse(MCPResponse):
    """Initialize response to client."""

    def __init__(
        self,
        request_id: Union[str, int],
        protocol_version: str = LATEST_PROTOCOL_VERSION,
        server_info: Optional[ServerInfo] = None,
        capabilities: Optional[Dict[str, Any]] = None,
        instructions: Optional[str] = None,
    ):
        result: Dict[str, Any] = {
            "protocolVersion": protocol_version,
            "serverInfo": (server_info or ServerInfo()).model_dump(),
            "capabilities": capabilities or {"tools": {}, "resources": {}},
        }
        if instructions:
            result["instructions"] = instructions
        super().__init__(id=request_id, result=result)


# List tools
class MCPListToolsRequest(MCPRequest):
    """List tools request from client."""

    method: str = Field(default="tools/list", frozen=True)


class MCPListToolsResponse(MCPResponse):
    """List tools response to client."""

    def __init__(self, request_id: Union[str, int], tools: List[Tool]):
        super().__init__(
            id=request_id,
            result={"tools": [tool.to_dict() for tool in tools]},
        )


# Call tool
class MCPCallToolRequest(MCPRequest):
    """Call tool request from client."""

    method: str = Field(default="tools/call", frozen=True)
    params: Dict[str, Any] = Field(default_factory=dict, description="Call parameters")

    @property
    def tool_name(self) -> str:
        """Get tool name from params."""
        name = self.params.get("name", "")
        return str(name) if name is not None else ""

    @property
    def tool_arguments(self) -> Dict[str, Any]:
        """Get tool arguments from params."""
        args = self.params.get("arguments")
        if args is None:
            return {}
        if not isinstance(args, dict):
            raise MCPValidationError("Tool arguments must be an object")
        return args


class MCPCallToolResponse(MCPResponse):
    """Call tool response to client."""

    def __init__(self, request_id: Union[str, int], result: Dict[str, Any]):
        super().__init__(id=request_id, result=result)


# Resources
class MCPListResourcesRequest(MCPRequest):
    """List resources request from client."""

    method: str = Field(default="resources/list", frozen=True)


class MCPReadResourceRequest(MCPRequest):
    """Read resource request from client."""

    method: str = Field(default="resources/read", frozen=True)
    params: Dict[str, Any] = Field(default_factory=dict, description="Read parameters")

    @property
    def uri(self) -> str:
        uri = self.params.get("uri")
        return uri if isinstance(uri, str) else ""


# Pipelines
class MCPExecutePipelineRequest(MCPRequest):
    """pipeline/execute request from client."""

    method: str = Field(default="pipeline/execute", frozen=True)
    params: Dict[str, Any] = Field(default_factory=dict, description="Pipeline parameters")

    @property
    def pipeline_name(self) -> Optional[str]:
        name = self.params.get("pipeline")
        return name if isinstance(name, str) and name else None

    @property
    def steps(self) -> Optional[List[Dict[str, Any]]]:
        steps = self.params.get("steps")
        return steps if isinstance(steps, list) else None

    @property
    def inputs(self) -> Dict[str, Any]:
        inputs = self.params.get("inputs")
        if inputs is None:
            return {}
        if not isinstance(inputs, dict):
            raise MCPValidationError("Pipeline inputs must be an object")
        return inputs

    @property
    def wait(self) -> bool:
        wait = self.params.get("wait", True)
        if not isinstance(wait, bool):
            raise MCPValidationError("Pipeline wait flag must be a boolean")
        return wait
