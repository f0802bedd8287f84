"""MCP protocol: message schemas, request handling and transports."""
