#!/usr/bin/env python3
"""
Basic usage example for Inferloop MCP Server.

Drives the MCP handler directly, without an MCP host, for development and
debugging. Point ICP_API_URL at a running Inferloop Cloud Platform; without
one the server starts degraded and platform tools return error results.
"""

import asyncio
import os
import sys

from inferloop_mcp_server.config.settings import load_config
from inferloop_mcp_server.protocol.schemas import MCPRequest
from inferloop_mcp_server.server import InferloopMCPServer
from inferloop_mcp_server.utils.logging import setup_logging


async def main():
    """Walk through initialize, tool discovery, a tool call and a pipeline."""
    print("Starting Inferloop MCP Server example")

    config = load_config()
    setup_logging("WARNING")
    server = InferloopMCPServer(config)

    try:
        await server.start()
        print(f"Server started (platform connected: {server.icp_client.connected})")

        print("\n1. Initialize")
        response = await server.mcp_handler.handle_request(
            MCPRequest(
                id="init",
                method="initialize",
                params={
                    "protocolVersion": "2025-06-18",
                    "clientInfo": {"name": "example-client", "version": "1.0.0"},
                    "capabilities": {},
                },
            )
        )
        info = response.result["serverInfo"]
        version = response.result["protocolVersion"]
        print(f"   {info['name']} v{info['version']}, protocol {version}")

        print("\n2. List tools")
        response = await server.mcp_handler.handle_request(
            MCPRequest(id="list", method="tools/list")
        )
        for tool in response.result["tools"]:
            print(f"   - {tool['name']}: {tool['description']}")

        print("\n3. Validate inline rows")
        response = await server.mcp_handler.handle_request(
            MCPRequest(
                id="validate",
                method="tools/call",
                params={
                    "name": "validate_dataset",
                    "arguments": {
                        "rows": [
                            {"id": 1, "age": 34, "plan": "pro"},
                            {"id": 2, "age": 17, "plan": "free"},
                            {"id": 3, "age": 45, "plan": "enterprise"},
                        ],
                        "schema": {
                            "columns": {
                                "id": {"type": "integer", "unique": True},
                                "age": {"type": "integer", "min": 18},
                                "plan": {"allowed": ["free", "pro"]},
                            }
                        },
                    },
                },
            )
        )
        print(response.result["content"][0]["text"])

        print("\n4. Run an inline pipeline")
        response = await server.mcp_handler.handle_request(
            MCPRequest(
                id="pipeline",
                method="pipeline/execute",
                params={
                    "steps": [
                        {"name": "generators", "tool": "list_generators"},
                        {"name": "datasets", "tool": "list_datasets", "arguments": {"limit": 5}},
                    ],
                },
            )
        )
        run = response.result
        print(f"   Run {run['run_id']}: {run['status']}")
        for step in run["steps"]:
            print(f"   - {step['name']}: {step['status']}")

        print("\n5. Health")
        health = await server.health_check()
        print(f"   Overall: {health['health_status']['status']}")
        for check in health["health_status"]["checks"]:
            print(f"   - {check['name']}: {check['status']} ({check['message']})")

    finally:
        await server.stop()
        print("\nServer stopped")


if __name__ == "__main__":
    os.environ.setdefault("ICP_API_URL", "http://localhost:8080")

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nInterrupted")
    except Exception as e:
        print(f"Example failed: {e}")
        sys.exit(1)
