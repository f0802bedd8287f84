"""MCP resources."""

from .registry import ResourceNotFoundError, ResourceRegistry

__all__ = ["ResourceRegistry", "ResourceNotFoundError"]
