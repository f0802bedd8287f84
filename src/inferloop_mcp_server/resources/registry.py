"""
Resource registry for resources/list and resources/read.

Static resources have a fixed URI and a reader coroutine. Providers own a
URI prefix and enumerate their resources on demand, which is how pipeline
runs appear as ``imcp://runs/<run_id>``.
"""

import json
from typing import Any, Awaitable, Callable, Dict, List, Tuple

import structlog

from ..protocol.schemas import Resource

logger = structlog.get_logger(__name__)

Reader = Callable[[], Awaitable[Any]]
Lister = Callable[[], Awaitable[List[Resource]]]
UriReader = Callable[[str], Awaitable[Any]]


class ResourceNotFoundError(LookupError):
    """Raised when a URI matches no registered resource."""

    def __init__(self, uri: str):
        super().__init__(f"Resource not found: {uri}")
        self.uri = uri


class ResourceRegistry:
    """Registry of readable MCP resources."""

    def __init__(self):
        self._resources: Dict[str, Tuple[Resource, Reader]] = {}
        self._providers: Dict[str, Tuple[Lister, UriReader]] = {}

    def register(self, resource: Resource, reader: Reader) -> None:
        self._resources[resource.uri] = (resource, reader)
        logger.debug("Registered resource", uri=resource.uri)

    def register_provider(self, prefix: str, lister: Lister, reader: UriReader) -> None:
        """Register a dynamic provider for every URI starting with ``prefix``."""
        self._providers[prefix] = (lister, reader)
        logger.debug("Registered resource provider", prefix=prefix)

    async def list_resources(self) -> List[Resource]:
        resources = [resource for resource, _ in self._resources.values()]
        for prefix, (lister, _) in self._providers.items():
            try:
                resources.extend(await lister())
            except Exception as e:
                logger.warning("Resource provider failed to list", prefix=prefix, error=str(e))
        return resources

    async def read(self, uri: str) -> Dict[str, Any]:
        """
        Read a resource.

        Returns:
            ``{"contents": [{"uri", "mimeType", "text"}]}``

        Raises:
            ResourceNotFoundError: If no resource or provider matches
        """
        if uri in self._resources:
            resource, reader = self._resources[uri]
            value = await reader()
            return self._contents(uri, resource.mimeType, value)

        for prefix, (_, reader) in self._providers.items():
            if uri.startswith(prefix) and len(uri) > len(prefix):
                value = await reader(uri)
                return self._contents(uri, "application/json", value)

        raise ResourceNotFoundError(uri)

    @staticmethod
    def _contents(uri: str, mime_type: str, value: Any) -> Dict[str, Any]:
        text = value if isinstance(value, str) else json.dumps(value, indent=2, default=str)
        return {"contents": [{"uri": uri, "mimeType": mime_type, "text": text}]}
