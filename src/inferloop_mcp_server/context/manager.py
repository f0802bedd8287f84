"""
Session state and result caching.

The context manager owns every client session (one per stdio process,
HTTP session id, or WebSocket connection) and fronts the result cache
used for idempotent tool calls.
"""

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog

from ..utils.cache import MemoryCache

logger = structlog.get_logger(__name__)

_TOOL_RESULT_OPERATION = "tool_result:{}"


class SessionNotFoundError(KeyError):
    """Raised when a session id is unknown or has expired."""

    def __init__(self, session_id: str):
        super().__init__(session_id)
        self.session_id = session_id


@dataclass
class Session:
    """State kept for one connected MCP client."""

    session_id: str
    created_at: float = field(default_factory=time.time)
    last_accessed: float = field(default_factory=time.monotonic)
    initialized: bool = False
    protocol_version: Optional[str] = None
    client_info: Optional[Dict[str, Any]] = None
    state: Dict[str, Any] = field(default_factory=dict)
    pinned: bool = False

    def touch(self) -> None:
        self.last_accessed = time.monotonic()

    def is_expired(self, ttl_seconds: float) -> bool:
        if self.pinned:
            return False
        return time.monotonic() - self.last_accessed > ttl_seconds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "created_at": self.created_at,
            "initialized": self.initialized,
            "protocol_version": self.protocol_version,
            "client_info": self.client_info,
            "pinned": self.pinned,
            "state": dict(self.state),
        }


class ContextManager:
    """
    Session registry with idle expiry plus a tool result cache.

    Sessions beyond ``max_sessions`` evict the least recently used one.
    """

    def __init__(
        self,
        session_ttl_seconds: float = 3600,
        max_sessions: int = 100,
        cache: Optional[MemoryCache] = None,
    ):
        self.session_ttl_seconds = session_ttl_seconds
        self.max_sessions = max_sessions
        self.cache = cache
        self._sessions: Dict[str, Session] = {}

    def create_session(self, pinned: bool = False) -> Session:
        """
        Open a new session, evicting the least recently used one if full.

        Pinned sessions never expire and are never evicted.
        """
        self.cleanup_expired()

        evictable = [s for s in self._sessions.values() if not s.pinned]
        if len(self._sessions) >= self.max_sessions and evictable:
            lru = min(evictable, key=lambda s: s.last_accessed)
            del self._sessions[lru.session_id]
            logger.info("Evicted least recently used session", session_id=lru.session_id)

        session = Session(session_id=uuid.uuid4().hex, pinned=pinned)
        self._sessions[session.session_id] = session

        logger.debug("Created session", session_id=session.session_id, total=len(self._sessions))
        return session

    def get_session(self, session_id: str) -> Optional[Session]:
        """Look up a live session and mark it as used."""
        session = self._sessions.get(session_id)
        if session is None:
            return None

        if session.is_expired(self.session_ttl_seconds):
            del self._sessions[session_id]
            logger.info("Session expired", session_id=session_id)
            return None

        session.touch()
        return session

    def require_session(self, session_id: str) -> Session:
        session = self.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def close_session(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is not None:
            logger.debug("Closed session", session_id=session_id)
        return session is not None

    def list_sessions(self) -> List[Session]:
        self.cleanup_expired()
        return list(self._sessions.values())

    def get_state(self, session_id: str, key: str, default: Any = None) -> Any:
        return self.require_session(session_id).state.get(key, default)

    def set_state(self, session_id: str, key: str, value: Any) -> None:
        self.require_session(session_id).state[key] = value

    def cleanup_expired(self) -> int:
        """Drop expired sessions; returns how many were removed."""
        expired = [
            sid for sid, s in self._sessions.items() if s.is_expired(self.session_ttl_seconds)
        ]
        for sid in expired:
            del self._sessions[sid]

        if expired:
            logger.info("Removed expired sessions", count=len(expired))
        return len(expired)

    async def get_cached_result(self, tool_name: str, arguments: Dict[str, Any]) -> Optional[Any]:
        if self.cache is None:
            return None
        return await self.cache.get(_TOOL_RESULT_OPERATION.format(tool_name), arguments=arguments)

    async def cache_result(self, tool_name: str, arguments: Dict[str, Any], value: Any) -> None:
        if self.cache is None:
            return
        await self.cache.set(_TOOL_RESULT_OPERATION.format(tool_name), value, arguments=arguments)

    async def get_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {
            "sessions": len(self.list_sessions()),
            "max_sessions": self.max_sessions,
            "session_ttl_seconds": self.session_ttl_seconds,
            "cache_enabled": self.cache is not None,
        }
        if self.cache is not None:
            stats["cache"] = await self.cache.get_stats()
        return stats
