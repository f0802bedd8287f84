"""Session state and result caching."""

from .manager import ContextManager, Session, SessionNotFoundError

__all__ = ["ContextManager", "Session", "SessionNotFoundError"]
