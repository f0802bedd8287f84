"""Inferloop Cloud Platform client."""

from .icp_client import ICPClient, ICPClientError

__all__ = ["ICPClient", "ICPClientError"]
