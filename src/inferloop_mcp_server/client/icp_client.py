"""
Inferloop Cloud Platform client for the MCP server.

Wraps the ICP REST API (generators, generation jobs, datasets) behind a
small async interface, handling authentication, connection pooling,
retries and error translation for MCP tools.
"""

import asyncio
import random
import time
from functools import wraps
from typing import Any, Dict, List, Optional

import aiohttp
import structlog

from ..config.settings import ICPConfig

logger = structlog.get_logger(__name__)

API_PREFIX = "/api/v1"
TERMINAL_JOB_STATES = ("completed", "failed", "cancelled")


class ICPClientError(Exception):
    """Base exception for Inferloop Cloud Platform client errors."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        original_error: Optional[Exception] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.original_error = original_error
        self.retryable = retryable


def retry_with_backoff(max_retries: int = 3, base_delay: float = 0.5, max_delay: float = 10.0):
    """
    Decorator for retry with exponential backoff.

    Only ``ICPClientError`` marked retryable is retried; anything else
    propagates on the first failure.

    Args:
        max_retries: Maximum number of attempts
        base_delay: Initial delay between retries in seconds
        max_delay: Maximum delay between retries in seconds
    """

    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_retries):
                try:
                    return await func(*args, **kwargs)
                except ICPClientError as e:
                    if not e.retryable or attempt == max_retries - 1:
                        raise

                    delay = min(base_delay * (2**attempt) + random.uniform(0, base_delay), max_delay)  # nosec B311
                    logger.warning(
                        "ICP request failed, retrying",
                        attempt=attempt + 1,
                        max_retries=max_retries,
                        delay_seconds=round(delay, 2),
                        error=e.message,
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator


class ICPClient:
    """
    Async client for the Inferloop Cloud Platform REST API.

    The HTTP session is created lazily so the client can be built before
    an event loop is running.
    """

    def __init__(self, config: ICPConfig):
        """
        Initialize ICP client.

        Args:
            config: ICP connection settings
        """
        self.config = config
        self._session: Optional[aiohttp.ClientSession] = None
        self._connected = False
        self._connection_lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._connected

    def _set_connected(self, connected: bool) -> None:
        """Track reachability from the outcome of any request."""
        if connected != self._connected:
            if connected:
                logger.info("Inferloop Cloud Platform reachable", api_url=self.config.api_url)
            else:
                logger.warning(
                    "Lost connection to Inferloop Cloud Platform", api_url=self.config.api_url
                )
        self._connected = connected

    async def connect(self) -> None:
        """
        Open the HTTP session and probe the platform health endpoint.

        Raises:
            ICPClientError: If the platform is unreachable or unhealthy
        """
        async with self._connection_lock:
            if self._connected:
                return

            await self._ensure_session()
            try:
                await self.health()
            except ICPClientError as e:
                logger.error("Failed to connect to Inferloop Cloud Platform", error=e.message)
                raise

            self._connected = True
            logger.info("Connected to Inferloop Cloud Platform", api_url=self.config.api_url)

    async def disconnect(self) -> None:
        """Close the HTTP session."""
        async with self._connection_lock:
            if self._session is not None:
                await self._session.close()
                self._session = None
            if self._connected:
                logger.info("Disconnected from Inferloop Cloud Platform")
            self._connected = False

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers=self._get_headers(),
                timeout=aiohttp.ClientTimeout(total=self.config.timeout_ms / 1000),
                connector=aiohttp.TCPConnector(limit=100, limit_per_host=30),
            )
        return self._session

    def _get_headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.config.api_key:
            headers["X-API-Key"] = self.config.api_key
        else:
            logger.warning("No ICP API key configured - requests may be rejected")
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        json_body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        send = retry_with_backoff(
            max_retries=self.config.max_retries,
            base_delay=self.config.retry_base_delay_seconds,
            max_delay=self.config.retry_max_delay_seconds,
        )(self._send)
        return await send(method, path, json_body, params)

    async def _send(
        self,
        method: str,
        path: str,
        json_body: Optional[Dict[str, Any]],
        params: Optional[Dict[str, Any]],
    ) -> Any:
        session = await self._ensure_session()
        logger.debug("ICP request", method=method, path=path)

        try:
            url = f"{self.config.api_url}{path}"
            async with session.request(method, url, json=json_body, params=params) as resp:
                if resp.status >= 400:
                    message = await self._error_message(resp)
                    raise ICPClientError(
                        f"ICP {method} {path} failed with status {resp.status}: {message}",
                        status=resp.status,
                        retryable=resp.status >= 500 or resp.status == 429,
                    )
                self._set_connected(True)
                if resp.status == 204:
                    return {}
                return await resp.json(content_type=None)

        except ICPClientError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._set_connected(False)
            raise ICPClientError(
                f"ICP {method} {path} failed: {str(e) or type(e).__name__}",
                original_error=e,
                retryable=True,
            ) from e

    @staticmethod
    async def _error_message(resp: aiohttp.ClientResponse) -> str:
        try:
            body = await resp.json(content_type=None)
        except (ValueError, aiohttp.ContentTypeError):
            return (await resp.text())[:200] or resp.reason or ""
        if isinstance(body, dict):
            for key in ("error", "message", "detail"):
                if body.get(key):
                    return str(body[key])
        return str(body)[:200]

    async def health(self) -> Dict[str, Any]:
        result = await self._request("GET", "/health")
        return result if isinstance(result, dict) else {"status": result}

    async def list_generators(self) -> List[Dict[str, Any]]:
        """List synthetic data generators available on the platform."""
        result = await self._request("GET", f"{API_PREFIX}/generators")
        return list(result.get("generators", [])) if isinstance(result, dict) else list(result)

    async def create_generation_job(
        self,
        generator: str,
        num_rows: int,
        schema: Optional[Dict[str, Any]] = None,
        seed: Optional[int] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Submit a synthetic data generation job."""
        body: Dict[str, Any] = {"generator": generator, "num_rows": num_rows}
        if schema:
            body["schema"] = schema
        if seed is not None:
            body["seed"] = seed
        if options:
            body["options"] = options

        job = await self._request("POST", f"{API_PREFIX}/jobs", json_body=body)
        logger.info("Submitted generation job", job_id=job.get("id"), generator=generator)
        return job

    async def get_job(self, job_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"{API_PREFIX}/jobs/{job_id}")

    async def cancel_job(self, job_id: str) -> Dict[str, Any]:
        return await self._request("POST", f"{API_PREFIX}/jobs/{job_id}/cancel")

    async def wait_for_job(
        self,
        job_id: str,
        poll_interval: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Poll a job until it reaches a terminal state.

        Raises:
            ICPClientError: If the job does not finish within ``timeout``
        """
        poll_interval = poll_interval or self.config.poll_interval_seconds
        timeout = timeout or self.config.job_timeout_seconds
        deadline = time.monotonic() + timeout

        while True:
            job = await self.get_job(job_id)
            if job.get("status") in TERMINAL_JOB_STATES:
                return job

            if time.monotonic() + poll_interval > deadline:
                raise ICPClientError(
                    f"Job {job_id} did not finish within {timeout:g}s",
                    status=None,
                )
            await asyncio.sleep(poll_interval)

    async def list_datasets(self, limit: int = 20) -> List[Dict[str, Any]]:
        result = await self._request("GET", f"{API_PREFIX}/datasets", params={"limit": limit})
        return list(result.get("datasets", [])) if isinstance(result, dict) else list(result)

    async def get_dataset(self, dataset_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"{API_PREFIX}/datasets/{dataset_id}")

    async def get_dataset_sample(self, dataset_id: str, limit: int = 1000) -> List[Dict[str, Any]]:
        """Fetch up to ``limit`` rows of a dataset."""
        result = await self._request(
            "GET", f"{API_PREFIX}/datasets/{dataset_id}/sample", params={"limit": limit}
        )
        return list(result.get("rows", [])) if isinstance(result, dict) else list(result)
