"""
Configuration management for Inferloop MCP Server.

Handles loading, validation, and management of server configuration
from files and environment variables.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _resolve_env(value: Optional[str], fallback_env: Optional[str] = None) -> Optional[str]:
    """Resolve ``${VAR}`` placeholders, falling back to an environment variable."""
    if value is None:
        return os.getenv(fallback_env) if fallback_env else None
    if isinstance(value, str) and value.startswith("${") and value.endswith("}"):
        return os.getenv(value[2:-1])
    return value


class ICPConfig(BaseModel):
    """Configuration for the Inferloop Cloud Platform connection."""

    api_url: str = Field(default="http://localhost:8080", description="ICP API base URL")
    api_key: Optional[str] = Field(
        default=None, validate_default=True, description="API key for authentication"
    )
    timeout_ms: int = Field(default=30000, gt=0, description="Request timeout in milliseconds")
    max_retries: int = Field(default=3, ge=1, description="Attempts for transient failures")
    retry_base_delay_seconds: float = Field(default=0.5, ge=0, description="Initial backoff")
    retry_max_delay_seconds: float = Field(default=10.0, ge=0, description="Maximum backoff")
    poll_interval_seconds: float = Field(default=2.0, gt=0, description="Job polling interval")
    job_timeout_seconds: float = Field(default=600.0, gt=0, description="Max wait for a job")

    @field_validator("api_key", mode="before")
    @classmethod
    def resolve_api_key(cls, v: Optional[str]) -> Optional[str]:
        """Resolve API key from environment variable if needed."""
        return _resolve_env(v, "ICP_API_KEY")

    @field_validator("api_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class ServerConfig(BaseModel):
    """Configuration for MCP server behavior."""

    log_level: str = Field(default="INFO", description="Logging level")
    host: str = Field(default="127.0.0.1", description="HTTP transport bind host")
    port: int = Field(default=8765, ge=0, le=65535, description="HTTP transport port")
    max_concurrent_requests: int = Field(default=10, ge=1, description="Concurrent tool calls")
    request_timeout_ms: int = Field(default=30000, gt=0, description="Tool call timeout")
    cache_enabled: bool = Field(default=True, description="Enable result caching")
    cache_ttl_seconds: int = Field(default=300, gt=0, description="Cache TTL in seconds")
    cache_max_size: int = Field(default=1000, ge=1, description="Maximum cached results")
    api_keys: List[str] = Field(default_factory=list, description="Accepted HTTP API keys")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper

    @field_validator("api_keys", mode="before")
    @classmethod
    def resolve_api_keys(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [key for key in (_resolve_env(item) for item in v) if key]
        return v


class SessionConfig(BaseModel):
    """Configuration for client sessions."""

    ttl_seconds: int = Field(default=3600, gt=0, description="Idle session lifetime")
    max_sessions: int = Field(default=100, ge=1, description="Maximum open sessions")


class WorkflowConfig(BaseModel):
    """Configuration for the pipeline workflow engine."""

    enabled: bool = Field(default=True, description="Enable pipeline execution")
    max_concurrent_pipelines: int = Field(default=4, ge=1, description="Concurrent pipeline runs")
    max_steps: int = Field(default=50, ge=1, description="Maximum steps per pipeline")
    step_timeout_seconds: float = Field(default=300.0, gt=0, description="Default step timeout")
    max_runs: int = Field(default=200, ge=1, description="Finished runs kept in memory")


class ValidationConfig(BaseModel):
    """Defaults for GATF dataset validation."""

    default_sample_size: int = Field(default=1000, ge=1, description="Rows sampled per dataset")
    max_sample_size: int = Field(default=10000, ge=1, description="Upper bound on sampled rows")
    max_null_ratio: float = Field(default=0.1, ge=0, le=1, description="Null ratio per column")
    max_duplicate_ratio: float = Field(default=0.05, ge=0, le=1, description="Duplicate rows")
    min_rows: int = Field(default=1, ge=0, description="Minimum rows in a valid dataset")
    pass_threshold: float = Field(default=1.0, ge=0, le=1, description="Score needed to pass")


class ToolConfig(BaseModel):
    """Configuration for individual tools."""

    enabled: bool = Field(default=True, description="Whether tool is enabled")
    max_results: int = Field(default=100, ge=1, description="Maximum results to return")
    default_limit: int = Field(default=20, ge=1, description="Default result limit")
    max_rows: int = Field(default=1_000_000, ge=1, description="Maximum rows per generation job")


class ToolsConfig(BaseModel):
    """Configuration for all available tools."""

    list_generators: ToolConfig = Field(default_factory=ToolConfig)
    generate_synthetic_data: ToolConfig = Field(default_factory=ToolConfig)
    get_job_status: ToolConfig = Field(default_factory=ToolConfig)
    cancel_job: ToolConfig = Field(default_factory=ToolConfig)
    list_datasets: ToolConfig = Field(default_factory=ToolConfig)
    validate_dataset: ToolConfig = Field(default_factory=ToolConfig)


class IMCPConfig(BaseModel):
    """Main configuration object."""

    model_config = ConfigDict(extra="forbid")

    version: str = Field(default="0.1.0", description="Configuration version")
    icp: ICPConfig = Field(default_factory=ICPConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    sessions: SessionConfig = Field(default_factory=SessionConfig)
    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    pipelines: List[Dict[str, Any]] = Field(
        default_factory=list, description="Pipeline definitions registered at startup"
    )


def load_config(config_path: Optional[Path] = None) -> IMCPConfig:
    """
    Load configuration from file and environment variables.

    Args:
        config_path: Path to configuration file. If None, looks for
                    IMCP_CONFIG_PATH environment variable.

    Returns:
        Loaded and validated configuration

    Raises:
        FileNotFoundError: If config file specified but not found
        pydantic.ValidationError: If configuration is invalid
    """
    if config_path is None:
        env_path = os.getenv("IMCP_CONFIG_PATH")
        if env_path:
            config_path = Path(env_path)

    config_data: Dict[str, Any] = {}
    if config_path and config_path.exists():
        with open(config_path, "r") as f:
            config_data = json.load(f)
    elif config_path:
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    env_overrides: Dict[str, Any] = {}

    log_level = os.getenv("IMCP_LOG_LEVEL")
    if log_level:
        env_overrides.setdefault("server", {})["log_level"] = log_level

    host = os.getenv("IMCP_HOST")
    if host:
        env_overrides.setdefault("server", {})["host"] = host

    port = os.getenv("IMCP_PORT")
    if port:
        env_overrides.setdefault("server", {})["port"] = int(port)

    api_url = os.getenv("ICP_API_URL")
    if api_url:
        env_overrides.setdefault("icp", {})["api_url"] = api_url

    if env_overrides:
        config_data = _deep_merge(config_data, env_overrides)

    return IMCPConfig(**config_data)


def create_default_config(config_path: Path) -> None:
    """
    Create a default configuration file.

    Args:
        config_path: Path where to create the configuration file
    """
    default_config = {
        "version": "0.1.0",
        "icp": {
            "api_url": "http://localhost:8080",
            "api_key": "${ICP_API_KEY}",
            "timeout_ms": 30000,
            "max_retries": 3,
            "poll_interval_seconds": 2.0,
            "job_timeout_seconds": 600.0,
        },
        "server": {
            "log_level": "INFO",
            "host": "127.0.0.1",
            "port": 8765,
            "max_concurrent_requests": 10,
            "request_timeout_ms": 30000,
            "cache_enabled": True,
            "cache_ttl_seconds": 300,
            "cache_max_size": 1000,
            "api_keys": [],
        },
        "sessions": {"ttl_seconds": 3600, "max_sessions": 100},
        "workflow": {
            "enabled": True,
            "max_concurrent_pipelines": 4,
            "max_steps": 50,
            "step_timeout_seconds": 300.0,
            "max_runs": 200,
        },
        "validation": {
            "default_sample_size": 1000,
            "max_sample_size": 10000,
            "max_null_ratio": 0.1,
            "max_duplicate_ratio": 0.05,
            "min_rows": 1,
            "pass_threshold": 1.0,
        },
        "tools": {
            "list_generators": {"enabled": True},
            "generate_synthetic_data": {"enabled": True, "max_rows": 1000000},
            "get_job_status": {"enabled": True},
            "cancel_job": {"enabled": True},
            "list_datasets": {"enabled": True, "max_results": 100, "default_limit": 20},
            "validate_dataset": {"enabled": True},
        },
        "pipelines": [
            {
                "name": "generate_and_validate",
                "description": "Generate a dataset and run GATF validation on the result",
                "steps": [
                    {
                        "name": "generate",
                        "tool": "generate_synthetic_data",
                        "arguments": {
                            "generator": "${inputs.generator}",
                            "num_rows": "${inputs.num_rows}",
                            "schema": "${inputs.schema}",
                            "wait": True,
                        },
                    },
                    {
                        "name": "validate",
                        "tool": "validate_dataset",
                        "arguments": {
                            "dataset_id": "${steps.generate.job.dataset_id}",
                            "schema": "${inputs.schema}",
                        },
                    },
                ],
            }
        ],
    }

    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, "w") as f:
        json.dump(default_config, f, indent=2)


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep merge two dictionaries.

    Args:
        base: Base dictionary
        override: Override dictionary

    Returns:
        Merged dictionary
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result
