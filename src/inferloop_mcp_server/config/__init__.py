"""Configuration management."""

from .settings import IMCPConfig, create_default_config, load_config

__all__ = ["IMCPConfig", "load_config", "create_default_config"]
