"""
Inferloop MCP Server

A Model Context Protocol server that gives MCP hosts access to the
Inferloop Cloud Platform: synthetic data generation, job tracking,
GATF dataset validation and multi-step tool pipelines.
"""

__version__ = "0.1.0"
__license__ = "MIT"

from .config.settings import IMCPConfig, load_config
from .server import InferloopMCPServer
from .utils import HealthChecker, MemoryCache

__all__ = [
    "InferloopMCPServer",
    "IMCPConfig",
    "load_config",
    "MemoryCache",
    "HealthChecker",
    "__version__",
    "__license__",
]
