"""
Workflow Engine Configuration Package.

This package contains the settings manager and the pydantic models that
validate engine settings and per-call execution options.
"""

from config.manager import EnvironmentManager, env_manager
from config.types import EngineSettings, ExecutionOptions

# Re-export the singleton instance for easy access
env = env_manager

__all__ = [
    "EnvironmentManager",
    "env_manager",
    "env",
    "EngineSettings",
    "ExecutionOptions",
]
