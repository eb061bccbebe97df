"""Configuration management.

This module provides configuration management through:
- RuntimeConfig: Runtime configuration from env vars, files, and CLI flags
- ConfigError: Exception for configuration errors
"""

from pr_merge_resolver.config.exceptions import ConfigError
from pr_merge_resolver.config.runtime_config import RuntimeConfig

__all__ = ["ConfigError", "RuntimeConfig"]
