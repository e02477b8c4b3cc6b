"""Configuration package.

Note: settings are never constructed at package import time to keep test
collection free from environment requirements. Call
``strata.config.settings.load_config`` where a configuration is needed.
"""

from .settings import DatabaseConfig, load_config

__all__: list[str] = ["DatabaseConfig", "load_config"]
