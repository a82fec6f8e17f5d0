"""
Configuration infrastructure - dataclass settings with environment overrides.
"""

from .settings import (
    AppConfig,
    AuthConfig,
    DatabaseConfig,
    LoggingConfig,
    get_config,
    reload_config,
)

__all__ = [
    'AppConfig',
    'AuthConfig',
    'DatabaseConfig',
    'LoggingConfig',
    'get_config',
    'reload_config',
]
