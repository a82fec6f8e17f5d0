"""
Environment-specific override sets, selected by APP_ENV
"""

import os
from infrastructure.config.settings import AppConfig


def get_environment_config() -> AppConfig:
    """
    Build the configuration for the active environment

    - 'development' -> DevelopmentConfig (relaxed lockout, debug logging)
    - 'production' -> ProductionConfig (cost 12, 3 attempts, 30-minute lockout)
    - anything else -> AppConfig.load() without auth overrides
    """
    env = os.getenv("APP_ENV", "development").strip().lower()

    if env == "production":
        from .production import get_production_config
        return get_production_config()
    if env == "development":
        from .development import get_development_config
        return get_development_config()

    return AppConfig.load()
