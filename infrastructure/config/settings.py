"""
Unified configuration for the authentication core

This module provides a centralized configuration system for the session and credential
services, supports environment-based overrides, and provides type-safe configuration access.
"""

from dataclasses import dataclass, field
from typing import Dict, Any, Optional, List
import streamlit as st
import os
from pathlib import Path


DEFAULT_DB_PATH = "data/auth.db"


@dataclass
class DatabaseConfig:
    """Persistence configuration settings"""
    path: str = DEFAULT_DB_PATH
    timeout_seconds: float = 5.0

    @classmethod
    def from_secrets(cls) -> 'DatabaseConfig':
        """Load database config from Streamlit secrets"""
        # In test environment, prefer environment variables
        if os.getenv("PYTEST_CURRENT_TEST") is not None:
            return cls(path=os.getenv("AUTH_DB_PATH", DEFAULT_DB_PATH))

        try:
            return cls(path=st.secrets.get("AUTH_DB_PATH", DEFAULT_DB_PATH))
        except Exception:
            # Fallback to environment variables if secrets not available
            return cls(path=os.getenv("AUTH_DB_PATH", DEFAULT_DB_PATH))


@dataclass
class AuthConfig:
    """Authentication and session management configuration"""
    session_timeout_hours: int = 24
    remember_me_days: int = 30
    token_bytes: int = 32
    bcrypt_rounds: int = 10
    max_login_attempts: int = 5
    lockout_duration_minutes: int = 15
    password_min_length: int = 6
    auto_login_on_register: bool = True
    allow_self_registration: bool = True
    reset_token_ttl_minutes: int = 60

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for audit logging"""
        return {
            "session_timeout_hours": self.session_timeout_hours,
            "remember_me_days": self.remember_me_days,
            "bcrypt_rounds": self.bcrypt_rounds,
            "max_login_attempts": self.max_login_attempts,
            "lockout_duration_minutes": self.lockout_duration_minutes,
            "password_min_length": self.password_min_length,
        }


@dataclass
class LoggingConfig:
    """Logging and monitoring configuration"""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    enable_file_logging: bool = True
    log_file: str = "logs/auth.log"


@dataclass
class AppConfig:
    """Main application configuration"""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Environment settings
    environment: str = field(default_factory=lambda: os.getenv("APP_ENV", "development"))
    debug: bool = field(default_factory=lambda: os.getenv("DEBUG", "false").lower() == "true")

    @classmethod
    def load(cls) -> 'AppConfig':
        """Load configuration with environment overrides"""
        config = cls()

        config.database = DatabaseConfig.from_secrets()

        # Apply environment-specific overrides
        if config.environment == "production":
            config.debug = False
            config.logging.level = "WARNING"
        elif config.environment == "development":
            config.debug = True
            config.logging.level = "DEBUG"

        return config

    def validate(self) -> List[str]:
        """Validate configuration and return list of errors"""
        errors = []

        if not self.database.path:
            errors.append("Database path is required")
        elif self.database.path != ":memory:":
            db_dir = Path(self.database.path).parent
            if not db_dir.exists():
                db_dir.mkdir(parents=True, exist_ok=True)

        if self.logging.enable_file_logging:
            log_dir = Path(self.logging.log_file).parent
            if not log_dir.exists():
                log_dir.mkdir(parents=True, exist_ok=True)

        # bcrypt only accepts cost factors in this range
        if not 4 <= self.auth.bcrypt_rounds <= 31:
            errors.append(f"bcrypt_rounds must be between 4 and 31, got {self.auth.bcrypt_rounds}")

        if self.auth.token_bytes < 16:
            errors.append("token_bytes must be at least 16")

        if self.auth.session_timeout_hours <= 0:
            errors.append("session_timeout_hours must be positive")

        if self.auth.max_login_attempts < 1:
            errors.append("max_login_attempts must be at least 1")

        return errors


# Global configuration instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance"""
    global _config
    if _config is None:
        # Imported here; the environment modules subclass AppConfig
        from infrastructure.config.environments import get_environment_config
        _config = get_environment_config()

        # Validate configuration
        errors = _config.validate()
        if errors:
            import warnings
            for error in errors:
                warnings.warn(f"Configuration error: {error}")

    return _config


def reload_config() -> AppConfig:
    """Reload configuration (useful for testing)"""
    global _config
    _config = None
    return get_config()


def is_production() -> bool:
    """Check whether the production environment is active"""
    return get_config().environment == "production"
