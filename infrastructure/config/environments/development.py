"""
Development environment configuration overrides
"""

from dataclasses import dataclass
from infrastructure.config.settings import AppConfig


@dataclass
class DevelopmentConfig(AppConfig):
    """Development environment configuration"""
    
    def __post_init__(self):
        # First load the base configuration (including secrets)
        base_config = AppConfig.load()
        
        # Copy base configuration
        self.database = base_config.database
        self.auth = base_config.auth
        self.logging = base_config.logging
        
        # Development-specific overrides
        self.environment = "development"
        self.debug = True
        
        # More verbose logging in development
        self.logging.level = "DEBUG"
        self.logging.enable_file_logging = True
        self.logging.log_file = "logs/dev-auth.log"
        
        # Relaxed lockout for manual testing
        self.auth.max_login_attempts = 10


def get_development_config() -> DevelopmentConfig:
    """Get development-specific configuration"""
    return DevelopmentConfig()
