"""
Production environment configuration overrides
"""

from dataclasses import dataclass
from infrastructure.config.settings import AppConfig


@dataclass
class ProductionConfig(AppConfig):
    """Production environment configuration"""
    
    def __post_init__(self):
        self.database = AppConfig.load().database
        
        # Production-specific overrides
        self.environment = "production"
        self.debug = False
        
        # Production logging - less verbose, focus on errors
        self.logging.level = "INFO"
        self.logging.enable_file_logging = True
        self.logging.log_file = "logs/prod-auth.log"
        
        # Production security settings
        self.auth.bcrypt_rounds = 12
        self.auth.max_login_attempts = 3
        self.auth.lockout_duration_minutes = 30
        self.auth.allow_self_registration = True


def get_production_config() -> ProductionConfig:
    """Get production-specific configuration"""
    return ProductionConfig()
