"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class MicrofinanceConfig(BaseSettings):
    """Microfinance ledger engine configuration"""

    # Database configuration
    database_url: str = "sqlite:///microfinance.db"  # Default SQLite

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Business rules configuration
    currency: str = "INR"
    grace_period_days: int = 3  # Days after due date before an unpaid entry is missed
    due_soon_days: int = 7  # Window for upcoming entries in schedule views
    default_report_buckets: int = 12

    # Feature flags
    enable_audit_logging: bool = True

    class Config:
        env_prefix = "MICROFIN_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = MicrofinanceConfig()


def get_config() -> MicrofinanceConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> MicrofinanceConfig:
    """Reload configuration from environment"""
    global config
    config = MicrofinanceConfig()
    return config
