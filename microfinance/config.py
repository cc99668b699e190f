"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class MicrofinanceConfig(BaseSettings):
    """Microfinance reconciliation service configuration"""

    # Database configuration
    database_url: str = "sqlite:///microfinance.db"  # or memory:// for a throwaway store

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090
    api_reload: bool = False

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Reconciliation rules
    match_window_days: int = 14  # Max distance between paid date and a monthly due date
    upcoming_window_days: int = 7  # Schedule view shows periods due within this many days
    default_page_size: int = 10

    # Feature flags
    validate_remaining_balance: bool = True  # Reject full payments above the remaining amount

    class Config:
        env_prefix = "MICROFINANCE_"
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
