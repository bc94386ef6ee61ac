"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class LedgerConfig(BaseSettings):
    """Banking ledger service configuration"""

    # Storage configuration
    database_url: str = "sqlite:///banking_ledger.db"  # memory://, sqlite:///path, postgresql://...

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 3000
    api_workers: int = 1

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Business rules configuration
    default_currency: str = "USD"
    default_page_size: int = 25
    statement_page_size: int = 10
    max_page_size: int = 100
    summary_default_days: int = 30
    summary_max_days: int = 365
    statement_max_days: int = 365

    # Feature flags
    enable_audit_logging: bool = True

    class Config:
        env_prefix = "LEDGER_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = LedgerConfig()


def get_config() -> LedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LedgerConfig:
    """Reload configuration from environment"""
    global config
    config = LedgerConfig()
    return config
