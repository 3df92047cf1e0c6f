"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class QardConfig(BaseSettings):
    """Qard fund core configuration"""
    
    # Backing store configuration
    store_url: str = ""  # Empty = in-memory store. Set to http://localhost:3001
    store_timeout: float = 10.0
    store_api_key: str = ""
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090
    api_workers: int = 1
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout
    
    # Display configuration
    currency_label: str = "تومان"
    persian_digits: bool = True
    
    # Business rules configuration
    enforce_lending_ceiling: bool = True
    default_due_months: int = 12
    
    class Config:
        env_prefix = "QARD_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = QardConfig()


def get_config() -> QardConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> QardConfig:
    """Reload configuration from environment"""
    global config
    config = QardConfig()
    return config
