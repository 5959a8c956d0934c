"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class VaultConfig(BaseSettings):
    """Core vault configuration"""

    # Storage configuration
    database_url: str = "sqlite:///vault.db"  # or memory://

    # Vault parameters (unit of account, 6 decimals)
    withdrawal_threshold: int = 1_000_000_000   # $1,000 per withdrawal
    bank_cap: int = 10_000_000_000              # $10,000 across all accounts

    # Identities
    vault_address: str = "vault"
    owner_address: str = "owner"
    token_address: str = "usdc"
    oracle_address: str = "native-usd-feed"

    # Oracle configuration
    oracle_url: str = ""  # Empty = manual feed seeded with initial_price
    oracle_timeout: float = 2.0
    oracle_heartbeat_seconds: int = 3600
    initial_price: int = 395_614_000_000  # $3,956.14 with 8 decimals

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stderr

    # Feature flags
    enable_audit_logging: bool = True

    class Config:
        env_prefix = "VAULT_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = VaultConfig()


def get_config() -> VaultConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> VaultConfig:
    """Reload configuration from environment"""
    global config
    config = VaultConfig()
    return config
