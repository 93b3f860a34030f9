"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from decimal import Decimal
from typing import Optional

from pydantic_settings import BaseSettings


class LedgerConfig(BaseSettings):
    """General ledger engine configuration"""

    # Database configuration
    database_url: str = "sqlite:///ledger.db"  # memory://, sqlite:///path, postgresql://...

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Business rules configuration
    balance_tolerance: str = "0.01"  # Rounding slack for sum(amount_dc) == 0
    base_currency: str = "USD"
    doc_no_prefix: str = "JE-"
    doc_no_width: int = 6
    reversal_prefix: str = "REV-"

    # Feature flags
    enable_audit_logging: bool = True
    enable_domain_events: bool = True

    class Config:
        env_prefix = "LEDGER_"
        env_file = ".env"
        case_sensitive = False

    @property
    def tolerance(self) -> Decimal:
        """Balance tolerance as an exact Decimal"""
        return Decimal(self.balance_tolerance)


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


def create_storage(cfg: Optional[LedgerConfig] = None):
    """
    Build the storage backend named by ``database_url``.

    Args:
        cfg: Configuration to read; defaults to the global instance

    Returns:
        StorageInterface implementation

    Raises:
        ValueError: If the URL scheme is not supported
    """
    from .storage import InMemoryStorage, SQLiteStorage, PostgreSQLStorage

    cfg = cfg or get_config()
    url = cfg.database_url

    if url.startswith("memory://"):
        return InMemoryStorage()
    if url.startswith("sqlite:///"):
        return SQLiteStorage(url[len("sqlite:///"):] or ":memory:")
    if url.startswith(("postgresql://", "postgres://")):
        return PostgreSQLStorage(url)

    raise ValueError(f"Unsupported database_url scheme: {url}")
