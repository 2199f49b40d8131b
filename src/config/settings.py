"""
Telco Churn Warehouse
Centralized Configuration Management

This module provides configuration management using Pydantic settings with
environment variable support, validation, and type safety.
"""

from datetime import date
from functools import lru_cache
from typing import Optional, List
from pydantic import Field, field_validator, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Relational Store Configuration"""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    db: str = Field(default="telco_warehouse", description="Database name")
    user: str = Field(default="warehouse", description="Database user")
    password: SecretStr = Field(default="secure_password", description="Database password")
    pool_timeout: int = Field(default=30, description="Pool timeout in seconds")
    echo: bool = Field(default=False, description="Echo SQL queries")
    url: Optional[str] = Field(default=None, description="Database URL (overrides host/port)")

    @property
    def async_url(self) -> str:
        """Async database URL for asyncpg"""
        return f"postgresql+asyncpg://{self.user}:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"

    def get_url(self) -> str:
        """Database URL - uses POSTGRES_URL if set, otherwise builds from host/port"""
        if self.url:
            return self.url
        return self.async_url


class WarehouseSettings(BaseSettings):
    """Transformation and Aggregation Configuration"""

    model_config = SettingsConfigDict(env_prefix="WAREHOUSE_")

    source_dir: str = Field(default="./data/raw", description="Directory holding raw extracts")
    time_start: date = Field(default=date(2010, 1, 1), description="First date of the time dimension")
    time_end: date = Field(default=date(2030, 12, 31), description="Last date of the time dimension")
    anchor_date: Optional[date] = Field(
        default=None,
        description="Reference date for contract-start estimation (defaults to today)",
    )
    truthy_tokens: List[str] = Field(
        default=["yes", "1"],
        description="Raw tokens normalized to boolean true",
    )
    stage_timeout_seconds: float = Field(default=600.0, description="Timeout per pipeline stage")
    max_concurrency: int = Field(default=4, description="Max concurrent table writers")

    @field_validator("truthy_tokens")
    @classmethod
    def normalize_tokens(cls, v: List[str]) -> List[str]:
        """Tokens are compared case and space insensitively"""
        return [token.strip().lower() for token in v]

    @property
    def effective_anchor_date(self) -> date:
        """Anchor date used by the fact composer"""
        return self.anchor_date or date.today()


class MonitoringSettings(BaseSettings):
    """Logging Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", alias="LOG_FORMAT", description="Log format: json or text")


class Settings(BaseSettings):
    """
    Main Application Settings

    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="telco-warehouse", description="Application name")
    app_env: str = Field(default="development", description="Environment")

    # Version
    version: str = Field(default="1.0.0", description="Application version")

    # Subsystem configurations
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    warehouse: WarehouseSettings = Field(default_factory=WarehouseSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.app_env == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses LRU cache to ensure settings are only loaded once.

    Returns:
        Settings: Application settings instance
    """
    return Settings()


# Convenience function for accessing settings
settings = get_settings()
