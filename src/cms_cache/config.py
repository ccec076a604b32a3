"""
Shared Configuration - Cache Settings and Environment Management
Centralized configuration management for the CMS cache layer.

This module provides:
- Environment-based configuration
- Type-safe settings with validation
- Compression and invalidation switches
- Monitoring and API configuration
"""
from typing import Annotated, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
from enum import Enum


class Environment(str, Enum):
    """Application environment types."""
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class CacheSettings(BaseSettings):
    """Cache behaviour settings."""

    model_config = SettingsConfigDict(env_prefix="CACHE_", env_file=".env", case_sensitive=False, extra="ignore")

    compression_enabled: bool = Field(True)
    compression_threshold: int = Field(1024)  # bytes
    smart_invalidation: bool = Field(True)

    # Keys longer than this are replaced by a digest when hashing is requested
    key_hash_threshold: int = Field(200)

    # Background tasks
    sweep_enabled: bool = Field(True)

    @field_validator("compression_threshold")
    @classmethod
    def validate_compression_threshold(cls, v):
        if v < 0:
            raise ValueError("Compression threshold cannot be negative")
        return v

    @field_validator("key_hash_threshold")
    @classmethod
    def validate_key_hash_threshold(cls, v):
        if v < 1:
            raise ValueError("Key hash threshold must be at least 1")
        return v


class MonitoringSettings(BaseSettings):
    """Monitoring and logging configuration settings."""

    model_config = SettingsConfigDict(env_prefix="MONITORING_", env_file=".env", case_sensitive=False, extra="ignore")

    log_level: LogLevel = Field(LogLevel.INFO)
    log_format: str = Field("colored")  # json, colored, standard
    log_file: str = Field("")

    # Periodic performance report
    report_enabled: bool = Field(True)
    report_interval: int = Field(60)  # seconds
    memory_sample_size: int = Field(10)

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        if v not in ("json", "colored", "standard"):
            raise ValueError("Log format must be one of: json, colored, standard")
        return v

    @field_validator("report_interval", "memory_sample_size")
    @classmethod
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v


class APISettings(BaseSettings):
    """HTTP layer configuration settings."""

    model_config = SettingsConfigDict(env_prefix="API_", env_file=".env", case_sensitive=False, extra="ignore")

    api_title: str = Field("CMS Cache API")
    admin_prefix: str = Field("/cache")
    cached_tier: str = Field("standard")

    # Requests under these prefixes are never served from cache
    skip_paths: Annotated[List[str], NoDecode] = Field(["/api/admin"])
    skip_methods: Annotated[List[str], NoDecode] = Field(["POST", "PUT", "DELETE", "PATCH"])

    @field_validator("skip_paths", "skip_methods", mode="before")
    @classmethod
    def parse_comma_separated(cls, v):
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="allow")

    environment: Environment = Field(Environment.DEVELOPMENT)
    debug: bool = Field(True)
    app_name: str = Field("CMS Cache")
    app_version: str = Field("1.0.0")

    # Component settings
    cache: CacheSettings = Field(default_factory=CacheSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)
    api: APISettings = Field(default_factory=APISettings)

    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == Environment.DEVELOPMENT

    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == Environment.PRODUCTION

    def is_testing(self) -> bool:
        """Check if running in testing mode."""
        return self.environment == Environment.TESTING


def get_settings() -> Settings:
    """
    Build application settings from the environment.
    This function can be used as a FastAPI dependency.
    """
    return Settings()


def get_config_summary(settings: Settings) -> dict:
    """
    Get a summary of the given configuration.

    Returns:
        Dictionary with configuration summary
    """
    return {
        "environment": settings.environment,
        "debug": settings.debug,
        "app_name": settings.app_name,
        "app_version": settings.app_version,
        "cache": {
            "compression_enabled": settings.cache.compression_enabled,
            "compression_threshold": settings.cache.compression_threshold,
            "smart_invalidation": settings.cache.smart_invalidation,
            "sweep_enabled": settings.cache.sweep_enabled,
        },
        "monitoring": {
            "log_level": settings.monitoring.log_level,
            "report_enabled": settings.monitoring.report_enabled,
            "report_interval": settings.monitoring.report_interval,
        },
        "api": {
            "admin_prefix": settings.api.admin_prefix,
            "cached_tier": settings.api.cached_tier,
            "skip_paths": settings.api.skip_paths,
        },
    }
