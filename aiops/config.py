"""
AIOps Configuration Module

This module manages application settings and environment variables using
pydantic-settings for type-safe configuration management.

Environment variables are loaded from .env file or system environment.
All sensitive values use SecretStr to prevent accidental logging.
"""

from functools import lru_cache
from typing import Literal
import logging
import sys

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Pydantic Settings automatically reads from:
    1. Environment variables
    2. .env file in working directory
    3. Default values defined here

    Provider keys are optional: a provider without a key yields failed
    invocation results instead of preventing startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore unknown env vars
    )

    openai_api_key: SecretStr | None = Field(
        default=None, description="OpenAI API key for chat and embedding models"
    )

    groq_api_key: SecretStr | None = Field(
        default=None, description="Groq API key for Llama inference"
    )

    model_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Upper bound for any single model invocation",
    )

    judge_enabled: bool = Field(
        default=False,
        description="Use a judge model for relevance scoring (heuristic otherwise)",
    )

    judge_model: str = Field(
        default="openai/gpt-4o-mini", description="Model used as quality judge"
    )

    judge_timeout_seconds: float = Field(
        default=10.0, gt=0, description="Timeout for a single judge call"
    )

    metrics_flush_interval_seconds: float = Field(
        default=5.0, description="Interval between metric buffer flushes"
    )

    metrics_flush_batch_size: int = Field(
        default=500, gt=0, description="Maximum records written per flush"
    )

    metrics_max_history: int = Field(
        default=10000, gt=0, description="Recent records kept in process"
    )

    cache_default_ttl_seconds: float = Field(
        default=3600.0, gt=0, description="Default cache entry TTL"
    )

    cache_max_entries: int = Field(
        default=1000, gt=0, description="Maximum entries in the memory tier"
    )

    cache_sweep_interval_seconds: float = Field(
        default=600.0, description="Interval of the expired-entry sweep"
    )

    redis_url: str | None = Field(
        default=None,
        description="Shared cache tier (e.g. redis://localhost:6379/0); unset disables it",
    )

    threshold_check_interval_seconds: float = Field(
        default=300.0, description="Interval of alert threshold evaluation"
    )

    anomaly_scan_interval_seconds: float = Field(
        default=600.0, description="Interval of the anomaly scan"
    )

    baseline_update_interval_seconds: float = Field(
        default=3600.0, description="Interval of baseline recomputation"
    )

    anomaly_sensitivity: Literal["low", "medium", "high"] = Field(
        default="medium", description="IQR multiplier profile for anomaly scans"
    )

    dashboard_cache_ttl_seconds: float = Field(
        default=300.0, gt=0, description="TTL of cached dashboard snapshots"
    )

    notification_timeout_seconds: float = Field(
        default=10.0, gt=0, description="Timeout for webhook, Slack and Teams posts"
    )

    smtp_host: str | None = Field(
        default=None, description="SMTP server for e-mail alerts; unset disables e-mail"
    )

    smtp_port: int = Field(default=587, description="SMTP server port")

    smtp_user: str | None = Field(default=None, description="SMTP login")

    smtp_password: SecretStr | None = Field(default=None, description="SMTP password")

    smtp_from: str = Field(
        default="aiops-alerts@localhost", description="Sender address of alert e-mails"
    )

    smtp_use_tls: bool = Field(default=True, description="Issue STARTTLS before login")

    database_path: str | None = Field(
        default=None,
        description="SQLite file for the append-only store (in-memory when unset)",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Application log level"
    )

    host: str = Field(default="0.0.0.0", description="Server bind host")

    port: int = Field(default=8000, description="Server bind port")

    debug: bool = Field(default=False, description="Enable debug mode")

    @field_validator(
        "metrics_flush_interval_seconds",
        "cache_sweep_interval_seconds",
        "threshold_check_interval_seconds",
        "anomaly_scan_interval_seconds",
        "baseline_update_interval_seconds",
    )
    @classmethod
    def validate_interval(cls, v: float) -> float:
        """Periodic task intervals must be positive."""
        if v <= 0:
            raise ValueError("interval must be greater than zero")
        return v


@lru_cache
def get_settings() -> Settings:
    """
    Returns cached settings instance.

    Using lru_cache ensures settings are loaded once and reused,
    avoiding repeated file reads and environment parsing.

    Returns:
        Settings: The application settings singleton.
    """
    return Settings()


def configure_logging(settings: Settings) -> None:
    """
    Configure application logging based on settings.

    Sets up structured logging with timestamps and reduces noise
    from third-party HTTP and cache client libraries.

    Args:
        settings: The application settings instance.
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("groq").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.WARNING)
