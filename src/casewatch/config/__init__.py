"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from pathlib import Path
from typing import List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="casewatch", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/casewatch",
        description="Database connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== SLA Engine ==========
    sla_config_path: Path = Field(
        default=Path("sla_config.yaml"),
        description="Path to SLA defaults YAML file"
    )
    civil_utc_offset_hours: int = Field(
        default=7,
        description="Fixed UTC offset of the civil calendar used for day arithmetic",
        ge=-12,
        le=14
    )

    # ========== Cron Trigger ==========
    cron_secret: Optional[str] = Field(
        default=None,
        description="Shared secret for the cron trigger endpoint (unset = open)"
    )

    # ========== Scheduler ==========
    scheduler_enabled: bool = Field(default=True, description="Run the in-process daily scheduler")
    sla_schedule_hour: int = Field(default=8, description="Hour of the daily SLA run", ge=0, le=23)
    sla_schedule_minute: int = Field(default=0, description="Minute of the daily SLA run", ge=0, le=59)
    scheduler_timezone: str = Field(
        default="Asia/Jakarta",
        description="Timezone for the daily schedule"
    )

    # ========== Observability ==========
    health_recent_runs: int = Field(
        default=10,
        description="Number of recent ledger rows in the health summary",
        ge=1,
        le=100
    )
    job_log_default_limit: int = Field(default=100, description="Default job log page size", ge=1)
    job_log_max_limit: int = Field(default=500, description="Max job log page size", ge=1)

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

SLA_JOB_NAME = "sla"
DEFAULT_REMINDER_DAYS = [7, 3, 1]
DEFAULT_ESCALATION_ROLE = "partner"


class NotificationKind(str):
    """Classification tags written on notification records."""
    SLA_REMINDER = "sla_reminder"
    SLA_ESCALATION = "sla_escalation"


class EscalationState(str):
    """Per-item escalation states."""
    TRACKING = "tracking"
    ESCALATED = "escalated"
    RESOLVED = "resolved"


class RuleScope(str):
    """Where a resolved deadline rule came from."""
    ORGANIZATION = "organization"
    GLOBAL = "global"
    DEFAULT = "default"


class JobStatus(str):
    """Ledger outcomes."""
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partial"


class JobTrigger(str):
    """What started a job run."""
    SCHEDULE = "schedule"
    CRON = "cron"
    MANUAL = "manual"
