"""
Configuration Management
========================

Type-safe configuration using Pydantic Settings with environment variable support.
"""

from decimal import Decimal
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PolicyConfig(BaseSettings):
    """Lending policy defaults (overridable per deployment)"""
    model_config = SettingsConfigDict(
        env_prefix="POLICY_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    loan_period_days: int = Field(14, description="Default loan length in days")
    max_renewals: int = Field(2, description="Renewals allowed per loan")
    max_active_borrowings: int = Field(5, description="Open loans allowed per member")
    fine_per_day: Decimal = Field(Decimal("0.50"), description="Fine per day late")
    max_fine: Decimal = Field(Decimal("20.00"), description="Cap for a single fine")
    pickup_window_days: int = Field(3, description="Days a ready reservation stays claimable")
    max_outstanding_fines: Decimal = Field(Decimal("10.00"), description="Unpaid total that blocks borrowing")


class DatabaseConfig(BaseSettings):
    """Database configuration"""
    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    url: str = Field("sqlite:///./lending.db", description="Database URL")
    echo: bool = Field(False, description="Enable SQL query logging")


class EngineConfig(BaseSettings):
    """Lending engine behaviour"""
    model_config = SettingsConfigDict(
        env_prefix="ENGINE_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    max_conflict_retries: int = Field(3, description="Retries after an optimistic-concurrency conflict")

    @field_validator("max_conflict_retries")
    @classmethod
    def validate_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("max_conflict_retries cannot be negative")
        return v


class SchedulerConfig(BaseSettings):
    """Periodic sweep configuration"""
    model_config = SettingsConfigDict(
        env_prefix="SCHEDULER_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    overdue_sweep_minutes: int = Field(60, description="Interval of the overdue sweep")
    pickup_sweep_minutes: int = Field(15, description="Interval of the stale-pickup sweep")


class LoggingConfig(BaseSettings):
    """Logging configuration"""
    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    level: str = Field("INFO", description="Logging level")
    format: str = Field(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format string"
    )


class APIConfig(BaseSettings):
    """API server configuration"""
    model_config = SettingsConfigDict(
        env_prefix="API_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    host: str = Field("0.0.0.0", description="API host")
    port: int = Field(8000, description="API port")
    reload: bool = Field(False, description="Enable auto-reload")
    workers: int = Field(1, description="Number of worker processes")


class Settings(BaseSettings):
    """Main application settings"""
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        validate_assignment=True
    )

    # Environment
    environment: str = Field("development", description="Environment name")
    debug: bool = Field(False, description="Enable debug mode")

    # Component configurations
    policy: PolicyConfig = Field(default_factory=PolicyConfig, description="Lending policy")
    database: DatabaseConfig = Field(default_factory=DatabaseConfig, description="Database configuration")
    engine: EngineConfig = Field(default_factory=EngineConfig, description="Engine configuration")
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig, description="Scheduler configuration")
    logging: LoggingConfig = Field(default_factory=LoggingConfig, description="Logging configuration")
    api: APIConfig = Field(default_factory=APIConfig, description="API configuration")


def get_config() -> Settings:
    """Get application configuration"""
    return Settings()
