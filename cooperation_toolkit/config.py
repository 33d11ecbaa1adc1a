"""
Configuration management for the Cooperation Toolkit.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Application
    app_name: str = Field(default="Cooperation Toolkit", env="APP_NAME")
    debug: bool = Field(default=False, env="DEBUG")
    environment: str = Field(default="development", env="ENVIRONMENT")
    app_url: str = Field(default="http://localhost:3000", env="APP_URL")

    # API
    api_host: str = Field(default="0.0.0.0", env="API_HOST")
    api_port: int = Field(default=8000, env="API_PORT")
    api_workers: int = Field(default=1, env="API_WORKERS")

    # Database
    database_url: str = Field(
        default="sqlite:///./cooperation_toolkit.db", env="DATABASE_URL"
    )

    # Logging
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    log_format: str = Field(default="json", env="LOG_FORMAT")

    # Governance defaults (used when a team leaves a value unset)
    default_objection_window_days: int = Field(
        default=7, env="DEFAULT_OBJECTION_WINDOW_DAYS"
    )
    default_objection_threshold: float = Field(
        default=0.0, env="DEFAULT_OBJECTION_THRESHOLD"
    )
    default_voting_period_days: int = Field(default=7, env="DEFAULT_VOTING_PERIOD_DAYS")
    constitutional_voting_period_days: int = Field(
        default=14, env="CONSTITUTIONAL_VOTING_PERIOD_DAYS"
    )
    constitutional_approval_threshold: float = Field(
        default=50.0,
        env="CONSTITUTIONAL_APPROVAL_THRESHOLD",
        description="Minimum weighted approve percentage for constitutional challenges.",
    )
    committee_eligibility_window_months: int = Field(
        default=6,
        env="COMMITTEE_ELIGIBILITY_WINDOW_MONTHS",
        description="Months of ledger history that count as active COOK; 0 counts everything.",
    )
    committee_minimum_active_cook: float = Field(
        default=0.0, env="COMMITTEE_MINIMUM_ACTIVE_COOK"
    )
    committee_cooling_off_period_days: int = Field(
        default=0, env="COMMITTEE_COOLING_OFF_PERIOD_DAYS"
    )

    # Outbox processing
    outbox_batch_size: int = Field(default=100, env="OUTBOX_BATCH_SIZE")
    outbox_poll_interval: int = Field(default=5, env="OUTBOX_POLL_INTERVAL")

    # External board (GitHub Projects classic REST API)
    board_api_url: str = Field(default="https://api.github.com", env="BOARD_API_URL")
    github_api_token: Optional[str] = Field(default=None, env="GITHUB_API_TOKEN")
    board_timeout_seconds: float = Field(default=30.0, env="BOARD_TIMEOUT_SECONDS")

    # Circuit breaker
    circuit_failure_threshold: int = Field(default=5, env="CIRCUIT_FAILURE_THRESHOLD")
    circuit_success_threshold: int = Field(default=2, env="CIRCUIT_SUCCESS_THRESHOLD")
    circuit_reset_timeout_seconds: float = Field(
        default=300.0, env="CIRCUIT_RESET_TIMEOUT_SECONDS"
    )

    # Sync retry queue
    sync_max_retries: int = Field(default=10, env="SYNC_MAX_RETRIES")
    sync_batch_size: int = Field(default=10, env="SYNC_BATCH_SIZE")

    # Notifications
    notification_webhook_url: Optional[str] = Field(
        default=None, env="NOTIFICATION_WEBHOOK_URL"
    )
    notification_timeout_seconds: float = Field(
        default=10.0, env="NOTIFICATION_TIMEOUT_SECONDS"
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings."""
    return settings
