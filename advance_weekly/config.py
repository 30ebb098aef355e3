"""
Configuration management for Advance Weekly.
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Application
    app_name: str = Field(default="Advance Weekly", env="APP_NAME")
    debug: bool = Field(default=False, env="DEBUG")
    environment: str = Field(default="development", env="ENVIRONMENT")

    # API
    api_host: str = Field(default="0.0.0.0", env="API_HOST")
    api_port: int = Field(default=8000, env="API_PORT")
    api_workers: int = Field(default=1, env="API_WORKERS")

    # Database
    database_url: str = Field(
        default="sqlite:///./advance_weekly.db", env="DATABASE_URL"
    )

    # Logging
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    log_format: str = Field(default="json", env="LOG_FORMAT")

    # Worker
    worker_poll_interval: int = Field(default=5, env="WORKER_POLL_INTERVAL")
    worker_claim_limit: int = Field(default=4, env="WORKER_CLAIM_LIMIT")
    dispatch_inline: bool = Field(
        default=True,
        env="DISPATCH_INLINE",
        description="Run triggered operations in the API/scheduler process instead of leaving them for the worker loop.",
    )

    # Scheduler
    scheduler_interval_seconds: int = Field(
        default=3600, env="SCHEDULER_INTERVAL_SECONDS"
    )
    scheduler_integration_types: str = Field(
        default="google_calendar",
        env="SCHEDULER_INTEGRATION_TYPES",
        description="Comma-separated integration types that make a user eligible for scheduled reflections.",
    )
    default_reflection_day: str = Field(default="friday", env="DEFAULT_REFLECTION_DAY")
    default_reflection_hour: int = Field(default=14, env="DEFAULT_REFLECTION_HOUR")
    default_reflection_timezone: str = Field(
        default="America/New_York", env="DEFAULT_REFLECTION_TIMEZONE"
    )

    # Generation (LLM proxy)
    llm_proxy_url: str = Field(
        default="http://localhost:8080/v1/generate", env="LLM_PROXY_URL"
    )
    llm_api_key: Optional[str] = Field(default=None, env="LLM_API_KEY")
    llm_model: str = Field(default="gemini-1.5-flash", env="LLM_MODEL")
    llm_timeout_seconds: float = Field(default=60.0, env="LLM_TIMEOUT_SECONDS")

    # Integrations
    integration_timeout_seconds: float = Field(
        default=15.0, env="INTEGRATION_TIMEOUT_SECONDS"
    )
    google_calendar_api_url: str = Field(
        default="https://www.googleapis.com/calendar/v3",
        env="GOOGLE_CALENDAR_API_URL",
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    def scheduler_integration_type_list(self) -> List[str]:
        """Parse the comma-separated scheduler integration types."""
        return [
            item.strip()
            for item in self.scheduler_integration_types.split(",")
            if item.strip()
        ]


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings."""
    return settings
