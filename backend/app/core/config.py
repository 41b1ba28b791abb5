"""
Configuration management using Pydantic Settings.
Loads environment variables from .env file.
"""
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "E-Filing Engine"
    app_version: str = "0.1.0"
    debug: bool = False

    # Supabase Configuration
    supabase_url: str
    supabase_anon_key: str
    supabase_service_role_key: Optional[str] = None  # Bypasses RLS for the sweep

    # CORS Settings (for Frontend)
    cors_origins: str = "http://localhost:3000"

    # Scheduler Settings
    enable_scheduler: bool = True
    scheduler_timezone: str = "UTC"

    # Only ONE worker may own the sweep and the monthly bonus run.
    # Set RUN_SCHEDULER=true on exactly one container/worker.
    run_scheduler: bool = False

    redlist_sweep_interval_minutes: int = 60
    timer_refresh_interval_minutes: int = 60
    monthly_bonus_day: int = 1
    monthly_bonus_hour: int = 0
    daily_performance_hour: int = 23
    daily_performance_minute: int = 30

    # Business calendar
    # Comma-separated weekday numbers (Monday=0 ... Sunday=6)
    non_working_weekdays: str = "5,6"

    # Red-list behaviour
    # When true the sweep ignores the cached time_remaining column and only
    # trusts due_date / desk_due_date.
    redlist_trust_due_date_only: bool = False

    # Which ledgers react to engine events ("points", "coins")
    redlist_ledgers: str = "points"
    reward_ledgers: str = "coins"

    # Notification delivery
    notification_webhook_url: Optional[str] = None
    notification_webhook_token: Optional[str] = None
    notification_max_retries: int = 5
    notification_retry_base_delay: float = 60.0
    notification_retry_max_delay: float = 3600.0
    notification_timeout_seconds: float = 10.0
    notification_delivery_interval_minutes: int = 1
    notification_delivery_batch_size: int = 100

    # Job Monitoring
    job_failure_alert_threshold: int = 2

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def non_working_weekday_set(self) -> set[int]:
        """Parse NON_WORKING_WEEKDAYS into a set of weekday numbers (Monday=0)."""
        try:
            days = {
                int(day.strip())
                for day in self.non_working_weekdays.split(",")
                if day.strip()
            }
        except ValueError:
            days = None

        if days is None or not days.issubset(range(7)) or len(days) == 7:
            raise ConfigurationError(
                "NON_WORKING_WEEKDAYS must list weekday numbers 0-6 and leave at least one working day",
                config_key="NON_WORKING_WEEKDAYS",
                expected_type="comma-separated integers",
                actual_value=self.non_working_weekdays,
            )
        return days

    @property
    def redlist_ledger_names(self) -> list[str]:
        return [name.strip() for name in self.redlist_ledgers.split(",") if name.strip()]

    @property
    def reward_ledger_names(self) -> list[str]:
        return [name.strip() for name in self.reward_ledgers.split(",") if name.strip()]

    @property
    def webhook_enabled(self) -> bool:
        """Check if outbound notification webhook is configured."""
        return bool(self.notification_webhook_url)


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings instance.
    Call this function to get application settings.
    """
    return Settings()


# Global settings instance
settings = get_settings()
