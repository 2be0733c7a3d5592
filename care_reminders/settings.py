"""Settings configuration for Care Reminders."""

from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings
from pydantic import Field, ConfigDict
from dotenv import load_dotenv

from care_reminders.core.models import DeliveryChannel, RecipientType

# Load environment variables from .env file in the same directory as this file
env_path = Path(__file__).parent / ".env"
load_dotenv(dotenv_path=env_path)


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Database Configuration
    database_url: Optional[str] = Field(
        default=None,
        description="PostgreSQL connection URL; in-memory storage is used when unset"
    )

    db_pool_min_size: int = Field(
        default=5,
        description="Minimum database connection pool size"
    )

    db_pool_max_size: int = Field(
        default=20,
        description="Maximum database connection pool size"
    )

    # Scheduling Configuration
    timezone: str = Field(
        default="UTC",
        description="IANA timezone of the care recipient; reminder times are wall-clock in this zone"
    )

    reminder_horizon_days: int = Field(
        default=30,
        ge=1,
        description="Number of calendar days of reminders generated ahead"
    )

    max_snooze_minutes: int = Field(
        default=1440,
        ge=1,
        description="Longest snooze accepted for a single reminder"
    )

    # Delivery Configuration
    delivery_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Time allowed for a delivery channel to answer before the attempt counts as failed"
    )

    retry_warning_threshold: int = Field(
        default=3,
        ge=1,
        description="Failed attempts after which a retry is flagged for confirmation"
    )

    default_delivery_channel: DeliveryChannel = Field(
        default=DeliveryChannel.MOBILE_PUSH,
        description="Channel used for notifications of fired reminders"
    )

    default_recipient_type: RecipientType = Field(
        default=RecipientType.ELDERLY_USER,
        description="Recipient used for notifications of fired reminders"
    )

    delivery_webhook_url: Optional[str] = Field(
        default=None,
        description="Relay URL for push/email/SMS delivery; in-app delivery is used when unset"
    )

    # Trigger Configuration
    trigger_enabled: bool = Field(
        default=False,
        description="Run the due-reminder trigger loop inside the API process"
    )

    trigger_poll_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Seconds between due-reminder checks"
    )

    trigger_batch_size: int = Field(
        default=50,
        ge=1,
        description="Maximum due reminders fired per check"
    )

    log_level: str = Field(
        default="INFO",
        description="Root logging level"
    )


def load_settings() -> Settings:
    """Load settings with proper error handling."""
    try:
        return Settings()
    except Exception as e:
        error_msg = f"Failed to load settings: {e}"
        if "database_url" in str(e).lower():
            error_msg += "\nMake sure DATABASE_URL in your .env file is a valid PostgreSQL URL"
        if "timezone" in str(e).lower():
            error_msg += "\nMake sure TIMEZONE is an IANA zone name such as Europe/Berlin"
        raise ValueError(error_msg) from e
