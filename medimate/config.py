"""
Configuration Management

Uses Pydantic BaseSettings to load configuration from environment variables.
All settings can be overridden via .env file or environment variables.

Environment Variables:
    REDIS_URL: Redis connection string (conversation context storage)
    ANTHROPIC_API_KEY: API key for intent recognition and small talk
    DOCTOR_PHONE_NUMBER: WhatsApp ID of the doctor (grants doctor commands)
    CLINIC_TIMEZONE: IANA timezone the clinic operates in
    GOOGLE_SHEET_ID: Spreadsheet holding the appointment ledger
    GOOGLE_CALENDAR_ID: Calendar receiving appointment events
    WHATSAPP_ACCESS_TOKEN / WHATSAPP_PHONE_NUMBER_ID: Graph API credentials
    APP_ENV: Environment name (development/staging/production)
    DEBUG: Enable debug mode (default: False)
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Redis Configuration
    redis_url: str = "redis://localhost:6379/0"
    """Redis connection URL.

    Format: redis://host:port/db

    Used for per-sender conversation context. When Redis is unreachable the
    context store falls back to process memory.
    """

    conversation_ttl_seconds: int = 86400
    """How long an idle conversation context is kept (default: 24 hours)."""

    # Claude Configuration
    anthropic_api_key: str = ""
    """Anthropic API key. Required for intent recognition."""

    claude_intent_model: str = "claude-3-5-haiku-20241022"
    """Model used for intent/entity recognition."""

    claude_fallback_model: str = "claude-3-5-sonnet-20241022"
    """Model tried when the primary model call fails."""

    claude_chat_model: str = "claude-3-5-haiku-20241022"
    """Model used for free-form replies and the daily summary."""

    # Clinic
    clinic_name: str = "MediMate Clinic"
    doctor_name: str = "the doctor"

    doctor_phone_number: Optional[str] = None
    """WhatsApp ID (digits, no +) of the doctor.

    Only messages from this sender may run doctor commands such as
    /pause bookings or /cancel all meetings today.
    """

    clinic_timezone: str = "UTC"
    """IANA timezone for wall-clock appointment times (e.g. Asia/Kolkata)."""

    clinic_open_hour: int = 9
    """First bookable hour of the day (inclusive)."""

    clinic_close_hour: int = 17
    """Closing hour (exclusive). 17 means the last slot starts at 16:xx."""

    appointment_duration_minutes: int = 60

    max_parse_failures: int = 3
    """Consecutive unparseable answers for one slot before the flow restarts."""

    pause_lookahead_days: int = 30
    """Horizon used to find existing events when a pause has no end date."""

    # Google Sheets
    google_sheet_id: str = ""
    google_sheets_client_email: str = ""
    google_sheets_private_key: str = ""
    """Service account private key. Literal "\\n" sequences are unescaped."""

    # Google Calendar
    google_calendar_id: str = "primary"
    google_calendar_client_email: str = ""
    google_calendar_private_key: str = ""

    # WhatsApp Cloud API
    whatsapp_access_token: str = ""
    whatsapp_phone_number_id: str = ""
    whatsapp_verify_token: str = ""
    whatsapp_api_version: str = "v19.0"

    # Cron
    cron_secret: Optional[str] = None
    """Bearer token protecting /cron endpoints. Open when unset."""

    # Application Environment
    app_env: Literal["development", "staging", "production"] = "development"
    """Current application environment.

    Options:
    - development: Local development, verbose logging, docs enabled
    - staging: Pre-production testing environment
    - production: Live production environment, minimal logging
    """

    debug: bool = False
    """Enable debug mode (DEBUG logging, error details in responses)."""

    # Application Configuration
    app_name: str = "medimate"
    host: str = "0.0.0.0"
    port: int = 8000

    # Pydantic configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def check_clinic_hours(self) -> "Settings":
        """Opening hours must form a non-empty range within one day."""
        if not 0 <= self.clinic_open_hour < self.clinic_close_hour <= 24:
            raise ValueError(
                f"clinic_open_hour ({self.clinic_open_hour}) must be before "
                f"clinic_close_hour ({self.clinic_close_hour}), both within 0-24"
            )
        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.app_env == "development"

    @property
    def sheets_private_key(self) -> str:
        """Sheets private key with escaped newlines restored."""
        return self.google_sheets_private_key.replace("\\n", "\n")

    @property
    def calendar_private_key(self) -> str:
        """Calendar private key with escaped newlines restored."""
        return self.google_calendar_private_key.replace("\\n", "\n")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Example:
        >>> from medimate.config import get_settings
        >>> settings = get_settings()
        >>> settings.clinic_open_hour
        9
    """
    return Settings()


# Module-level settings instance for easy imports
settings = get_settings()
