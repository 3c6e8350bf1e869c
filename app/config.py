from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class ConfigurationError(Exception):
    """Raised at startup when required settings are missing or inconsistent."""

    def __init__(self, message: str, setting: str | None = None):
        super().__init__(message)
        self.setting = setting
        self.recoverable = False


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Control surface
    API_KEY: str | None = None
    SCHEDULER_ENABLED: bool = True

    # Postgres
    DATABASE_URL: str = "postgresql://localhost:5432/family_events"

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 8
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour
    DB_APPLY_SCHEMA: bool = True  # run app/db/schema.sql at startup

    # Twilio (SMS approval channel)
    TWILIO_ACCOUNT_SID: str | None = None
    TWILIO_AUTH_TOKEN: str | None = None
    TWILIO_FROM_NUMBER: str | None = None
    APPROVAL_SMS_TO: str | None = None

    # Resend (email approval channel + reports)
    RESEND_API_KEY: str | None = None
    APPROVAL_EMAIL_FROM: str = "Family Events <events@example.com>"
    APPROVAL_EMAIL_TO: str | None = None
    REPORT_EMAIL_TO: str | None = None

    NOTIFICATION_TIMEOUT_SECONDS: float = 15.0

    # Google Calendar
    GOOGLE_CALENDAR_ACCESS_TOKEN: str | None = None
    CALENDAR_BLOCKING_IDS: list[str] = Field(default_factory=lambda: ["primary"])
    CALENDAR_WARNING_IDS: list[str] = Field(default_factory=list)
    CALENDAR_TIMEZONE: str = "America/Los_Angeles"
    DEFAULT_EVENT_DURATION_MINUTES: int = 120

    # Approval timing
    APPROVAL_TIMEOUT_HOURS: float = 24.0
    APPROVAL_REMINDER_AFTER_HOURS: float = 12.0

    # Deduplication
    DEDUP_HIGH_THRESHOLD: float = 0.8
    DEDUP_LOW_THRESHOLD: float = 0.5
    DEDUP_TIME_TOLERANCE_MINUTES: int = 30

    # Scoring preferences
    MIN_CHILD_AGE: int = 2
    MAX_CHILD_AGE: int = 4
    MAX_COST_PER_EVENT: float = 200.0
    PREFERRED_ACTIVITY_KEYWORDS: list[str] = Field(
        default_factory=lambda: [
            "story time",
            "storytime",
            "craft",
            "art",
            "music",
            "nature",
            "animals",
            "playground",
            "outdoor",
            "hands-on",
            "interactive",
            "educational",
            "toddler",
            "preschool",
            "family friendly",
        ]
    )

    # Viability filter
    MAX_ADVANCE_DAYS: int = 60
    MAX_DISTANCE_MILES: float = 30.0

    # Family profile used to fill registration forms
    PARENT_FIRST_NAME: str = "Parent"
    PARENT_LAST_NAME: str = "Family"
    PARENT_EMAIL: str = "family@example.com"
    PARENT_PHONE: str = ""
    EMERGENCY_CONTACT: str = ""
    CHILD_COUNT: int = 1
    CHILD_AGE: int = 3

    # Registration automation
    REGISTRATION_TIMEOUT_SECONDS: float = 90.0
    NAVIGATION_TIMEOUT_MS: int = 30000
    BROWSER_HEADLESS: bool = True
    BROWSER_MAX_PAGES: int = 1
    SCREENSHOT_DIR: str = "screenshots"
    GUARD_VIOLATION_HISTORY: int = 100

    # Scheduler
    DISCOVERY_INTERVAL_HOURS: float = 6.0
    BATCH_PROCESSING_INTERVAL_HOURS: float = 24.0
    APPROVAL_SWEEP_INTERVAL_HOURS: float = 4.0
    REGISTRATION_INTERVAL_MINUTES: float = 30.0
    CALENDAR_SYNC_INTERVAL_HOURS: float = 24.0
    DAILY_REPORT_INTERVAL_HOURS: float = 24.0
    HEALTH_CHECK_INTERVAL_MINUTES: float = 15.0
    DISPATCH_TOP_N: int = 10
    MAX_APPROVALS_PER_CYCLE: int = 3
    DISPATCH_PACING_SECONDS: float = 2.0
    SHUTDOWN_GRACE_SECONDS: float = 10.0

    # Discovery feeds (JSON endpoints returning a list of raw events)
    SCRAPER_FEED_URLS: list[str] = Field(default_factory=list)
    SCRAPER_TIMEOUT_SECONDS: float = 30.0

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def sms_configured(self) -> bool:
        return bool(
            self.TWILIO_ACCOUNT_SID
            and self.TWILIO_AUTH_TOKEN
            and self.TWILIO_FROM_NUMBER
            and self.APPROVAL_SMS_TO
        )

    def email_configured(self) -> bool:
        return bool(self.RESEND_API_KEY and self.APPROVAL_EMAIL_TO)

    def validate_for_startup(self) -> None:
        """
        Fail fast on settings the service cannot run without.

        Raises:
            ConfigurationError: when the API key or every approval channel is missing
        """
        if self.environment == "production" and not self.API_KEY:
            raise ConfigurationError("API_KEY must be set in production", setting="API_KEY")

        if self.SCHEDULER_ENABLED and not (self.sms_configured() or self.email_configured()):
            raise ConfigurationError(
                "No approval channel configured (Twilio or Resend required)",
                setting="TWILIO_ACCOUNT_SID",
            )

        if self.DEDUP_LOW_THRESHOLD > self.DEDUP_HIGH_THRESHOLD:
            raise ConfigurationError(
                "DEDUP_LOW_THRESHOLD cannot exceed DEDUP_HIGH_THRESHOLD",
                setting="DEDUP_LOW_THRESHOLD",
            )

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            # Single-process scheduler never needs many connections locally
            config.update({"min_size": 1, "max_size": 4, "timeout": 15.0})

        return config


settings = Settings()
