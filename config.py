"""Configuration management using Pydantic settings"""

from datetime import timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Runtime
    APP_ENV: str = "development"
    HOST: str = "localhost"
    PORT: int = 8000

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    # Phone numbers without a leading "+" are assumed to belong to this country
    DEFAULT_COUNTRY_CODE: str = "+234"

    # IANA zone for dates and times shown to users, e.g. "Africa/Lagos"
    DISPLAY_TIMEZONE: str = "UTC"

    # Second factor delivery: demo, twilio, firebase
    OTP_PROVIDER: str = "demo"
    DEMO_OTP_CODE: str = "123456"
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_VERIFY_SERVICE_SID: Optional[str] = None
    FIREBASE_API_KEY: Optional[str] = None
    OTP_MAX_PER_MINUTE: int = 2
    OTP_MAX_PER_HOUR: int = 5
    OTP_MAX_PER_DAY: int = 10

    # Identity store: memory, rest
    IDENTITY_STORE: str = "memory"
    SUPABASE_URL: Optional[str] = None
    SUPABASE_ANON_KEY: Optional[str] = None
    SUPABASE_TABLE: str = "users"
    STORE_TIMEOUT_SECONDS: float = 10.0

    # Payments
    PAYSTACK_WEBHOOK_SECRET: str = ""
    SUBSCRIPTION_DAYS: int = 7

    # Access lifecycle
    SECOND_FACTOR_WINDOW_MINUTES: int = 5
    SESSION_TTL_MINUTES: int = 10
    # PBKDF2 iterations - OWASP 2023 recommends 480,000 for SHA-256
    PASSWORD_HASH_ITERATIONS: int = 480000

    # Notifications: log, sendgrid
    NOTIFIER: str = "log"
    SENDGRID_API_KEY: Optional[str] = None
    NOTIFY_FROM_EMAIL: str = "noreply@examcoach.app"

    # Seeded super-admin (only created when phone and password are both set)
    DEFAULT_ADMIN_PHONE: Optional[str] = None
    DEFAULT_ADMIN_PASSWORD: Optional[str] = None
    DEFAULT_ADMIN_EMAIL: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def is_production(self) -> bool:
        return self.APP_ENV.lower() in ("production", "prod")

    @property
    def second_factor_window(self) -> timedelta:
        return timedelta(minutes=self.SECOND_FACTOR_WINDOW_MINUTES)

    @property
    def subscription_period(self) -> timedelta:
        return timedelta(days=self.SUBSCRIPTION_DAYS)

    @property
    def display_timezone(self) -> ZoneInfo:
        return ZoneInfo(self.DISPLAY_TIMEZONE)


settings = Settings()
