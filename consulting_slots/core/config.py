from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve .env from project root (consulting-slots/) so it loads regardless of cwd
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=(str(_ENV_FILE), ".env", "../.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str
    # Create tables on startup instead of running alembic (local/dev only)
    auto_create_tables: bool = False

    # JWT (tokens are issued by the identity service; we only verify them)
    secret_key: str
    access_token_expire_minutes: int = 15
    algorithm: str = "HS256"

    # CORS
    cors_origins: str = "http://localhost:3000"

    # Slot/booking business rules
    default_timezone: str = "UTC"
    default_slot_capacity: int = 1
    # Customers and specialists cannot cancel within this many minutes of the start
    cancellation_min_lead_minutes: int = 24 * 60
    booking_timeout_seconds: float = 10.0
    generation_horizon_days: int = 90
    max_generation_days: int = 365
    # Customer view of open slots looks this far ahead when no end date is given
    available_window_days: int = 30

    # Env
    env: str = "development"

    # Email (SMTP). Leave smtp_host empty to disable sending.
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    from_email: str = ""
    from_name: str = "Consulting Slots"
    site_name: str = "Consulting Slots"
    contact_email: str = ""

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def email_enabled(self) -> bool:
        return bool(self.smtp_host and self.smtp_user and self.smtp_password and self.from_email)


settings = Settings()
