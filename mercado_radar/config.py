"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class ConfigurationError(RuntimeError):
    """A required credential or path is missing."""


class Settings(BaseSettings):
    # App
    app_name: str = "Mercado Radar"
    debug: bool = False
    log_level: str = "INFO"
    timezone: str = "America/Sao_Paulo"

    # Database (SQLite locally, PostgreSQL via asyncpg in production)
    database_url: str = "sqlite+aiosqlite:///./data/mercado_radar.db"

    # Google Cloud Vision (either an API key or a service account file)
    google_application_credentials: str = ""
    google_vision_api_key: str = ""

    # Gemini AI
    gemini_api_key: str = ""
    gemini_model: str = "gemini-1.5-flash"

    # Instagram
    instagram_session_id: str = ""
    instagram_app_id: str = "936619743392459"
    instagram_user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/124.0.0.0 Safari/537.36"
    )
    scraping_timeout: int = 30  # seconds
    include_previous_day: bool = False

    # E-mail report
    notifications_enabled: bool = True
    email_provider: str = "log"  # "log" or "resend"
    resend_api_key: str = ""
    email_sender: str = "Mercado Radar <radar@example.com>"
    email_recipient: str = ""

    # Scheduler
    scheduler_enabled: bool = True
    scheduler_hour: int = 20
    scheduler_minute: int = 0

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }

    def missing_required(self) -> list[str]:
        """Return the names of required settings that are not configured."""
        missing: list[str] = []
        if not self.database_url:
            missing.append("DATABASE_URL")
        if not self.gemini_api_key:
            missing.append("GEMINI_API_KEY")
        if not (self.google_vision_api_key or self.google_application_credentials):
            missing.append("GOOGLE_VISION_API_KEY or GOOGLE_APPLICATION_CREDENTIALS")
        if self.notifications_enabled and self.email_provider == "resend":
            if not self.resend_api_key:
                missing.append("RESEND_API_KEY")
            if not self.email_recipient:
                missing.append("EMAIL_RECIPIENT")
        return missing

    def validate_required(self) -> None:
        missing = self.missing_required()
        if missing:
            raise ConfigurationError(
                "Configuration validation failed, missing: " + ", ".join(missing)
            )


@lru_cache
def get_settings() -> Settings:
    return Settings()
