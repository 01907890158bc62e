"""
Core configuration management for the venue dashboard API.

Settings are read from environment variables (and an optional .env file).
Secrets such as the service key and the session-token secret are never hardcoded.
"""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Environment
    environment: str = "dev"

    # Hosted data API (REST interface of the hosted backend)
    data_api_url: str = "http://localhost:54321"
    data_api_key: str = ""
    data_api_service_key: Optional[str] = None
    request_timeout_seconds: float = 10.0

    # Session tokens issued by the auth provider
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    jwt_audience: str = "authenticated"

    # Venue / business rules
    business_timezone: str = "America/Chicago"
    dispatch_window_minutes: int = 10
    revenue_per_cover: float = 50.0
    default_service_start: str = "18:00"
    default_service_end: str = "23:00"
    slot_interval_minutes: int = 15

    # Logging and tracing (OTLP collector endpoint, disabled when empty)
    log_level: str = "INFO"
    otlp_endpoint: Optional[str] = None

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_reload: bool = False

    # CORS Origins (comma-separated)
    cors_origins: str = "*"

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def privileged_key(self) -> str:
        """Key used for privileged table access (falls back to the anonymous key)."""
        return self.data_api_service_key or self.data_api_key


# Global configuration instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings."""
    return settings
