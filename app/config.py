"""
Configuration Management

Uses Pydantic BaseSettings to load configuration from environment variables.
All settings can be overridden via .env file or environment variables.

Environment Variables:
    OPENDENTAL_API_BASE_URL: Practice-management API base URL
    OPENDENTAL_API_KEY: Authorization value ("ODFHIR dev/customer" or bearer token)
    OPENDENTAL_TIMEOUT_SECONDS: Per-request timeout (default: 10)
    ANTHROPIC_API_KEY: Key for intent classification / slot extraction
    OFFICE_CONTEXT_TTL_SECONDS: Office context lifetime (default: 300)
    OFFICE_HOURS: JSON mapping of weekday -> {"open", "close"} or {"closed": true}
    APP_ENV: Environment name (development/staging/production)
    DEBUG: Enable debug mode (default: False)
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_OFFICE_HOURS: dict[str, dict] = {
    "monday": {"open": "08:00", "close": "17:00"},
    "tuesday": {"open": "08:00", "close": "17:00"},
    "wednesday": {"open": "08:00", "close": "17:00"},
    "thursday": {"open": "08:00", "close": "17:00"},
    "friday": {"open": "08:00", "close": "17:00"},
    "saturday": {"open": "09:00", "close": "13:00"},
    "sunday": {"closed": True},
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # OpenDental Gateway
    opendental_api_base_url: str = "https://api.opendental.com/api/v1"
    """OpenDental REST API base URL."""

    opendental_api_key: str = ""
    """Authorization header value.

    Either "ODFHIR {DeveloperKey}/{CustomerKey}" or a bare token, which
    is sent as "Bearer <token>".
    """

    opendental_timeout_seconds: float = 10.0
    """Request timeout in seconds.

    A timeout is treated as a gateway failure. There are no automatic
    retries; the caller re-asks instead.
    """

    # Claude (intent classification and slot extraction)
    anthropic_api_key: str = ""
    claude_intent_model: str = "claude-3-5-haiku-20241022"
    claude_fallback_model: str = "claude-3-5-sonnet-20241022"
    claude_intent_confidence_threshold: float = 0.5

    # Office Context
    office_context_ttl_seconds: int = 300
    """Office context lifetime (default: 5 minutes)."""

    office_context_fallback_ttl_seconds: int = 60
    """Lifetime of a context built while the gateway was unreachable."""

    lookahead_days: int = 7
    """How many days of occupied intervals to pre-fetch as hints."""

    schedule_lookahead_days: int = 14
    """How many days of provider schedules to cache. Beyond it office hours alone apply."""

    # Defaults
    default_provider_id: int = 1
    default_operatory_id: int = 1
    default_appointment_length: int = 30
    """Default appointment length in minutes (also the slot step)."""

    # Availability
    suggest_slot_count: int = 3
    """Number of candidate slots offered to the caller."""

    slots_per_day: int = 2
    """Candidates taken from one day before moving to the next."""

    alternative_window_days: int = 2
    """Days after a conflicting date searched for alternatives."""

    appointment_search_days: int = 90
    """How far ahead to look for a patient's existing appointments."""

    missed_lookback_days: int = 7
    """How far back to look for no-show appointments on cancel."""

    late_cancel_hours: int = 24
    """Notice below which a cancellation carries a penalty marker."""

    max_workflow_steps: int = 12
    """Gateway calls allowed per caller turn."""

    office_hours: dict[str, dict] = DEFAULT_OFFICE_HOURS
    """Weekday -> {"open": "HH:MM", "close": "HH:MM"} or {"closed": true}."""

    office_timezone: Optional[str] = None
    """IANA timezone of the office. Local wall-clock time when unset."""

    # Application Environment
    app_env: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    app_name: str = "dental-scheduling-agent"
    host: str = "0.0.0.0"
    port: int = 8000

    cors_origins: str = "http://localhost:3000"
    """Comma-separated list of allowed CORS origins."""

    max_sessions: int = 500
    """Upper bound on live per-session office contexts held by the API."""

    # Pydantic configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.app_env == "development"

    @property
    def cors_origins_list(self) -> list[str]:
        """Split cors_origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def opendental_auth_header(self) -> str:
        """Authorization header value for the gateway."""
        key = self.opendental_api_key
        if key.startswith("ODFHIR ") or key.startswith("Bearer "):
            return key
        return f"Bearer {key}"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings: Cached settings instance

    Example:
        >>> from app.config import get_settings
        >>> settings = get_settings()
        >>> print(settings.office_context_ttl_seconds)
        300
    """
    return Settings()


# Module-level settings instance for easy imports
settings = get_settings()
