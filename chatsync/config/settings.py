"""chatsync configuration via environment / .env file."""

from __future__ import annotations

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CHATSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Server ---
    SERVER_URL: str = "http://localhost:8800"
    REQUEST_TIMEOUT: float = 30.0

    # --- Conversation ---
    AGENT_ID: str = ""
    SESSION_ID: str = ""

    # --- Identity ---
    AUTH_TOKEN: str = ""
    AUTH_PROVIDER: str = "generic"
    CUSTOMER_ID: str = ""
    CUSTOMER_NAME: str = ""
    GUEST_CUSTOMER_ID: str = "guest"

    # --- Polling intervals (milliseconds) ---
    POLL_ACTIVE_MS: int = 50
    POLL_NORMAL_MS: int = 1000
    POLL_IDLE_MS: int = 3000
    POLL_VERY_IDLE_MS: int = 5000

    # --- Activity thresholds (milliseconds) ---
    POLL_RECENT_ACTIVITY_MS: int = 5000
    POLL_IDLE_THRESHOLD_MS: int = 10000
    POLL_VERY_IDLE_THRESHOLD_MS: int = 30000

    # --- Long-poll wait budget (seconds) and retry policy ---
    POLL_WAIT_MAX_S: int = 30
    POLL_WAIT_MIN_S: int = 10
    POLL_WAIT_STEP_S: int = 5
    POLL_MAX_RETRIES: int = 5
    POLL_BACKOFF_BASE_MS: int = 5000
    POLL_BACKOFF_CAP_MS: int = 30000
    POLL_ERROR_RETRY_MS: int = 5000

    @field_validator("SERVER_URL")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("AUTH_PROVIDER")
    @classmethod
    def _lower_provider(cls, v: str) -> str:
        return v.strip().lower() or "generic"


settings = Settings()
