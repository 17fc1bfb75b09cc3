from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_LOG_LEVELS = {"critical", "error", "warning", "info", "debug"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    PORT: int = 3002
    DB_PATH: str = "/data/fodsync.db"
    LOG_LEVEL: str = "info"

    API_ENDPOINT: str = ""
    SYNC_ENABLED: bool = False
    SYNC_INTERVAL_SECONDS: float = 15.0
    POLL_INTERVAL_SECONDS: float = 10.0

    RETRY_ATTEMPTS: int = 3
    RETRY_DELAY_SECONDS: float = 2.0
    BACKOFF_MULTIPLIER: float = 2.0
    SUBMIT_BATCH_SIZE: int = 100
    POLL_BATCH_SIZE: int = 500
    REQUEST_TIMEOUT_SECONDS: float = 10.0
    POST_SUBMIT_POLL_DELAY_SECONDS: float = 2.0

    HEALTH_CHECK_ENABLED: bool = True
    HEALTH_TIMEOUT_SECONDS: float = 5.0
    HEALTHY_CACHE_TTL_SECONDS: float = 30.0
    UNHEALTHY_CACHE_TTL_SECONDS: float = 60.0

    # Consecutive polls an id must be reported missing before it is reopened.
    MISSING_RESET_THRESHOLD: int = 1

    @field_validator(
        "SYNC_INTERVAL_SECONDS",
        "POLL_INTERVAL_SECONDS",
        "REQUEST_TIMEOUT_SECONDS",
        "HEALTH_TIMEOUT_SECONDS",
        "SUBMIT_BATCH_SIZE",
        "POLL_BATCH_SIZE",
    )
    @classmethod
    def must_be_positive(cls, v):
        if v <= 0:
            raise ValueError("must be greater than zero")
        return v

    @field_validator(
        "RETRY_DELAY_SECONDS",
        "POST_SUBMIT_POLL_DELAY_SECONDS",
        "HEALTHY_CACHE_TTL_SECONDS",
        "UNHEALTHY_CACHE_TTL_SECONDS",
    )
    @classmethod
    def must_not_be_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("must not be negative")
        return v

    @field_validator("RETRY_ATTEMPTS")
    @classmethod
    def retry_attempts_in_range(cls, v: int) -> int:
        if not 1 <= v <= 10:
            raise ValueError("retry attempts should be between 1 and 10")
        return v

    @field_validator("BACKOFF_MULTIPLIER")
    @classmethod
    def backoff_at_least_one(cls, v: float) -> float:
        if v < 1:
            raise ValueError("backoff multiplier must be at least 1")
        return v

    @field_validator("MISSING_RESET_THRESHOLD")
    @classmethod
    def threshold_at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("missing reset threshold must be at least 1")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def known_log_level(cls, v: str) -> str:
        if v.lower() not in _LOG_LEVELS:
            raise ValueError(f"unknown log level: {v}")
        return v.lower()

    @property
    def api_configured(self) -> bool:
        return bool(self.API_ENDPOINT and self.API_ENDPOINT.strip())


settings = Settings()
