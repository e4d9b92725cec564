import os
from enum import Enum
from typing import Any, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment types."""

    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):  # type: ignore[misc]
    """
    Main settings class.

    Every value can be overridden with an environment variable of the same
    name. Environment-specific defaults for logging are applied after
    loading, only for values that were not set explicitly.
    """

    model_config = SettingsConfigDict(case_sensitive=True)

    ENV: Environment = Environment.DEV

    # Redis settings
    REDIS_IP: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_MAX_CONNECTIONS: int = 50
    REDIS_SOCKET_TIMEOUT: int = 5
    REDIS_CONNECT_TIMEOUT: int = 5
    REDIS_HEALTH_CHECK_INTERVAL: int = 30
    REDIS_RETRY_ON_TIMEOUT: bool = True
    MAIN_REDIS_DB: int = 1
    AUTH_REDIS_DB: int = 10

    # Session and profile lookup
    USER_SESSION_REDIS_KEY_PREFIX: str = "session:"
    PROFILE_REDIS_KEY_PREFIX: str = "profile:"
    SESSION_COOKIE_NAME: str = "session_id"
    SESSION_QUERY_PARAM: str = "session"

    # WebSocket settings
    WS_OUTBOUND_QUEUE_SIZE: int = 256
    WS_SEND_TIMEOUT_SECONDS: float = 5.0
    WS_CLOSE_GRACE_SECONDS: float = 2.0

    # Chat settings
    CHAT_MAX_MESSAGE_LENGTH: int = 4096
    CHAT_TIMESTAMP_FORMAT: str = "%H:%M"
    # IANA zone for envelope timestamps; unset renders the server's local time
    CHAT_TIMEZONE: str | None = None
    CHAT_DEFAULT_AVATAR_URL: str = ""

    # Logging settings
    LOG_LEVEL: str = "INFO"
    LOG_FILE_PATH: str = "logs/logging_errors.log"
    LOG_CONSOLE_FORMAT: Literal["human", "json"] = "human"
    LOG_EXCLUDED_PATHS: list[str] = ["/metrics", "/health"]

    # Loki settings
    LOKI_ENABLED: bool = False
    LOKI_URL: str = "http://loki:3100"
    LOKI_VERSION: str = "1"

    def __init__(self, **kwargs: Any) -> None:
        """Initialize settings with environment-specific defaults."""
        super().__init__(**kwargs)
        self._apply_environment_defaults()

    def _apply_environment_defaults(self) -> None:
        """Apply environment-specific configuration defaults."""
        if self.ENV == Environment.PRODUCTION:
            if os.getenv("LOG_CONSOLE_FORMAT") is None:
                self.LOG_CONSOLE_FORMAT = "json"
            if os.getenv("LOG_LEVEL") is None:
                self.LOG_LEVEL = "WARNING"

        elif self.ENV == Environment.STAGING:
            if os.getenv("LOG_CONSOLE_FORMAT") is None:
                self.LOG_CONSOLE_FORMAT = "json"
            if os.getenv("LOG_LEVEL") is None:
                self.LOG_LEVEL = "INFO"

        else:  # Environment.DEV
            if os.getenv("LOG_CONSOLE_FORMAT") is None:
                self.LOG_CONSOLE_FORMAT = "human"
            if os.getenv("LOG_LEVEL") is None:
                self.LOG_LEVEL = "DEBUG"


app_settings = Settings()
