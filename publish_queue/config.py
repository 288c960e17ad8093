"""Configuration for the publish queue."""

import os
from typing import Optional


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"Invalid integer in {name}: {raw!r}") from e


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _require_env(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise ValueError(f"{name} environment variable is required")
    return value


class PublishQueueConfig:
    """Configuration object for the publish queue."""

    def __init__(
        self,
        db_dsn: str,
        telegram_bot_token: str,
        telegram_target_channel_id: str,
        twitter_bearer_token: str,
        twitter_proxy_url: Optional[str] = None,
        temp_dir: str = ".tmp",
        max_retries: int = 3,
        retry_increment_seconds: int = 10,
        rate_limit_grace_seconds: int = 3,
        require_media: bool = True,
        http_timeout_seconds: int = 30,
        operator_token: Optional[str] = None,
    ):
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if retry_increment_seconds < 0:
            raise ValueError("retry_increment_seconds must not be negative")

        self.db_dsn = db_dsn
        self.telegram_bot_token = telegram_bot_token
        self.telegram_target_channel_id = telegram_target_channel_id
        self.twitter_bearer_token = twitter_bearer_token
        self.twitter_proxy_url = twitter_proxy_url
        self.temp_dir = temp_dir
        self.max_retries = max_retries
        self.retry_increment_seconds = retry_increment_seconds
        self.rate_limit_grace_seconds = rate_limit_grace_seconds
        self.require_media = require_media
        self.http_timeout_seconds = http_timeout_seconds
        self.operator_token = operator_token

    @property
    def retry_increment_ms(self) -> int:
        return self.retry_increment_seconds * 1000

    @classmethod
    def from_env(cls) -> "PublishQueueConfig":
        """Create config from environment variables."""
        db_dsn = _require_env("PUBLISH_QUEUE_DB_DSN")
        telegram_bot_token = _require_env("TELEGRAM_BOT_TOKEN")
        telegram_target_channel_id = _require_env("TELEGRAM_TARGET_CHANNEL_ID")
        twitter_bearer_token = _require_env("TWITTER_BEARER_TOKEN")

        return cls(
            db_dsn=db_dsn,
            telegram_bot_token=telegram_bot_token,
            telegram_target_channel_id=telegram_target_channel_id,
            twitter_bearer_token=twitter_bearer_token,
            twitter_proxy_url=os.getenv("TWITTER_PROXY_URL") or None,
            temp_dir=os.getenv("TEMP_DIR") or ".tmp",
            max_retries=_int_env("PUBLISH_QUEUE_MAX_RETRIES", 3),
            retry_increment_seconds=_int_env("PUBLISH_QUEUE_RETRY_INCREMENT_SECONDS", 10),
            rate_limit_grace_seconds=_int_env("PUBLISH_QUEUE_RATE_LIMIT_GRACE_SECONDS", 3),
            require_media=_bool_env("PUBLISH_QUEUE_REQUIRE_MEDIA", True),
            http_timeout_seconds=_int_env("PUBLISH_QUEUE_HTTP_TIMEOUT_SECONDS", 30),
            operator_token=os.getenv("PUBLISH_QUEUE_OPERATOR_TOKEN") or None,
        )
