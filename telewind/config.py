"""
Global service configuration.

Values come from the environment (``TELEWIND_`` prefix) or a ``.env`` file.
"""
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class ServiceConfig(BaseSettings):
    """Service configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="TELEWIND_",
        extra="ignore",  # Ignore unrelated keys in .env
    )

    # Storage
    DB_PATH: str = "data/telewind.db"

    # Telegram
    TELEGRAM_BOT_TOKEN: Optional[str] = None

    # Event source (anemometer)
    ANEMOMETER_URL: str = "http://3volna.ru/anemometer/getwind?id=1"
    SPEED_THRESHOLD: float = 5.0
    CANDIDATE_STEPS: int = 5
    COOLDOWN_STEPS: int = 5
    WIND_SECTOR: str = "NORTH_180"
    POLL_INTERVAL_SECONDS: float = 55.0

    # Delivery workers
    WORKER_COUNT: int = 4
    WORKER_POLL_SECONDS: float = 1.0
    WORKER_BATCH_SIZE: int = 25
    MAX_RETRIES: int = 3
    LEASE_SECONDS: int = 60
    BASE_BACKOFF_SECONDS: float = 5.0
    MAX_BACKOFF_SECONDS: float = 300.0
    SEND_TIMEOUT_SECONDS: float = 10.0

    # Unsubscribe users whose chat rejects delivery permanently
    AUTO_UNSUBSCRIBE_ON_ABANDON: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: Optional[str] = None


# Global configuration instance
config = ServiceConfig()
