import logging
import os
from dataclasses import dataclass
from functools import lru_cache

import redis
from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class Settings:
    """Application settings loaded from environment variables."""

    # Redis (local store)
    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379")
    redis_password: str | None = os.getenv("REDIS_PASSWORD")
    store_key_prefix: str = os.getenv("STORE_KEY_PREFIX", "edge_sync")

    # Central system
    central_api_url: str = os.getenv("CENTRAL_API_URL", "http://localhost:7001/api/v1")
    central_api_key: str = os.getenv("CENTRAL_API_KEY", "")
    establishment_id: str = os.getenv("ESTABLISHMENT_ID", "local-establishment")
    probe_timeout: float = float(os.getenv("PROBE_TIMEOUT", "5"))
    transmit_timeout: float = float(os.getenv("TRANSMIT_TIMEOUT", "30"))

    # Replication
    sync_interval: float = float(os.getenv("SYNC_INTERVAL", "300"))  # 5 minutes
    sync_batch_size: int = int(os.getenv("SYNC_BATCH_SIZE", "100"))
    sync_max_retries: int = int(os.getenv("SYNC_MAX_RETRIES", "3"))
    sync_retry_delay: float = float(os.getenv("SYNC_RETRY_DELAY", "1"))
    sync_retention_days: int = int(os.getenv("SYNC_RETENTION_DAYS", "30"))

    # Offline cache
    cache_max_size: int = int(os.getenv("CACHE_MAX_SIZE", "10000"))
    cache_default_ttl: int = int(os.getenv("CACHE_DEFAULT_TTL", "86400"))  # 24 hours
    connection_check_interval: float = float(os.getenv("CONNECTION_CHECK_INTERVAL", "30"))

    # Envelope secrets (pre-shared, immutable for the process lifetime)
    sync_jwt_secret: str = os.getenv("SYNC_JWT_SECRET", "")
    local_system_secret: str = os.getenv("LOCAL_SYSTEM_SECRET", "")
    central_system_secret: str = os.getenv("CENTRAL_SYSTEM_SECRET", "")

    # API
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    api_reload: bool = os.getenv("API_RELOAD", "false").lower() == "true"

    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    @property
    def has_envelope_secrets(self) -> bool:
        """Check whether all three envelope secrets are configured."""
        return bool(self.sync_jwt_secret and self.local_system_secret and self.central_system_secret)

    def __post_init__(self) -> None:
        """Validate settings after initialization."""
        if self.sync_batch_size <= 0:
            raise ValueError("SYNC_BATCH_SIZE must be positive")

        if self.sync_max_retries <= 0:
            raise ValueError("SYNC_MAX_RETRIES must be positive")

        if self.cache_max_size <= 0:
            raise ValueError("CACHE_MAX_SIZE must be positive")

        if self.cache_default_ttl <= 0:
            raise ValueError("CACHE_DEFAULT_TTL must be positive")

        for name in ("sync_interval", "connection_check_interval", "probe_timeout", "transmit_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name.upper()} must be positive, got {getattr(self, name)}")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


def get_redis_client(url: str | None = None) -> redis.Redis:
    """Create a Redis client instance."""
    return redis.from_url(
        url or settings.redis_url,
        password=settings.redis_password,
        decode_responses=True,
    )


def configure_logging(level: str | None = None) -> None:
    """Configure root logging for the edge node process."""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
