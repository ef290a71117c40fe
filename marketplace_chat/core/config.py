from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """Chat client settings loaded from environment variables"""

    # Marketplace REST backend
    CHAT_API_BASE_URL: str = "http://localhost:5000"
    CHAT_API_TOKEN: Optional[str] = None
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # Redis push channel (optional - polling alone keeps views consistent)
    REDIS_URL: Optional[str] = None
    PUSH_CHANNEL_PREFIX: str = "chat:user"

    # Message polling
    MESSAGE_POLL_INTERVAL_SECONDS: float = 5.0  # No push channel
    MESSAGE_POLL_INTERVAL_CONNECTED_SECONDS: float = 30.0  # Push channel connected
    DIRECTORY_POLL_INTERVAL_SECONDS: float = 10.0

    # Presence & typing
    PRESENCE_HEARTBEAT_SECONDS: float = 60.0
    PEER_STATUS_POLL_SECONDS: float = 30.0
    TYPING_IDLE_SECONDS: float = 3.0

    # Attachment limits
    MAX_DOCUMENT_SIZE_BYTES: int = 10 * 1024 * 1024
    MAX_IMAGE_SIZE_BYTES: int = 5 * 1024 * 1024

    # Circuit breaker for the chat API
    API_FAILURE_THRESHOLD: int = 5
    API_RECOVERY_TIMEOUT_SECONDS: float = 30.0

    # Fire-and-forget delivery queue (offline beacon, template usage)
    DELIVERY_QUEUE_SIZE: int = 100
    DELIVERY_DRAIN_TIMEOUT_SECONDS: float = 2.0

    LOG_LEVEL: str = "INFO"

    @field_validator("CHAT_API_BASE_URL")
    @classmethod
    def clean_base_url(cls, v: str) -> str:
        """Strip whitespace and trailing slashes so paths can be joined safely."""
        return v.strip().rstrip("/")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
