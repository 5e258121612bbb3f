from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Literal

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "dev"
    SERVICE_NAME: str = "ragbridge"
    SERVICE_PORT: int = 3000
    LOG_JSON: bool = True
    LOG_LEVEL: str = "info"
    # Transport selection: "memory" or "redis"
    BUS_ADAPTER: Literal["memory", "redis"] = "memory"
    REDIS_URL: str | None = "redis://localhost:6379"
    QUERY_CHANNEL: str = "rag:query"
    RESPONSE_CHANNEL: str = "rag:response"
    DEFAULT_DOMAIN: str = "inngest"
    # Correlation
    RESPONSE_TIMEOUT_MS: int = Field(default=30000, gt=0)
    USER_RATE_LIMIT_PER_MINUTE: int = Field(default=10, gt=0)
    RATE_LIMIT_MAX_ENTRIES: int | None = Field(default=None, gt=0)
    # Seconds between sweeps of idle callers; 0 disables
    RATE_LIMIT_SWEEP_INTERVAL_S: float = Field(default=60.0, ge=0)
    MAX_QUERY_LENGTH: int = 4000

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
