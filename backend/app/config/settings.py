from __future__ import annotations

from functools import lru_cache
from typing import Dict, List

from pydantic import AliasChoices, BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TokenSettings(BaseModel):
    # Declaration order is the response order.
    token_ids: List[str] = Field(default_factory=lambda: ["ethereum", "aver-ai"])
    cache_keys: Dict[str, str] = Field(
        default_factory=lambda: {
            "ethereum": "ethereum:price",
            "aver-ai": "aver:price",
        }
    )
    ohlc_days: int = 7


class CacheSettings(BaseModel):
    price_ttl_seconds: int = 30
    lock_key: str = "durableWriteLock"
    lock_ttl_seconds: int = 1
    last_write_key: str = "lastDurableWrite"
    durable_write_interval_seconds: int = 60


class RetrySettings(BaseModel):
    max_retries: int = 3
    base_delay_seconds: float = 1.0


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="PRICEDESK_",
        env_file=("../.env", ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    coingecko_api_key: str = Field(
        min_length=1,
        validation_alias=AliasChoices("COINGECKO_API_KEY", "PRICEDESK_COINGECKO_API_KEY"),
    )
    coingecko_base_url: str = Field(
        default="https://pro-api.coingecko.com/api/v3",
        validation_alias=AliasChoices("COINGECKO_BASE_URL", "PRICEDESK_COINGECKO_BASE_URL"),
    )
    database_url: str = Field(
        min_length=1,
        validation_alias=AliasChoices("DATABASE_URL", "PRICEDESK_DATABASE_URL"),
    )
    redis_url: str = Field(
        min_length=1,
        validation_alias=AliasChoices("REDIS_URL", "PRICEDESK_REDIS_URL"),
    )
    redis_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices("REDIS_TOKEN", "PRICEDESK_REDIS_TOKEN"),
    )
    provider_timeout_seconds: float = 10.0
    log_level: str = "INFO"

    tokens: TokenSettings = Field(default_factory=TokenSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build the settings once per process; raises if a required value is missing."""
    return Settings()
