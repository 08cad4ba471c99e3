from __future__ import annotations

import logging

from pydantic import ValidationError
from redis.asyncio import Redis

from app.config.settings import Settings
from app.schemas.tokens import TokenSnapshot

logger = logging.getLogger(__name__)


def create_redis_client(settings: Settings) -> Redis:
    options: dict = {"decode_responses": True}
    if settings.redis_token:
        options["password"] = settings.redis_token
    return Redis.from_url(settings.redis_url, **options)


class FastCache:
    """Thin async key/value facade over Redis.

    Transport errors are not caught here; callers decide whether a cache
    failure is a miss, a skipped write or something worse.
    """

    def __init__(self, client: Redis) -> None:
        self._client = client

    async def get(self, key: str) -> str | None:
        raw = await self._client.get(key)
        if raw is None:
            return None
        if isinstance(raw, bytes):
            return raw.decode("utf-8")
        return raw

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        await self._client.set(key, value, ex=ttl_seconds)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def set_if_not_exists(self, key: str, value: str, ttl_seconds: int) -> bool:
        acquired = await self._client.set(key, value, ex=ttl_seconds, nx=True)
        return bool(acquired)

    async def get_snapshot(self, key: str) -> TokenSnapshot | None:
        raw = await self.get(key)
        if not raw:
            return None
        try:
            return TokenSnapshot.model_validate_json(raw)
        except (ValidationError, ValueError):
            logger.warning("Discarding undecodable cache entry %s", key)
            return None

    async def set_snapshot(self, key: str, snapshot: TokenSnapshot, ttl_seconds: int) -> None:
        await self.set(key, snapshot.model_dump_json(by_alias=True), ttl_seconds)

    async def close(self) -> None:
        await self._client.aclose()
