from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import Callable

from app.cache import FastCache
from app.config.settings import CacheSettings
from app.db.store import DurableStore
from app.schemas.tokens import TokenCache

logger = logging.getLogger(__name__)

_LOCK_VALUE = "locked"


def _now_ms() -> int:
    return int(time.time() * 1000)


class DurableWriter:
    """Copies fresh snapshots into the durable store at most once per interval.

    The interval gate is read from the shared cache first; the cache lock
    then decides which of the concurrent eligible requests actually writes.
    Nothing in here raises to the caller.
    """

    def __init__(
        self,
        cache: FastCache,
        store: DurableStore,
        settings: CacheSettings | None = None,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._cache = cache
        self._store = store
        self._settings = settings or CacheSettings()
        self._clock = clock

    async def _elapsed_since_last_write(self, now: int) -> float:
        try:
            raw = await self._cache.get(self._settings.last_write_key)
        except Exception:
            logger.exception("Failed to read %s from cache", self._settings.last_write_key)
            return math.inf
        if not raw:
            return math.inf
        try:
            return now - int(raw)
        except ValueError:
            logger.warning("Ignoring malformed %s value %r", self._settings.last_write_key, raw)
            return math.inf

    async def write_if_due(self, data: TokenCache) -> bool:
        now = self._clock()
        elapsed = await self._elapsed_since_last_write(now)
        if elapsed < self._settings.durable_write_interval_seconds * 1000:
            logger.debug("Durable write skipped, last write %sms ago", elapsed)
            return False
        return await self.write_with_lock(data, now)

    async def write_with_lock(self, data: TokenCache, now: int) -> bool:
        try:
            acquired = await self._cache.set_if_not_exists(
                self._settings.lock_key, _LOCK_VALUE, self._settings.lock_ttl_seconds
            )
        except Exception:
            logger.exception("Failed to acquire durable write lock")
            return False
        if not acquired:
            logger.debug("Durable write lock held elsewhere, skipping")
            return False

        try:
            await self._upsert_present(data)
            try:
                await self._cache.set(self._settings.last_write_key, str(now))
            except Exception:
                logger.exception("Failed to record durable write timestamp")
        finally:
            try:
                await self._cache.delete(self._settings.lock_key)
            except Exception:
                logger.exception("Failed to release durable write lock")
        return True

    async def _upsert_present(self, data: TokenCache) -> None:
        present = [(token_id, snapshot) for token_id, snapshot in data.items() if snapshot is not None]
        results = await asyncio.gather(
            *(self._store.upsert(token_id, snapshot) for token_id, snapshot in present),
            return_exceptions=True,
        )
        for (token_id, _), result in zip(present, results):
            if isinstance(result, BaseException):
                logger.error("Durable upsert failed for %s", token_id, exc_info=result)
