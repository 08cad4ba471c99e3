"""Tiered token data lookup.

Read order is fast cache, then the live provider, then the durable store.
A live result is written back to the cache right away and copied to the
durable store in a background task; a complete durable-store result is
written back to the cache in a background task. Background tasks never
change what the caller receives.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Sequence

from app.cache import FastCache
from app.config.settings import CacheSettings, TokenSettings
from app.db.store import DurableStore
from app.errors import ProviderError, TokenDataUnavailableError
from app.formatting.response import format_response
from app.orchestration.durable_write import DurableWriter
from app.providers.coingecko import CoinGeckoClient
from app.schemas.tokens import TokenCache, TokenResponseItem, TokenSnapshot

logger = logging.getLogger(__name__)


class TokenOrchestrator:
    def __init__(
        self,
        cache: FastCache,
        provider: CoinGeckoClient,
        store: DurableStore,
        writer: DurableWriter | None = None,
        tokens: TokenSettings | None = None,
        cache_settings: CacheSettings | None = None,
    ) -> None:
        self._cache = cache
        self._provider = provider
        self._store = store
        self._tokens = tokens or TokenSettings()
        self._cache_settings = cache_settings or CacheSettings()
        self._writer = writer or DurableWriter(cache, store, self._cache_settings)
        self._background: set[asyncio.Task] = set()

    @property
    def token_ids(self) -> Sequence[str]:
        return self._tokens.token_ids

    def _empty(self) -> TokenCache:
        return {token_id: None for token_id in self.token_ids}

    async def get_tokens(self) -> list[TokenResponseItem]:
        cached = await self.read_cache()
        if all(snapshot is not None for snapshot in cached.values()):
            return format_response(cached, self.token_ids)

        try:
            live = await self.fetch_live()
        except Exception:
            logger.exception("Live provider fetch failed, falling back to durable store")
            return await self._durable_fallback()

        await self.update_cache(live)
        self._spawn(self._writer.write_if_due(live))
        return format_response(live, self.token_ids)

    async def read_cache(self) -> TokenCache:
        keys = [self._tokens.cache_keys[token_id] for token_id in self.token_ids]
        results = await asyncio.gather(
            *(self._cache.get_snapshot(key) for key in keys),
            return_exceptions=True,
        )
        data = self._empty()
        for token_id, result in zip(self.token_ids, results):
            if isinstance(result, BaseException):
                logger.warning("Cache read failed for %s", token_id, exc_info=result)
                continue
            data[token_id] = result
        return data

    async def fetch_live(self) -> TokenCache:
        days = self._tokens.ohlc_days
        markets, *histories = await asyncio.gather(
            self._provider.get_markets(list(self.token_ids)),
            *(self._provider.get_ohlc(token_id, days) for token_id in self.token_ids),
        )
        by_id = {snapshot.id: snapshot for snapshot in markets}
        data = self._empty()
        for token_id, history in zip(self.token_ids, histories):
            snapshot = by_id.get(token_id)
            if snapshot is not None:
                data[token_id] = snapshot.model_copy(update={"ohlc_data": history})
        if all(snapshot is None for snapshot in data.values()):
            raise ProviderError("Provider returned none of the configured tokens")
        return data

    async def update_cache(self, data: TokenCache) -> None:
        present = [(token_id, snapshot) for token_id, snapshot in data.items() if snapshot is not None]
        ttl = self._cache_settings.price_ttl_seconds
        results = await asyncio.gather(
            *(
                self._cache.set_snapshot(self._tokens.cache_keys[token_id], snapshot, ttl)
                for token_id, snapshot in present
            ),
            return_exceptions=True,
        )
        for (token_id, _), result in zip(present, results):
            if isinstance(result, BaseException):
                logger.error("Cache write failed for %s", token_id, exc_info=result)

    async def read_durable(self) -> TokenCache:
        results = await asyncio.gather(
            *(self._store.find_by_key(token_id) for token_id in self.token_ids),
            return_exceptions=True,
        )
        data = self._empty()
        for token_id, result in zip(self.token_ids, results):
            if isinstance(result, BaseException):
                logger.error("Durable store read failed for %s", token_id, exc_info=result)
                continue
            data[token_id] = result
        return data

    async def _durable_fallback(self) -> list[TokenResponseItem]:
        stored = await self.read_durable()
        found: list[TokenSnapshot] = [snapshot for snapshot in stored.values() if snapshot is not None]
        if not found:
            raise TokenDataUnavailableError("No tier has data for any configured token")
        if len(found) == len(stored):
            self._spawn(self.update_cache(stored))
        else:
            missing = [token_id for token_id, snapshot in stored.items() if snapshot is None]
            logger.warning("Durable store has no data for %s", ", ".join(missing))
        return format_response(stored, self.token_ids)

    def _spawn(self, work: Awaitable[object]) -> asyncio.Task:
        # The request does not wait on this task; the strong reference keeps
        # it alive until it finishes, even after the response is sent.
        task = asyncio.ensure_future(work)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background write-back task failed", exc_info=exc)

    async def drain(self) -> None:
        """Wait for every background write-back task started so far."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
