from __future__ import annotations

from typing import Callable

import pytest

from app.cache import FastCache
from app.errors import ProviderError
from app.schemas.tokens import OHLCPoint, TokenSnapshot


class FakeRedis:
    """Stands in for ``redis.asyncio.Redis``; TTLs are recorded, never enforced."""

    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.expirations: dict[str, int | None] = {}
        self.calls: list[tuple] = []
        self.fail_on: dict[str, Exception] = {}

    def _maybe_fail(self, op: str) -> None:
        if op in self.fail_on:
            raise self.fail_on[op]

    async def get(self, key: str) -> str | None:
        self.calls.append(("get", key))
        self._maybe_fail("get")
        return self.store.get(key)

    async def set(self, key: str, value: str, ex: int | None = None, nx: bool = False):
        self.calls.append(("set", key, value, ex, nx))
        self._maybe_fail("set_nx" if nx else "set")
        if nx and key in self.store:
            return None
        self.store[key] = value
        self.expirations[key] = ex
        return True

    async def delete(self, key: str) -> int:
        self.calls.append(("delete", key))
        self._maybe_fail("delete")
        return 1 if self.store.pop(key, None) is not None else 0

    async def aclose(self) -> None:
        self.calls.append(("aclose",))

    def count(self, op: str, key: str | None = None) -> int:
        return sum(1 for call in self.calls if call[0] == op and (key is None or call[1] == key))


class FakeStore:
    def __init__(self, documents: dict[str, TokenSnapshot] | None = None) -> None:
        self.documents: dict[str, TokenSnapshot] = dict(documents or {})
        self.find_calls: list[str] = []
        self.upsert_calls: list[str] = []
        self.fail_upsert_for: set[str] = set()
        self.fail_find = False

    async def find_by_key(self, token_id: str) -> TokenSnapshot | None:
        self.find_calls.append(token_id)
        if self.fail_find:
            raise ConnectionError("database unreachable")
        return self.documents.get(token_id)

    async def upsert(self, token_id: str, snapshot: TokenSnapshot) -> None:
        self.upsert_calls.append(token_id)
        if token_id in self.fail_upsert_for:
            raise ConnectionError(f"upsert failed for {token_id}")
        self.documents[token_id] = snapshot


class FakeProvider:
    def __init__(
        self,
        markets: list[TokenSnapshot] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.markets = list(markets or [])
        self.error = error
        self.market_calls: list[list[str]] = []
        self.ohlc_calls: list[tuple[str, int]] = []

    async def get_markets(self, token_ids: list[str]) -> list[TokenSnapshot]:
        self.market_calls.append(list(token_ids))
        if self.error is not None:
            raise self.error
        return [snapshot for snapshot in self.markets if snapshot.id in token_ids]

    async def get_ohlc(self, token_id: str, days: int = 7) -> list[OHLCPoint]:
        self.ohlc_calls.append((token_id, days))
        if self.error is not None:
            raise self.error
        return [
            OHLCPoint(timestamp=1_700_000_000_000, open=1.0, high=2.0, low=0.5, close=1.5),
            OHLCPoint(timestamp=1_700_014_400_000, open=1.5, high=2.5, low=1.0, close=2.0),
        ]

    @property
    def called(self) -> bool:
        return bool(self.market_calls or self.ohlc_calls)


def build_snapshot(token_id: str = "ethereum", price: float = 3200.0, **overrides) -> TokenSnapshot:
    fields = {
        "id": token_id,
        "name": token_id.title(),
        "symbol": token_id[:3],
        "image": f"https://img.example/{token_id}.png",
        "current_price": price,
        "price_change_percentage_1h": 0.1,
        "price_change_percentage_24h": -1.2,
        "price_change_percentage_7d": 4.5,
        "total_volume": 1_000_000.0,
        "market_cap": 50_000_000.0,
        "sparkline_data": [price - 1, price],
    }
    fields.update(overrides)
    return TokenSnapshot(**fields)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def fast_cache(fake_redis: FakeRedis) -> FastCache:
    return FastCache(fake_redis)  # type: ignore[arg-type]


@pytest.fixture
def snapshot_factory() -> Callable[..., TokenSnapshot]:
    return build_snapshot


@pytest.fixture
def provider_error() -> ProviderError:
    return ProviderError("Provider returned 500 for /coins/markets", status_code=500)
