from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, Sequence

import httpx
from pydantic import ValidationError

from app.config.settings import RetrySettings, Settings
from app.errors import ProviderError, is_rate_limited
from app.schemas.tokens import OHLCPoint, TokenSnapshot

logger = logging.getLogger(__name__)

_MARKETS_PATH = "/coins/markets"
_OHLC_PATH = "/coins/{token_id}/ohlc"
_API_KEY_HEADER = "x-cg-pro-api-key"

Sleep = Callable[[float], Awaitable[None]]


def create_http_client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.coingecko_base_url,
        headers={_API_KEY_HEADER: settings.coingecko_api_key},
        timeout=settings.provider_timeout_seconds,
    )


def _number(value: Any, default: float = 0.0) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return float(value)


def parse_market_row(row: dict) -> TokenSnapshot | None:
    """Map one ``/coins/markets`` row onto a snapshot, or ``None`` if unusable."""
    price = row.get("current_price")
    if not isinstance(price, (int, float)) or isinstance(price, bool):
        logger.warning("Provider row for %s has no current price", row.get("id"))
        return None
    sparkline = (row.get("sparkline_in_7d") or {}).get("price") or []
    try:
        return TokenSnapshot(
            id=row["id"],
            name=row.get("name") or row["id"],
            symbol=row.get("symbol") or "",
            image=row.get("image") or "",
            current_price=price,
            price_change_percentage_1h=_number(row.get("price_change_percentage_1h_in_currency")),
            price_change_percentage_24h=_number(row.get("price_change_percentage_24h")),
            price_change_percentage_7d=_number(row.get("price_change_percentage_7d_in_currency")),
            total_volume=_number(row.get("total_volume")),
            market_cap=_number(row.get("market_cap")),
            sparkline_data=[float(point) for point in sparkline if isinstance(point, (int, float))],
        )
    except ValidationError:
        logger.warning("Provider row for %s failed validation", row.get("id"), exc_info=True)
        return None


def parse_ohlc_rows(rows: Iterable[Sequence[float]]) -> list[OHLCPoint]:
    """Positional mapping: timestamp, open, high, low, close[, volume].

    Output is sorted by timestamp; a repeated timestamp keeps the last row.
    """
    by_timestamp: dict[int, OHLCPoint] = {}
    for row in rows:
        if len(row) < 5:
            continue
        timestamp, open_, high, low, close = row[:5]
        volume = row[5] if len(row) > 5 else None
        by_timestamp[int(timestamp)] = OHLCPoint(
            timestamp=int(timestamp),
            open=open_,
            high=high,
            low=low,
            close=close,
            volume=volume,
        )
    return [by_timestamp[key] for key in sorted(by_timestamp)]


class CoinGeckoClient:
    def __init__(
        self,
        http: httpx.AsyncClient,
        retry: RetrySettings | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._http = http
        self._retry = retry or RetrySettings()
        self._sleep = sleep

    async def _get_json(self, path: str, params: dict[str, str]) -> Any:
        try:
            response = await self._http.get(path, params=params)
        except httpx.HTTPError as exc:
            raise ProviderError(f"Provider request to {path} failed: {exc}") from exc
        if response.status_code >= 400:
            raise ProviderError(
                f"Provider returned {response.status_code} for {path}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderError(f"Provider returned invalid JSON for {path}") from exc

    async def _get_with_retry(self, path: str, params: dict[str, str]) -> Any:
        attempt = 0
        while True:
            try:
                return await self._get_json(path, params)
            except Exception as exc:
                if not is_rate_limited(exc) or attempt >= self._retry.max_retries:
                    raise
                delay = self._retry.base_delay_seconds * (2**attempt)
                attempt += 1
                logger.warning(
                    "Rate limited on %s, retry %d/%d in %.1fs",
                    path,
                    attempt,
                    self._retry.max_retries,
                    delay,
                )
                await self._sleep(delay)

    async def get_markets(self, token_ids: Sequence[str]) -> list[TokenSnapshot]:
        payload = await self._get_with_retry(
            _MARKETS_PATH,
            {
                "vs_currency": "usd",
                "ids": ",".join(token_ids),
                "price_change_percentage": "1h,24h,7d",
                "sparkline": "true",
                "precision": "full",
            },
        )
        if not isinstance(payload, list):
            raise ProviderError("Unexpected markets payload")
        snapshots: list[TokenSnapshot] = []
        for row in payload:
            if not isinstance(row, dict) or "id" not in row:
                continue
            snapshot = parse_market_row(row)
            if snapshot is not None:
                snapshots.append(snapshot)
        return snapshots

    async def get_ohlc(self, token_id: str, days: int = 7) -> list[OHLCPoint]:
        payload = await self._get_with_retry(
            _OHLC_PATH.format(token_id=token_id),
            {"vs_currency": "usd", "days": str(days), "precision": "full"},
        )
        if not isinstance(payload, list):
            raise ProviderError(f"Unexpected OHLC payload for {token_id}")
        return parse_ohlc_rows(row for row in payload if isinstance(row, (list, tuple)))

    async def close(self) -> None:
        await self._http.aclose()
