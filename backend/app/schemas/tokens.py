from __future__ import annotations

from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class OHLCPoint(BaseModel):
    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: Optional[float] = None


class TokenSnapshot(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    symbol: str
    image: str = ""
    current_price: float = Field(ge=0)
    price_change_percentage_1h: float = 0.0
    price_change_percentage_24h: float = 0.0
    price_change_percentage_7d: float = 0.0
    total_volume: float = Field(default=0.0, ge=0)
    market_cap: float = Field(default=0.0, ge=0)
    sparkline_data: list[float] = Field(default_factory=list)
    ohlc_data: Optional[list[OHLCPoint]] = Field(default=None, alias="ohlcData")

    @field_validator("ohlc_data")
    @classmethod
    def _strictly_ascending(cls, value: Optional[list[OHLCPoint]]) -> Optional[list[OHLCPoint]]:
        if value is None:
            return value
        for previous, current in zip(value, value[1:]):
            if current.timestamp <= previous.timestamp:
                raise ValueError("ohlcData must be ordered by strictly ascending timestamp")
        return value


# One slot per configured token id; None means no tier supplied data yet.
TokenCache = Dict[str, Optional[TokenSnapshot]]


class TokenResponseItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token_id: str = Field(alias="tokenId")
    token_data: Optional[TokenSnapshot] = Field(default=None, alias="tokenData")


class ErrorResponse(BaseModel):
    message: str
