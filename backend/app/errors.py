from __future__ import annotations

RATE_LIMIT_STATUS = 429


class ProviderError(Exception):
    """Failure talking to the market data provider.

    ``status_code`` carries the HTTP status when the provider answered,
    and is ``None`` for transport failures and malformed payloads.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TokenDataUnavailableError(Exception):
    """No tier could supply data for any configured token."""


def is_rate_limited(error: object) -> bool:
    return getattr(error, "status_code", None) == RATE_LIMIT_STATUS
