from __future__ import annotations

from typing import Sequence

from app.schemas.tokens import TokenCache, TokenResponseItem


def format_response(data: TokenCache, token_ids: Sequence[str]) -> list[TokenResponseItem]:
    return [
        TokenResponseItem(token_id=token_id, token_data=data.get(token_id))
        for token_id in token_ids
    ]
