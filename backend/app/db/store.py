from __future__ import annotations

import logging

from pydantic import ValidationError
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.db.models import TokenDocument, utcnow
from app.schemas.tokens import TokenSnapshot

logger = logging.getLogger(__name__)


class DurableStore:
    """Latest-known-good mirror of each token's snapshot."""

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._session_factory = session_factory

    async def find_by_key(self, token_id: str) -> TokenSnapshot | None:
        async with self._session_factory() as session:
            document = await session.get(TokenDocument, token_id)
        if document is None or not isinstance(document.snapshot, dict):
            return None
        try:
            return TokenSnapshot.model_validate(document.snapshot)
        except ValidationError:
            logger.warning("Stored snapshot for %s failed validation", token_id)
            return None

    async def upsert(self, token_id: str, snapshot: TokenSnapshot) -> None:
        now = utcnow()
        payload = snapshot.model_dump(mode="json", by_alias=True)
        stmt = insert(TokenDocument).values(token=token_id, snapshot=payload, updated_at=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=[TokenDocument.token],
            set_={TokenDocument.snapshot: payload, TokenDocument.updated_at: now},
        )
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()
