# backend/app/db/models.py

import datetime

from sqlalchemy import Column, DateTime, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime.datetime:
    # Naive UTC, matching the DateTime column.
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


class TokenDocument(Base):
    __tablename__ = "tokens"

    # One row per token id; each upsert overwrites the previous snapshot.
    token = Column(String, primary_key=True)
    snapshot = Column("snapshot_json", JSONB, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<TokenDocument(token='{self.token}', updated_at='{self.updated_at}')>"
