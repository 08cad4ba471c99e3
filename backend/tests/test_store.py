import asyncio
import datetime

from sqlalchemy.dialects import postgresql

from app.db.models import TokenDocument, utcnow
from app.db.store import DurableStore
from conftest import build_snapshot


class FakeSession:
    def __init__(self, documents: dict) -> None:
        self.documents = documents
        self.statements: list = []
        self.commits = 0

    async def __aenter__(self) -> "FakeSession":
        return self

    async def __aexit__(self, *exc) -> None:
        return None

    async def get(self, model, key):
        assert model is TokenDocument
        return self.documents.get(key)

    async def execute(self, stmt) -> None:
        self.statements.append(stmt)

    async def commit(self) -> None:
        self.commits += 1


def build_store(documents: dict | None = None) -> tuple[DurableStore, FakeSession]:
    session = FakeSession(documents or {})
    return DurableStore(lambda: session), session  # type: ignore[arg-type]


def test_find_by_key_returns_snapshot() -> None:
    snapshot = build_snapshot("ethereum")
    document = TokenDocument(token="ethereum", snapshot=snapshot.model_dump(mode="json", by_alias=True))
    store, _ = build_store({"ethereum": document})

    assert asyncio.run(store.find_by_key("ethereum")) == snapshot


def test_find_by_key_missing_document() -> None:
    store, _ = build_store()

    assert asyncio.run(store.find_by_key("aver-ai")) is None


def test_find_by_key_invalid_document_is_absent() -> None:
    document = TokenDocument(token="ethereum", snapshot={"id": "ethereum"})
    store, _ = build_store({"ethereum": document})

    assert asyncio.run(store.find_by_key("ethereum")) is None


def test_upsert_replaces_snapshot_and_timestamp() -> None:
    store, session = build_store()

    asyncio.run(store.upsert("aver-ai", build_snapshot("aver-ai", price=0.02)))

    assert session.commits == 1
    compiled = str(session.statements[0].compile(dialect=postgresql.dialect()))
    assert "INSERT INTO tokens" in compiled
    assert "ON CONFLICT (token) DO UPDATE SET" in compiled
    update_clause = compiled.split("DO UPDATE SET", 1)[1]
    assert "snapshot_json = " in update_clause
    assert "updated_at = " in update_clause
    assert "token = " not in update_clause


def test_upsert_timestamp_is_naive_utc() -> None:
    store, session = build_store()
    before = datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)

    asyncio.run(store.upsert("ethereum", build_snapshot("ethereum")))

    params = session.statements[0].compile(dialect=postgresql.dialect()).params
    stamps = [value for value in params.values() if isinstance(value, datetime.datetime)]
    after = datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)
    assert stamps
    assert all(stamp.tzinfo is None and before <= stamp <= after for stamp in stamps)


def test_utcnow_is_naive() -> None:
    assert utcnow().tzinfo is None
