import pytest

from orders.errors import OrderNotFound
from orders.store import SqlOrderStore, normalize_dsn


def test_normalize_dsn():
    assert normalize_dsn("postgres://u:p@h:5432/db") == "postgresql+psycopg://u:p@h:5432/db"
    assert normalize_dsn("postgresql://u:p@h/db") == "postgresql+psycopg://u:p@h/db"
    assert normalize_dsn("postgresql+asyncpg://u:p@h/db") == "postgresql+psycopg://u:p@h/db"
    assert normalize_dsn("sqlite:///:memory:") == "sqlite+aiosqlite:///:memory:"
    assert normalize_dsn('"sqlite:///orders.db"') == "sqlite+aiosqlite:///orders.db"


@pytest.mark.asyncio
async def test_upsert_then_get(store: SqlOrderStore):
    doc = {"order_uid": "A1", "track_number": "T1", "items": [{"chrt_id": 1}], "payment": {"amount": 10.5}}
    await store.upsert("A1", "T1", doc, "1")
    assert await store.get("A1") == doc


@pytest.mark.asyncio
async def test_upsert_replaces_on_conflict(store: SqlOrderStore):
    await store.upsert("A1", "T1", {"order_uid": "A1", "v": 1}, "1")
    await store.upsert("A1", "T2", {"order_uid": "A1", "v": 2}, "2")
    assert await store.get("A1") == {"order_uid": "A1", "v": 2}
    assert await store.count() == 1


@pytest.mark.asyncio
async def test_get_missing_raises_not_found(store: SqlOrderStore):
    with pytest.raises(OrderNotFound) as e:
        await store.get("missing-id")
    assert e.value.identifier == "missing-id"
    assert "missing-id" in str(e.value)


@pytest.mark.asyncio
async def test_load_all(store: SqlOrderStore):
    assert await store.load_all() == {}
    await store.upsert("A1", "T1", {"order_uid": "A1"})
    await store.upsert("A2", "", {"order_uid": "A2"})
    assert await store.load_all() == {"A1": {"order_uid": "A1"}, "A2": {"order_uid": "A2"}}
