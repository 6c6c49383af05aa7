import json

import pytest

import infra
from adapters.bus.inmemory import InMemoryChannel
from orders.cache import MirrorCache
from orders.errors import StartupFatalError
from orders.store import SqlOrderStore
from utils.config import ServiceSettings


@pytest.mark.asyncio
async def test_start_seeds_cache_before_opening_channel(tmp_path, monkeypatch):
    dsn = f"sqlite:///{tmp_path / 'orders.db'}"
    seed = await SqlOrderStore.open(dsn)
    await seed.upsert("A1", "T1", {"order_uid": "A1"})
    await seed.upsert("A2", "T2", {"order_uid": "A2"})
    await seed.close()

    container_cache = MirrorCache()
    seen_at_open = {}

    async def fake_open_channel(settings):
        seen_at_open["cached"] = len(container_cache)
        return InMemoryChannel(block=0.01)

    monkeypatch.setattr(infra, "open_channel", fake_open_channel)

    c = await infra.ServiceContainer.start(ServiceSettings(store_dsn=dsn), cache=container_cache)
    try:
        assert seen_at_open["cached"] == 2
        assert c.cache.get("A1")[1] and c.cache.get("A2")[1]
        assert await infra.store_healthcheck(c.store)
    finally:
        await c.stop()


@pytest.mark.asyncio
async def test_unreachable_channel_is_fatal(tmp_path, monkeypatch):
    async def boom(settings):
        raise ConnectionError("no broker")

    monkeypatch.setattr(infra, "open_channel", boom)
    with pytest.raises(StartupFatalError) as e:
        await infra.ServiceContainer.start(ServiceSettings(store_dsn=f"sqlite:///{tmp_path / 'o.db'}"))
    assert "channel" in str(e.value)


@pytest.mark.asyncio
async def test_unopenable_store_is_fatal(tmp_path):
    bad = f"sqlite:///{tmp_path / 'missing-dir' / 'o.db'}"
    with pytest.raises(StartupFatalError) as e:
        await infra.ServiceContainer.start(ServiceSettings(store_dsn=bad))
    assert "store" in str(e.value)


@pytest.mark.asyncio
async def test_start_restores_order_with_lone_surrogate(tmp_path, monkeypatch):
    dsn = f"sqlite:///{tmp_path / 'orders.db'}"
    seed = await SqlOrderStore.open(dsn)
    await seed.upsert("S1", "T1", {"order_uid": "S1", "note": "\ud800"})
    await seed.close()

    async def fake_open_channel(settings):
        return InMemoryChannel(block=0.01)

    monkeypatch.setattr(infra, "open_channel", fake_open_channel)

    c = await infra.ServiceContainer.start(ServiceSettings(store_dsn=dsn))
    try:
        payload, found = c.cache.get("S1")
        assert found
        assert json.loads(payload) == {"order_uid": "S1", "note": "\ud800"}
    finally:
        await c.stop()
