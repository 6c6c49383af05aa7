# tests/conftest.py
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest
import pytest_asyncio

from adapters.bus.inmemory import InMemoryChannel
from orders.cache import MirrorCache
from orders.pipeline import IngestionPipeline
from orders.query import QueryService
from orders.store import SqlOrderStore


@pytest_asyncio.fixture
async def store(tmp_path):
    """SQLite 文件库，跑的是和 PostgreSQL 相同的 ON CONFLICT upsert。"""
    s = await SqlOrderStore.open(f"sqlite:///{tmp_path / 'orders.db'}")
    try:
        yield s
    finally:
        await s.close()


@pytest.fixture
def cache():
    return MirrorCache()


@pytest.fixture
def channel():
    return InMemoryChannel(ack_wait=60.0, block=0.01)


@pytest.fixture
def pipeline(store, cache):
    return IngestionPipeline(store, cache, store_timeout=2.0, concurrency=4)


@pytest.fixture
def query(store, cache):
    return QueryService(cache, store)
