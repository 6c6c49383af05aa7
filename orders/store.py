# orders/store.py
"""
Durable order storage.

The pipeline and the query service only depend on the PersistentStore port;
SqlOrderStore is the SQLAlchemy (async) adapter used in production (PostgreSQL)
and in tests (SQLite via aiosqlite).
"""
from __future__ import annotations

import re
from typing import Any, Dict, Protocol

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    MetaData,
    Table,
    Text,
    func,
    select,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from orders.errors import OrderNotFound
from orders.models import Document
from utils.logger import logger


class PersistentStore(Protocol):
    async def upsert(self, identifier: str, track_number: str, document: Document, sequence: str = "") -> None: ...
    async def get(self, identifier: str) -> Document: ...
    async def load_all(self) -> Dict[str, Document]: ...
    async def close(self) -> None: ...


metadata = MetaData()

orders_table = Table(
    "orders",
    metadata,
    Column("order_uid", Text, primary_key=True),
    Column("track_number", Text),
    Column("data", JSON().with_variant(JSONB(), "postgresql"), nullable=False),
    Column("received_seq", Text),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), server_default=func.now(), onupdate=func.now()),
)
Index("idx_orders_track", orders_table.c.track_number)


# ---- DSN 归一：postgres → psycopg3 (async)，sqlite → aiosqlite ----
def normalize_dsn(url: str) -> str:
    url = (url or "").strip()
    if (url.startswith('"') and url.endswith('"')) or (url.startswith("'") and url.endswith("'")):
        url = url[1:-1].strip()
    if url.startswith("sqlite:///") or url == "sqlite://":
        return "sqlite+aiosqlite" + url[len("sqlite"):]
    if url.startswith("postgresql+asyncpg://") or url.startswith("postgres+asyncpg://"):
        return re.sub(r"^postgres(?:ql)?\+asyncpg://", "postgresql+psycopg://", url)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def _engine_kwargs(url: str, pool_size: int, max_overflow: int, pool_recycle: int) -> Dict[str, Any]:
    if url.startswith("sqlite"):
        # in-memory sqlite 必须共享同一个连接，否则每个连接都是一个空库
        if ":memory:" in url or url.rstrip("/").endswith("sqlite+aiosqlite:"):
            return {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
        return {}
    return {
        "pool_pre_ping": True,
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_recycle": pool_recycle,
    }


class SqlOrderStore:
    """
    orders(order_uid PK, track_number, data JSON/JSONB, received_seq, created_at, updated_at)
    upsert 是 INSERT ... ON CONFLICT (order_uid) DO UPDATE，重复投递天然幂等。
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        dialect = engine.dialect.name
        if dialect == "postgresql":
            self._insert = postgresql.insert
        elif dialect == "sqlite":
            self._insert = sqlite.insert
        else:
            raise ValueError(f"unsupported database dialect: {dialect}")

    @classmethod
    async def open(
        cls,
        dsn: str,
        *,
        pool_size: int = 10,
        max_overflow: int = 5,
        pool_recycle: int = 300,
    ) -> "SqlOrderStore":
        url = normalize_dsn(dsn)
        engine = create_async_engine(url, **_engine_kwargs(url, pool_size, max_overflow, pool_recycle))
        store = cls(engine)
        try:
            await store.ensure_schema()
        except Exception:
            await engine.dispose()
            raise
        logger.info(f"Order store ready ({engine.dialect.name})")
        return store

    async def ensure_schema(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

    async def upsert(self, identifier: str, track_number: str, document: Document, sequence: str = "") -> None:
        stmt = self._insert(orders_table).values(
            order_uid=identifier,
            track_number=track_number,
            data=document,
            received_seq=sequence,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[orders_table.c.order_uid],
            set_={
                "track_number": stmt.excluded.track_number,
                "data": stmt.excluded.data,
                "received_seq": stmt.excluded.received_seq,
                "updated_at": func.now(),
            },
        )
        async with self._engine.begin() as conn:
            await conn.execute(stmt)

    async def get(self, identifier: str) -> Document:
        async with self._engine.connect() as conn:
            row = (
                await conn.execute(select(orders_table.c.data).where(orders_table.c.order_uid == identifier))
            ).first()
        if row is None:
            raise OrderNotFound(identifier)
        return row[0]

    async def load_all(self) -> Dict[str, Document]:
        async with self._engine.connect() as conn:
            res = await conn.execute(select(orders_table.c.order_uid, orders_table.c.data))
            return {uid: data for uid, data in res.all()}

    async def count(self) -> int:
        async with self._engine.connect() as conn:
            return int((await conn.execute(select(func.count()).select_from(orders_table))).scalar_one())

    async def close(self) -> None:
        await self._engine.dispose()
