# infra/__init__.py
from __future__ import annotations

import asyncio
from typing import Optional

from infra.redis_stream import RedisStreamChannel, RedisStreamsPublisher
from orders.cache import MirrorCache
from orders.channel import DurableChannel
from orders.errors import StartupFatalError
from orders.store import PersistentStore, SqlOrderStore
from utils.config import ServiceSettings
from utils.logger import logger


async def open_channel(settings: ServiceSettings) -> DurableChannel:
    ch = RedisStreamChannel(
        settings.redis_dsn,
        settings.stream,
        settings.group,
        settings.consumer,
        ack_wait_ms=settings.ack_wait_ms,
        block_ms=settings.block_ms,
        count=settings.fetch_count,
    )
    try:
        return await ch.connect()
    except Exception:
        await ch.close()
        raise


# ========== 轻量“容器”：按顺序启动 store -> cache 恢复 -> channel，逆序关闭 ==========
class ServiceContainer:
    """
    Owns the store, the mirror cache and the channel.
    start() enforces the startup order: the cache is fully seeded from the store
    before the channel is opened, so nothing is consumed or served against a cold cache.
    """
    def __init__(self, store: PersistentStore, cache: MirrorCache, channel: DurableChannel) -> None:
        self.store = store
        self.cache = cache
        self.channel = channel

    @classmethod
    async def start(cls, settings: ServiceSettings, cache: Optional[MirrorCache] = None) -> "ServiceContainer":
        cache = cache if cache is not None else MirrorCache()

        try:
            store = await SqlOrderStore.open(
                settings.store_dsn,
                pool_size=settings.store_pool_size,
                max_overflow=settings.store_max_overflow,
                pool_recycle=settings.store_pool_recycle_sec,
            )
        except Exception as e:
            raise StartupFatalError("cannot open order store", err=repr(e)) from e

        try:
            rows = await store.load_all()
            n = cache.seed(rows)
            logger.info(f"cache restored: {n} orders")
        except Exception as e:
            await store.close()
            raise StartupFatalError("cannot restore cache from store", err=repr(e)) from e

        try:
            channel = await open_channel(settings)
        except Exception as e:
            await store.close()
            raise StartupFatalError("cannot connect to channel", dsn=settings.redis_dsn, err=repr(e)) from e

        logger.info(f"Channel ready: stream={settings.stream} group={settings.group}")
        return cls(store, cache, channel)

    async def stop(self) -> None:
        try:
            await self.channel.close()
        except Exception as e:
            logger.warning(f"channel close failed: {e!r}")
        finally:
            await self.store.close()


# ========== 简单健康检查（启动检查 / readyz 用） ==========
async def store_healthcheck(store: SqlOrderStore, timeout: float = 2.0) -> bool:
    try:
        await asyncio.wait_for(store.count(), timeout=timeout)
        return True
    except Exception:
        return False


__all__ = [
    "ServiceContainer",
    "open_channel",
    "store_healthcheck",
    "RedisStreamChannel",
    "RedisStreamsPublisher",
]
