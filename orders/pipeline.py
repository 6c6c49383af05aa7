# orders/pipeline.py
"""
Ingestion pipeline: decode -> validate -> persist -> mirror -> ack.

Every delivery ends in one of three outcomes:
  ACK    stored and mirrored, acknowledge
  DROP   decodable but unprocessable (poison pill), acknowledge and discard
  RETRY  transient failure, leave unacknowledged so the channel redelivers it
"""
import asyncio
import contextlib
import json
from collections import Counter
from typing import Dict, List, Optional

from orders.cache import MirrorCache
from orders.channel import Delivery, DurableChannel
from orders.errors import PermanentValidationError, TransientIngestError
from orders.models import Order, Outcome
from orders.store import PersistentStore
from utils.logger import logger

_STAT_KEYS = {Outcome.ACK: "acked", Outcome.DROP: "dropped", Outcome.RETRY: "retried"}


class _KeyedLocks:
    """asyncio.Lock per identifier, dropped once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._refs: Counter = Counter()

    @contextlib.asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._refs[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._refs[key] -= 1
            if self._refs[key] <= 0:
                del self._refs[key]
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)


class IngestionPipeline:
    def __init__(
        self,
        store: PersistentStore,
        cache: MirrorCache,
        *,
        store_timeout: float = 5.0,
        identifier_field: str = "order_uid",
        index_field: str = "track_number",
        concurrency: int = 1,
    ):
        self.store = store
        self.cache = cache
        self.store_timeout = store_timeout
        self.identifier_field = identifier_field
        self.index_field = index_field
        self._sem = asyncio.Semaphore(max(1, concurrency))
        self._keyed = _KeyedLocks()
        self.stats: Counter = Counter()

    # ---------- 单条消息 ----------
    def _decode(self, delivery: Delivery):
        try:
            return json.loads(delivery.data)
        except (ValueError, TypeError, RecursionError) as e:
            # UnicodeDecodeError / JSONDecodeError 都是 ValueError；嵌套过深是 RecursionError
            raise TransientIngestError("invalid json", seq=delivery.sequence, err=e) from e

    async def _persist(self, order: Order) -> None:
        try:
            await asyncio.wait_for(
                self.store.upsert(order.identifier, order.track_number, order.payload, order.received_sequence),
                timeout=self.store_timeout,
            )
        except asyncio.TimeoutError as e:
            raise TransientIngestError(
                "store upsert timed out", uid=order.identifier, seq=order.received_sequence, timeout=self.store_timeout
            ) from e
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise TransientIngestError(
                "store upsert failed", uid=order.identifier, seq=order.received_sequence, err=repr(e)
            ) from e

    def _mirror(self, order: Order) -> None:
        try:
            self.cache.set(order.identifier, order.serialized())
        except Exception as e:
            # cache 只是加速层，写失败照样 ack
            self.stats["cache_errors"] += 1
            logger.warning(f"[ingest] cache write failed uid={order.identifier} seq={order.received_sequence}: {e!r}")

    async def process(self, delivery: Delivery) -> Outcome:
        """Run one delivery through the pipeline. Never raises for per-message failures."""
        try:
            doc = self._decode(delivery)
            order = Order.from_document(
                doc,
                delivery.sequence,
                identifier_field=self.identifier_field,
                index_field=self.index_field,
            )
        except TransientIngestError as e:
            logger.warning(f"[ingest] {e}; leaving unacked")
            return Outcome.RETRY
        except PermanentValidationError as e:
            logger.warning(f"[ingest] {e}; dropping message")
            return Outcome.DROP

        # 同一 uid 的 persist + mirror 串行，保证 cache 不会落后于 store 写入顺序
        async with self._keyed.hold(order.identifier):
            try:
                await self._persist(order)
            except TransientIngestError as e:
                logger.error(f"[ingest] {e}; leaving unacked")
                return Outcome.RETRY
            self._mirror(order)

        logger.info(f"processed order {order.identifier} (seq={order.received_sequence})")
        return Outcome.ACK

    async def handle(self, delivery: Delivery) -> Outcome:
        """process() + acknowledgment decision."""
        try:
            outcome = await self.process(delivery)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"[ingest] unexpected error seq={delivery.sequence}: {e!r}; leaving unacked")
            outcome = Outcome.RETRY
        self.stats[_STAT_KEYS[outcome]] += 1
        if not outcome.should_ack:
            return outcome

        try:
            await delivery.ack()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.stats["ack_errors"] += 1
            logger.warning(f"[ingest] ack error seq={delivery.sequence}: {e!r}")
        return outcome

    async def _bounded(self, delivery: Delivery) -> Outcome:
        async with self._sem:
            return await self.handle(delivery)

    # ---------- 拉取循环 ----------
    async def consume_once(self, channel: DurableChannel) -> List[Outcome]:
        deliveries = await channel.fetch()
        if not deliveries:
            return []
        return list(await asyncio.gather(*(self._bounded(d) for d in deliveries)))

    async def run(self, channel: DurableChannel, stop: Optional[asyncio.Event] = None, *, error_backoff: float = 0.5):
        stop = stop or asyncio.Event()
        logger.info("Ingestion loop started")
        while not stop.is_set():
            try:
                await self.consume_once(channel)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"[ingest] loop error: {e!r}")
                await asyncio.sleep(error_backoff)
        logger.info(f"Ingestion loop stopped, stats={dict(self.stats)}")
