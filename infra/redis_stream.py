# infra/redis_stream.py
import asyncio, json, time
import redis.asyncio as aioredis
from typing import Any, Dict, List, Mapping, Optional, Union

from orders.channel import Delivery
from utils.logger import logger


def _sid(entry_id: Union[bytes, str]) -> str:
    return entry_id.decode() if isinstance(entry_id, (bytes, bytearray)) else str(entry_id)


class RedisStreamsPublisher:
    def __init__(self,
                 dsn: str,
                 stream: str = "orders",
                 maxlen_approx: Optional[int] = 1_000_000
                 ):
        self._dsn = dsn
        self._stream = stream
        self._maxlen = maxlen_approx
        self._redis: Optional[aioredis.Redis] = None
        self._lock = asyncio.Lock()

    async def _conn(self) -> aioredis.Redis:
        if self._redis is None:
            async with self._lock:
                if self._redis is None:
                    self._redis = aioredis.from_url(self._dsn, decode_responses=False)
        return self._redis

    async def publish(self, payload: Union[bytes, Mapping[str, Any]], stream: Optional[str] = None) -> str:
        """XADD one message; raw bytes go out untouched, mappings are JSON-encoded. Returns the entry id."""
        r = await self._conn()
        stream = stream or self._stream
        if isinstance(payload, (bytes, bytearray)):
            data = bytes(payload)
        else:
            data = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        entry_id = await r.xadd(stream, {"data": data}, maxlen=self._maxlen, approximate=True)
        return _sid(entry_id)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


class RedisStreamChannel:
    """
    Durable channel on a Redis Streams consumer group.

    - group = durable subscription name, consumer = client id
    - manual ack: entries stay in the group's PEL until XACK
    - redelivery: entries idle in the PEL for >= ack_wait_ms are reclaimed with XAUTOCLAIM
    """

    def __init__(
        self,
        dsn: str,
        stream: str,
        group: str,
        consumer_name: str,
        *,
        ack_wait_ms: int = 60_000,
        block_ms: int = 5000,
        count: int = 64,
        claim_every_ms: int = 5000,
        start_id: str = "0",
        redis: Optional[aioredis.Redis] = None,
    ):
        self.dsn = dsn
        self.stream = stream
        self.group = group
        self.consumer_name = consumer_name
        self.ack_wait_ms = ack_wait_ms
        self.block_ms = block_ms
        self.count = count
        self.claim_every_ms = claim_every_ms
        self.start_id = start_id
        self._r: Optional[aioredis.Redis] = redis
        self._owns_conn = redis is None
        self._last_claim = float("-inf")

    async def _conn(self) -> aioredis.Redis:
        if self._r is None:
            self._r = aioredis.from_url(self.dsn, decode_responses=False)
        return self._r

    async def connect(self) -> "RedisStreamChannel":
        r = await self._conn()
        await r.ping()
        try:
            await r.xgroup_create(self.stream, self.group, id=self.start_id, mkstream=True)
            logger.info(f"Created group {self.group} on stream {self.stream}")
        except aioredis.ResponseError as e:
            if "BUSYGROUP" in str(e):
                logger.info(f"Group {self.group} already exists on stream {self.stream}")
            else:
                raise
        return self

    def _delivery(self, entry_id, fields: Optional[Dict[bytes, bytes]], attempt: int = 1) -> Delivery:
        seq = _sid(entry_id)
        data = (fields or {}).get(b"data") or b""

        async def _ack() -> None:
            await self._ack(seq)

        return Delivery(sequence=seq, data=data, attempt=attempt, _ack=_ack)

    async def _ack(self, entry_id: str) -> None:
        r = await self._conn()
        await r.xack(self.stream, self.group, entry_id)

    async def _delivery_counts(self, ids: List[str]) -> Dict[str, int]:
        if not ids:
            return {}
        r = await self._conn()
        rows = await r.xpending_range(self.stream, self.group, min=ids[0], max=ids[-1], count=len(ids) * 2)
        return {_sid(row["message_id"]): int(row["times_delivered"]) for row in rows}

    async def _reclaim(self) -> List[Delivery]:
        r = await self._conn()
        out: List[Delivery] = []
        start_id = "0-0"
        while len(out) < self.count:
            res = await r.xautoclaim(
                self.stream, self.group, self.consumer_name,
                min_idle_time=self.ack_wait_ms, start_id=start_id, count=self.count - len(out),
            )
            # res: [next_start_id, [(entry_id, {b'data': b'...'}), ...], (deleted ids, redis>=7)]
            next_start_id, entries = res[0], res[1]
            claimed = []
            for entry_id, fields in entries:
                if fields is None:
                    # 条目已被 XTRIM/XDEL，PEL 里只剩 id，无法再处理
                    logger.warning(f"[channel] pending entry {_sid(entry_id)} was trimmed, acking it away")
                    await self._ack(_sid(entry_id))
                    continue
                claimed.append((entry_id, fields))
            if claimed:
                counts = await self._delivery_counts([_sid(e) for e, _ in claimed])
                for entry_id, fields in claimed:
                    out.append(self._delivery(entry_id, fields, attempt=counts.get(_sid(entry_id), 2)))
            if _sid(next_start_id) == "0-0":
                break
            start_id = _sid(next_start_id)
        if out:
            logger.info(f"[channel] reclaimed {len(out)} unacked entries from group={self.group}")
        return out

    async def fetch(self) -> List[Delivery]:
        now = time.monotonic()
        if (now - self._last_claim) * 1000 >= self.claim_every_ms:
            self._last_claim = now
            redelivered = await self._reclaim()
            if redelivered:
                return redelivered

        r = await self._conn()
        resp = await r.xreadgroup(
            groupname=self.group,
            consumername=self.consumer_name,
            streams={self.stream: ">"},
            count=self.count,
            block=self.block_ms,
        )
        if not resp:
            return []
        # resp: [(b'orders', [(b'168...-0', {b'data': b'...'}), ...])]
        return [self._delivery(entry_id, fields) for _, entries in resp for entry_id, fields in entries]

    async def close(self) -> None:
        if self._r is not None and self._owns_conn:
            await self._r.aclose()
        self._r = None
