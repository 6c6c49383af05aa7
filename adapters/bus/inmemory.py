import asyncio
import time
from dataclasses import dataclass
from typing import Dict, List, Set

from orders.channel import Delivery


@dataclass
class _Entry:
    data: bytes
    delivered_at: float = 0.0
    attempts: int = 0


class InMemoryChannel:
    """
    In-process durable channel with the same ack/redelivery contract as the Redis one:
    unacked entries come back from fetch() once ack_wait seconds have passed.
    """

    def __init__(self, ack_wait: float = 60.0, block: float = 1.0, count: int = 64):
        self.ack_wait = ack_wait
        self.block = block
        self.count = count
        self._entries: Dict[int, _Entry] = {}
        self._seq = 0
        self._wakeup = asyncio.Event()
        self.acked: Set[str] = set()

    def publish(self, data: bytes) -> str:
        self._seq += 1
        self._entries[self._seq] = _Entry(data=data)
        self._wakeup.set()
        return str(self._seq)

    def _due(self, now: float) -> List[int]:
        due = []
        for seq, e in self._entries.items():
            if e.attempts == 0 or now - e.delivered_at >= self.ack_wait:
                due.append(seq)
            if len(due) >= self.count:
                break
        return due

    def _deliver(self, seq: int, now: float) -> Delivery:
        e = self._entries[seq]
        e.attempts += 1
        e.delivered_at = now

        async def _ack() -> None:
            if self._entries.pop(seq, None) is not None:
                self.acked.add(str(seq))

        return Delivery(sequence=str(seq), data=e.data, attempt=e.attempts, _ack=_ack)

    async def fetch(self) -> List[Delivery]:
        due = self._due(time.monotonic())
        if not due:
            self._wakeup.clear()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.block)
            except asyncio.TimeoutError:
                pass
            due = self._due(time.monotonic())
        now = time.monotonic()
        return [self._deliver(seq, now) for seq in due]

    def pending(self) -> List[str]:
        return [str(seq) for seq in self._entries]

    async def close(self) -> None:
        self._wakeup.set()
