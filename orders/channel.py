# orders/channel.py
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Protocol

AckFn = Callable[[], Awaitable[None]]


async def _noop_ack() -> None:
    return None


@dataclass
class Delivery:
    """One delivery of a channel message. Not acking it means it comes back after ack-wait."""
    sequence: str
    data: bytes
    attempt: int = 1
    _ack: AckFn = field(default=_noop_ack, repr=False)

    async def ack(self) -> None:
        await self._ack()


class DurableChannel(Protocol):
    async def fetch(self) -> List[Delivery]: ...
    async def close(self) -> None: ...
