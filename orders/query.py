# orders/query.py
import asyncio
from typing import Optional

from orders.cache import MirrorCache
from orders.errors import OrderNotFound
from orders.models import LookupResult, LookupStatus, dump_payload
from orders.store import PersistentStore
from utils.logger import logger


class QueryService:
    """
    Cache-aside point lookup: cache first, store on miss, then backfill.
    Store errors and real absence both come back as NOT_FOUND.
    """

    def __init__(self, cache: MirrorCache, store: PersistentStore) -> None:
        self.cache = cache
        self.store = store

    async def lookup(self, identifier: str, *, timeout: Optional[float] = None) -> LookupResult:
        payload, found = self.cache.get(identifier)
        if found:
            return LookupResult(payload=payload, status=LookupStatus.FOUND, source="cache")

        try:
            doc = await asyncio.wait_for(self.store.get(identifier), timeout=timeout)
        except OrderNotFound:
            logger.debug(f"[query] {identifier} not in cache or store")
            return LookupResult.not_found()
        except asyncio.TimeoutError:
            logger.warning(f"[query] store lookup timed out uid={identifier} timeout={timeout}")
            return LookupResult.not_found()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"[query] store lookup failed uid={identifier}: {e!r}")
            return LookupResult.not_found()

        try:
            payload = dump_payload(doc)
        except (TypeError, ValueError, RecursionError) as e:
            logger.warning(f"[query] stored document not serializable uid={identifier}: {e!r}")
            return LookupResult.not_found()

        # 回填不覆盖：读到的可能已经比 ingest 刚写进 cache 的旧
        if self.cache.set(identifier, payload, overwrite=False):
            logger.debug(f"[query] backfilled {identifier} from store")
        else:
            newer, ok = self.cache.get(identifier)
            if ok:
                payload = newer
        return LookupResult(payload=payload, status=LookupStatus.FOUND, source="store")
