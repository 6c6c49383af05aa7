from orders.cache import MirrorCache
from orders.channel import Delivery, DurableChannel
from orders.errors import (
    OrderNotFound,
    OrderServiceError,
    PermanentValidationError,
    StartupFatalError,
    TransientIngestError,
)
from orders.models import LookupResult, LookupStatus, Order, Outcome
from orders.pipeline import IngestionPipeline
from orders.query import QueryService
from orders.store import PersistentStore, SqlOrderStore

__all__ = [
    "MirrorCache",
    "Delivery",
    "DurableChannel",
    "OrderNotFound",
    "OrderServiceError",
    "PermanentValidationError",
    "StartupFatalError",
    "TransientIngestError",
    "LookupResult",
    "LookupStatus",
    "Order",
    "Outcome",
    "IngestionPipeline",
    "QueryService",
    "PersistentStore",
    "SqlOrderStore",
]
