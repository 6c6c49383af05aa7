# orders/models.py
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from orders.errors import PermanentValidationError

JSON_SEPARATORS = (",", ":")

Document = Dict[str, Any]


def dump_payload(doc: Any) -> bytes:
    """Compact UTF-8 JSON; this is both the cache value and the HTTP body."""
    text = json.dumps(doc, separators=JSON_SEPARATORS, ensure_ascii=False)
    try:
        return text.encode("utf-8")
    except UnicodeEncodeError:
        # 孤立代理项（json.loads 接受 "\ud800"）无法编码成 UTF-8，退回 \uXXXX 转义
        return json.dumps(doc, separators=JSON_SEPARATORS, ensure_ascii=True).encode("ascii")


class Outcome(str, Enum):
    ACK = "ack"        # processed, acknowledge
    DROP = "drop"      # poison pill, acknowledge and discard
    RETRY = "retry"    # transient, leave unacked for redelivery

    @property
    def should_ack(self) -> bool:
        return self is not Outcome.RETRY


class LookupStatus(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"


@dataclass
class LookupResult:
    payload: Optional[bytes]
    status: LookupStatus
    source: str = ""    # "cache" | "store" | ""

    @property
    def found(self) -> bool:
        return self.status is LookupStatus.FOUND

    @classmethod
    def not_found(cls) -> "LookupResult":
        return cls(payload=None, status=LookupStatus.NOT_FOUND)


@dataclass
class Order:
    identifier: str
    track_number: str
    payload: Document = field(repr=False)
    received_sequence: str = ""

    @classmethod
    def from_document(
        cls,
        doc: Any,
        sequence: str = "",
        *,
        identifier_field: str = "order_uid",
        index_field: str = "track_number",
    ) -> "Order":
        """
        Only the identifier is validated; everything else passes through untouched.
        A non-string track number is stored as "".
        """
        if not isinstance(doc, dict):
            raise PermanentValidationError("document is not an object", seq=sequence, kind=type(doc).__name__)
        uid = doc.get(identifier_field)
        if not isinstance(uid, str) or not uid:
            raise PermanentValidationError(f"missing {identifier_field}", seq=sequence)
        track = doc.get(index_field)
        if not isinstance(track, str):
            track = ""
        return cls(identifier=uid, track_number=track, payload=doc, received_sequence=sequence)

    def serialized(self) -> bytes:
        return dump_payload(self.payload)
