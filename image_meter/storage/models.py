"""
Data models for storage layer.

Defines stored entities and the artifacts that flow into them.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

DEFAULT_CONTENT_TYPE = "image/png"


@dataclass(frozen=True)
class Artifact:
    """Generated binary output held in memory."""
    data: bytes
    content_type: str = DEFAULT_CONTENT_TYPE


@dataclass(frozen=True)
class CacheEntry:
    """Immutable stored artifact.

    Entries are written once and never updated; their lifetime is bounded
    only by the retention policy of the backing store.
    """
    key: str
    data: bytes
    content_type: str
    cache_control: str
    created_at: datetime

    def to_artifact(self) -> Artifact:
        return Artifact(data=self.data, content_type=self.content_type)


@dataclass(frozen=True)
class ChargeRecord:
    """Append-only ledger row for a committed charge."""
    timestamp: datetime
    access_token: str
    amount_cents: int
    idempotency_key: Optional[str] = None
