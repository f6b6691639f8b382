from pydantic import BaseModel
from datetime import datetime
from typing import List, Optional

from faq_assistant.models.faq import GeneratedAnswer


class CacheEntry(BaseModel):
    """
    One stored generation result.

    created_at is a unix timestamp (seconds) rather than a datetime: TTL checks
    are plain subtraction against the injected clock.
    """
    key: str
    payload: List[GeneratedAnswer]
    created_at: float


class CacheStats(BaseModel):
    total_entries: int
    total_bytes: int
    oldest: Optional[datetime] = None
    newest: Optional[datetime] = None
