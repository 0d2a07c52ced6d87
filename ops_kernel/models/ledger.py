"""Sent Ledger — durable record of external notifications already attempted."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class SentLedgerEntry(BaseModel):
    """
    One (entity, target status) pair that has had a send attempted.

    `delivered` is None while the send is in flight (or the process died
    mid-send), True once the transport confirmed, False for a delivery gap.
    Entries are never removed; a None or False entry is never resent
    automatically.
    """

    tenant_id: str
    entity_id: str
    target_status: str
    sent_at: datetime
    delivered: Optional[bool] = None
    error: Optional[str] = None
