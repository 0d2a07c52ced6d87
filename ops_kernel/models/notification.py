"""Notification payloads and dispatch outcomes."""

from typing import Optional

from pydantic import BaseModel


class NotificationPayload(BaseModel):
    """What the transport sends. Built by the caller, opaque to the dispatcher."""

    recipient: str
    subject: str
    template: str                 # e.g. "order_status", "reservation_status"
    data: dict = {}               # Letterhead, items, totals, ...
    channel: str = "email"        # "email" | "whatsapp"


class DispatchOutcome(BaseModel):
    entity_id: str
    target_status: str
    sent: bool = False            # Transport was invoked and succeeded
    skipped: bool = False         # Ledger already had the key
    error: Optional[str] = None   # Delivery gap, logged and not retried
