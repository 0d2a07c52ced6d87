"""Alert Session — the "something needs attention" signal for one tenant board."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel


class AlertState(str, Enum):
    IDLE = "idle"
    ALERTING = "alerting"
    SUPPRESSED = "suppressed"   # Dismissed by staff, flagged items still open


class AlertBoard(str, Enum):
    """Which screen the session drives; selects the alert predicate."""
    ORDERS = "orders"
    KITCHEN = "kitchen"
    RESERVATIONS = "reservations"


class AlertSnapshot(BaseModel):
    """Read-only view of an alert session handed to callers and the API."""

    tenant_id: str
    state: AlertState
    active_flagged_ids: List[str] = []
    changed_at: Optional[datetime] = None
