"""Reconciler results."""

from datetime import datetime
from typing import List

from pydantic import BaseModel


class ReconcileResult(BaseModel):
    """What one merged update (push event or poll snapshot) did."""

    source: str                       # "push" | "poll" | "seed"
    new_ids: List[str] = []           # First sighting this session
    flagged_ids: List[str] = []       # New ids handed to the alert session
    cleared_ids: List[str] = []       # Flagged ids that no longer need attention
    record_count: int = 0
    applied_at: datetime
