"""Engine configuration."""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from ops_kernel.models.alert import AlertBoard


class EngineConfig(BaseModel):
    """Configuration for one tenant session."""

    board: AlertBoard = AlertBoard.ORDERS
    poll_interval_seconds: float = Field(default=3.0, gt=0)
    tone_interval_seconds: float = Field(default=3.0, gt=0)
    chime: str = "order"                       # "order" | "kitchen"
    device_id: str = "default"
    # record kind -> statuses that send a customer notification; None keeps the defaults
    notify_statuses: Optional[Dict[str, List[str]]] = None
