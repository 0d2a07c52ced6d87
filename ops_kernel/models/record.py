"""Operational Record — an order or a table reservation, as read from the record store."""

from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Type

from pydantic import BaseModel, field_validator, model_validator


class RecordKind(str, Enum):
    ORDER = "order"
    RESERVATION = "reservation"


class OrderStatus(str, Enum):
    NEW = "new"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    COMPLETED = "completed"
    REJECTED = "rejected"


class ReservationStatus(str, Enum):
    PENDING = "pending"        # Web reservation awaiting staff confirmation
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RejectionReason(str, Enum):
    """Fixed taxonomy shown to staff when rejecting an order."""
    TOO_BUSY = "too_busy"
    CLOSED = "closed"
    OUT_OF_STOCK = "out_of_stock"
    DELIVERY_UNAVAILABLE = "delivery_unavailable"
    TECHNICAL = "technical"
    ADDRESS_ISSUE = "address_issue"
    OTHER = "other"


# Older clients still post these spellings
REJECTION_REASON_ALIASES: Dict[str, str] = {
    "sold_out": RejectionReason.OUT_OF_STOCK.value,
    "busy": RejectionReason.TOO_BUSY.value,
}

STATUS_ENUMS: Dict[RecordKind, Type[Enum]] = {
    RecordKind.ORDER: OrderStatus,
    RecordKind.RESERVATION: ReservationStatus,
}


def normalize_status(kind: RecordKind, raw: str) -> str:
    """
    Map a raw status string from the store onto the canonical vocabulary.

    The store hands back "new", "NEW" and " New " for the same state.
    Raises ValueError for anything outside the kind's status set.
    """
    if isinstance(raw, Enum):
        raw = raw.value
    if not isinstance(raw, str):
        raise ValueError(f"Status must be a string, got {type(raw).__name__}")

    value = raw.strip().lower()
    enum_cls = STATUS_ENUMS[RecordKind(kind)]
    try:
        return enum_cls(value).value
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValueError(
            f"Unknown {RecordKind(kind).value} status {raw!r} (expected one of: {allowed})"
        )


def normalize_reason(raw: Optional[str]) -> Optional[str]:
    """Canonicalize a rejection reason code, accepting legacy aliases."""
    if raw is None:
        return None
    if isinstance(raw, RejectionReason):
        return raw.value
    value = str(raw).strip().lower().replace("-", "_").replace(" ", "_")
    if not value:
        return None
    return REJECTION_REASON_ALIASES.get(value, value)


class OperationalRecord(BaseModel):
    """
    One order or reservation for a tenant.

    `flags` carries the fields the alert predicates look at
    (e.g. "table_id", "is_occupied"); `properties` is the opaque domain
    payload (customer details, totals) that the engine never interprets.
    """

    id: str
    tenant_id: str
    kind: RecordKind
    status: str
    created_at: datetime
    flags: dict = {}
    properties: dict = {}

    @model_validator(mode="after")
    def _canonical_status(self) -> "OperationalRecord":
        self.status = normalize_status(self.kind, self.status)
        return self

    @property
    def status_enum(self) -> Enum:
        return STATUS_ENUMS[self.kind](self.status)


class ChangeKind(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class ChangeEvent(BaseModel):
    """A single push-channel change notification."""

    kind: ChangeKind
    record: OperationalRecord
    received_at: Optional[datetime] = None


class TransitionContext(BaseModel):
    """Caller-supplied context for a status change."""

    reason: Optional[RejectionReason] = None
    note: Optional[str] = None
    actor: Optional[str] = None

    @field_validator("reason", mode="before")
    @classmethod
    def _canonical_reason(cls, value):
        return normalize_reason(value)
