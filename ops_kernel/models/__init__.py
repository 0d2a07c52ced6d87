"""Operational event kernel data models."""

from ops_kernel.models.alert import AlertBoard, AlertSnapshot, AlertState
from ops_kernel.models.config import EngineConfig
from ops_kernel.models.ledger import SentLedgerEntry
from ops_kernel.models.notification import DispatchOutcome, NotificationPayload
from ops_kernel.models.reconciler import ReconcileResult
from ops_kernel.models.record import (
    ChangeEvent,
    ChangeKind,
    OperationalRecord,
    OrderStatus,
    RecordKind,
    RejectionReason,
    ReservationStatus,
    TransitionContext,
)

__all__ = [
    "AlertBoard",
    "AlertSnapshot",
    "AlertState",
    "ChangeEvent",
    "ChangeKind",
    "DispatchOutcome",
    "EngineConfig",
    "NotificationPayload",
    "OperationalRecord",
    "OrderStatus",
    "ReconcileResult",
    "RecordKind",
    "RejectionReason",
    "ReservationStatus",
    "SentLedgerEntry",
    "TransitionContext",
]
