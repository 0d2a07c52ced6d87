"""
Lifecycle State Machine — canonical status graphs for orders and reservations.

Behavioral Contract:
- One abstract machine, two vocabularies (ORDER_GRAPH, RESERVATION_GRAPH).
- transition() validates the edge, checks mandatory context, and returns a
  new record. The input record is never mutated.
- Illegal edges raise InvalidTransition; a rejection without a reason code
  raises MissingReason. Nothing is ever auto-corrected.
- Transitions with a notification mapping return the ledger key
  (record id, target status) for the Notification Dispatcher; the rest
  produce no side effect.
- Persisting the new status is the caller's job, after a successful result.
"""

from datetime import datetime
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from pydantic import BaseModel

from ops_kernel.errors import InvalidTransition, MissingReason
from ops_kernel.models.record import (
    OperationalRecord,
    OrderStatus,
    RecordKind,
    ReservationStatus,
    TransitionContext,
    normalize_status,
)


class LifecycleGraph:
    """Immutable directed graph of legal status changes for one record kind."""

    def __init__(
        self,
        kind: RecordKind,
        edges: Mapping[str, Iterable[str]],
        reason_required: Iterable[Tuple[str, str]] = (),
        notify_on: Iterable[str] = (),
    ):
        self.kind = kind
        self._edges: Dict[str, FrozenSet[str]] = {
            str(getattr(src, "value", src)): frozenset(
                str(getattr(dst, "value", dst)) for dst in dsts
            )
            for src, dsts in edges.items()
        }
        self._reason_required: FrozenSet[Tuple[str, str]] = frozenset(
            (str(getattr(a, "value", a)), str(getattr(b, "value", b)))
            for a, b in reason_required
        )
        self._notify_on: FrozenSet[str] = frozenset(
            str(getattr(s, "value", s)) for s in notify_on
        )

    @property
    def statuses(self) -> FrozenSet[str]:
        found = set(self._edges)
        for dsts in self._edges.values():
            found.update(dsts)
        return frozenset(found)

    @property
    def notify_on(self) -> FrozenSet[str]:
        return self._notify_on

    def successors(self, status: str) -> FrozenSet[str]:
        return self._edges.get(status, frozenset())

    def allows(self, current: str, target: str) -> bool:
        return target in self.successors(current)

    def is_terminal(self, status: str) -> bool:
        return not self.successors(status)

    def requires_reason(self, current: str, target: str) -> bool:
        return (current, target) in self._reason_required

    def notifies(self, target: str) -> bool:
        return target in self._notify_on

    def with_notifications(self, statuses: Iterable[str]) -> "LifecycleGraph":
        """Copy of this graph with a different notification mapping."""
        return LifecycleGraph(
            kind=self.kind,
            edges=self._edges,
            reason_required=self._reason_required,
            notify_on=statuses,
        )


ORDER_GRAPH = LifecycleGraph(
    kind=RecordKind.ORDER,
    edges={
        OrderStatus.NEW: [OrderStatus.CONFIRMED, OrderStatus.REJECTED],
        OrderStatus.CONFIRMED: [OrderStatus.PREPARING],
        OrderStatus.PREPARING: [OrderStatus.READY],
        OrderStatus.READY: [OrderStatus.COMPLETED],
        OrderStatus.COMPLETED: [],
        OrderStatus.REJECTED: [],
    },
    reason_required=[(OrderStatus.NEW, OrderStatus.REJECTED)],
    notify_on=[OrderStatus.CONFIRMED, OrderStatus.READY, OrderStatus.REJECTED],
)

RESERVATION_GRAPH = LifecycleGraph(
    kind=RecordKind.RESERVATION,
    edges={
        ReservationStatus.PENDING: [
            ReservationStatus.CONFIRMED,
            ReservationStatus.CANCELLED,
        ],
        ReservationStatus.CONFIRMED: [
            ReservationStatus.COMPLETED,
            ReservationStatus.CANCELLED,
        ],
        ReservationStatus.COMPLETED: [],
        ReservationStatus.CANCELLED: [],
    },
    notify_on=[ReservationStatus.CONFIRMED, ReservationStatus.CANCELLED],
)

DEFAULT_GRAPHS: Dict[RecordKind, LifecycleGraph] = {
    RecordKind.ORDER: ORDER_GRAPH,
    RecordKind.RESERVATION: RESERVATION_GRAPH,
}


class TransitionResult(BaseModel):
    """A validated status change, ready to persist."""

    record: OperationalRecord
    previous_status: str
    target_status: str
    notification_key: Optional[Tuple[str, str]] = None   # (record id, target status)
    context: TransitionContext = TransitionContext()

    @property
    def notifies(self) -> bool:
        return self.notification_key is not None


class LifecycleStateMachine:
    """Validates and applies status transitions for every record kind."""

    def __init__(self, graphs: Optional[Mapping[RecordKind, LifecycleGraph]] = None):
        self._graphs: Dict[RecordKind, LifecycleGraph] = dict(graphs or DEFAULT_GRAPHS)

    @classmethod
    def with_notify_overrides(
        cls, overrides: Optional[Mapping[str, List[str]]]
    ) -> "LifecycleStateMachine":
        """Build a machine whose notification mapping is replaced per kind."""
        graphs = dict(DEFAULT_GRAPHS)
        for kind_name, statuses in (overrides or {}).items():
            kind = RecordKind(kind_name)
            canonical = [normalize_status(kind, s) for s in statuses]
            graphs[kind] = graphs[kind].with_notifications(canonical)
        return cls(graphs)

    def graph_for(self, kind: RecordKind) -> LifecycleGraph:
        return self._graphs[RecordKind(kind)]

    def transition(
        self,
        record: OperationalRecord,
        target_status: str,
        context: Optional[TransitionContext] = None,
    ) -> TransitionResult:
        """
        Validate record.status → target_status and return the updated copy.

        Raises InvalidTransition or MissingReason; `record` is left untouched
        either way.
        """
        context = context or TransitionContext()
        graph = self.graph_for(record.kind)

        try:
            target = normalize_status(record.kind, target_status)
        except ValueError as e:
            raise InvalidTransition(
                str(e),
                record_id=record.id,
                current_status=record.status,
                target_status=str(target_status),
            )

        if not graph.allows(record.status, target):
            raise InvalidTransition(
                f"Cannot move {record.kind.value} {record.id} "
                f"from {record.status} to {target}",
                record_id=record.id,
                current_status=record.status,
                target_status=target,
            )

        if graph.requires_reason(record.status, target) and context.reason is None:
            raise MissingReason(
                f"A reason code is required to move {record.kind.value} "
                f"{record.id} to {target}",
                record_id=record.id,
                current_status=record.status,
                target_status=target,
            )

        flags = dict(record.flags)
        properties = dict(record.properties)
        properties[f"{target}_at"] = datetime.utcnow().isoformat()
        if context.reason is not None:
            properties["rejection_reason"] = context.reason.value
        if context.note:
            properties["rejection_notes" if record.kind == RecordKind.ORDER
                       else "cancellation_note"] = context.note

        if (
            record.kind == RecordKind.RESERVATION
            and target == ReservationStatus.COMPLETED
        ):
            # Completing a reservation is the second half of the arrival
            # gesture: the table must have been marked occupied first.
            if not record.flags.get("is_occupied"):
                raise InvalidTransition(
                    f"Reservation {record.id} must be marked occupied before "
                    f"the table can be released",
                    record_id=record.id,
                    current_status=record.status,
                    target_status=target,
                )
            flags["is_occupied"] = False

        updated = record.model_copy(
            update={"status": target, "flags": flags, "properties": properties}
        )
        return TransitionResult(
            record=updated,
            previous_status=record.status,
            target_status=target,
            notification_key=(record.id, target) if graph.notifies(target) else None,
            context=context,
        )

    def mark_occupied(self, record: OperationalRecord) -> OperationalRecord:
        """First step of the arrival gesture: guests are seated."""
        self._require_confirmed_reservation(record, "mark occupied")
        if record.flags.get("is_occupied"):
            raise InvalidTransition(
                f"Reservation {record.id} is already occupied",
                record_id=record.id,
                current_status=record.status,
                target_status=record.status,
            )
        flags = dict(record.flags)
        flags["is_occupied"] = True
        return record.model_copy(update={"flags": flags})

    def release_table(
        self, record: OperationalRecord, context: Optional[TransitionContext] = None
    ) -> TransitionResult:
        """Second step of the arrival gesture: guests left, reservation completes."""
        self._require_confirmed_reservation(record, "release table for")
        return self.transition(record, ReservationStatus.COMPLETED.value, context)

    def _require_confirmed_reservation(self, record: OperationalRecord, verb: str) -> None:
        if record.kind != RecordKind.RESERVATION:
            raise InvalidTransition(
                f"Cannot {verb} {record.kind.value} {record.id}: not a reservation",
                record_id=record.id,
                current_status=record.status,
            )
        if record.status != ReservationStatus.CONFIRMED:
            raise InvalidTransition(
                f"Cannot {verb} reservation {record.id} in status {record.status}",
                record_id=record.id,
                current_status=record.status,
            )
