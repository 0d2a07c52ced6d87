"""Alert predicates — which records require staff attention on each board."""

from typing import Callable, Dict

from ops_kernel.models.alert import AlertBoard
from ops_kernel.models.record import (
    OperationalRecord,
    OrderStatus,
    RecordKind,
    ReservationStatus,
)

AlertPredicate = Callable[[OperationalRecord], bool]


def order_needs_confirmation(record: OperationalRecord) -> bool:
    """Order board: a new order nobody has confirmed or rejected yet."""
    return record.kind == RecordKind.ORDER and record.status == OrderStatus.NEW


def order_waiting_in_kitchen(record: OperationalRecord) -> bool:
    """Kitchen display: a confirmed order the kitchen has not started."""
    return record.kind == RecordKind.ORDER and record.status == OrderStatus.CONFIRMED


def reservation_needs_table(record: OperationalRecord) -> bool:
    """Reservation board: awaiting confirmation, or confirmed without a table."""
    if record.kind != RecordKind.RESERVATION:
        return False
    if record.status == ReservationStatus.PENDING:
        return True
    return (
        record.status == ReservationStatus.CONFIRMED
        and not record.flags.get("table_id")
    )


BOARD_PREDICATES: Dict[AlertBoard, AlertPredicate] = {
    AlertBoard.ORDERS: order_needs_confirmation,
    AlertBoard.KITCHEN: order_waiting_in_kitchen,
    AlertBoard.RESERVATIONS: reservation_needs_table,
}


def predicate_for(board: AlertBoard) -> AlertPredicate:
    return BOARD_PREDICATES[AlertBoard(board)]
