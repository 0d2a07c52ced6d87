"""Tests for the Lifecycle State Machine."""

from datetime import datetime

import pytest

from ops_kernel.errors import InvalidTransition, MissingReason
from ops_kernel.lifecycle.machine import (
    ORDER_GRAPH,
    RESERVATION_GRAPH,
    LifecycleStateMachine,
)
from ops_kernel.models.record import (
    OperationalRecord,
    RecordKind,
    RejectionReason,
    TransitionContext,
)


def _make_order(status: str = "new") -> OperationalRecord:
    return OperationalRecord(
        id="ord_42",
        tenant_id="t1",
        kind=RecordKind.ORDER,
        status=status,
        created_at=datetime.utcnow(),
        properties={"customer_email": "an@example.com"},
    )


def _make_reservation(status: str = "confirmed", **flags) -> OperationalRecord:
    return OperationalRecord(
        id="res_7",
        tenant_id="t1",
        kind=RecordKind.RESERVATION,
        status=status,
        created_at=datetime.utcnow(),
        flags=flags,
    )


class TestGraphs:
    def test_order_happy_path(self):
        path = ["new", "confirmed", "preparing", "ready", "completed"]
        for current, target in zip(path, path[1:]):
            assert ORDER_GRAPH.allows(current, target)

    def test_terminal_states(self):
        assert ORDER_GRAPH.is_terminal("completed")
        assert ORDER_GRAPH.is_terminal("rejected")
        assert RESERVATION_GRAPH.is_terminal("cancelled")
        assert not RESERVATION_GRAPH.is_terminal("confirmed")

    def test_notification_mapping(self):
        assert ORDER_GRAPH.notifies("confirmed")
        assert ORDER_GRAPH.notifies("rejected")
        assert not ORDER_GRAPH.notifies("preparing")
        assert RESERVATION_GRAPH.notifies("cancelled")
        assert not RESERVATION_GRAPH.notifies("completed")

    def test_statuses(self):
        assert ORDER_GRAPH.statuses == {
            "new", "confirmed", "preparing", "ready", "completed", "rejected",
        }


class TestLifecycleStateMachine:
    def setup_method(self):
        self.machine = LifecycleStateMachine()

    def test_confirm_order_queues_notification(self):
        record = _make_order()
        result = self.machine.transition(record, "confirmed")
        assert result.record.status == "confirmed"
        assert result.previous_status == "new"
        assert result.notification_key == ("ord_42", "confirmed")
        assert "confirmed_at" in result.record.properties

    def test_target_status_is_normalized(self):
        result = self.machine.transition(_make_order(), "CONFIRMED")
        assert result.target_status == "confirmed"

    def test_transition_without_mapping_has_no_side_effect(self):
        result = self.machine.transition(_make_order("confirmed"), "preparing")
        assert result.notification_key is None
        assert not result.notifies

    def test_illegal_edge(self):
        """completed -> preparing is refused and the record is untouched."""
        record = _make_order("completed")
        before = record.model_dump()
        with pytest.raises(InvalidTransition) as exc:
            self.machine.transition(record, "preparing")
        assert exc.value.current_status == "completed"
        assert exc.value.target_status == "preparing"
        assert record.model_dump() == before

    def test_every_non_successor_is_invalid(self):
        for current in ORDER_GRAPH.statuses:
            for target in ORDER_GRAPH.statuses - ORDER_GRAPH.successors(current):
                record = _make_order(current)
                with pytest.raises(InvalidTransition):
                    self.machine.transition(
                        record, target, TransitionContext(reason="other")
                    )
                assert record.status == current

    def test_unknown_target_status(self):
        with pytest.raises(InvalidTransition):
            self.machine.transition(_make_order(), "shipped")

    def test_rejection_requires_reason(self):
        record = _make_order()
        with pytest.raises(MissingReason):
            self.machine.transition(record, "rejected", TransitionContext())
        assert record.status == "new"

    def test_rejection_with_reason(self):
        context = TransitionContext(reason="too_busy", note="Kitchen full until 21h")
        result = self.machine.transition(_make_order(), "rejected", context)
        assert result.record.status == "rejected"
        assert result.record.properties["rejection_reason"] == RejectionReason.TOO_BUSY.value
        assert result.record.properties["rejection_notes"] == "Kitchen full until 21h"
        assert result.notification_key == ("ord_42", "rejected")

    def test_reservation_cancel_needs_no_reason(self):
        result = self.machine.transition(_make_reservation(), "cancelled")
        assert result.record.status == "cancelled"
        assert result.notification_key == ("res_7", "cancelled")

    def test_pending_reservation_confirm(self):
        result = self.machine.transition(_make_reservation("pending"), "confirmed")
        assert result.notification_key == ("res_7", "confirmed")

    def test_notify_overrides(self):
        machine = LifecycleStateMachine.with_notify_overrides({"order": ["READY"]})
        assert machine.transition(_make_order(), "confirmed").notification_key is None
        assert machine.transition(_make_order("preparing"), "ready").notifies


class TestArrivalGesture:
    def setup_method(self):
        self.machine = LifecycleStateMachine()

    def test_occupy_then_release(self):
        record = _make_reservation("confirmed", table_id="T2")
        seated = self.machine.mark_occupied(record)
        assert seated.flags["is_occupied"] is True
        assert seated.status == "confirmed"
        assert record.flags.get("is_occupied") is None

        result = self.machine.release_table(seated)
        assert result.record.status == "completed"
        assert result.record.flags["is_occupied"] is False
        assert result.notification_key is None

    def test_release_without_occupying(self):
        with pytest.raises(InvalidTransition):
            self.machine.release_table(_make_reservation("confirmed"))

    def test_complete_requires_occupied(self):
        with pytest.raises(InvalidTransition):
            self.machine.transition(_make_reservation("confirmed"), "completed")

    def test_occupy_twice(self):
        seated = self.machine.mark_occupied(_make_reservation())
        with pytest.raises(InvalidTransition):
            self.machine.mark_occupied(seated)

    def test_occupy_pending_reservation(self):
        with pytest.raises(InvalidTransition):
            self.machine.mark_occupied(_make_reservation("pending"))

    def test_occupy_order(self):
        with pytest.raises(InvalidTransition):
            self.machine.mark_occupied(_make_order("confirmed"))
