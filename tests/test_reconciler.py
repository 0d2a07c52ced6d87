"""Tests for the Change Reconciler."""

import asyncio
from datetime import datetime, timedelta

import pytest

from ops_kernel.alerts.predicates import order_needs_confirmation, reservation_needs_table
from ops_kernel.alerts.session import AlertSessionController
from ops_kernel.errors import TrackerNotSeeded
from ops_kernel.ledger.store import SentLedger
from ops_kernel.models.alert import AlertState
from ops_kernel.models.config import EngineConfig
from ops_kernel.models.notification import NotificationPayload
from ops_kernel.models.record import ChangeEvent, ChangeKind, OperationalRecord, RecordKind
from ops_kernel.notifications.dispatcher import NotificationDispatcher, RecordingTransport
from ops_kernel.reconciler.loop import ChangeReconciler
from ops_kernel.records.store import InMemoryRecordStore
from ops_kernel.snapshot.store import SnapshotStore
from ops_kernel.tracker.known import KnownEntityTracker

TENANT = "frituur-jan"


def _make_order(record_id: str, status: str = "new", minutes_ago: int = 0) -> OperationalRecord:
    return OperationalRecord(
        id=record_id,
        tenant_id=TENANT,
        kind=RecordKind.ORDER,
        status=status,
        created_at=datetime.utcnow() - timedelta(minutes=minutes_ago),
    )


def _push(kind: ChangeKind, record: OperationalRecord) -> ChangeEvent:
    return ChangeEvent(kind=kind, record=record)


class TestChangeReconciler:
    def setup_method(self):
        self.store = InMemoryRecordStore()
        self.snapshot = SnapshotStore(TENANT)
        self.tracker = KnownEntityTracker(TENANT)
        self.alerts = AlertSessionController(TENANT)
        self.alerting_triggers = []
        self.alerts.on_state_changed(
            lambda old, new, s: new == AlertState.ALERTING
            and self.alerting_triggers.append(sorted(s.active_flagged_ids))
        )
        self.reconciler = ChangeReconciler(
            tenant_id=TENANT,
            snapshot=self.snapshot,
            tracker=self.tracker,
            alerts=self.alerts,
            predicate=order_needs_confirmation,
            record_store=self.store,
            config=EngineConfig(poll_interval_seconds=0.01),
        )

    def test_seed_does_not_alert(self):
        self.reconciler.seed([_make_order("1"), _make_order("2")])
        assert len(self.snapshot) == 2
        assert self.alerts.state == AlertState.IDLE
        assert self.reconciler.status == "idle"

    def test_updates_before_seed_are_refused(self):
        with pytest.raises(TrackerNotSeeded):
            self.reconciler.apply_snapshot([_make_order("1")])

    def test_poll_finds_new_order(self):
        """
        End-to-end: seed [1] → poll [1, 2] → 2 is new → ALERTING →
        handling 2 → IDLE.
        """
        self.reconciler.seed([_make_order("1")])
        result = self.reconciler.apply_snapshot([_make_order("1"), _make_order("2")])

        assert result.new_ids == ["2"]
        assert result.flagged_ids == ["2"]
        assert self.alerts.state == AlertState.ALERTING
        assert self.alerts.active_flagged_ids == {"2"}

        self.alerts.handle("2")
        assert self.alerts.active_flagged_ids == set()
        assert self.alerts.state == AlertState.IDLE

    def test_push_then_poll_alerts_once(self):
        """Push insert and a racing poll for the same id raise one alert and one send."""
        self.reconciler.seed([])
        order = _make_order("3")

        push_result = self.reconciler.apply_event(_push(ChangeKind.INSERT, order))
        poll_result = self.reconciler.apply_snapshot([order])

        assert push_result.flagged_ids == ["3"]
        assert poll_result.new_ids == []
        assert poll_result.flagged_ids == []
        assert self.alerting_triggers == [["3"]]

        transport = RecordingTransport()
        dispatcher = NotificationDispatcher(TENANT, SentLedger(":memory:"), transport)
        payload = NotificationPayload(
            recipient="an@example.com", subject="Confirmed", template="order_status"
        )

        async def both_paths():
            await dispatcher.notify("3", "confirmed", payload)
            await dispatcher.notify("3", "confirmed", payload)

        asyncio.run(both_paths())
        assert len(transport.sent) == 1

    def test_poll_then_push_alerts_once(self):
        self.reconciler.seed([])
        order = _make_order("4")
        self.reconciler.apply_snapshot([order])
        push_result = self.reconciler.apply_event(_push(ChangeKind.UPDATE, order))
        assert push_result.new_ids == []
        assert self.alerting_triggers == [["4"]]

    def test_new_record_not_matching_predicate(self):
        self.reconciler.seed([])
        result = self.reconciler.apply_event(_push(ChangeKind.INSERT, _make_order("5", "confirmed")))
        assert result.new_ids == ["5"]
        assert result.flagged_ids == []
        assert self.alerts.state == AlertState.IDLE

    def test_update_clears_flag_when_handled_elsewhere(self):
        self.reconciler.seed([])
        self.reconciler.apply_event(_push(ChangeKind.INSERT, _make_order("6")))
        result = self.reconciler.apply_event(_push(ChangeKind.UPDATE, _make_order("6", "confirmed")))
        assert result.cleared_ids == ["6"]
        assert self.alerts.state == AlertState.IDLE
        assert self.snapshot.get("6").status == "confirmed"

    def test_known_record_never_realerts(self):
        """A seeded order that is still 'new' does not alert on later updates."""
        self.reconciler.seed([_make_order("7")])
        self.reconciler.apply_event(_push(ChangeKind.UPDATE, _make_order("7")))
        self.reconciler.apply_snapshot([_make_order("7")])
        assert self.alerts.state == AlertState.IDLE

    def test_delete_keeps_tracking(self):
        self.reconciler.seed([])
        self.reconciler.apply_event(_push(ChangeKind.INSERT, _make_order("8")))
        result = self.reconciler.apply_event(_push(ChangeKind.DELETE, _make_order("8")))

        assert "8" not in self.snapshot
        assert "8" in self.tracker
        assert result.cleared_ids == ["8"]

        again = self.reconciler.apply_event(_push(ChangeKind.INSERT, _make_order("8")))
        assert again.new_ids == []
        assert self.alerting_triggers == [["8"]]

    def test_poll_replaces_snapshot_and_clears_missing(self):
        self.reconciler.seed([_make_order("1")])
        self.reconciler.apply_snapshot([_make_order("1"), _make_order("2")])
        result = self.reconciler.apply_snapshot([_make_order("1")])
        assert self.snapshot.ids() == ["1"]
        assert result.cleared_ids == ["2"]
        assert self.alerts.state == AlertState.IDLE

    def test_suppressed_batch_realerts_on_poll(self):
        self.reconciler.seed([])
        self.reconciler.apply_snapshot([_make_order("a")])
        self.alerts.dismiss()
        self.reconciler.apply_snapshot([_make_order("a"), _make_order("b")])
        assert self.alerts.state == AlertState.ALERTING
        assert self.alerts.active_flagged_ids == {"a", "b"}

    def test_other_tenant_records_ignored(self):
        self.reconciler.seed([])
        stranger = _make_order("x").model_copy(update={"tenant_id": "other"})
        assert self.reconciler.apply_event(_push(ChangeKind.INSERT, stranger)) is None
        result = self.reconciler.apply_snapshot([stranger, _make_order("y")])
        assert result.new_ids == ["y"]
        assert "x" not in self.snapshot

    def test_failed_poll_keeps_snapshot(self):
        self.store.insert(_make_order("1"), publish=False)
        self.reconciler.seed(asyncio.run(self.store.fetch_all(TENANT)))

        self.store.available = False
        result = asyncio.run(self.reconciler.poll_once())
        assert result is None
        assert self.snapshot.ids() == ["1"]
        assert self.reconciler.consecutive_poll_failures == 1

        self.store.available = True
        self.store.insert(_make_order("2"), publish=False)
        result = asyncio.run(self.reconciler.poll_once())
        assert result.flagged_ids == ["2"]
        assert self.reconciler.consecutive_poll_failures == 0

    def test_none_snapshot_discarded(self):
        self.reconciler.seed([_make_order("1")])
        assert self.reconciler.apply_snapshot(None) is None
        assert self.snapshot.ids() == ["1"]

    def test_empty_snapshot_applied(self):
        """A successful empty poll means every record is gone."""
        self.reconciler.seed([_make_order("1")])
        result = self.reconciler.apply_snapshot([])
        assert result.record_count == 0
        assert len(self.snapshot) == 0
        assert "1" in self.tracker

    def test_closed_reconciler_ignores_updates(self):
        self.reconciler.seed([])
        self.reconciler.close()
        assert self.reconciler.apply_event(_push(ChangeKind.INSERT, _make_order("z"))) is None
        assert self.reconciler.apply_snapshot([_make_order("z")]) is None
        assert self.reconciler.status == "closed"
        assert self.alerts.state == AlertState.IDLE

    def test_run_async_polls_until_stopped(self):
        self.reconciler.seed([])

        async def run():
            stop = asyncio.Event()
            task = asyncio.create_task(self.reconciler.run_async(stop))
            await asyncio.sleep(0.005)
            self.store.insert(_make_order("p1"), publish=False)
            await asyncio.sleep(0.05)
            running = self.reconciler.status
            stop.set()
            await task
            return running

        assert asyncio.run(run()) == "polling"
        assert self.reconciler.status == "idle"
        assert self.alerts.active_flagged_ids == {"p1"}


class TestReservationBoard:
    def setup_method(self):
        self.snapshot = SnapshotStore(TENANT)
        self.alerts = AlertSessionController(TENANT)
        self.reconciler = ChangeReconciler(
            tenant_id=TENANT,
            snapshot=self.snapshot,
            tracker=KnownEntityTracker(TENANT),
            alerts=self.alerts,
            predicate=reservation_needs_table,
        )

    def _reservation(self, status: str, **flags) -> OperationalRecord:
        return OperationalRecord(
            id="res_1",
            tenant_id=TENANT,
            kind=RecordKind.RESERVATION,
            status=status,
            created_at=datetime.utcnow(),
            flags=flags,
        )

    def test_unassigned_reservation_alerts_until_table_assigned(self):
        self.reconciler.seed([])
        self.reconciler.apply_event(_push(ChangeKind.INSERT, self._reservation("pending")))
        assert self.alerts.state == AlertState.ALERTING

        self.reconciler.apply_event(_push(ChangeKind.UPDATE, self._reservation("confirmed")))
        assert self.alerts.state == AlertState.ALERTING

        self.reconciler.apply_event(
            _push(ChangeKind.UPDATE, self._reservation("confirmed", table_id="T3"))
        )
        assert self.alerts.state == AlertState.IDLE

    def test_poll_without_store_is_an_error(self):
        self.reconciler.seed([])
        with pytest.raises(RuntimeError):
            asyncio.run(self.reconciler.poll_once())
