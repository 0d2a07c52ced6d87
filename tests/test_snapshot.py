"""Tests for the Entity Snapshot Store."""

from datetime import datetime, timedelta

from ops_kernel.models.record import OperationalRecord, RecordKind
from ops_kernel.snapshot.store import SnapshotStore

TENANT = "frituur-jan"
BASE_TIME = datetime(2026, 3, 1, 18, 0)


def _make_order(record_id: str, status: str = "new", minutes: int = 0) -> OperationalRecord:
    return OperationalRecord(
        id=record_id,
        tenant_id=TENANT,
        kind=RecordKind.ORDER,
        status=status,
        created_at=BASE_TIME + timedelta(minutes=minutes),
    )


class TestSnapshotStore:
    def setup_method(self):
        self.store = SnapshotStore(TENANT)

    def test_upsert_and_get(self):
        self.store.upsert(_make_order("1"))
        self.store.upsert(_make_order("1", "confirmed"))
        assert len(self.store) == 1
        assert self.store.get("1").status == "confirmed"
        assert "1" in self.store

    def test_remove(self):
        self.store.upsert(_make_order("1"))
        assert self.store.remove("1") is True
        assert self.store.remove("1") is False
        assert self.store.get("1") is None

    def test_replace_all(self):
        self.store.upsert(_make_order("1"))
        assert self.store.last_replaced is None
        self.store.replace_all([_make_order("2"), _make_order("3")])
        assert sorted(self.store.ids()) == ["2", "3"]
        assert self.store.last_replaced is not None

    def test_all_oldest_first(self):
        self.store.upsert(_make_order("late", minutes=10))
        self.store.upsert(_make_order("early", minutes=1))
        assert [r.id for r in self.store.all()] == ["early", "late"]

    def test_by_status(self):
        self.store.replace_all([
            _make_order("1", "new"),
            _make_order("2", "ready"),
            _make_order("3", "new", minutes=5),
        ])
        assert [r.id for r in self.store.by_status("new")] == ["1", "3"]
