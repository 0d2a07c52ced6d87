"""
Change Reconciler — merges the push channel and the poll channel.

Two unreliable sources feed one entry point each:
  push: apply_event()     single insert / update / delete, low latency
  poll: apply_snapshot()  full tenant snapshot every few seconds, source of truth

Both paths classify through the Known-Entity Tracker, so whichever channel
sees an id first raises the new-arrival alert and the other is a no-op.
No timestamps are compared; monotonic tracker membership is the only
dedup mechanism.

States:
  UNSEEDED → SEEDED → (POLLING ⇄ IDLE) → CLOSED
"""

import asyncio
from datetime import datetime
from typing import Iterable, List, Optional

from ops_kernel.alerts.predicates import AlertPredicate
from ops_kernel.alerts.session import AlertSessionController
from ops_kernel.errors import StoreUnavailable
from ops_kernel.logging import get_logger
from ops_kernel.models.config import EngineConfig
from ops_kernel.models.reconciler import ReconcileResult
from ops_kernel.models.record import ChangeEvent, ChangeKind, OperationalRecord
from ops_kernel.records.store import RecordStore
from ops_kernel.snapshot.store import SnapshotStore
from ops_kernel.tracker.known import KnownEntityTracker

logger = get_logger(__name__)


class ChangeReconciler:
    """The only writer of a tenant's Snapshot Store and Known-Entity Tracker."""

    def __init__(
        self,
        tenant_id: str,
        snapshot: SnapshotStore,
        tracker: KnownEntityTracker,
        alerts: AlertSessionController,
        predicate: AlertPredicate,
        record_store: Optional[RecordStore] = None,
        config: Optional[EngineConfig] = None,
    ):
        self.tenant_id = tenant_id
        self.snapshot = snapshot
        self.tracker = tracker
        self.alerts = alerts
        self.predicate = predicate
        self.record_store = record_store
        self.config = config or EngineConfig()

        self._running = False
        self._closed = False
        self._poll_failures = 0

    @property
    def status(self) -> str:
        if self._closed:
            return "closed"
        if not self.tracker.seeded:
            return "unseeded"
        return "polling" if self._running else "idle"

    @property
    def consecutive_poll_failures(self) -> int:
        return self._poll_failures

    def seed(self, records: Iterable[OperationalRecord]) -> ReconcileResult:
        """
        Load the first snapshot of the session. Every id in it is known from
        now on; none of them raises an alert.
        """
        records = self._own_records(records)
        self.snapshot.replace_all(records)
        self.tracker.seed(r.id for r in records)
        logger.info(
            "Initial snapshot loaded",
            extra={"tenant_id": self.tenant_id, "records": len(records)},
        )
        return ReconcileResult(
            source="seed",
            record_count=len(records),
            applied_at=datetime.utcnow(),
        )

    def apply_event(self, event: ChangeEvent) -> Optional[ReconcileResult]:
        """Merge one push-channel event. Returns None if the event was dropped."""
        if self._closed:
            return None

        record = event.record
        if record.tenant_id != self.tenant_id:
            logger.warning(
                "Dropping push event for another tenant",
                extra={"tenant_id": self.tenant_id, "event_tenant_id": record.tenant_id},
            )
            return None

        new_ids: List[str] = []
        flagged: List[str] = []
        cleared: List[str] = []

        if event.kind == ChangeKind.DELETE:
            self.snapshot.remove(record.id)
            if self.alerts.handle(record.id):
                cleared.append(record.id)
        else:
            self.snapshot.upsert(record)
            new_records, _ = self.tracker.classify([record])
            if new_records:
                new_ids.append(record.id)
                if self.predicate(record) and self.alerts.flag(record.id):
                    flagged.append(record.id)
            elif not self.predicate(record) and self.alerts.handle(record.id):
                # Acted on elsewhere (another device confirmed it)
                cleared.append(record.id)

        if flagged:
            logger.info(
                "New arrival via push",
                extra={"tenant_id": self.tenant_id, "record_id": record.id},
            )
        return ReconcileResult(
            source="push",
            new_ids=new_ids,
            flagged_ids=flagged,
            cleared_ids=cleared,
            record_count=1,
            applied_at=datetime.utcnow(),
        )

    def apply_snapshot(
        self, records: Optional[Iterable[OperationalRecord]]
    ) -> Optional[ReconcileResult]:
        """
        Replace the snapshot with a poll result and raise alerts for first
        sightings. A None result (failed fetch) is discarded and the current
        snapshot is kept.
        """
        if self._closed or records is None:
            return None

        records = self._own_records(records)
        self.snapshot.replace_all(records)

        new_records, _ = self.tracker.classify(records)
        new_ids = [r.id for r in new_records]
        flagged = self.alerts.flag_many([r.id for r in new_records if self.predicate(r)])

        present = {r.id: r for r in records}
        cleared = []
        for record_id in sorted(self.alerts.active_flagged_ids):
            current = present.get(record_id)
            if current is None or not self.predicate(current):
                if self.alerts.handle(record_id):
                    cleared.append(record_id)

        if flagged:
            logger.info(
                "New arrivals via poll",
                extra={"tenant_id": self.tenant_id, "record_ids": flagged},
            )
        return ReconcileResult(
            source="poll",
            new_ids=new_ids,
            flagged_ids=flagged,
            cleared_ids=cleared,
            record_count=len(records),
            applied_at=datetime.utcnow(),
        )

    async def poll_once(self) -> Optional[ReconcileResult]:
        """Fetch a full snapshot and apply it. Failures keep the old snapshot."""
        if self.record_store is None:
            raise RuntimeError("No record store configured for polling")

        try:
            records = await self.record_store.fetch_all(self.tenant_id)
        except StoreUnavailable as e:
            self._poll_failures += 1
            logger.warning(
                "Poll failed, retrying next tick: %s",
                e,
                extra={"tenant_id": self.tenant_id, "failures": self._poll_failures},
            )
            return None
        except Exception:
            self._poll_failures += 1
            logger.exception(
                "Poll failed unexpectedly, retrying next tick",
                extra={"tenant_id": self.tenant_id, "failures": self._poll_failures},
            )
            return None

        self._poll_failures = 0
        # The session may have ended while the fetch was in flight
        return self.apply_snapshot(records)

    async def run_async(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Poll on a fixed interval until the stop event is set or the task is cancelled."""
        self._running = True
        if stop_event is None:
            stop_event = asyncio.Event()

        try:
            while not stop_event.is_set() and not self._closed:
                try:
                    await asyncio.wait_for(
                        stop_event.wait(),
                        timeout=self.config.poll_interval_seconds,
                    )
                except asyncio.TimeoutError:
                    await self.poll_once()
        finally:
            self._running = False

    def close(self) -> None:
        """Stop accepting updates. Late callbacks from this session are ignored."""
        self._closed = True

    def _own_records(self, records: Iterable[OperationalRecord]) -> List[OperationalRecord]:
        own = []
        for record in records:
            if record.tenant_id != self.tenant_id:
                logger.warning(
                    "Ignoring record from another tenant",
                    extra={"tenant_id": self.tenant_id, "record_id": record.id},
                )
                continue
            own.append(record)
        return own
