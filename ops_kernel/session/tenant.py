"""
Tenant Session — one board (orders, kitchen or reservations) for one tenant.

Owns its Snapshot Store, Known-Entity Tracker, Alert Session, Audio Gate and
Notification Dispatcher. Nothing is shared between tenants; many sessions can
run side by side in one process through SessionRegistry.

Startup order matters: the initial fetch and tracker seed finish before the
push subscription and the poll task exist, so no pre-existing record can be
misread as a new arrival. stop() cancels the poll task, the chime and the
subscription; callbacks that belong to an earlier start() are discarded.
"""

import asyncio
from typing import Callable, Dict, Optional

from pydantic import BaseModel

from ops_kernel.alerts.predicates import predicate_for
from ops_kernel.alerts.session import AlertSessionController, StateListener
from ops_kernel.audio.gate import CHIMES, AudioActivationGate, NullTonePlayer, TonePlayer
from ops_kernel.errors import UnknownRecord
from ops_kernel.ledger.store import KeyValueStore, SentLedger
from ops_kernel.lifecycle.machine import LifecycleStateMachine, TransitionResult
from ops_kernel.logging import get_logger
from ops_kernel.models.alert import AlertSnapshot
from ops_kernel.models.config import EngineConfig
from ops_kernel.models.notification import DispatchOutcome
from ops_kernel.models.record import (
    ChangeEvent,
    ChangeKind,
    OperationalRecord,
    TransitionContext,
)
from ops_kernel.notifications.dispatcher import NotificationDispatcher, NotificationTransport
from ops_kernel.notifications.payloads import Letterhead, build_status_payload
from ops_kernel.reconciler.loop import ChangeReconciler
from ops_kernel.records.store import RecordStore
from ops_kernel.snapshot.store import SnapshotStore
from ops_kernel.tracker.known import KnownEntityTracker

logger = get_logger(__name__)


class TransitionOutcome(BaseModel):
    """Result of transition_status(): the persisted record and any notification."""

    record: OperationalRecord
    previous_status: str
    notification: Optional[DispatchOutcome] = None


class TenantSession:
    """Entry point for the UI/API layer for one tenant board."""

    def __init__(
        self,
        tenant_id: str,
        record_store: RecordStore,
        ledger: SentLedger,
        kv_store: KeyValueStore,
        transport: Optional[NotificationTransport] = None,
        tone_player: Optional[TonePlayer] = None,
        config: Optional[EngineConfig] = None,
        letterhead: Optional[Letterhead] = None,
    ):
        self.tenant_id = tenant_id
        self.record_store = record_store
        self.config = config or EngineConfig()
        self.letterhead = letterhead or Letterhead()

        self.alerts = AlertSessionController(tenant_id)
        self.machine = LifecycleStateMachine.with_notify_overrides(self.config.notify_statuses)
        self.dispatcher = NotificationDispatcher(tenant_id, ledger, transport)
        self.audio = AudioActivationGate(
            tenant_id=tenant_id,
            player=tone_player or NullTonePlayer(),
            kv_store=kv_store,
            device_id=self.config.device_id,
            chime=CHIMES.get(self.config.chime, CHIMES["order"]),
        )

        self.snapshot = SnapshotStore(tenant_id)
        self.tracker = KnownEntityTracker(tenant_id)
        self.reconciler = self._build_reconciler()

        self._generation = 0
        self._started = False
        self._stop_event: Optional[asyncio.Event] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def started(self) -> bool:
        return self._started

    def _build_reconciler(self) -> ChangeReconciler:
        return ChangeReconciler(
            tenant_id=self.tenant_id,
            snapshot=self.snapshot,
            tracker=self.tracker,
            alerts=self.alerts,
            predicate=predicate_for(self.config.board),
            record_store=self.record_store,
            config=self.config,
        )

    # --- Lifecycle ---

    async def start(self) -> None:
        """
        Load and seed, then open the push subscription and the poll loop.
        Raises StoreUnavailable if the initial fetch fails; nothing is
        started in that case.
        """
        if self._started:
            await self.stop()

        self._generation += 1
        generation = self._generation

        self.snapshot = SnapshotStore(self.tenant_id)
        self.tracker = KnownEntityTracker(self.tenant_id)
        self.alerts.reset()
        self.reconciler = self._build_reconciler()

        records = await self.record_store.fetch_all(self.tenant_id)
        if generation != self._generation:
            # stop() ran while the initial fetch was in flight
            return
        self.reconciler.seed(records)

        self._unsubscribe = self.record_store.subscribe(
            self.tenant_id, lambda event: self._on_push(generation, event)
        )
        self._stop_event = asyncio.Event()
        self._poll_task = asyncio.get_running_loop().create_task(
            self.reconciler.run_async(self._stop_event)
        )
        self.audio.bind(self.alerts, self.config.tone_interval_seconds)
        self._started = True
        logger.info(
            "Tenant session started",
            extra={
                "tenant_id": self.tenant_id,
                "board": self.config.board.value,
                "records": len(self.snapshot),
            },
        )

    async def stop(self) -> None:
        """Cancel timers and the subscription. Safe to call more than once."""
        self._generation += 1
        self.reconciler.close()

        if self._stop_event is not None:
            self._stop_event.set()
        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None
        self._stop_event = None

        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        self.audio.unbind()
        self.alerts.reset()
        if self._started:
            logger.info("Tenant session stopped", extra={"tenant_id": self.tenant_id})
        self._started = False

    def _on_push(self, generation: int, event: ChangeEvent) -> None:
        if generation != self._generation:
            return
        self.reconciler.apply_event(event)

    async def poll_now(self):
        """Run one poll cycle outside the schedule (e.g. on tab focus)."""
        return await self.reconciler.poll_once()

    # --- Alerting surface ---

    def on_alert_state_changed(self, callback: StateListener) -> Callable[[], None]:
        return self.alerts.on_state_changed(callback)

    def handle_record(self, record_id: str) -> bool:
        return self.alerts.handle(record_id)

    def dismiss(self) -> None:
        self.alerts.dismiss()

    def alert_snapshot(self) -> AlertSnapshot:
        return self.alerts.snapshot()

    def activate_audio(self) -> bool:
        return self.audio.activate()

    # --- Lifecycle changes ---

    def _require(self, record_id: str) -> OperationalRecord:
        record = self.snapshot.get(record_id)
        if record is None:
            raise UnknownRecord(
                f"Record {record_id} not found for tenant {self.tenant_id}"
            )
        return record

    async def transition_status(
        self,
        record_id: str,
        target_status: str,
        context: Optional[TransitionContext] = None,
    ) -> TransitionOutcome:
        """
        Validate, persist, then notify.

        InvalidTransition / MissingReason / StoreUnavailable propagate and
        leave the local snapshot untouched. A failed notification is logged
        by the dispatcher and reported in the outcome; the status change stands.
        """
        record = self._require(record_id)
        result = self.machine.transition(record, target_status, context)
        return await self._persist(result)

    async def mark_occupied(self, record_id: str) -> OperationalRecord:
        """Seat the guests of a confirmed reservation."""
        record = self._require(record_id)
        updated = self.machine.mark_occupied(record)
        persisted = await self.record_store.update_status(updated)
        self.reconciler.apply_event(ChangeEvent(kind=ChangeKind.UPDATE, record=persisted))
        return persisted

    async def release_table(
        self, record_id: str, context: Optional[TransitionContext] = None
    ) -> TransitionOutcome:
        """Guests left: complete the reservation and free the table."""
        record = self._require(record_id)
        result = self.machine.release_table(record, context)
        return await self._persist(result)

    async def assign_table(self, record_id: str, table_id: str) -> OperationalRecord:
        """Put a reservation on a table; clears the "needs a table" alert."""
        record = self._require(record_id)
        flags = dict(record.flags)
        flags["table_id"] = table_id
        updated = record.model_copy(update={"flags": flags})
        persisted = await self.record_store.update_status(updated)
        self.reconciler.apply_event(ChangeEvent(kind=ChangeKind.UPDATE, record=persisted))
        return persisted

    async def _persist(self, result: TransitionResult) -> TransitionOutcome:
        persisted = await self.record_store.update_status(result.record, result.context)
        self.reconciler.apply_event(ChangeEvent(kind=ChangeKind.UPDATE, record=persisted))

        notification = None
        if result.notification_key is not None:
            entity_id, status = result.notification_key
            payload = build_status_payload(persisted, status, self.letterhead)
            if payload is not None:
                notification = await self.dispatcher.notify(entity_id, status, payload)

        logger.info(
            "Status changed %s -> %s",
            result.previous_status,
            result.target_status,
            extra={"tenant_id": self.tenant_id, "record_id": persisted.id},
        )
        return TransitionOutcome(
            record=persisted,
            previous_status=result.previous_status,
            notification=notification,
        )


class SessionRegistry:
    """Holds the live tenant sessions of one process."""

    def __init__(self, factory: Callable[[str], TenantSession]):
        self._factory = factory
        self._sessions: Dict[str, TenantSession] = {}

    def get(self, tenant_id: str) -> Optional[TenantSession]:
        return self._sessions.get(tenant_id)

    def get_or_create(self, tenant_id: str) -> TenantSession:
        session = self._sessions.get(tenant_id)
        if session is None:
            session = self._factory(tenant_id)
            self._sessions[tenant_id] = session
        return session

    async def start(self, tenant_id: str) -> TenantSession:
        session = self.get_or_create(tenant_id)
        await session.start()
        return session

    async def stop(self, tenant_id: str) -> bool:
        session = self._sessions.pop(tenant_id, None)
        if session is None:
            return False
        await session.stop()
        return True

    async def stop_all(self) -> None:
        for tenant_id in list(self._sessions):
            await self.stop(tenant_id)

    def tenant_ids(self):
        return sorted(self._sessions)
