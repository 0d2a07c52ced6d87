"""
Record Store — the external collaborator holding orders and reservations.

The kernel only depends on the RecordStore protocol: a full fetch, a status
update, and a push subscription. InMemoryRecordStore implements it for
tests, demos and the development API.
"""

from datetime import datetime
from typing import Callable, Dict, List, Optional, Protocol

from ops_kernel.errors import StoreUnavailable, UnknownRecord
from ops_kernel.logging import get_logger
from ops_kernel.models.record import (
    ChangeEvent,
    ChangeKind,
    OperationalRecord,
    TransitionContext,
)

logger = get_logger(__name__)

ChangeCallback = Callable[[ChangeEvent], None]


class RecordStore(Protocol):
    """Unreliable store of records with a best-effort push channel."""

    async def fetch_all(self, tenant_id: str) -> List[OperationalRecord]: ...

    async def update_status(
        self,
        record: OperationalRecord,
        context: Optional[TransitionContext] = None,
    ) -> OperationalRecord: ...

    def subscribe(
        self, tenant_id: str, on_change: ChangeCallback
    ) -> Callable[[], None]: ...


class InMemoryRecordStore:
    """
    Dict-backed RecordStore.

    Set `available = False` to make every call raise StoreUnavailable,
    and `push_enabled = False` to drop push events silently (a flaky
    subscription).
    """

    def __init__(self):
        self._records: Dict[str, Dict[str, OperationalRecord]] = {}
        self._subscribers: Dict[str, List[ChangeCallback]] = {}
        self.available = True
        self.push_enabled = True

    def _check_available(self) -> None:
        if not self.available:
            raise StoreUnavailable("Record store is unavailable")

    async def fetch_all(self, tenant_id: str) -> List[OperationalRecord]:
        self._check_available()
        records = self._records.get(tenant_id, {}).values()
        return sorted(records, key=lambda r: r.created_at)

    async def update_status(
        self,
        record: OperationalRecord,
        context: Optional[TransitionContext] = None,
    ) -> OperationalRecord:
        """Persist the record's new status and flags."""
        self._check_available()
        tenant_records = self._records.get(record.tenant_id, {})
        if record.id not in tenant_records:
            raise UnknownRecord(f"Record {record.id} not found")
        tenant_records[record.id] = record
        self._publish(record.tenant_id, ChangeEvent(kind=ChangeKind.UPDATE, record=record))
        return record

    def subscribe(self, tenant_id: str, on_change: ChangeCallback) -> Callable[[], None]:
        self._check_available()
        self._subscribers.setdefault(tenant_id, []).append(on_change)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(tenant_id, [])
            if on_change in callbacks:
                callbacks.remove(on_change)

        return unsubscribe

    # --- Producer side (customers placing orders, other devices) ---

    def insert(self, record: OperationalRecord, publish: bool = True) -> None:
        self._records.setdefault(record.tenant_id, {})[record.id] = record
        if publish:
            self._publish(record.tenant_id, ChangeEvent(kind=ChangeKind.INSERT, record=record))

    def put(self, record: OperationalRecord, publish: bool = True) -> None:
        """Overwrite a record as another device would."""
        self._records.setdefault(record.tenant_id, {})[record.id] = record
        if publish:
            self._publish(record.tenant_id, ChangeEvent(kind=ChangeKind.UPDATE, record=record))

    def delete(self, tenant_id: str, record_id: str, publish: bool = True) -> None:
        record = self._records.get(tenant_id, {}).pop(record_id, None)
        if record is not None and publish:
            self._publish(tenant_id, ChangeEvent(kind=ChangeKind.DELETE, record=record))

    def get(self, tenant_id: str, record_id: str) -> Optional[OperationalRecord]:
        return self._records.get(tenant_id, {}).get(record_id)

    def subscriber_count(self, tenant_id: str) -> int:
        return len(self._subscribers.get(tenant_id, []))

    def _publish(self, tenant_id: str, event: ChangeEvent) -> None:
        if not self.push_enabled:
            return
        event.received_at = datetime.utcnow()
        for callback in list(self._subscribers.get(tenant_id, [])):
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Push subscriber failed",
                    extra={"tenant_id": tenant_id, "record_id": event.record.id},
                )
