"""
Entity Snapshot Store — last-known full set of operational records for one tenant.

Written by: Change Reconciler only
Read by: Tenant session, alert predicates, API
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional

from ops_kernel.models.record import OperationalRecord


class SnapshotStore:
    """
    In-memory snapshot of a tenant's records, keyed by record id.
    Pure data holder: no classification and no lifecycle logic.
    """

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        self._records: Dict[str, OperationalRecord] = {}
        self._last_replaced: Optional[datetime] = None

    @property
    def last_replaced(self) -> Optional[datetime]:
        """When the last full poll snapshot was applied."""
        return self._last_replaced

    def upsert(self, record: OperationalRecord) -> None:
        """Insert or replace a record by id."""
        self._records[record.id] = record

    def get(self, record_id: str) -> Optional[OperationalRecord]:
        return self._records.get(record_id)

    def remove(self, record_id: str) -> bool:
        """Remove a record. Returns False if it was not present."""
        return self._records.pop(record_id, None) is not None

    def replace_all(self, records: Iterable[OperationalRecord]) -> None:
        """Swap the entire contents for a fresh snapshot."""
        self._records = {r.id: r for r in records}
        self._last_replaced = datetime.utcnow()

    def all(self) -> List[OperationalRecord]:
        """All records, oldest first."""
        return sorted(self._records.values(), key=lambda r: r.created_at)

    def ids(self) -> List[str]:
        return list(self._records.keys())

    def by_status(self, status: str) -> List[OperationalRecord]:
        return [r for r in self.all() if r.status == status]

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._records

    def __len__(self) -> int:
        return len(self._records)
