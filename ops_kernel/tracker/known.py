"""
Known-Entity Tracker — the single source of truth for "is this genuinely new".

Behavioral Contract:
- seed() runs exactly once, right after the first snapshot is loaded, so
  records that existed before the session started are never reported as new.
- classify() partitions records into first sightings and already-seen ones,
  adding every id it sees. An id lands in the "new" partition at most once
  per session, no matter how many times or through which channel it reappears.
- Membership is monotonic. Only reset() empties the set.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from ops_kernel.errors import TrackerAlreadySeeded, TrackerNotSeeded
from ops_kernel.logging import get_logger
from ops_kernel.models.record import OperationalRecord

logger = get_logger(__name__)


class KnownEntityTracker:
    """Per-session set of record ids already observed at least once."""

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        self._first_seen: Dict[str, datetime] = {}
        self._seeded = False

    @property
    def seeded(self) -> bool:
        return self._seeded

    def seed(self, ids: Iterable[str]) -> None:
        """Populate the tracker from the first snapshot of the session."""
        if self._seeded:
            raise TrackerAlreadySeeded(
                f"Tracker for tenant {self.tenant_id} was already seeded"
            )
        now = datetime.utcnow()
        for record_id in ids:
            self._first_seen.setdefault(record_id, now)
        self._seeded = True
        logger.debug(
            "Known-entity tracker seeded",
            extra={"tenant_id": self.tenant_id, "known": len(self._first_seen)},
        )

    def classify(
        self, records: Iterable[OperationalRecord]
    ) -> Tuple[List[OperationalRecord], List[OperationalRecord]]:
        """
        Split records into (new_records, seen_records).

        Every id is marked known as a side effect, so a duplicate id inside
        the same batch is new only on its first occurrence.
        """
        if not self._seeded:
            raise TrackerNotSeeded(
                f"Tracker for tenant {self.tenant_id} must be seeded before classify()"
            )

        now = datetime.utcnow()
        new_records: List[OperationalRecord] = []
        seen_records: List[OperationalRecord] = []
        for record in records:
            if record.id in self._first_seen:
                seen_records.append(record)
            else:
                self._first_seen[record.id] = now
                new_records.append(record)
        return new_records, seen_records

    def is_known(self, record_id: str) -> bool:
        return record_id in self._first_seen

    def first_seen(self, record_id: str) -> Optional[datetime]:
        return self._first_seen.get(record_id)

    def reset(self) -> None:
        """Forget everything; the next snapshot must seed again."""
        self._first_seen.clear()
        self._seeded = False

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._first_seen

    def __len__(self) -> int:
        return len(self._first_seen)
