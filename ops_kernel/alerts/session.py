"""
Alert Session Controller — drives the audible/visual "needs attention" signal.

States:
  IDLE → ALERTING → SUPPRESSED → IDLE

  IDLE → ALERTING           flagged set goes from empty to non-empty
  ALERTING → SUPPRESSED     staff dismissed the banner (set is kept)
  SUPPRESSED → IDLE         flagged set became empty; suppression is cleared
  SUPPRESSED → ALERTING     only through flag(): a new arrival re-alerts
  ALERTING → IDLE           flagged set became empty

Every public method mutates the flagged set and re-evaluates the state in
one synchronous call. Nothing here awaits, so no other event can observe a
half-updated session.
"""

from datetime import datetime
from typing import Callable, List, Optional, Set

from ops_kernel.logging import get_logger
from ops_kernel.models.alert import AlertSnapshot, AlertState

logger = get_logger(__name__)

StateListener = Callable[[AlertState, AlertState, "AlertSessionController"], None]


class AlertSessionController:
    """One alert session per tenant per client session."""

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        self._flagged: Set[str] = set()
        self._suppressed = False
        self._state = AlertState.IDLE
        self._changed_at: Optional[datetime] = None
        self._listeners: List[StateListener] = []

    @property
    def state(self) -> AlertState:
        return self._state

    @property
    def active_flagged_ids(self) -> Set[str]:
        """Copy of the ids still awaiting staff action."""
        return set(self._flagged)

    @property
    def suppressed(self) -> bool:
        return self._suppressed

    def on_state_changed(self, listener: StateListener) -> Callable[[], None]:
        """Register a transition listener. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def flag(self, record_id: str) -> bool:
        """
        Add a newly-arrived id that needs attention.

        A genuinely new id clears any standing suppression so the next batch
        alerts even if staff dismissed the previous one. Returns False when
        the id was already flagged.
        """
        if record_id in self._flagged:
            return False
        self._flagged.add(record_id)
        self._suppressed = False
        self._evaluate()
        return True

    def flag_many(self, record_ids: List[str]) -> List[str]:
        """Flag several ids with a single re-evaluation. Returns those added."""
        added = [rid for rid in dict.fromkeys(record_ids) if rid not in self._flagged]
        if not added:
            return []
        self._flagged.update(added)
        self._suppressed = False
        self._evaluate()
        return added

    def handle(self, record_id: str) -> bool:
        """Staff acted on the record. Returns False if it was not flagged."""
        if record_id not in self._flagged:
            return False
        self._flagged.discard(record_id)
        self._evaluate()
        return True

    def dismiss(self) -> None:
        """Silence the signal without clearing the flagged set."""
        if self._state != AlertState.ALERTING:
            return
        self._suppressed = True
        self._evaluate()

    def reset(self) -> None:
        """Drop all flagged ids and suppression (session restart)."""
        self._flagged.clear()
        self._suppressed = False
        self._evaluate()

    def snapshot(self) -> AlertSnapshot:
        return AlertSnapshot(
            tenant_id=self.tenant_id,
            state=self._state,
            active_flagged_ids=sorted(self._flagged),
            changed_at=self._changed_at,
        )

    def _evaluate(self) -> None:
        if not self._flagged:
            # Suppression never outlives the batch it silenced
            self._suppressed = False
            new_state = AlertState.IDLE
        elif self._suppressed:
            new_state = AlertState.SUPPRESSED
        else:
            new_state = AlertState.ALERTING

        if new_state == self._state:
            return

        old_state = self._state
        self._state = new_state
        self._changed_at = datetime.utcnow()
        logger.info(
            "Alert session %s -> %s",
            old_state.value,
            new_state.value,
            extra={"tenant_id": self.tenant_id, "flagged": len(self._flagged)},
        )
        for listener in list(self._listeners):
            try:
                listener(old_state, new_state, self)
            except Exception:
                logger.exception(
                    "Alert state listener failed",
                    extra={"tenant_id": self.tenant_id},
                )
