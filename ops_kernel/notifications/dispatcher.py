"""
Notification Dispatcher — at-most-once customer notifications per status change.

Behavioral Contract:
- notify() checks the Sent Ledger for (entity id, target status); a hit is
  an idempotent no-op reported as skipped.
- On a miss the ledger entry is written BEFORE the transport is invoked.
  A crash or failure after that point leaves the key recorded: the customer
  may get zero emails, never two.
- A failed send is logged as a delivery gap and reported in the outcome.
  It is not retried and never rolls back the status change that caused it.
- Payload construction is the caller's job. The dispatcher only owns the
  send-once guarantee and the routing to a transport by channel.
"""

import inspect
from typing import Dict, List, Optional, Protocol, runtime_checkable

from ops_kernel.errors import DispatchError
from ops_kernel.ledger.store import SentLedger
from ops_kernel.logging import get_logger, mask_email
from ops_kernel.models.ledger import SentLedgerEntry
from ops_kernel.models.notification import DispatchOutcome, NotificationPayload

logger = get_logger(__name__)


@runtime_checkable
class NotificationTransport(Protocol):
    """Email / WhatsApp style external call. May be sync or async."""

    def send(self, payload: NotificationPayload): ...


class RecordingTransport:
    """Transport that keeps every payload in memory. Used in tests and dev mode."""

    def __init__(self, fail_with: Optional[Exception] = None):
        self.sent: List[NotificationPayload] = []
        self.fail_with = fail_with

    async def send(self, payload: NotificationPayload) -> dict:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(payload)
        return {"status": "sent", "message_id": f"msg_{len(self.sent)}"}


class NotificationDispatcher:
    """Routes payloads to a transport per channel, guarded by the Sent Ledger."""

    def __init__(
        self,
        tenant_id: str,
        ledger: SentLedger,
        transport: Optional[NotificationTransport] = None,
    ):
        self.tenant_id = tenant_id
        self.ledger = ledger
        self._transports: Dict[str, NotificationTransport] = {}
        if transport is not None:
            self._transports["email"] = transport

    def register_transport(self, channel: str, transport: NotificationTransport) -> None:
        """Register the transport used for a channel ("email", "whatsapp", ...)."""
        self._transports[channel] = transport

    async def notify(
        self,
        entity_id: str,
        target_status: str,
        payload: NotificationPayload,
        raise_on_failure: bool = False,
    ) -> DispatchOutcome:
        """
        Send `payload` once for (entity_id, target_status).

        Returns the outcome. With raise_on_failure=True a delivery gap is
        raised as DispatchError instead of only being reported.
        """
        target_status = str(getattr(target_status, "value", target_status))

        if not self.ledger.try_record(self.tenant_id, entity_id, target_status):
            logger.info(
                "Notification already sent, skipping",
                extra={
                    "tenant_id": self.tenant_id,
                    "entity_id": entity_id,
                    "target_status": target_status,
                },
            )
            return DispatchOutcome(
                entity_id=entity_id, target_status=target_status, skipped=True
            )

        try:
            await self._send(payload)
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            self.ledger.mark_failed(self.tenant_id, entity_id, target_status, error)
            logger.error(
                "Delivery gap: notification send failed, not retrying",
                exc_info=True,
                extra={
                    "tenant_id": self.tenant_id,
                    "entity_id": entity_id,
                    "target_status": target_status,
                    "recipient": mask_email(payload.recipient),
                    "channel": payload.channel,
                },
            )
            if raise_on_failure:
                raise DispatchError(error, entity_id, target_status) from e
            return DispatchOutcome(
                entity_id=entity_id, target_status=target_status, error=error
            )

        self.ledger.mark_delivered(self.tenant_id, entity_id, target_status)
        logger.info(
            "Notification sent",
            extra={
                "tenant_id": self.tenant_id,
                "entity_id": entity_id,
                "target_status": target_status,
                "recipient": mask_email(payload.recipient),
                "channel": payload.channel,
            },
        )
        return DispatchOutcome(entity_id=entity_id, target_status=target_status, sent=True)

    async def _send(self, payload: NotificationPayload) -> None:
        transport = self._transports.get(payload.channel)
        if transport is None:
            raise DispatchError(
                f"No transport registered for channel: {payload.channel}",
                entity_id="",
                target_status="",
            )
        result = transport.send(payload)
        if inspect.isawaitable(result):
            await result

    def delivery_gaps(self) -> List[SentLedgerEntry]:
        """Ledger entries whose send failed or never confirmed."""
        return self.ledger.query_gaps(self.tenant_id)

    def already_sent(self, entity_id: str, target_status: str) -> bool:
        return self.ledger.contains(self.tenant_id, entity_id, target_status)
