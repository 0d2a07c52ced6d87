"""Status-email payloads built from a record and the tenant's letterhead."""

from typing import Optional

from pydantic import BaseModel

from ops_kernel.models.notification import NotificationPayload
from ops_kernel.models.record import OperationalRecord, RecordKind

SUBJECTS = {
    (RecordKind.ORDER, "confirmed"): "Your order {number} is confirmed",
    (RecordKind.ORDER, "ready"): "Your order {number} is ready",
    (RecordKind.ORDER, "rejected"): "Your order {number} could not be accepted",
    (RecordKind.RESERVATION, "confirmed"): "Your reservation is confirmed",
    (RecordKind.RESERVATION, "cancelled"): "Your reservation has been cancelled",
}


class Letterhead(BaseModel):
    """Business details printed on every customer email."""

    business_name: str = "Restaurant"
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None
    vat_number: Optional[str] = None


def build_status_payload(
    record: OperationalRecord,
    target_status: str,
    letterhead: Optional[Letterhead] = None,
) -> Optional[NotificationPayload]:
    """
    Build the customer notification for a status change.

    Returns None when the record carries no customer email; such
    transitions simply have nobody to notify.
    """
    props = record.properties
    recipient = props.get("customer_email")
    if not recipient:
        return None

    letterhead = letterhead or Letterhead()
    number = props.get("order_number") or record.id
    subject = SUBJECTS.get(
        (record.kind, target_status), "Update for {number}"
    ).format(number=number)

    data = {
        "status": target_status,
        "customer_name": props.get("customer_name"),
        "customer_phone": props.get("customer_phone"),
        "business": letterhead.model_dump(),
    }
    if record.kind == RecordKind.ORDER:
        data.update({
            "order_number": number,
            "order_type": props.get("order_type"),
            "items": props.get("items", []),
            "total": props.get("total"),
        })
        if target_status == "rejected":
            data["rejection_reason"] = props.get("rejection_reason")
            data["rejection_notes"] = props.get("rejection_notes")
    else:
        data.update({
            "reservation_date": props.get("reservation_date"),
            "reservation_time": props.get("reservation_time"),
            "party_size": props.get("party_size"),
        })
        if target_status == "cancelled":
            data["cancellation_note"] = props.get("cancellation_note")

    return NotificationPayload(
        recipient=recipient,
        subject=subject,
        template=f"{record.kind.value}_status",
        data=data,
        channel=props.get("notify_channel", "email"),
    )
