"""
order_tracking.py — Post-order tracking sync and supplier follow-ups

After a quote is converted, suppliers keep replying on the same thread with
confirmations, tracking numbers and delivery dates. sync_order_updates()
hands the post-order messages to the workflow and applies what it extracts;
order_follow_up() drafts (and optionally records) a chaser email.

Business Rules:
- Only messages newer than the order are sent for extraction
- Order status only moves forward (PENDING → PROCESSING → IN_TRANSIT → DELIVERED);
  CANCELLED is always accepted
- Item updates only touch items of this order
- A SYSTEM_UPDATE activity records the number of applied updates

Called by: routers/orders.py
Depends on: models, services/workflow_client.py, services/quote_requests.py (map_availability)
"""

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from app.database import utcnow
from app.dependencies import AuthContext, get_owned
from app.errors import ExternalServiceFailure, ValidationFailed
from app.models import EmailMessage, Order, Organization
from app.models.enums import (
    ORDER_STATUS_PROGRESSION,
    ActivityType,
    EmailDirection,
    OrderStatus,
)
from app.services import workflow_client
from app.services.activity_service import log_activity
from app.services.quote_requests import map_availability
from app.services.workflow_client import WorkflowError

log = logging.getLogger("fleet.orders")

NO_THREAD_ERROR = "No email thread associated with this order"


def _parse_dt(value) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        log.warning(f"Ignoring unparseable date from workflow: {value!r}")
        return None


def _same_instant(a: datetime | None, b: datetime | None) -> bool:
    if a is None or b is None:
        return False
    if (a.tzinfo is None) != (b.tzinfo is None):
        a, b = a.replace(tzinfo=None), b.replace(tzinfo=None)
    return a == b


def status_advances(current: str, new: str) -> bool:
    """True when `new` is a forward move for the order, or CANCELLED."""
    if new == OrderStatus.CANCELLED.value:
        return current != OrderStatus.CANCELLED.value
    order = [s.value for s in ORDER_STATUS_PROGRESSION]
    if new not in order:
        return False
    if current not in order:
        return current != OrderStatus.CANCELLED.value and current != new
    return order.index(new) > order.index(current)


def _message_time(m: EmailMessage) -> datetime | None:
    return m.sent_at or m.received_at or m.created_at


def _newer_than(a: datetime | None, b: datetime | None) -> bool:
    if a is None or b is None:
        return False
    if (a.tzinfo is None) != (b.tzinfo is None):
        a, b = a.replace(tzinfo=None), b.replace(tzinfo=None)
    return a > b


def _sync_payload(order: Order, messages: list[EmailMessage], ctx: AuthContext, org) -> dict:
    return {
        "orderId": order.id,
        "orderNumber": order.order_number,
        "supplierId": order.supplier_id,
        "orderDate": order.order_date.isoformat() if order.order_date else None,
        "status": order.status,
        "totalAmount": float(order.total or 0),
        "subtotal": float(order.subtotal) if order.subtotal is not None else None,
        "tax": float(order.tax) if order.tax is not None else None,
        "shipping": float(order.shipping) if order.shipping is not None else None,
        "fulfillmentMethod": order.fulfillment_method or "UNKNOWN",
        "partialFulfillment": bool(order.partial_fulfillment),
        "pickupLocation": order.pickup_location,
        "pickupDate": order.pickup_date.isoformat() if order.pickup_date else None,
        "currentTracking": {
            "trackingNumber": order.tracking_number,
            "shippingCarrier": order.shipping_carrier,
            "expectedDelivery": order.expected_delivery.isoformat() if order.expected_delivery else None,
            "actualDelivery": order.actual_delivery.isoformat() if order.actual_delivery else None,
        },
        "supplier": {
            "id": order.supplier.id,
            "name": order.supplier.name,
            "email": order.supplier.email,
            "contactPerson": order.supplier.contact_person,
        },
        "emailThread": {
            "id": order.email_thread_id,
            "messages": [
                {
                    "id": m.id,
                    "from": m.from_email,
                    "to": m.to_email,
                    "subject": m.subject,
                    "body": m.body,
                    "bodyHtml": m.body_html,
                    "sentAt": _message_time(m).isoformat() if _message_time(m) else None,
                    "receivedAt": m.received_at.isoformat() if m.received_at else None,
                    "direction": m.direction,
                    "hasAttachments": bool(m.attachments),
                }
                for m in messages
            ],
        },
        "items": [
            {
                "id": i.id,
                "partNumber": i.part_number,
                "description": i.description,
                "quantity": i.quantity,
                "unitPrice": float(i.unit_price) if i.unit_price is not None else None,
                "totalPrice": float(i.total_price) if i.total_price is not None else None,
                "fulfillmentMethod": i.fulfillment_method,
                "availability": i.availability,
                "currentTracking": {
                    "trackingNumber": i.tracking_number,
                    "expectedDelivery": i.expected_delivery.isoformat() if i.expected_delivery else None,
                },
                "supplierNotes": i.supplier_notes,
            }
            for i in order.items
        ],
        "organization": {"id": ctx.organization_id, "name": org.name if org else None},
        "user": {"id": ctx.user_id, "name": ctx.name, "email": ctx.email},
    }


def _apply_order_updates(order: Order, updates: dict) -> int:
    count = 0
    if updates.get("trackingNumber"):
        order.tracking_number = updates["trackingNumber"]
        count += 1
    if updates.get("shippingCarrier"):
        order.shipping_carrier = updates["shippingCarrier"]
        count += 1
    expected = _parse_dt(updates.get("expectedDelivery"))
    if expected and not _same_instant(expected, order.expected_delivery):
        order.expected_delivery = expected
        count += 1
    new_status = str(updates.get("status") or "").upper()
    if new_status and status_advances(order.status, new_status):
        order.status = new_status
        if new_status == OrderStatus.DELIVERED.value and not order.actual_delivery:
            order.actual_delivery = utcnow()
        count += 1
    elif new_status:
        log.info(f"Order {order.order_number}: ignoring status {new_status} (current {order.status})")
    return count


def _apply_item_updates(order: Order, updates: list) -> int:
    items = {item.id: item for item in order.items}
    count = 0
    for update in updates:
        if not isinstance(update, dict):
            continue
        try:
            item = items.get(int(update.get("id")))
        except (TypeError, ValueError):
            item = None
        if item is None:
            log.warning(f"Order {order.order_number}: item update for unknown id {update.get('id')}")
            continue
        touched = False
        if update.get("trackingNumber"):
            item.tracking_number = update["trackingNumber"]
            touched = True
        expected = _parse_dt(update.get("expectedDelivery"))
        if expected:
            item.expected_delivery = expected
            touched = True
        if update.get("availability"):
            item.availability = map_availability(update["availability"])
            touched = True
        if touched:
            count += 1
    return count


async def sync_order_updates(db: Session, ctx: AuthContext, order_id: int) -> dict:
    """Extract tracking updates from post-order supplier mail and apply them."""
    order = get_owned(db, Order, order_id, ctx, "Order")
    thread = order.email_thread
    if thread is None:
        raise ValidationFailed(NO_THREAD_ERROR)

    messages = [m for m in thread.messages if _newer_than(_message_time(m), order.created_at)]
    org = db.get(Organization, ctx.organization_id)
    payload = _sync_payload(order, messages, ctx, org)

    try:
        response = await workflow_client.post_order_update(payload)
    except WorkflowError as e:
        log.error(f"Order sync for {order.order_number} failed: {e}")
        raise ExternalServiceFailure("Failed to sync order updates")
    if not isinstance(response, dict) or response.get("success") is False:
        message = response.get("message") if isinstance(response, dict) else None
        log.error(f"Order sync for {order.order_number} rejected: {message}")
        raise ExternalServiceFailure("Failed to sync order updates")

    order_updates = response.get("orderUpdates") or {}
    item_updates = response.get("itemUpdates") or []
    count = _apply_order_updates(order, order_updates) + _apply_item_updates(order, item_updates)

    log_activity(
        db,
        ctx,
        ActivityType.SYSTEM_UPDATE,
        "Order tracking updated",
        f"Order {order.order_number} tracking information synced from supplier emails "
        f"({count} update(s))",
        entity_type="Order",
        entity_id=order.id,
        metadata={
            "source": "manual_sync",
            "updateCount": count,
            "orderNumber": order.order_number,
            "messagesSent": len(messages),
            "itemUpdateCount": len(item_updates),
        },
    )
    db.commit()
    log.info(f"Order {order.order_number}: applied {count} update(s) from {len(messages)} message(s)")
    return {
        "order": order,
        "updateCount": count,
        "supplierMessages": response.get("supplierMessages"),
        "suggestedActions": response.get("suggestedActions"),
    }


async def order_follow_up(db: Session, ctx: AuthContext, order_id: int, body) -> dict:
    """Draft a follow-up to the order's supplier; on send, record it on the thread."""
    order = get_owned(db, Order, order_id, ctx, "Order")
    thread = order.email_thread
    if thread is None:
        raise ValidationFailed(NO_THREAD_ERROR)
    supplier = order.supplier
    org = db.get(Organization, ctx.organization_id)

    payload = {
        "orderId": order.id,
        "orderNumber": order.order_number,
        "supplierId": supplier.id,
        "supplierName": supplier.name,
        "supplierEmail": supplier.email,
        "supplierContactPerson": supplier.contact_person,
        "orderDate": order.order_date.isoformat() if order.order_date else None,
        "status": order.status,
        "totalAmount": float(order.total or 0),
        "trackingNumber": order.tracking_number,
        "expectedDelivery": order.expected_delivery.isoformat() if order.expected_delivery else None,
        "items": [
            {
                "partNumber": i.part_number,
                "description": i.description,
                "quantity": i.quantity,
                "availability": i.availability,
            }
            for i in order.items
        ],
        "branch": body.branch,
        "userMessage": body.user_message,
        "expectedResponseDate": body.expected_response_date.isoformat()
        if body.expected_response_date
        else None,
        "previousEmails": [
            {
                "from": m.from_email,
                "to": m.to_email,
                "subject": m.subject,
                "body": m.body,
                "sentAt": _message_time(m).isoformat() if _message_time(m) else None,
            }
            for m in reversed(thread.messages)
        ],
        "organization": {
            "id": ctx.organization_id,
            "name": org.name if org else None,
            "email": org.billing_email if org else None,
        },
        "user": {"id": ctx.user_id, "name": ctx.name, "email": ctx.email},
    }

    try:
        response = await workflow_client.generate_order_follow_up_email(payload)
    except WorkflowError as e:
        log.error(f"Order follow-up for {order.order_number} failed: {e}")
        raise ExternalServiceFailure("Failed to generate follow-up email")
    content = response.get("emailContent") if isinstance(response, dict) else None
    if not content or response.get("success") is False:
        log.error(f"Order follow-up for {order.order_number} returned no email content")
        raise ExternalServiceFailure("Failed to generate follow-up email")

    if body.action == "preview":
        return {
            "email": content,
            "suggestedFollowUpDate": response.get("suggestedFollowUpDate"),
            "metadata": {
                "orderId": order.id,
                "orderNumber": order.order_number,
                "branch": body.branch,
                "supplier": {"id": supplier.id, "name": supplier.name, "email": supplier.email},
                "generatedAt": utcnow().isoformat(),
            },
        }

    now = utcnow()
    message = EmailMessage(
        direction=EmailDirection.OUTBOUND.value,
        from_email=ctx.email,
        to_email=supplier.email,
        subject=content.get("subject"),
        body=content.get("body"),
        body_html=content.get("bodyHtml"),
        sent_at=now,
        follow_up_sent_at=now,
        follow_up_reason=f"order_follow_up_{body.branch}",
    )
    thread.messages.append(message)
    log_activity(
        db,
        ctx,
        ActivityType.SYSTEM_UPDATE,
        "Order follow-up sent",
        f"Follow-up ({body.branch}) sent to {supplier.name} for order {order.order_number}",
        entity_type="Order",
        entity_id=order.id,
        metadata={"branch": body.branch, "supplierEmail": supplier.email},
    )
    db.commit()
    return {"messageId": message.id, "orderId": order.id}
