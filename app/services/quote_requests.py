"""
quote_requests.py — Quote-Request Orchestration

Create, send, refresh and convert quote requests. A quote request starts with
template items (supplier_id NULL); every supplier it is sent to gets its own
clones of those items so supplier prices never overwrite each other.

Business Rules:
- Fan-out processes suppliers one at a time; one supplier's failure never aborts the batch
- Prices are never sent to the workflow, only item identities and quantities
- Price refresh touches only the scoped supplier's items
- total_amount is recomputed after every item mutation, in the same commit
- At most one junction row per (quote request, supplier); auto-linking skips it,
  a manual link is rejected with 400
- CONVERTED_TO_ORDER and REJECTED are immutable; only DRAFT/REJECTED/EXPIRED delete
- Conversion keeps the order even if the confirmation email fails (warnings)

Called by: routers/quote_requests.py
Depends on: models, services/workflow_client.py, services/activity_service.py
"""

import asyncio
import json
import logging
import random
import re
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.config import settings
from app.database import utcnow
from app.dependencies import AuthContext, get_owned
from app.errors import ExternalServiceFailure, NotFound, ValidationFailed
from app.models import (
    EmailMessage,
    EmailThread,
    Order,
    OrderItem,
    Organization,
    Part,
    QuoteRequest,
    QuoteRequestEmailThread,
    QuoteRequestItem,
    Supplier,
    Vehicle,
)
from app.models.enums import (
    DELETABLE_QUOTE_STATUSES,
    IMMUTABLE_QUOTE_STATUSES,
    ActivityType,
    EmailDirection,
    EmailThreadStatus,
    FulfillmentMethod,
    ItemAvailability,
    OrderStatus,
    QuoteStatus,
    QuoteThreadStatus,
)
from app.services import workflow_client
from app.services.activity_service import log_activity
from app.services.workflow_client import WorkflowError

log = logging.getLogger("fleet.quotes")

NO_EMAIL_ERROR = "Supplier does not have an email address"
MANUAL_REVIEW_MESSAGE = (
    "Quote processed by supplier. Please review the email response for pricing details."
)
PRICES_UPDATED_MESSAGE = "Prices and availability updated successfully"
FOLLOW_UP_BRANCHES = ("no_response", "needs_revision", "accept_quote")
DUPLICATE_LINK_ERROR = "This supplier is already linked to this quote request"

_DIGITS = re.compile(r"\d+")


# ═══════════════════════════════════════════════════════════════════════
#  HELPERS
# ═══════════════════════════════════════════════════════════════════════


def parse_supplier_ids(raw) -> list[str]:
    """Parse the additional-supplier field: JSON list first, then comma-split.

    '["a","b"]' → ["a", "b"];  "a, b ," → ["a", "b"];  None/garbage → [].
    """
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        values = raw
    else:
        text = str(raw).strip()
        if not text:
            return []
        try:
            values = json.loads(text)
        except json.JSONDecodeError:
            values = text.split(",")
        if not isinstance(values, list):
            values = [values] if isinstance(values, (int, str)) else []
    return [str(v).strip() for v in values if v is not None and str(v).strip()]


def _dump_supplier_ids(ids) -> str | None:
    return json.dumps([str(i) for i in ids]) if ids else None


def map_availability(value) -> str:
    """Map a free-text availability to an ItemAvailability value.

    Partial or limited stock counts as IN_STOCK.
    """
    if not value:
        return ItemAvailability.UNKNOWN.value
    v = str(value).strip().upper()
    if "IN_STOCK" in v or v == "IN STOCK" or v == "AVAILABLE":
        return ItemAvailability.IN_STOCK.value
    if "BACKORDER" in v or v == "BACKORDERED":
        return ItemAvailability.BACKORDERED.value
    if "SPECIAL" in v or v in ("SPECIAL ORDER", "SPECIAL_ORDER"):
        return ItemAvailability.SPECIAL_ORDER.value
    if v == "LIMITED" or "PARTIAL" in v:
        return ItemAvailability.IN_STOCK.value
    return ItemAvailability.UNKNOWN.value


def parse_lead_time(value) -> tuple[int | None, str | None]:
    """Return (days, note). Text lead times keep the original wording as a note."""
    if isinstance(value, bool):
        return None, None
    if isinstance(value, (int, float)):
        return int(value), None
    if isinstance(value, str) and value.strip():
        match = _DIGITS.search(value)
        if match:
            return int(match.group(0)), f"Lead time: {value}"
    return None, None


def _money(value) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value)).quantize(Decimal("0.01"))
    except ArithmeticError:
        return None


def recalculate_total(qr: QuoteRequest) -> Decimal:
    """Set and return total_amount = Σ item.total_price (missing counts as 0)."""
    total = sum((Decimal(str(i.total_price)) for i in qr.items if i.total_price is not None), Decimal("0"))
    qr.total_amount = total
    return total


def generate_quote_number(db: Session, organization_id: int) -> str:
    """QR-MM-YYYY-XXXX, regenerated until unique within the organization."""
    now = utcnow()
    while True:
        number = f"QR-{now:%m}-{now:%Y}-{random.randint(0, 9999):04d}"
        taken = (
            db.query(QuoteRequest.id)
            .filter(
                QuoteRequest.organization_id == organization_id,
                QuoteRequest.quote_number == number,
            )
            .first()
        )
        if not taken:
            return number


def generate_order_number(db: Session, organization_id: int) -> str:
    """ORD-YYYY-XXXX, regenerated until unique within the organization."""
    year = utcnow().year
    while True:
        number = f"ORD-{year}-{random.randint(0, 9999):04d}"
        taken = (
            db.query(Order.id)
            .filter(Order.organization_id == organization_id, Order.order_number == number)
            .first()
        )
        if not taken:
            return number


def ensure_mutable(qr: QuoteRequest) -> None:
    if qr.status in IMMUTABLE_QUOTE_STATUSES:
        raise ValidationFailed(
            f"Quote request is {qr.status} and can no longer be modified"
        )


def _owned_supplier(db: Session, ctx: AuthContext, supplier_id: int) -> Supplier:
    return get_owned(db, Supplier, supplier_id, ctx, "Supplier")


def _template_items(qr: QuoteRequest) -> list[QuoteRequestItem]:
    return [i for i in qr.items if i.supplier_id is None]


def _supplier_items(qr: QuoteRequest, supplier_id: int) -> list[QuoteRequestItem]:
    return [i for i in qr.items if i.supplier_id == supplier_id]


def _build_items(items_in) -> list[QuoteRequestItem]:
    rows = []
    for item in items_in:
        unit = _money(item.unit_price)
        rows.append(
            QuoteRequestItem(
                part_id=item.part_id,
                part_number=item.part_number,
                description=item.description,
                quantity=item.quantity,
                unit_price=unit,
                total_price=unit * item.quantity if unit is not None else None,
            )
        )
    return rows


# ═══════════════════════════════════════════════════════════════════════
#  CRUD
# ═══════════════════════════════════════════════════════════════════════


def get_quote_request(db: Session, ctx: AuthContext, qr_id: int) -> QuoteRequest:
    return get_owned(db, QuoteRequest, qr_id, ctx, "Quote request")


def list_quote_requests(
    db: Session,
    ctx: AuthContext,
    status: str | None = None,
    supplier_id: int | None = None,
    search: str | None = None,
    include_with_email_thread: bool = True,
) -> list[QuoteRequest]:
    query = db.query(QuoteRequest).filter(QuoteRequest.organization_id == ctx.organization_id)
    if status:
        query = query.filter(QuoteRequest.status == status.upper())
    if supplier_id:
        query = query.filter(QuoteRequest.supplier_id == supplier_id)
    if search:
        safe = search.strip().replace("%", r"\%").replace("_", r"\_")
        query = query.filter(
            or_(
                QuoteRequest.quote_number.ilike(f"%{safe}%"),
                QuoteRequest.title.ilike(f"%{safe}%"),
            )
        )
    if not include_with_email_thread:
        query = query.filter(~QuoteRequest.threads.any(), ~QuoteRequest.email_links.any())
    return query.order_by(QuoteRequest.created_at.desc(), QuoteRequest.id.desc()).all()


def create_quote_request(db: Session, ctx: AuthContext, payload) -> QuoteRequest:
    supplier = _owned_supplier(db, ctx, payload.supplier_id)
    vehicle = get_owned(db, Vehicle, payload.vehicle_id, ctx, "Vehicle")

    qr = QuoteRequest(
        organization_id=ctx.organization_id,
        quote_number=generate_quote_number(db, ctx.organization_id),
        title=payload.title,
        description=payload.description,
        notes=payload.notes,
        status=QuoteStatus.DRAFT.value,
        expiry_date=payload.expiry_date,
        supplier_id=supplier.id,
        vehicle_id=vehicle.id,
        additional_supplier_ids=_dump_supplier_ids(
            [i for i in payload.additional_supplier_ids if i != supplier.id]
        ),
        created_by_id=ctx.user_id,
    )
    qr.items = _build_items(payload.items)
    recalculate_total(qr)
    db.add(qr)
    db.flush()

    log_activity(
        db,
        ctx,
        ActivityType.QUOTE_REQUESTED,
        "Quote request created",
        f"Quote request {qr.quote_number} created for {supplier.name}",
        entity_type="QuoteRequest",
        entity_id=qr.id,
        metadata={"quoteNumber": qr.quote_number, "itemCount": len(qr.items)},
    )
    db.commit()
    log.info(f"Quote request {qr.quote_number} created by user {ctx.user_id}")
    return qr


def update_quote_request(
    db: Session, ctx: AuthContext, qr_id: int, payload, replace_items: bool = False
) -> QuoteRequest:
    """Apply a PUT (replace_items=True) or PATCH to a quote request."""
    qr = get_quote_request(db, ctx, qr_id)
    ensure_mutable(qr)
    changes = payload.model_dump(exclude_unset=True)

    for field in ("title", "description", "notes", "expiry_date"):
        if field in changes:
            setattr(qr, field, changes[field])
    if changes.get("status") is not None:
        qr.status = QuoteStatus(changes["status"]).value
    if changes.get("vehicle_id") is not None:
        qr.vehicle_id = get_owned(db, Vehicle, changes["vehicle_id"], ctx, "Vehicle").id
    if "additional_supplier_ids" in changes:
        ids = [i for i in (changes["additional_supplier_ids"] or []) if i != qr.supplier_id]
        qr.additional_supplier_ids = _dump_supplier_ids(ids)
    if replace_items and payload.items is not None:
        qr.items = _build_items(payload.items)
        recalculate_total(qr)

    log_activity(
        db,
        ctx,
        ActivityType.QUOTE_UPDATED,
        "Quote request updated",
        f"Quote request {qr.quote_number} updated",
        entity_type="QuoteRequest",
        entity_id=qr.id,
        metadata={"fields": sorted(changes)},
    )
    db.commit()
    return qr


def delete_quote_request(db: Session, ctx: AuthContext, qr_id: int) -> None:
    qr = get_quote_request(db, ctx, qr_id)
    if qr.status not in DELETABLE_QUOTE_STATUSES:
        raise ValidationFailed(
            "Only draft, rejected or expired quote requests can be deleted",
            details={"status": qr.status},
        )
    db.delete(qr)
    db.commit()
    log.info(f"Quote request {qr_id} deleted by user {ctx.user_id}")


# ── Items ─────────────────────────────────────────────────────────────


def _get_item(qr: QuoteRequest, item_id: int) -> QuoteRequestItem:
    item = next((i for i in qr.items if i.id == item_id), None)
    if item is None:
        raise NotFound("Item not found")
    return item


def _log_item_change(db, ctx, qr: QuoteRequest, item_id: int, action: str) -> None:
    log_activity(
        db,
        ctx,
        ActivityType.QUOTE_UPDATED,
        f"Quote request item {action}",
        f"Item {item_id} {action} on {qr.quote_number}",
        entity_type="QuoteRequest",
        entity_id=qr.id,
        metadata={"itemId": item_id, "action": action, "totalAmount": float(qr.total_amount or 0)},
    )


def add_item(db: Session, ctx: AuthContext, qr_id: int, payload) -> QuoteRequestItem:
    """Add a template item and recompute the quote total."""
    qr = get_quote_request(db, ctx, qr_id)
    ensure_mutable(qr)
    item = _build_items([payload])[0]
    qr.items.append(item)
    recalculate_total(qr)
    db.flush()
    _log_item_change(db, ctx, qr, item.id, "added")
    db.commit()
    return item


def update_item(db: Session, ctx: AuthContext, qr_id: int, item_id: int, payload) -> QuoteRequestItem:
    qr = get_quote_request(db, ctx, qr_id)
    ensure_mutable(qr)
    item = _get_item(qr, item_id)
    changes = payload.model_dump(exclude_unset=True)

    for field in ("part_number", "description", "supplier_notes"):
        if changes.get(field) is not None:
            setattr(item, field, changes[field])
    if changes.get("quantity") is not None:
        item.quantity = changes["quantity"]
    if "unit_price" in changes:
        item.unit_price = _money(changes["unit_price"])
    if "unit_price" in changes or "quantity" in changes:
        item.total_price = item.unit_price * item.quantity if item.unit_price is not None else None

    recalculate_total(qr)
    _log_item_change(db, ctx, qr, item.id, "updated")
    db.commit()
    return item


def delete_item(db: Session, ctx: AuthContext, qr_id: int, item_id: int) -> QuoteRequest:
    qr = get_quote_request(db, ctx, qr_id)
    ensure_mutable(qr)
    item = _get_item(qr, item_id)
    qr.items.remove(item)
    recalculate_total(qr)
    _log_item_change(db, ctx, qr, item_id, "removed")
    db.commit()
    return qr


# ═══════════════════════════════════════════════════════════════════════
#  SEND — fan-out to primary + additional suppliers
# ═══════════════════════════════════════════════════════════════════════


def ensure_supplier_items(db: Session, qr: QuoteRequest, supplier_id: int) -> list[QuoteRequestItem]:
    """Return the supplier's clones of every template item, creating missing ones.

    Clones are matched on (quote request, supplier, part number). Clones carry
    the template pricing, so the quote total is recomputed here.
    """
    existing = {i.part_number: i for i in _supplier_items(qr, supplier_id)}
    clones = []
    for template in _template_items(qr):
        clone = existing.get(template.part_number)
        if clone is None:
            clone = QuoteRequestItem(
                supplier_id=supplier_id,
                part_id=template.part_id,
                part_number=template.part_number,
                description=template.description,
                quantity=template.quantity,
                unit_price=template.unit_price,
                total_price=template.total_price,
                supplier_part_number=template.supplier_part_number,
                lead_time=template.lead_time,
                availability=template.availability,
                estimated_delivery_days=template.estimated_delivery_days,
                suggested_fulfillment_method=template.suggested_fulfillment_method,
                is_alternative=template.is_alternative,
                supplier_notes=template.supplier_notes,
            )
            qr.items.append(clone)
            existing[template.part_number] = clone
        clones.append(clone)
    recalculate_total(qr)
    db.flush()
    return clones


def _target_suppliers(db: Session, ctx: AuthContext, qr: QuoteRequest) -> list[tuple[Supplier, bool]]:
    """Primary first, then additional suppliers in stored order; unknown ids dropped."""
    targets = [(qr.supplier, True)]
    seen = {qr.supplier_id}
    wanted = []
    for token in parse_supplier_ids(qr.additional_supplier_ids):
        if token.isdigit() and int(token) not in seen:
            seen.add(int(token))
            wanted.append(int(token))
    if wanted:
        found = {
            s.id: s
            for s in db.query(Supplier).filter(
                Supplier.id.in_(wanted), Supplier.organization_id == ctx.organization_id
            )
        }
        targets.extend((found[sid], False) for sid in wanted if sid in found)
    return targets


def _quote_email_payload(qr, supplier, is_primary, items, org, ctx) -> dict:
    vehicle = qr.vehicle
    return {
        "quoteRequestId": qr.id,
        "quoteNumber": qr.quote_number,
        "supplierId": supplier.id,
        "isPrimary": is_primary,
        "suggestedFulfillmentMethod": qr.suggested_fulfillment_method,
        "timing": {
            "requestDate": qr.request_date.isoformat() if qr.request_date else None,
            "expiryDate": qr.expiry_date.isoformat() if qr.expiry_date else None,
        },
        "supplier": {
            "id": supplier.id,
            "name": supplier.name,
            "email": supplier.email,
            "contactPerson": supplier.contact_person,
        },
        "items": [
            {
                "id": i.id,
                "partNumber": i.part_number,
                "description": i.description,
                "quantity": i.quantity,
            }
            for i in items
        ],
        "specialInstructions": qr.notes,
        "description": qr.description,
        "organization": {
            "id": org.id if org else ctx.organization_id,
            "name": org.name if org else None,
            "contactInfo": f"{ctx.name or 'Contact'} | {ctx.email}",
        },
        "user": {"id": ctx.user_id, "name": ctx.name or "User", "email": ctx.email, "role": ctx.role},
        "vehicle": {
            "id": vehicle.id,
            "vehicleId": vehicle.vehicle_id,
            "make": vehicle.make,
            "model": vehicle.model,
            "year": vehicle.year,
            "serialNumber": vehicle.serial_number,
        }
        if vehicle
        else None,
        "emailThread": {"createdById": ctx.user_id},
    }


def _record_sent_email(db, ctx, qr, supplier, response: dict) -> EmailThread:
    content = response.get("emailContent") or {}
    now = utcnow()
    thread = EmailThread(
        organization_id=ctx.organization_id,
        supplier_id=supplier.id,
        quote_request=qr,
        subject=content.get("subject") or qr.title,
        status=EmailThreadStatus.SENT.value,
        external_thread_id=response.get("threadId"),
        created_by_id=ctx.user_id,
    )
    thread.messages.append(
        EmailMessage(
            direction=EmailDirection.OUTBOUND.value,
            from_email=ctx.email,
            to_email=supplier.email,
            subject=content.get("subject"),
            body=content.get("body"),
            body_html=content.get("bodyHtml"),
            sent_at=now,
            external_message_id=response.get("messageId"),
        )
    )
    db.add(thread)
    db.flush()
    return thread


def _match_sent_thread(threads: list[EmailThread], supplier: Supplier) -> EmailThread | None:
    """First thread whose first OUTBOUND message was addressed to the supplier."""
    if not supplier.email:
        return None
    for thread in threads:
        first_out = next(
            (m for m in thread.messages if m.direction == EmailDirection.OUTBOUND.value),
            None,
        )
        if first_out and supplier.email in (first_out.to_email or ""):
            return thread
    return None


def link_sent_threads(
    db: Session, qr: QuoteRequest, targets: list[tuple[Supplier, bool]]
) -> list[str]:
    """Best-effort: link each target supplier to the thread whose first OUTBOUND
    message went to that supplier. Failures become warnings, never exceptions."""
    warnings: list[str] = []
    try:
        threads = (
            db.query(EmailThread)
            .filter(EmailThread.quote_request_id == qr.id)
            .order_by(EmailThread.created_at.desc(), EmailThread.id.desc())
            .limit(len(targets))
            .all()
        )
    except Exception as e:
        log.error(f"Could not load threads for quote request {qr.id}: {e}")
        return [f"Could not link email threads: {e}"]

    for supplier, is_primary in targets:
        try:
            exists = (
                db.query(QuoteRequestEmailThread.id)
                .filter_by(quote_request_id=qr.id, supplier_id=supplier.id)
                .first()
            )
            if exists:
                continue
            match = _match_sent_thread(threads, supplier)
            if match is None:
                log.warning(f"No sent thread found for supplier {supplier.id} on QR {qr.id}")
                continue
            with db.begin_nested():
                db.add(
                    QuoteRequestEmailThread(
                        quote_request_id=qr.id,
                        email_thread_id=match.id,
                        supplier_id=supplier.id,
                        is_primary=is_primary,
                        status=QuoteThreadStatus.SENT.value,
                    )
                )
        except Exception as e:
            log.error(f"Linking thread for supplier {supplier.id} on QR {qr.id} failed: {e}")
            warnings.append(f"Could not link email thread for supplier {supplier.name}")
    return warnings


async def send_quote_request(db: Session, ctx: AuthContext, qr_id: int) -> dict:
    """Email every target supplier; returns the aggregate result dict."""
    qr = get_quote_request(db, ctx, qr_id)
    ensure_mutable(qr)
    org = db.get(Organization, ctx.organization_id)
    targets = _target_suppliers(db, ctx, qr)

    results = {
        "totalSent": 0,
        "totalFailed": 0,
        "primary": None,
        "additional": [],
        "errors": [],
        "warnings": [],
    }

    for supplier, is_primary in targets:
        if not supplier.email:
            results["totalFailed"] += 1
            results["errors"].append(
                {"supplierId": supplier.id, "supplierName": supplier.name, "error": NO_EMAIL_ERROR}
            )
            continue
        try:
            items = ensure_supplier_items(db, qr, supplier.id)
            payload = _quote_email_payload(qr, supplier, is_primary, items, org, ctx)
            response = await workflow_client.generate_quote_request_email(payload)
            if not isinstance(response, dict):
                response = {}
            thread = _record_sent_email(db, ctx, qr, supplier, response)
        except Exception as e:
            log.error(f"Quote request {qr.quote_number} to supplier {supplier.id} failed: {e}")
            results["totalFailed"] += 1
            results["errors"].append(
                {"supplierId": supplier.id, "supplierName": supplier.name, "error": str(e) or "Unknown error"}
            )
            continue

        sent = {
            "supplierId": supplier.id,
            "supplierName": supplier.name,
            "emailContent": response.get("emailContent"),
            "messageId": response.get("messageId"),
            "threadId": thread.id,
        }
        if is_primary:
            results["primary"] = sent
        else:
            results["additional"].append(sent)
        results["totalSent"] += 1

    if results["totalSent"]:
        qr.status = QuoteStatus.SENT.value
        log_activity(
            db,
            ctx,
            ActivityType.QUOTE_REQUESTED,
            "Quote request sent",
            f"Quote request {qr.quote_number} sent to {results['totalSent']} supplier(s)",
            entity_type="QuoteRequest",
            entity_id=qr.id,
            metadata={"totalSent": results["totalSent"], "totalFailed": results["totalFailed"]},
        )
    db.flush()
    results["warnings"] = link_sent_threads(db, qr, targets)
    db.commit()
    db.expire(qr, ["email_links", "threads"])
    log.info(
        f"Quote request {qr.quote_number}: sent={results['totalSent']} failed={results['totalFailed']}"
    )
    return results


# ═══════════════════════════════════════════════════════════════════════
#  THREAD LINKS — manual link, repair, status refresh
# ═══════════════════════════════════════════════════════════════════════


def _links_for(db: Session, qr: QuoteRequest) -> list[QuoteRequestEmailThread]:
    return db.query(QuoteRequestEmailThread).filter_by(quote_request_id=qr.id).all()


def link_email_thread(db: Session, ctx: AuthContext, qr_id: int, payload) -> QuoteRequestEmailThread:
    """Link one supplier's email thread to the quote request by hand."""
    qr = get_quote_request(db, ctx, qr_id)
    supplier = _owned_supplier(db, ctx, payload.supplier_id)
    thread = get_owned(db, EmailThread, payload.email_thread_id, ctx, "Email thread")

    if any(link.supplier_id == supplier.id for link in _links_for(db, qr)):
        raise ValidationFailed(DUPLICATE_LINK_ERROR)

    link = QuoteRequestEmailThread(
        quote_request_id=qr.id,
        email_thread=thread,
        supplier_id=supplier.id,
        is_primary=payload.is_primary,
        status=QuoteThreadStatus.SENT.value,
    )
    db.add(link)
    if thread.quote_request_id is None:
        thread.quote_request_id = qr.id
    db.commit()
    db.expire(qr, ["email_links", "threads"])
    log.info(f"Thread {thread.id} linked to QR {qr.quote_number} for supplier {supplier.id}")
    return link


def sync_threads(db: Session, ctx: AuthContext, qr_id: int, force_resync: bool = False) -> dict:
    """Create missing junction rows by matching sent threads to target suppliers.

    force_resync drops every existing link first and rebuilds them.
    """
    qr = get_quote_request(db, ctx, qr_id)
    if force_resync:
        for link in _links_for(db, qr):
            db.delete(link)
        db.flush()
        db.expire(qr, ["email_links"])
    existing = {link.supplier_id: link for link in _links_for(db, qr)}
    threads = (
        db.query(EmailThread)
        .filter(EmailThread.quote_request_id == qr.id)
        .order_by(EmailThread.created_at.desc(), EmailThread.id.desc())
        .all()
    )
    targets = _target_suppliers(db, ctx, qr)

    results = {"linked": [], "alreadyLinked": [], "errors": []}
    for supplier, is_primary in targets:
        entry = {"supplierId": supplier.id, "supplierName": supplier.name}
        link = existing.get(supplier.id)
        if link is not None:
            results["alreadyLinked"].append({**entry, "emailThreadId": link.email_thread_id})
            continue
        match = _match_sent_thread(threads, supplier)
        if match is None:
            results["errors"].append(
                {**entry, "error": f"No email thread found with recipient {supplier.email}"}
            )
            continue
        db.add(
            QuoteRequestEmailThread(
                quote_request_id=qr.id,
                email_thread_id=match.id,
                supplier_id=supplier.id,
                is_primary=is_primary,
                status=QuoteThreadStatus.SENT.value,
            )
        )
        results["linked"].append({**entry, "emailThreadId": match.id, "isPrimary": is_primary})

    db.commit()
    db.expire(qr, ["email_links"])
    summary = {
        "totalSuppliers": len(targets),
        "totalThreads": len(threads),
        "linked": len(results["linked"]),
        "alreadyLinked": len(results["alreadyLinked"]),
        "errors": len(results["errors"]),
    }
    log.info(f"Thread sync for QR {qr.quote_number}: {summary}")
    return {"data": results, "summary": summary}


def update_thread_statuses(db: Session, ctx: AuthContext, qr_id: int) -> int:
    """Move SENT links whose thread has an inbound reply to RESPONDED. Returns the count."""
    qr = get_quote_request(db, ctx, qr_id)
    updated = 0
    for link in _links_for(db, qr):
        if link.status != QuoteThreadStatus.SENT.value:
            continue
        inbound = [
            m for m in link.email_thread.messages if m.direction == EmailDirection.INBOUND.value
        ]
        if not inbound:
            continue
        link.status = QuoteThreadStatus.RESPONDED.value
        latest = max((m.received_at for m in inbound if m.received_at), default=None)
        link.response_date = latest or utcnow()
        updated += 1
    db.commit()
    db.expire(qr, ["email_links"])
    return updated


# ═══════════════════════════════════════════════════════════════════════
#  PRICE REFRESH
# ═══════════════════════════════════════════════════════════════════════


def _threads_for(db: Session, qr: QuoteRequest, supplier_id: int | None) -> list[EmailThread]:
    threads: dict[int, EmailThread] = {}
    for link in qr.email_links:
        if supplier_id is None or link.supplier_id == supplier_id:
            threads[link.email_thread_id] = link.email_thread
    for thread in qr.threads:
        if supplier_id is None or thread.supplier_id == supplier_id:
            threads.setdefault(thread.id, thread)
    return list(threads.values())


def _message_payload(m: EmailMessage) -> dict:
    return {
        "id": m.id,
        "from": m.from_email,
        "to": m.to_email,
        "subject": m.subject,
        "body": m.body,
        "bodyHtml": m.body_html,
        "direction": m.direction,
        "sentAt": m.sent_at.isoformat() if m.sent_at else None,
        "receivedAt": m.received_at.isoformat() if m.received_at else None,
        "createdAt": m.created_at.isoformat() if m.created_at else None,
        "attachments": [
            {
                "id": a.id,
                "filename": a.filename,
                "contentType": a.content_type,
                "size": a.size,
                "extractedText": a.extracted_text,
            }
            for a in m.attachments
        ],
    }


def apply_item_update(item: QuoteRequestItem, update: dict) -> None:
    """Write one workflow item update onto a quote item."""
    if "unitPrice" in update:
        item.unit_price = _money(update.get("unitPrice"))
    if "totalPrice" in update:
        item.total_price = _money(update.get("totalPrice"))
    elif item.unit_price is not None:
        item.total_price = item.unit_price * item.quantity

    days, lead_note = parse_lead_time(update.get("leadTime"))
    item.lead_time = days
    item.availability = map_availability(update.get("availability"))
    if "estimatedDeliveryDays" in update:
        item.estimated_delivery_days = update.get("estimatedDeliveryDays")
    if "suggestedFulfillmentMethod" in update:
        item.suggested_fulfillment_method = update.get("suggestedFulfillmentMethod")

    if "supplierPartNumber" in update:
        item.supplier_part_number = update.get("supplierPartNumber")
    item.is_superseded = bool(update.get("isSuperseded") or False)
    item.original_part_number = update.get("originalPartNumber") if item.is_superseded else None
    item.supersession_notes = update.get("supersessionNotes")
    item.is_alternative = bool(update.get("isAlternative") or False)
    item.alternative_reason = update.get("alternativeReason")

    notes = [n for n in (update.get("supplierNotes"), lead_note) if n]
    item.supplier_notes = ". ".join(notes) if notes else None


async def refresh_prices(db: Session, ctx: AuthContext, qr_id: int, supplier_id: int | None = None) -> dict:
    """Ask the workflow to extract prices from the supplier thread(s) and apply them.

    Returns {"message", "textOutput"?, "quote_request"}.
    """
    qr = get_quote_request(db, ctx, qr_id)
    ensure_mutable(qr)

    if supplier_id is not None:
        _owned_supplier(db, ctx, supplier_id)
        scoped = _supplier_items(qr, supplier_id) or ensure_supplier_items(db, qr, supplier_id)
    else:
        scoped = list(qr.items)
    scoped_by_id = {item.id: item for item in scoped}

    messages = [m for t in _threads_for(db, qr, supplier_id) for m in t.messages]
    payload = {
        "quoteRequestId": qr.id,
        "supplierId": supplier_id,
        "items": [
            {
                "id": i.id,
                "partNumber": i.part_number,
                "description": i.description,
                "quantity": i.quantity,
            }
            for i in scoped
        ],
        "emailThread": [_message_payload(m) for m in messages],
    }

    try:
        response = await workflow_client.update_part_prices(payload)
    except WorkflowError as e:
        log.error(f"Price update for QR {qr.quote_number} failed: {e}")
        db.rollback()
        raise ExternalServiceFailure("Failed to update prices")

    if not isinstance(response, dict):
        response = {}
    validation = response.get("validation") or {}
    if response.get("success") is False and validation.get("hasErrors", True):
        log.error(f"Price update for QR {qr.quote_number} reported errors: {response.get('message')}")
        db.rollback()
        raise ExternalServiceFailure("Failed to update prices")

    updates = response.get("updatedItems") or (response.get("operations") or {}).get("update") or []
    if not updates:
        db.commit()
        return {
            "message": MANUAL_REVIEW_MESSAGE,
            "textOutput": response.get("textOutput"),
            "quote_request": qr,
        }

    applied = 0
    for update in updates:
        if not isinstance(update, dict):
            continue
        item = scoped_by_id.get(_as_int(update.get("id")))
        if item is None:
            log.warning(f"Ignoring price update for item {update.get('id')} outside scope of QR {qr.id}")
            continue
        apply_item_update(item, update)
        applied += 1

    recalculate_total(qr)
    if response.get("overallRecommendation"):
        qr.suggested_fulfillment_method = response["overallRecommendation"]
    log_activity(
        db,
        ctx,
        ActivityType.PRICES_UPDATED,
        "Quote prices updated",
        f"{applied} item(s) updated on {qr.quote_number}",
        entity_type="QuoteRequest",
        entity_id=qr.id,
        metadata={"supplierId": supplier_id, "itemsUpdated": applied},
    )
    db.commit()
    return {"message": PRICES_UPDATED_MESSAGE, "quote_request": qr}


def _as_int(value) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


# ═══════════════════════════════════════════════════════════════════════
#  FOLLOW-UP
# ═══════════════════════════════════════════════════════════════════════


def resolve_follow_up_branch(action: str, branch: str | None, reason: str) -> str:
    if action == "send":
        return "accept_quote"
    if branch in FOLLOW_UP_BRANCHES:
        return branch
    lowered = (reason or "").lower()
    if "revision" in lowered:
        return "needs_revision"
    if "accept" in lowered:
        return "accept_quote"
    return "no_response"


def _supplier_thread(qr: QuoteRequest, supplier_id: int) -> EmailThread | None:
    for link in qr.email_links:
        if link.supplier_id == supplier_id:
            return link.email_thread
    for thread in qr.threads:
        if thread.supplier_id == supplier_id:
            return thread
    return None


def _other_addresses(thread: EmailThread, supplier_email: str) -> list[str]:
    seen: list[str] = []
    for m in thread.messages:
        candidates = re.split(r"[,;]", m.to_email or "") + list(m.cc or []) + list(m.bcc or [])
        for addr in candidates:
            addr = (addr or "").strip()
            if addr and addr != supplier_email and addr not in seen:
                seen.append(addr)
    return seen


async def send_follow_up(db: Session, ctx: AuthContext, qr_id: int, body) -> dict:
    qr = get_quote_request(db, ctx, qr_id)
    supplier = _owned_supplier(db, ctx, body.supplier_id) if body.supplier_id else qr.supplier
    if not supplier.email:
        raise ValidationFailed(NO_EMAIL_ERROR)
    thread = _supplier_thread(qr, supplier.id)
    if thread is None:
        raise NotFound("No email thread found for this supplier")

    branch = resolve_follow_up_branch(body.action, body.workflow_branch, body.follow_up_reason)
    reason = f"follow_up_{branch}"
    last = thread.messages[-1] if thread.messages else None
    now = utcnow()
    expected = body.expected_response_by or now + timedelta(days=1)

    payload = {
        "quoteRequestId": qr.id,
        "threadId": thread.id,
        "supplier": {
            "id": supplier.id,
            "name": supplier.name,
            "email": supplier.email,
            "auxiliaryEmails": [a.email for a in supplier.auxiliary_emails],
        },
        "threadEmails": _other_addresses(thread, supplier.email),
        "previousCommunication": {
            "lastContactDate": (last.sent_at or last.received_at or last.created_at or now).isoformat()
            if last
            else now.isoformat(),
            "messagesSummary": (last.body if last else None) or "No previous message content available",
        },
        "followUpReason": reason,
        "workflowBranch": branch,
        "additionalMessage": body.additional_message,
        "expectedResponseBy": expected.isoformat(),
        "followUpSentAt": now.isoformat(),
        "inReplyTo": last.external_message_id if last else None,
        "user": {"id": ctx.user_id, "name": ctx.name or "User", "email": ctx.email, "role": ctx.role},
    }
    if branch == "needs_revision":
        payload["missingInformation"] = [body.additional_message] if body.additional_message else []
    if body.email_content:
        payload["customEmailContent"] = body.email_content.model_dump(by_alias=True)

    try:
        result = await workflow_client.generate_follow_up_email(payload)
    except WorkflowError as e:
        log.error(f"Follow-up for QR {qr.quote_number} / supplier {supplier.id} failed: {e}")
        raise ExternalServiceFailure("Failed to generate follow-up email")

    content = result["emailContent"]
    if body.action == "send":
        thread.messages.append(
            EmailMessage(
                direction=EmailDirection.OUTBOUND.value,
                from_email=ctx.email,
                to_email=supplier.email,
                subject=content.get("subject"),
                body=content.get("body"),
                body_html=content.get("bodyHtml"),
                sent_at=now,
                external_message_id=result.get("messageId"),
                in_reply_to=payload["inReplyTo"],
                follow_up_sent_at=now,
                follow_up_reason=reason,
            )
        )
        thread.status = EmailThreadStatus.WAITING_RESPONSE.value
        db.commit()
    return {"emailContent": content, "messageId": result.get("messageId")}


# ═══════════════════════════════════════════════════════════════════════
#  QUOTE → ORDER
# ═══════════════════════════════════════════════════════════════════════


def _resolve_part(db: Session, ctx: AuthContext, qr: QuoteRequest, item: QuoteRequestItem) -> Part:
    """Find or create the Part an order line points at, recording supersession."""
    if item.part_id:
        part = db.get(Part, item.part_id)
        if part and part.organization_id == ctx.organization_id:
            return part

    number = item.supplier_part_number or item.part_number
    replaced = item.original_part_number or item.part_number
    part = (
        db.query(Part)
        .filter(Part.organization_id == ctx.organization_id, Part.part_number == number)
        .first()
    )
    if part:
        if item.is_superseded and not part.superseded_by:
            part.superseded_by = item.supplier_part_number
            part.supersedes = replaced
            part.supersession_date = utcnow()
            part.supersession_notes = item.supersession_notes
        return part

    price = item.unit_price or Decimal("0")
    part = Part(
        organization_id=ctx.organization_id,
        part_number=number,
        description=item.description,
        category="GENERAL",
        supplier_part_number=item.supplier_part_number
        if item.supplier_part_number != item.part_number
        else None,
        superseded_by=item.supplier_part_number if item.is_superseded else None,
        supersedes=replaced if item.is_superseded else None,
        supersession_date=utcnow() if item.is_superseded else None,
        supersession_notes=item.supersession_notes,
        stock_quantity=0,
        min_stock_level=0,
        price=price,
        cost=price,
    )
    db.add(part)
    db.flush()
    return part


def _order_item_notes(item: QuoteRequestItem) -> str | None:
    notes = [item.supplier_notes]
    if item.is_superseded:
        replaced = item.original_part_number or item.part_number
        notes.append(
            f"Superseded: {item.supersession_notes or f'{replaced} → {item.supplier_part_number}'}"
        )
    if item.is_alternative:
        notes.append(f"Alternative: {item.alternative_reason or 'Supplier suggested'}")
    joined = ". ".join(n for n in notes if n)
    return joined or None


def _confirmation_payload(qr, order, supplier, thread, body, ctx, org) -> dict:
    messages = thread.messages if thread else []
    last_inbound = next(
        (m for m in reversed(messages) if m.direction == EmailDirection.INBOUND.value), None
    )
    return {
        "orderId": order.id,
        "orderNumber": order.order_number,
        "quoteRequestId": qr.id,
        "quoteNumber": qr.quote_number,
        "expectedResponseBy": (utcnow() + timedelta(hours=24)).isoformat(),
        "fulfillmentMethod": order.fulfillment_method,
        "partialFulfillment": bool(order.partial_fulfillment),
        "supplier": {
            "id": supplier.id,
            "name": supplier.name,
            "email": supplier.email,
            "type": supplier.type,
            "contactPerson": supplier.contact_person,
            "phone": supplier.phone,
        },
        "organization": {
            "id": ctx.organization_id,
            "name": org.name if org else None,
            "contactInfo": (org.billing_email if org else None) or ctx.email,
        },
        "user": {"id": ctx.user_id, "name": ctx.name or "User", "email": ctx.email, "role": ctx.role},
        "emailThread": {
            "id": thread.id,
            "subject": thread.subject,
            "status": thread.status,
            "messages": [_message_payload(m) for m in messages],
        }
        if thread
        else None,
        "mostRecentQuote": _message_payload(last_inbound) if last_inbound else None,
        "items": [
            {
                "id": i.id,
                "partId": i.part_id,
                "partNumber": i.part_number,
                "description": i.description,
                "quantity": i.quantity,
                "unitPrice": float(i.unit_price or 0),
                "totalPrice": float(i.total_price or 0),
                "availability": i.availability,
                "fulfillmentMethod": i.fulfillment_method,
            }
            for i in order.items
        ],
        "orderDetails": {
            "totalAmount": float(order.total or 0),
            "currency": "USD",
            "pickupLocation": order.pickup_location,
            "pickupDate": order.pickup_date.isoformat() if order.pickup_date else None,
            "deliveryAddress": order.shipping_address,
            "notes": order.notes,
            "specialInstructions": body.special_instructions,
            "purchaseOrderNumber": order.order_number,
        },
    }


async def convert_to_order(db: Session, ctx: AuthContext, qr_id: int, body) -> tuple[Order, list[str]]:
    """Create an Order from an APPROVED quote request. Returns (order, warnings)."""
    qr = get_quote_request(db, ctx, qr_id)
    if qr.status != QuoteStatus.APPROVED.value:
        raise ValidationFailed("Quote request must be approved before converting to an order")

    supplier = (
        _owned_supplier(db, ctx, body.selected_supplier_id)
        if body.selected_supplier_id
        else qr.supplier
    )
    source_items = _supplier_items(qr, supplier.id) or _template_items(qr)
    if not source_items:
        raise ValidationFailed("Quote request has no items to order")

    method = FulfillmentMethod(body.fulfillment_method).value
    per_item = {f.item_id: f.method for f in (body.item_fulfillment or [])}
    thread = _supplier_thread(qr, supplier.id)
    now = utcnow()

    order = Order(
        organization_id=ctx.organization_id,
        order_number=generate_order_number(db, ctx.organization_id),
        supplier_id=supplier.id,
        vehicle_id=qr.vehicle_id,
        email_thread_id=thread.id if thread else None,
        quote_request_id=qr.id,
        status=OrderStatus.PROCESSING.value,
        order_date=now,
        notes=qr.notes,
        quote_reference=qr.quote_number,
        fulfillment_method=method,
        partial_fulfillment=method == FulfillmentMethod.SPLIT.value,
        pickup_location=body.pickup_location if method in ("PICKUP", "SPLIT") else None,
        pickup_date=body.pickup_date if method in ("PICKUP", "SPLIT") else None,
        shipping_address=body.shipping_address.model_dump(by_alias=True)
        if body.shipping_address and method in ("DELIVERY", "SPLIT")
        else None,
        created_by_id=ctx.user_id,
    )

    subtotal = Decimal("0")
    for item in source_items:
        part = _resolve_part(db, ctx, qr, item)
        unit = item.unit_price or Decimal("0")
        line_total = unit * item.quantity
        subtotal += line_total
        order.items.append(
            OrderItem(
                part_id=part.id,
                part_number=part.part_number,
                description=item.description,
                quantity=item.quantity,
                unit_price=unit,
                total_price=line_total,
                availability=item.availability or ItemAvailability.UNKNOWN.value,
                fulfillment_method=per_item.get(item.id, method),
                expected_delivery=now + timedelta(days=item.estimated_delivery_days)
                if item.estimated_delivery_days
                else None,
                supplier_notes=_order_item_notes(item),
            )
        )
    order.subtotal = subtotal
    order.tax = Decimal("0")
    order.shipping = Decimal("0")
    order.total = subtotal
    db.add(order)

    for link in qr.email_links:
        link.status = (
            QuoteThreadStatus.ACCEPTED.value
            if link.supplier_id == supplier.id
            else QuoteThreadStatus.REJECTED.value
        )
    qr.status = QuoteStatus.CONVERTED_TO_ORDER.value
    qr.selected_supplier_id = supplier.id
    db.flush()

    log_activity(
        db,
        ctx,
        ActivityType.ORDER_CREATED,
        "Quote request converted to order",
        f"Quote request {qr.quote_number} was converted to order {order.order_number} "
        f"with {method} fulfillment",
        entity_type="Order",
        entity_id=order.id,
        metadata={
            "quoteNumber": qr.quote_number,
            "orderNumber": order.order_number,
            "supplierName": supplier.name,
            "itemCount": len(order.items),
            "total": float(order.total),
            "fulfillmentMethod": method,
        },
    )
    db.commit()
    log.info(f"QR {qr.quote_number} converted to order {order.order_number}")

    warnings: list[str] = []
    if supplier.email:
        org = db.get(Organization, ctx.organization_id)
        payload = _confirmation_payload(qr, order, supplier, thread, body, ctx, org)
        try:
            result = await asyncio.wait_for(
                workflow_client.generate_order_confirmation_email(payload),
                timeout=settings.conversion_timeout,
            )
        except (WorkflowError, asyncio.TimeoutError) as e:
            log.error(f"Order confirmation for {order.order_number} failed: {e!r}")
            warnings.append("Order created, but the confirmation email could not be generated")
        else:
            content = result.get("emailContent") if isinstance(result, dict) else None
            if not content:
                warnings.append("Order created, but the confirmation email was empty")
            elif thread is not None:
                thread.messages.append(
                    EmailMessage(
                        direction=EmailDirection.OUTBOUND.value,
                        from_email=ctx.email,
                        to_email=supplier.email,
                        subject=content.get("subject"),
                        body=content.get("body"),
                        body_html=content.get("bodyHtml"),
                        sent_at=utcnow(),
                        external_message_id=result.get("messageId"),
                    )
                )
                thread.status = EmailThreadStatus.CONVERTED_TO_ORDER.value
                db.commit()
    return order, warnings
