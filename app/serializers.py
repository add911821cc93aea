"""
serializers.py — ORM row → JSON dict converters

One *_to_dict per entity, camelCase keys, Decimals as floats, datetimes as
ISO strings. Nested collections are opt-in so list endpoints stay light.

Called by: routers/*
Depends on: models
"""

from datetime import datetime
from decimal import Decimal

from .models import (
    ActivityLog,
    AuxiliaryEmail,
    ChatMessage,
    Conversation,
    EmailMessage,
    EmailThread,
    MaintenanceRecord,
    Order,
    OrderItem,
    Part,
    QuoteRequest,
    QuoteRequestEmailThread,
    QuoteRequestItem,
    Supplier,
    Vehicle,
)
from .services.quote_requests import parse_supplier_ids


def _num(value):
    if value is None:
        return None
    if isinstance(value, Decimal):
        return float(value)
    return value


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


# ── Suppliers ─────────────────────────────────────────────────────────


def aux_email_to_dict(aux: AuxiliaryEmail) -> dict:
    return {
        "id": aux.id,
        "supplierId": aux.supplier_id,
        "email": aux.email,
        "name": aux.name,
        "phone": aux.phone,
        "createdAt": _iso(aux.created_at),
    }


def supplier_to_dict(s: Supplier, include_emails: bool = True) -> dict:
    d = {
        "id": s.id,
        "supplierId": s.supplier_id,
        "name": s.name,
        "type": s.type,
        "status": s.status,
        "contactPerson": s.contact_person,
        "email": s.email,
        "phone": s.phone,
        "website": s.website,
        "address": s.address,
        "city": s.city,
        "state": s.state,
        "zipCode": s.zip_code,
        "country": s.country,
        "rating": _num(s.rating),
        "deliveryRating": _num(s.delivery_rating),
        "qualityRating": _num(s.quality_rating),
        "avgDeliveryTime": s.avg_delivery_time,
        "paymentTerms": s.payment_terms,
        "taxId": s.tax_id,
        "certifications": s.certifications or [],
        "specialties": s.specialties or [],
        "notes": s.notes,
        "createdAt": _iso(s.created_at),
        "updatedAt": _iso(s.updated_at),
    }
    if include_emails:
        d["auxiliaryEmails"] = [aux_email_to_dict(a) for a in s.auxiliary_emails]
    return d


# ── Fleet ─────────────────────────────────────────────────────────────


def vehicle_to_dict(v: Vehicle) -> dict:
    return {
        "id": v.id,
        "vehicleId": v.vehicle_id,
        "serialNumber": v.serial_number,
        "make": v.make,
        "model": v.model,
        "year": v.year,
        "type": v.type,
        "industryCategory": v.industry_category,
        "status": v.status,
        "currentLocation": v.current_location,
        "operatingHours": v.operating_hours,
        "healthScore": v.health_score,
        "engineModel": v.engine_model,
        "specifications": v.specifications,
        "createdAt": _iso(v.created_at),
        "updatedAt": _iso(v.updated_at),
    }


def part_to_dict(p: Part) -> dict:
    return {
        "id": p.id,
        "partNumber": p.part_number,
        "description": p.description,
        "category": p.category,
        "supplierPartNumber": p.supplier_part_number,
        "supersededBy": p.superseded_by,
        "supersedes": p.supersedes,
        "supersessionDate": _iso(p.supersession_date),
        "supersessionNotes": p.supersession_notes,
        "stockQuantity": p.stock_quantity,
        "minStockLevel": p.min_stock_level,
        "price": _num(p.price),
        "cost": _num(p.cost),
    }


def maintenance_to_dict(m: MaintenanceRecord) -> dict:
    return {
        "id": m.id,
        "maintenanceId": m.maintenance_id,
        "vehicleId": m.vehicle_id,
        "vehicle": {
            "id": m.vehicle.id,
            "vehicleId": m.vehicle.vehicle_id,
            "make": m.vehicle.make,
            "model": m.vehicle.model,
        }
        if m.vehicle
        else None,
        "type": m.type,
        "status": m.status,
        "priority": m.priority,
        "scheduledDate": _iso(m.scheduled_date),
        "completedDate": _iso(m.completed_date),
        "estimatedHours": _num(m.estimated_hours),
        "actualHours": _num(m.actual_hours),
        "estimatedCost": _num(m.estimated_cost),
        "actualCost": _num(m.actual_cost),
        "laborCost": _num(m.labor_cost),
        "partsCost": _num(m.parts_cost),
        "description": m.description,
        "workPerformed": m.work_performed,
        "notes": m.notes,
        "location": m.location,
        "assignedTechnician": m.assigned_technician,
        "technicianNotes": m.technician_notes,
        "parts": [
            {
                "id": mp.id,
                "partId": mp.part_id,
                "partNumber": mp.part.part_number if mp.part else None,
                "quantityUsed": mp.quantity_used,
                "unitCost": _num(mp.unit_cost),
                "totalCost": _num(mp.total_cost),
            }
            for mp in m.parts
        ],
        "createdAt": _iso(m.created_at),
    }


# ── Quote Requests ────────────────────────────────────────────────────


def quote_item_to_dict(item: QuoteRequestItem) -> dict:
    return {
        "id": item.id,
        "quoteRequestId": item.quote_request_id,
        "supplierId": item.supplier_id,
        "partId": item.part_id,
        "partNumber": item.part_number,
        "description": item.description,
        "quantity": item.quantity,
        "unitPrice": _num(item.unit_price),
        "totalPrice": _num(item.total_price),
        "supplierPartNumber": item.supplier_part_number,
        "leadTime": item.lead_time,
        "availability": item.availability,
        "estimatedDeliveryDays": item.estimated_delivery_days,
        "suggestedFulfillmentMethod": item.suggested_fulfillment_method,
        "isSuperseded": bool(item.is_superseded),
        "originalPartNumber": item.original_part_number,
        "supersessionNotes": item.supersession_notes,
        "isAlternative": bool(item.is_alternative),
        "alternativeReason": item.alternative_reason,
        "supplierNotes": item.supplier_notes,
    }


def email_link_to_dict(link: QuoteRequestEmailThread) -> dict:
    return {
        "id": link.id,
        "emailThreadId": link.email_thread_id,
        "supplierId": link.supplier_id,
        "isPrimary": bool(link.is_primary),
        "status": link.status,
        "responseDate": _iso(link.response_date),
        "createdAt": _iso(link.created_at),
    }


def quote_request_to_dict(qr: QuoteRequest, detail: bool = True) -> dict:
    d = {
        "id": qr.id,
        "quoteNumber": qr.quote_number,
        "title": qr.title,
        "description": qr.description,
        "notes": qr.notes,
        "status": qr.status,
        "requestDate": _iso(qr.request_date),
        "expiryDate": _iso(qr.expiry_date),
        "totalAmount": _num(qr.total_amount) or 0,
        "suggestedFulfillmentMethod": qr.suggested_fulfillment_method,
        "supplierId": qr.supplier_id,
        "selectedSupplierId": qr.selected_supplier_id,
        "vehicleId": qr.vehicle_id,
        "additionalSupplierIds": parse_supplier_ids(qr.additional_supplier_ids),
        "createdById": qr.created_by_id,
        "createdAt": _iso(qr.created_at),
        "updatedAt": _iso(qr.updated_at),
        "supplier": supplier_to_dict(qr.supplier, include_emails=False) if qr.supplier else None,
    }
    if detail:
        d["vehicle"] = vehicle_to_dict(qr.vehicle) if qr.vehicle else None
        d["items"] = [quote_item_to_dict(i) for i in qr.items]
        d["emailThreads"] = [email_link_to_dict(link) for link in qr.email_links]
    return d


# ── Email ─────────────────────────────────────────────────────────────


def message_to_dict(m: EmailMessage) -> dict:
    return {
        "id": m.id,
        "threadId": m.thread_id,
        "direction": m.direction,
        "from": m.from_email,
        "to": m.to_email,
        "cc": m.cc or [],
        "bcc": m.bcc or [],
        "subject": m.subject,
        "body": m.body,
        "bodyHtml": m.body_html,
        "sentAt": _iso(m.sent_at),
        "receivedAt": _iso(m.received_at),
        "externalMessageId": m.external_message_id,
        "inReplyTo": m.in_reply_to,
        "followUpSentAt": _iso(m.follow_up_sent_at),
        "followUpReason": m.follow_up_reason,
        "createdAt": _iso(m.created_at),
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


def thread_to_dict(t: EmailThread, include_messages: bool = True) -> dict:
    d = {
        "id": t.id,
        "supplierId": t.supplier_id,
        "quoteRequestId": t.quote_request_id,
        "subject": t.subject,
        "status": t.status,
        "externalThreadId": t.external_thread_id,
        "createdAt": _iso(t.created_at),
        "updatedAt": _iso(t.updated_at),
    }
    if include_messages:
        d["messages"] = [message_to_dict(m) for m in t.messages]
    return d


# ── Orders ────────────────────────────────────────────────────────────


def order_item_to_dict(item: OrderItem) -> dict:
    return {
        "id": item.id,
        "partId": item.part_id,
        "partNumber": item.part_number,
        "description": item.description,
        "quantity": item.quantity,
        "unitPrice": _num(item.unit_price),
        "totalPrice": _num(item.total_price),
        "availability": item.availability,
        "fulfillmentMethod": item.fulfillment_method,
        "expectedDelivery": _iso(item.expected_delivery),
        "trackingNumber": item.tracking_number,
        "supplierNotes": item.supplier_notes,
    }


def order_to_dict(o: Order, include_items: bool = True) -> dict:
    d = {
        "id": o.id,
        "orderNumber": o.order_number,
        "supplierId": o.supplier_id,
        "supplier": {"id": o.supplier.id, "name": o.supplier.name, "email": o.supplier.email}
        if o.supplier
        else None,
        "vehicleId": o.vehicle_id,
        "emailThreadId": o.email_thread_id,
        "quoteRequestId": o.quote_request_id,
        "status": o.status,
        "priority": o.priority,
        "orderDate": _iso(o.order_date),
        "expectedDelivery": _iso(o.expected_delivery),
        "actualDelivery": _iso(o.actual_delivery),
        "subtotal": _num(o.subtotal),
        "tax": _num(o.tax),
        "shipping": _num(o.shipping),
        "total": _num(o.total),
        "trackingNumber": o.tracking_number,
        "shippingCarrier": o.shipping_carrier,
        "shippingMethod": o.shipping_method,
        "shippingAddress": o.shipping_address,
        "notes": o.notes,
        "quoteReference": o.quote_reference,
        "fulfillmentMethod": o.fulfillment_method,
        "partialFulfillment": bool(o.partial_fulfillment),
        "pickupLocation": o.pickup_location,
        "pickupDate": _iso(o.pickup_date),
        "createdAt": _iso(o.created_at),
    }
    if include_items:
        d["items"] = [order_item_to_dict(i) for i in o.items]
    return d


def orphan_to_dict(t: EmailThread) -> dict:
    """Orphaned-thread row: the first message's envelope plus the supplier."""
    first = t.messages[0] if t.messages else None
    return {
        "id": t.id,
        "subject": t.subject or (first.subject if first else None),
        "from": first.from_email if first else None,
        "to": first.to_email if first else None,
        "body": first.body if first else None,
        "bodyHtml": first.body_html if first else None,
        "receivedAt": _iso((first.received_at or first.created_at) if first else t.created_at),
        "externalThreadId": t.external_thread_id,
        "status": t.status,
        "supplier": supplier_to_dict(t.supplier) if t.supplier else None,
        "messages": [message_to_dict(m) for m in t.messages],
    }


# ── Activity & Support ────────────────────────────────────────────────


def activity_to_dict(a: ActivityLog) -> dict:
    return {
        "id": a.id,
        "type": a.type,
        "title": a.title,
        "description": a.description,
        "entityType": a.entity_type,
        "entityId": a.entity_id,
        "metadata": a.details,
        "userId": a.user_id,
        "createdAt": _iso(a.created_at),
    }


def chat_message_to_dict(m: ChatMessage) -> dict:
    return {
        "id": m.id,
        "conversationId": m.conversation_id,
        "role": m.role,
        "content": m.content,
        "context": m.context,
        "createdAt": _iso(m.created_at),
    }


def conversation_to_dict(c: Conversation) -> dict:
    return {
        "id": c.id,
        "title": c.title,
        "context": c.context,
        "userId": c.user_id,
        "createdAt": _iso(c.created_at),
        "updatedAt": _iso(c.updated_at),
    }
