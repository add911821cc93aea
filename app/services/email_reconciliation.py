"""
email_reconciliation.py — Orphaned email matching, assignment and thread merge

An "orphaned" thread knows its supplier but no quote request has claimed it
yet. Users pick a candidate quote request of the same supplier and assign
the thread; when the quote request already has a thread for that supplier
the assignment is refused and the caller must merge instead.

Business Rules:
- Sender matching is case-insensitive over primary + auxiliary emails
- Candidates are quote requests of the thread's supplier only
- Assignment never overwrites an existing thread link (409 → merge)
- Merge moves every message, deletes the source thread, and is irreversible
- Unknown sender addresses are learned as auxiliary emails on assignment

Called by: routers/emails.py
Depends on: models, services/workflow_client.py, services/activity_service.py
"""

import logging

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.database import utcnow
from app.dependencies import AuthContext, get_owned
from app.errors import ConflictRequiresMerge, ExternalServiceFailure, NotFound, ValidationFailed
from app.models import (
    AuxiliaryEmail,
    EmailAttachment,
    EmailMessage,
    EmailThread,
    Order,
    QuoteRequest,
    QuoteRequestEmailThread,
    Supplier,
)
from app.models.enums import (
    ActivityType,
    EmailDirection,
    EmailThreadStatus,
    QuoteThreadStatus,
)
from app.services import workflow_client
from app.services.activity_service import log_activity
from app.services.quote_requests import parse_supplier_ids
from app.services.workflow_client import WorkflowError

log = logging.getLogger("fleet.emails")


def _escape_like(text: str) -> str:
    return text.strip().replace("%", r"\%").replace("_", r"\_")


def find_supplier_by_email(db: Session, ctx: AuthContext, address: str) -> Supplier | None:
    """Match an address to a supplier by primary or auxiliary email."""
    address = (address or "").strip().lower()
    if not address:
        return None
    return (
        db.query(Supplier)
        .filter(
            Supplier.organization_id == ctx.organization_id,
            or_(
                func.lower(Supplier.email) == address,
                Supplier.auxiliary_emails.any(func.lower(AuxiliaryEmail.email) == address),
            ),
        )
        .order_by(Supplier.id)
        .first()
    )


def _find_existing_thread(db: Session, ctx: AuthContext, payload) -> EmailThread | None:
    if payload.external_thread_id:
        thread = (
            db.query(EmailThread)
            .filter(
                EmailThread.organization_id == ctx.organization_id,
                EmailThread.external_thread_id == payload.external_thread_id,
            )
            .first()
        )
        if thread:
            return thread
    if payload.in_reply_to:
        return (
            db.query(EmailThread)
            .join(EmailMessage, EmailMessage.thread_id == EmailThread.id)
            .filter(
                EmailThread.organization_id == ctx.organization_id,
                EmailMessage.external_message_id == payload.in_reply_to,
            )
            .first()
        )
    return None


# ── Inbound ───────────────────────────────────────────────────────────


def ingest_inbound(db: Session, ctx: AuthContext, payload) -> EmailThread:
    """Record an inbound email on its thread, creating an orphaned thread if needed."""
    supplier = find_supplier_by_email(db, ctx, payload.sender)
    thread = _find_existing_thread(db, ctx, payload)
    if thread is None:
        thread = EmailThread(
            organization_id=ctx.organization_id,
            supplier_id=supplier.id if supplier else None,
            subject=payload.subject,
            external_thread_id=payload.external_thread_id,
        )
        db.add(thread)
    elif thread.supplier_id is None and supplier is not None:
        thread.supplier_id = supplier.id

    message = EmailMessage(
        direction=EmailDirection.INBOUND.value,
        from_email=payload.sender,
        to_email=payload.to,
        cc=payload.cc,
        bcc=payload.bcc,
        subject=payload.subject,
        body=payload.body,
        body_html=payload.body_html,
        received_at=payload.received_at or utcnow(),
        external_message_id=payload.external_message_id,
        in_reply_to=payload.in_reply_to,
    )
    for att in payload.attachments:
        message.attachments.append(
            EmailAttachment(
                filename=att.filename,
                content_type=att.content_type,
                size=att.size,
                extracted_text=att.extracted_text,
            )
        )
    thread.messages.append(message)
    thread.status = EmailThreadStatus.RESPONSE_RECEIVED.value

    for link in thread.quote_links:
        if link.status == QuoteThreadStatus.SENT.value:
            link.status = QuoteThreadStatus.RESPONDED.value
            link.response_date = message.received_at

    db.commit()
    if supplier is None:
        log.warning(f"Inbound email from unknown sender {payload.sender} stored on thread {thread.id}")
    else:
        log.info(f"Inbound email from supplier {supplier.id} stored on thread {thread.id}")
    return thread


# ── Orphans & candidates ──────────────────────────────────────────────


def list_orphaned(db: Session, ctx: AuthContext, search: str | None = None) -> list[EmailThread]:
    query = db.query(EmailThread).filter(
        EmailThread.organization_id == ctx.organization_id,
        EmailThread.supplier_id.isnot(None),
        EmailThread.quote_request_id.is_(None),
        ~EmailThread.quote_links.any(),
    )
    if search and search.strip():
        pattern = f"%{_escape_like(search)}%"
        query = query.filter(
            or_(
                EmailThread.subject.ilike(pattern),
                EmailThread.messages.any(EmailMessage.from_email.ilike(pattern)),
            )
        )
    return query.order_by(EmailThread.created_at.desc(), EmailThread.id.desc()).all()


def _supplier_on_quote(qr: QuoteRequest, supplier_id: int) -> bool:
    if qr.supplier_id == supplier_id:
        return True
    if str(supplier_id) in parse_supplier_ids(qr.additional_supplier_ids):
        return True
    return any(link.supplier_id == supplier_id for link in qr.email_links)


def candidate_quote_requests(
    db: Session, ctx: AuthContext, thread_id: int, search: str | None = None
) -> list[QuoteRequest]:
    """Quote requests the orphaned thread may be assigned to (same supplier only)."""
    thread = get_owned(db, EmailThread, thread_id, ctx, "Email thread")
    if thread.supplier_id is None:
        return []

    query = db.query(QuoteRequest).filter(QuoteRequest.organization_id == ctx.organization_id)
    if search and search.strip():
        pattern = f"%{_escape_like(search)}%"
        query = query.filter(
            or_(QuoteRequest.quote_number.ilike(pattern), QuoteRequest.title.ilike(pattern))
        )
    rows = query.order_by(QuoteRequest.created_at.desc(), QuoteRequest.id.desc()).all()
    return [qr for qr in rows if _supplier_on_quote(qr, thread.supplier_id)]


# ── Assign ────────────────────────────────────────────────────────────


def _existing_thread_for(db: Session, qr: QuoteRequest, supplier_id: int, exclude_id: int) -> int | None:
    for link in qr.email_links:
        if link.supplier_id == supplier_id and link.email_thread_id != exclude_id:
            return link.email_thread_id
    direct = (
        db.query(EmailThread.id)
        .filter(
            EmailThread.quote_request_id == qr.id,
            EmailThread.supplier_id == supplier_id,
            EmailThread.id != exclude_id,
        )
        .first()
    )
    return direct[0] if direct else None


def _learn_sender(db: Session, thread: EmailThread) -> str | None:
    supplier = thread.supplier
    inbound = next(
        (m for m in thread.messages if m.direction == EmailDirection.INBOUND.value and m.from_email),
        None,
    )
    if supplier is None or inbound is None:
        return None
    sender = inbound.from_email.strip().lower()
    if sender in supplier.known_emails():
        return None
    supplier.auxiliary_emails.append(AuxiliaryEmail(email=sender))
    log.info(f"Learned auxiliary email {sender} for supplier {supplier.id}")
    return sender


def assign_thread(db: Session, ctx: AuthContext, thread_id: int, quote_request_id: int) -> EmailThread:
    thread = get_owned(db, EmailThread, thread_id, ctx, "Email thread")
    qr = get_owned(db, QuoteRequest, quote_request_id, ctx, "Quote request")

    if thread.quote_request_id and thread.quote_request_id != qr.id:
        raise ValidationFailed("Email thread is already assigned to another quote request")
    if thread.supplier_id is None:
        raise ValidationFailed("Email thread is not linked to a supplier")
    if not _supplier_on_quote(qr, thread.supplier_id):
        raise ValidationFailed("Quote request is not associated with this email's supplier")

    existing = _existing_thread_for(db, qr, thread.supplier_id, exclude_id=thread.id)
    if existing is not None:
        log.info(f"Assign of thread {thread.id} to QR {qr.id} conflicts with thread {existing}")
        raise ConflictRequiresMerge(target_thread_id=existing, source_thread_id=thread.id)

    thread.quote_request = qr
    if not any(link.supplier_id == thread.supplier_id for link in qr.email_links):
        qr.email_links.append(
            QuoteRequestEmailThread(
                email_thread=thread,
                supplier_id=thread.supplier_id,
                is_primary=qr.supplier_id == thread.supplier_id,
                status=QuoteThreadStatus.RESPONDED.value,
            )
        )
    learned = _learn_sender(db, thread)

    log_activity(
        db,
        ctx,
        ActivityType.EMAIL_ASSIGNED,
        "Email assigned to quote request",
        f"Email thread \"{thread.subject or thread.id}\" assigned to {qr.quote_number}",
        entity_type="QuoteRequest",
        entity_id=qr.id,
        metadata={"threadId": thread.id, "supplierId": thread.supplier_id, "learnedEmail": learned},
    )
    db.commit()
    return thread


# ── Merge ─────────────────────────────────────────────────────────────


def merge_threads(db: Session, ctx: AuthContext, source_thread_id: int, target_thread_id: int) -> EmailThread:
    """Move every message of the source thread into the target and delete the source."""
    if source_thread_id == target_thread_id:
        raise ValidationFailed("Source and target threads must be different")
    source = get_owned(db, EmailThread, source_thread_id, ctx, "Source email thread")
    target = get_owned(db, EmailThread, target_thread_id, ctx, "Target email thread")

    moved = 0
    for message in list(source.messages):
        message.thread = target
        moved += 1

    if target.quote_request_id is None and source.quote_request_id is not None:
        target.quote_request = source.quote_request
    if target.supplier_id is None:
        target.supplier_id = source.supplier_id

    linked_quotes = {link.quote_request_id for link in target.quote_links}
    for link in list(source.quote_links):
        if link.quote_request_id in linked_quotes:
            source.quote_links.remove(link)
            db.delete(link)
        else:
            link.email_thread = target
            linked_quotes.add(link.quote_request_id)

    db.query(Order).filter(Order.email_thread_id == source.id).update(
        {Order.email_thread_id: target.id}, synchronize_session=False
    )
    db.flush()
    db.delete(source)

    log_activity(
        db,
        ctx,
        ActivityType.EMAIL_MERGED,
        "Email threads merged",
        f"{moved} message(s) moved from thread {source_thread_id} into thread {target.id}",
        entity_type="EmailThread",
        entity_id=target.id,
        metadata={"sourceThreadId": source_thread_id, "messagesMoved": moved},
    )
    quote = target.quote_request
    db.commit()
    db.refresh(target)
    if quote is not None:
        db.expire(quote, ["threads", "email_links"])
    log.info(f"Merged thread {source_thread_id} into {target.id} ({moved} messages)")
    return target


# ── Status ────────────────────────────────────────────────────────────


def update_thread_status(db: Session, ctx: AuthContext, thread_id: int, status: str) -> EmailThread:
    thread = get_owned(db, EmailThread, thread_id, ctx, "Email thread")
    previous = thread.status
    thread.status = EmailThreadStatus(status).value
    log_activity(
        db,
        ctx,
        ActivityType.SYSTEM_UPDATE,
        "Email thread status updated",
        f"Email thread status changed to {thread.status}",
        entity_type="EmailThread",
        entity_id=thread.id,
        metadata={"previousStatus": previous, "newStatus": thread.status, "threadSubject": thread.subject},
    )
    db.commit()
    return thread


# ── Parse ─────────────────────────────────────────────────────────────


async def parse_message(db: Session, ctx: AuthContext, message_id: int):
    message = (
        db.query(EmailMessage)
        .join(EmailThread, EmailMessage.thread_id == EmailThread.id)
        .filter(EmailMessage.id == message_id, EmailThread.organization_id == ctx.organization_id)
        .first()
    )
    if message is None:
        raise NotFound("Email message not found")

    payload = {
        "messageId": message.id,
        "threadId": message.thread_id,
        "supplierId": message.thread.supplier_id,
        "quoteRequestId": message.thread.quote_request_id,
        "from": message.from_email,
        "to": message.to_email,
        "subject": message.subject,
        "body": message.body,
        "bodyHtml": message.body_html,
        "attachments": [
            {"filename": a.filename, "contentType": a.content_type, "extractedText": a.extracted_text}
            for a in message.attachments
        ],
    }
    try:
        return await workflow_client.parse_email(payload)
    except WorkflowError as e:
        log.error(f"Email parse for message {message.id} failed: {e}")
        raise ExternalServiceFailure("Failed to parse email")
