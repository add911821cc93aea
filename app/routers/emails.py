"""
routers/emails.py — Email Reconciliation Routes

Inbound mail ingest, the orphaned-email inbox, candidate matching,
assignment with merge-on-conflict, manual thread status changes and message
parsing.

Business Rules:
- Assign and merge need ADMIN or MANAGER
- Assigning onto a quote request that already has a thread for the supplier
  returns 409 with details.targetThreadId; the client then offers a merge
- Merge is irreversible: the source thread is deleted

Called by: main.py (router mount)
Depends on: services/email_reconciliation.py, serializers, schemas/emails.py
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import AuthContext, require_manager, require_reader
from ..schemas.emails import AssignThreadRequest, InboundEmail, MergeThreadsRequest, ThreadStatusUpdate
from ..serializers import orphan_to_dict, quote_request_to_dict, thread_to_dict
from ..services import email_reconciliation as svc

router = APIRouter(tags=["emails"])


@router.post("/api/emails/inbound", status_code=201)
async def ingest_inbound(
    body: InboundEmail,
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    thread = svc.ingest_inbound(db, ctx, body)
    return {"data": thread_to_dict(thread)}


@router.get("/api/emails/orphaned")
async def list_orphaned(
    search: str | None = None,
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    return {"data": [orphan_to_dict(t) for t in svc.list_orphaned(db, ctx, search)]}


@router.get("/api/emails/orphaned/{thread_id}/candidates")
async def candidate_quote_requests(
    thread_id: int,
    search: str | None = None,
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    rows = svc.candidate_quote_requests(db, ctx, thread_id, search)
    return {"data": [quote_request_to_dict(qr, detail=False) for qr in rows]}


@router.post("/api/emails/orphaned/assign")
async def assign_thread(
    body: AssignThreadRequest,
    ctx: AuthContext = Depends(require_manager),
    db: Session = Depends(get_db),
):
    thread = svc.assign_thread(db, ctx, body.thread_id, body.quote_request_id)
    return {"data": thread_to_dict(thread)}


@router.post("/api/emails/merge")
async def merge_threads(
    body: MergeThreadsRequest,
    ctx: AuthContext = Depends(require_manager),
    db: Session = Depends(get_db),
):
    target = svc.merge_threads(db, ctx, body.source_thread_id, body.target_thread_id)
    return {"data": thread_to_dict(target)}


@router.post("/api/emails/messages/{message_id}/parse")
async def parse_message(
    message_id: int,
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    return {"data": await svc.parse_message(db, ctx, message_id)}


@router.patch("/api/email-threads/{thread_id}/status")
async def update_thread_status(
    thread_id: int,
    body: ThreadStatusUpdate,
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    thread = svc.update_thread_status(db, ctx, thread_id, body.status)
    return {
        "success": True,
        "message": "Email thread status updated successfully",
        "data": thread_to_dict(thread, include_messages=False),
    }
