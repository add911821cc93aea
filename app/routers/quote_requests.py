"""
routers/quote_requests.py — Quote Request Routes

CRUD for quote requests and their items, manual and repair linking of supplier
email threads, plus the workflow-backed actions: fan-out send, price refresh,
follow-up email and conversion to an order.

Business Rules:
- Every lookup is scoped to the caller's organization (cross-tenant → 404)
- Send and price refresh are rate limited (each call hits the workflow service)
- Send never fails because one supplier failed; see data.errors
- Item add/update/delete return the recomputed totalAmount
- Delete and convert need ADMIN or MANAGER

Called by: main.py (router mount)
Depends on: services/quote_requests.py, serializers, schemas/quote_requests.py
"""

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import AuthContext, require_manager, require_reader
from ..rate_limit import WORKFLOW_LIMIT, limiter
from ..schemas.quote_requests import (
    ConvertToOrderRequest,
    FollowUpRequest,
    LinkEmailThreadRequest,
    PriceRefreshRequest,
    QuoteItemIn,
    QuoteItemUpdate,
    QuoteRequestCreate,
    QuoteRequestUpdate,
    SyncThreadsRequest,
)
from ..serializers import email_link_to_dict, order_to_dict, quote_item_to_dict, quote_request_to_dict
from ..services import quote_requests as svc

router = APIRouter(tags=["quote-requests"])


@router.get("/api/quote-requests")
async def list_quote_requests(
    status: str | None = None,
    supplier_id: int | None = Query(None, alias="supplierId"),
    search: str | None = None,
    include_with_email_thread: bool = Query(True, alias="includeWithEmailThread"),
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    rows = svc.list_quote_requests(
        db,
        ctx,
        status=status,
        supplier_id=supplier_id,
        search=search,
        include_with_email_thread=include_with_email_thread,
    )
    return {"data": [quote_request_to_dict(qr, detail=False) for qr in rows]}


@router.post("/api/quote-requests", status_code=201)
async def create_quote_request(
    body: QuoteRequestCreate,
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    qr = svc.create_quote_request(db, ctx, body)
    return {"data": quote_request_to_dict(qr)}


@router.get("/api/quote-requests/{qr_id}")
async def get_quote_request(
    qr_id: int,
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    return {"data": quote_request_to_dict(svc.get_quote_request(db, ctx, qr_id))}


@router.put("/api/quote-requests/{qr_id}")
async def replace_quote_request(
    qr_id: int,
    body: QuoteRequestUpdate,
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    qr = svc.update_quote_request(db, ctx, qr_id, body, replace_items=True)
    return {"data": quote_request_to_dict(qr)}


@router.patch("/api/quote-requests/{qr_id}")
async def patch_quote_request(
    qr_id: int,
    body: QuoteRequestUpdate,
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    qr = svc.update_quote_request(db, ctx, qr_id, body, replace_items=False)
    return {"data": quote_request_to_dict(qr)}


@router.delete("/api/quote-requests/{qr_id}")
async def delete_quote_request(
    qr_id: int,
    ctx: AuthContext = Depends(require_manager),
    db: Session = Depends(get_db),
):
    svc.delete_quote_request(db, ctx, qr_id)
    return {"success": True}


# ── Items ─────────────────────────────────────────────────────────────


@router.post("/api/quote-requests/{qr_id}/items", status_code=201)
async def add_item(
    qr_id: int,
    body: QuoteItemIn,
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    item = svc.add_item(db, ctx, qr_id, body)
    return {"data": quote_item_to_dict(item), "totalAmount": float(item.quote_request.total_amount)}


@router.put("/api/quote-requests/{qr_id}/items/{item_id}")
async def update_item(
    qr_id: int,
    item_id: int,
    body: QuoteItemUpdate,
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    item = svc.update_item(db, ctx, qr_id, item_id, body)
    return {"data": quote_item_to_dict(item), "totalAmount": float(item.quote_request.total_amount)}


@router.delete("/api/quote-requests/{qr_id}/items/{item_id}")
async def delete_item(
    qr_id: int,
    item_id: int,
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    qr = svc.delete_item(db, ctx, qr_id, item_id)
    return {"success": True, "totalAmount": float(qr.total_amount)}


# ── Thread links ──────────────────────────────────────────────────────


@router.post("/api/quote-requests/{qr_id}/link-email-thread", status_code=201)
async def link_email_thread(
    qr_id: int,
    body: LinkEmailThreadRequest,
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    link = svc.link_email_thread(db, ctx, qr_id, body)
    return {"data": email_link_to_dict(link)}


@router.post("/api/quote-requests/{qr_id}/sync-threads")
async def sync_threads(
    qr_id: int,
    body: SyncThreadsRequest | None = None,
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    result = svc.sync_threads(db, ctx, qr_id, force_resync=bool(body and body.force_resync))
    return {"success": True, **result}


@router.post("/api/quote-requests/{qr_id}/update-thread-statuses")
async def update_thread_statuses(
    qr_id: int,
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    updated = svc.update_thread_statuses(db, ctx, qr_id)
    return {"success": True, "updated": updated, "message": f"Updated {updated} thread status(es)"}


# ── Workflow actions ──────────────────────────────────────────────────


@router.post("/api/quote-requests/{qr_id}/send")
@limiter.limit(WORKFLOW_LIMIT)
async def send_quote_request(
    request: Request,
    qr_id: int,
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    results = await svc.send_quote_request(db, ctx, qr_id)
    return {"success": results["totalSent"] > 0, "data": results}


@router.post("/api/quote-requests/{qr_id}/prices")
@limiter.limit(WORKFLOW_LIMIT)
async def refresh_prices(
    request: Request,
    qr_id: int,
    body: PriceRefreshRequest | None = None,
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    supplier_id = body.supplier_id if body else None
    result = await svc.refresh_prices(db, ctx, qr_id, supplier_id=supplier_id)
    response = {
        "success": True,
        "message": result["message"],
        "data": quote_request_to_dict(result["quote_request"]),
    }
    if result.get("textOutput") is not None:
        response["textOutput"] = result["textOutput"]
    return response


@router.post("/api/quote-requests/{qr_id}/follow-up")
async def send_follow_up(
    qr_id: int,
    body: FollowUpRequest,
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    result = await svc.send_follow_up(db, ctx, qr_id, body)
    return {"data": result["emailContent"], "messageId": result["messageId"]}


@router.post("/api/quote-requests/{qr_id}/convert-to-order", status_code=201)
async def convert_to_order(
    qr_id: int,
    body: ConvertToOrderRequest,
    ctx: AuthContext = Depends(require_manager),
    db: Session = Depends(get_db),
):
    order, warnings = await svc.convert_to_order(db, ctx, qr_id, body)
    return {"data": order_to_dict(order), "warnings": warnings}
