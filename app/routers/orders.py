"""
routers/orders.py — Order Routes

Orders are created by quote conversion (routers/quote_requests.py); this
router lists them, shows one, syncs tracking updates from supplier mail and
drafts supplier follow-ups.

Called by: main.py (router mount)
Depends on: services/order_tracking.py, serializers, schemas/orders.py
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import AuthContext, get_owned, paginate, require_reader
from ..models import Order
from ..schemas.orders import OrderFollowUpRequest
from ..serializers import order_to_dict, thread_to_dict
from ..services import order_tracking

router = APIRouter(tags=["orders"])


@router.get("/api/orders")
async def list_orders(
    status: str | None = None,
    supplier_id: int | None = Query(None, alias="supplierId"),
    search: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    query = db.query(Order).filter(Order.organization_id == ctx.organization_id)
    if status:
        query = query.filter(Order.status == status.upper())
    if supplier_id:
        query = query.filter(Order.supplier_id == supplier_id)
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        query = query.filter(
            or_(
                Order.order_number.ilike(pattern),
                Order.quote_reference.ilike(pattern),
                Order.tracking_number.ilike(pattern),
            )
        )
    rows, meta = paginate(query.order_by(Order.created_at.desc(), Order.id.desc()), page, limit)
    return {"data": [order_to_dict(o, include_items=False) for o in rows], "meta": meta}


@router.get("/api/orders/{order_id}")
async def get_order(
    order_id: int,
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    order = get_owned(db, Order, order_id, ctx, "Order")
    data = order_to_dict(order)
    data["emailThread"] = thread_to_dict(order.email_thread) if order.email_thread else None
    return {"data": data}


@router.post("/api/orders/{order_id}/sync-updates")
async def sync_updates(
    order_id: int,
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    result = await order_tracking.sync_order_updates(db, ctx, order_id)
    count = result["updateCount"]
    return {
        "success": True,
        "message": f"Successfully synced {count} update(s)",
        "updateCount": count,
        "data": order_to_dict(result["order"]),
        "supplierMessages": result["supplierMessages"],
        "suggestedActions": result["suggestedActions"],
    }


@router.post("/api/orders/{order_id}/follow-up")
async def follow_up(
    order_id: int,
    body: OrderFollowUpRequest,
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    data = await order_tracking.order_follow_up(db, ctx, order_id, body)
    if body.action == "send":
        return {"success": True, "message": "Follow-up email sent successfully", "data": data}
    return {"success": True, "data": data}
