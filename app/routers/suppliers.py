"""
routers/suppliers.py — Supplier & Auxiliary Email Routes

CRUD for suppliers and the extra addresses they send from. Auxiliary
emails are what lets inbound mail from a branch desk or salesperson be
matched to the right supplier.

Business Rules:
- supplierId is unique per organization (400 on duplicate)
- A supplier referenced by orders or quote requests cannot be deleted
- An auxiliary email may not repeat an existing one or the primary email
- Create/update need ADMIN or MANAGER; delete needs ADMIN

Called by: main.py (router mount)
Depends on: models, dependencies, serializers, schemas/suppliers.py
"""

from fastapi import APIRouter, Depends, Query
from loguru import logger
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import (
    AuthContext,
    get_owned,
    paginate,
    require_admin,
    require_manager,
    require_reader,
)
from ..errors import NotFound, ValidationFailed
from ..models import AuxiliaryEmail, Order, QuoteRequest, Supplier
from ..models.enums import ActivityType
from ..schemas.suppliers import (
    AuxiliaryEmailIn,
    AuxiliaryEmailUpdate,
    SupplierCreate,
    SupplierUpdate,
)
from ..serializers import aux_email_to_dict, order_to_dict, supplier_to_dict
from ..services.activity_service import log_activity

router = APIRouter(tags=["suppliers"])

RECENT_ORDERS = 5


def _ensure_unique_code(db: Session, ctx: AuthContext, code: str, exclude_id: int | None = None):
    query = db.query(Supplier.id).filter(
        Supplier.organization_id == ctx.organization_id, Supplier.supplier_id == code
    )
    if exclude_id is not None:
        query = query.filter(Supplier.id != exclude_id)
    if query.first():
        raise ValidationFailed("Supplier ID already exists", details={"supplierId": code})


def _ensure_new_aux_email(supplier: Supplier, email: str, exclude_id: int | None = None):
    if supplier.email and supplier.email.strip().lower() == email:
        raise ValidationFailed("Email is already the supplier's primary email")
    for aux in supplier.auxiliary_emails:
        if aux.id != exclude_id and aux.email.strip().lower() == email:
            raise ValidationFailed("Email already exists for this supplier")


# ── Suppliers ─────────────────────────────────────────────────────────


@router.get("/api/suppliers")
async def list_suppliers(
    search: str | None = None,
    type: str | None = None,
    status: str | None = None,
    name: str | None = None,
    city: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    query = db.query(Supplier).filter(Supplier.organization_id == ctx.organization_id)
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        query = query.filter(
            or_(
                Supplier.name.ilike(pattern),
                Supplier.supplier_id.ilike(pattern),
                Supplier.email.ilike(pattern),
                Supplier.contact_person.ilike(pattern),
            )
        )
    if type:
        query = query.filter(Supplier.type == type.upper())
    if status:
        query = query.filter(Supplier.status == status.upper())
    if name:
        query = query.filter(Supplier.name.ilike(f"%{name.strip()}%"))
    if city:
        query = query.filter(Supplier.city.ilike(f"%{city.strip()}%"))

    rows, meta = paginate(query.order_by(Supplier.name, Supplier.id), page, limit)
    return {"data": [supplier_to_dict(s) for s in rows], "meta": meta}


@router.post("/api/suppliers", status_code=201)
async def create_supplier(
    body: SupplierCreate,
    ctx: AuthContext = Depends(require_manager),
    db: Session = Depends(get_db),
):
    _ensure_unique_code(db, ctx, body.supplier_id)
    fields = body.model_dump(exclude={"auxiliary_emails"})
    fields["type"] = body.type.value
    fields["status"] = body.status.value
    supplier = Supplier(organization_id=ctx.organization_id, **fields)

    seen = {supplier.email} if supplier.email else set()
    for aux in body.auxiliary_emails:
        if aux.email in seen:
            raise ValidationFailed("Duplicate auxiliary email", details={"email": aux.email})
        seen.add(aux.email)
        supplier.auxiliary_emails.append(AuxiliaryEmail(email=aux.email, name=aux.name, phone=aux.phone))

    db.add(supplier)
    db.flush()
    log_activity(
        db,
        ctx,
        ActivityType.SUPPLIER_ADDED,
        "New supplier added",
        f"{supplier.name} was added as a {supplier.type} supplier",
        entity_type="Supplier",
        entity_id=supplier.id,
        metadata={"supplierId": supplier.supplier_id, "supplierName": supplier.name},
    )
    db.commit()
    logger.info(f"Supplier {supplier.supplier_id} created in org {ctx.organization_id}")
    return {"data": supplier_to_dict(supplier)}


@router.get("/api/suppliers/{supplier_id}")
async def get_supplier(
    supplier_id: int,
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    supplier = get_owned(db, Supplier, supplier_id, ctx, "Supplier")
    orders = (
        db.query(Order)
        .filter(Order.supplier_id == supplier.id, Order.organization_id == ctx.organization_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(RECENT_ORDERS)
        .all()
    )
    data = supplier_to_dict(supplier)
    data["orders"] = [order_to_dict(o, include_items=False) for o in orders]
    return {"data": data}


@router.patch("/api/suppliers/{supplier_id}")
async def update_supplier(
    supplier_id: int,
    body: SupplierUpdate,
    ctx: AuthContext = Depends(require_manager),
    db: Session = Depends(get_db),
):
    supplier = get_owned(db, Supplier, supplier_id, ctx, "Supplier")
    changes = body.model_dump(exclude_unset=True)
    if changes.get("supplier_id") and changes["supplier_id"] != supplier.supplier_id:
        _ensure_unique_code(db, ctx, changes["supplier_id"], exclude_id=supplier.id)
    for field, value in changes.items():
        if field in ("type", "status") and value is not None:
            value = value.value
        setattr(supplier, field, value)

    log_activity(
        db,
        ctx,
        ActivityType.SUPPLIER_UPDATED,
        "Supplier updated",
        f"{supplier.name} was updated",
        entity_type="Supplier",
        entity_id=supplier.id,
        metadata={"fields": sorted(changes)},
    )
    db.commit()
    return {"data": supplier_to_dict(supplier)}


@router.delete("/api/suppliers/{supplier_id}")
async def delete_supplier(
    supplier_id: int,
    ctx: AuthContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    supplier = get_owned(db, Supplier, supplier_id, ctx, "Supplier")
    orders = db.query(func.count(Order.id)).filter(Order.supplier_id == supplier.id).scalar()
    quotes = (
        db.query(func.count(QuoteRequest.id))
        .filter(QuoteRequest.supplier_id == supplier.id)
        .scalar()
    )
    if orders or quotes:
        raise ValidationFailed(
            "Cannot delete supplier with related records",
            details={"orders": orders, "quoteRequests": quotes},
        )

    name = supplier.name
    db.delete(supplier)
    log_activity(
        db,
        ctx,
        ActivityType.SUPPLIER_DELETED,
        "Supplier deleted",
        f"{name} was deleted",
        entity_type="Supplier",
        entity_id=supplier_id,
    )
    db.commit()
    return {"success": True}


# ── Auxiliary emails ──────────────────────────────────────────────────


@router.get("/api/suppliers/{supplier_id}/emails")
async def list_aux_emails(
    supplier_id: int,
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    supplier = get_owned(db, Supplier, supplier_id, ctx, "Supplier")
    return {"data": [aux_email_to_dict(a) for a in supplier.auxiliary_emails]}


@router.post("/api/suppliers/{supplier_id}/emails", status_code=201)
async def add_aux_email(
    supplier_id: int,
    body: AuxiliaryEmailIn,
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    supplier = get_owned(db, Supplier, supplier_id, ctx, "Supplier")
    _ensure_new_aux_email(supplier, body.email)
    aux = AuxiliaryEmail(email=body.email, name=body.name, phone=body.phone)
    supplier.auxiliary_emails.append(aux)
    db.commit()
    return {"data": aux_email_to_dict(aux)}


def _owned_aux(db: Session, ctx: AuthContext, supplier_id: int, email_id: int) -> AuxiliaryEmail:
    supplier = get_owned(db, Supplier, supplier_id, ctx, "Supplier")
    aux = next((a for a in supplier.auxiliary_emails if a.id == email_id), None)
    if aux is None:
        raise NotFound("Auxiliary email not found")
    return aux


@router.patch("/api/suppliers/{supplier_id}/emails/{email_id}")
async def update_aux_email(
    supplier_id: int,
    email_id: int,
    body: AuxiliaryEmailUpdate,
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    aux = _owned_aux(db, ctx, supplier_id, email_id)
    changes = body.model_dump(exclude_unset=True)
    if changes.get("email"):
        _ensure_new_aux_email(aux.supplier, changes["email"], exclude_id=aux.id)
    elif "email" in changes:
        raise ValidationFailed("Email is required")
    for field, value in changes.items():
        setattr(aux, field, value)
    db.commit()
    return {"data": aux_email_to_dict(aux)}


@router.delete("/api/suppliers/{supplier_id}/emails/{email_id}")
async def delete_aux_email(
    supplier_id: int,
    email_id: int,
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    aux = _owned_aux(db, ctx, supplier_id, email_id)
    db.delete(aux)
    db.commit()
    return {"success": True}
