"""
routers/parts.py — Parts Catalog Routes

Called by: main.py (router mount)
Depends on: models, dependencies, serializers, schemas/fleet.py
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import AuthContext, paginate, require_manager, require_reader
from ..errors import ValidationFailed
from ..models import Part
from ..schemas.fleet import PartCreate
from ..serializers import part_to_dict

router = APIRouter(tags=["parts"])


@router.get("/api/parts")
async def list_parts(
    search: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(25, ge=1, le=100),
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    query = db.query(Part).filter(Part.organization_id == ctx.organization_id)
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        query = query.filter(
            or_(
                Part.part_number.ilike(pattern),
                Part.description.ilike(pattern),
                Part.supplier_part_number.ilike(pattern),
            )
        )
    rows, meta = paginate(query.order_by(Part.part_number), page, limit)
    return {"data": [part_to_dict(p) for p in rows], "meta": meta}


@router.post("/api/parts", status_code=201)
async def create_part(
    body: PartCreate,
    ctx: AuthContext = Depends(require_manager),
    db: Session = Depends(get_db),
):
    taken = (
        db.query(Part.id)
        .filter(Part.organization_id == ctx.organization_id, Part.part_number == body.part_number)
        .first()
    )
    if taken:
        raise ValidationFailed("Part number already exists", details={"partNumber": body.part_number})
    part = Part(organization_id=ctx.organization_id, **body.model_dump())
    db.add(part)
    db.commit()
    return {"data": part_to_dict(part)}
