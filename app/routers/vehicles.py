"""
routers/vehicles.py — Fleet Vehicle Routes

Business Rules:
- vehicleId is unique per organization
- Create/update/delete need ADMIN or MANAGER
- A vehicle with maintenance records or orders cannot be deleted

Called by: main.py (router mount)
Depends on: models, dependencies, serializers, schemas/fleet.py
"""

from fastapi import APIRouter, Depends, Query
from loguru import logger
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import AuthContext, get_owned, paginate, require_manager, require_reader
from ..errors import ValidationFailed
from ..models import MaintenanceRecord, Order, Vehicle
from ..models.enums import ActivityType
from ..schemas.fleet import VehicleCreate, VehicleUpdate
from ..serializers import maintenance_to_dict, vehicle_to_dict
from ..services.activity_service import log_activity

router = APIRouter(tags=["vehicles"])

_ENUM_FIELDS = ("type", "industry_category", "status")


def _ensure_unique_vehicle_id(db: Session, ctx: AuthContext, code: str, exclude_id: int | None = None):
    query = db.query(Vehicle.id).filter(
        Vehicle.organization_id == ctx.organization_id, Vehicle.vehicle_id == code
    )
    if exclude_id is not None:
        query = query.filter(Vehicle.id != exclude_id)
    if query.first():
        raise ValidationFailed("Vehicle ID already exists", details={"vehicleId": code})


@router.get("/api/vehicles")
async def list_vehicles(
    search: str | None = None,
    type: str | None = None,
    status: str | None = None,
    make: str | None = None,
    industry_category: str | None = Query(None, alias="industryCategory"),
    year: int | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    query = db.query(Vehicle).filter(Vehicle.organization_id == ctx.organization_id)
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        query = query.filter(
            or_(
                Vehicle.vehicle_id.ilike(pattern),
                Vehicle.serial_number.ilike(pattern),
                Vehicle.make.ilike(pattern),
                Vehicle.model.ilike(pattern),
            )
        )
    if type:
        query = query.filter(Vehicle.type == type.upper())
    if status:
        query = query.filter(Vehicle.status == status.upper())
    if make:
        query = query.filter(Vehicle.make.ilike(f"%{make.strip()}%"))
    if industry_category:
        query = query.filter(Vehicle.industry_category == industry_category.upper())
    if year:
        query = query.filter(Vehicle.year == year)

    rows, meta = paginate(query.order_by(Vehicle.created_at.desc(), Vehicle.id.desc()), page, limit)
    return {"data": [vehicle_to_dict(v) for v in rows], "meta": meta}


@router.post("/api/vehicles", status_code=201)
async def create_vehicle(
    body: VehicleCreate,
    ctx: AuthContext = Depends(require_manager),
    db: Session = Depends(get_db),
):
    _ensure_unique_vehicle_id(db, ctx, body.vehicle_id)
    fields = body.model_dump()
    for field in _ENUM_FIELDS:
        fields[field] = fields[field].value
    vehicle = Vehicle(organization_id=ctx.organization_id, owner_id=ctx.user_id, **fields)
    db.add(vehicle)
    db.flush()
    log_activity(
        db,
        ctx,
        ActivityType.VEHICLE_ADDED,
        "New vehicle added",
        f"{vehicle.year} {vehicle.make} {vehicle.model} ({vehicle.vehicle_id}) was added to the fleet",
        entity_type="Vehicle",
        entity_id=vehicle.id,
        metadata={"vehicleId": vehicle.vehicle_id},
    )
    db.commit()
    logger.info(f"Vehicle {vehicle.vehicle_id} created in org {ctx.organization_id}")
    return {"data": vehicle_to_dict(vehicle)}


@router.get("/api/vehicles/{vehicle_id}")
async def get_vehicle(
    vehicle_id: int,
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    vehicle = get_owned(db, Vehicle, vehicle_id, ctx, "Vehicle")
    data = vehicle_to_dict(vehicle)
    data["maintenanceRecords"] = [maintenance_to_dict(m) for m in vehicle.maintenance_records]
    return {"data": data}


@router.patch("/api/vehicles/{vehicle_id}")
async def update_vehicle(
    vehicle_id: int,
    body: VehicleUpdate,
    ctx: AuthContext = Depends(require_manager),
    db: Session = Depends(get_db),
):
    vehicle = get_owned(db, Vehicle, vehicle_id, ctx, "Vehicle")
    changes = body.model_dump(exclude_unset=True)
    if changes.get("vehicle_id") and changes["vehicle_id"] != vehicle.vehicle_id:
        _ensure_unique_vehicle_id(db, ctx, changes["vehicle_id"], exclude_id=vehicle.id)
    for field, value in changes.items():
        if field in _ENUM_FIELDS and value is not None:
            value = value.value
        setattr(vehicle, field, value)

    log_activity(
        db,
        ctx,
        ActivityType.VEHICLE_UPDATED,
        "Vehicle updated",
        f"{vehicle.vehicle_id} was updated",
        entity_type="Vehicle",
        entity_id=vehicle.id,
        metadata={"fields": sorted(changes)},
    )
    db.commit()
    return {"data": vehicle_to_dict(vehicle)}


@router.delete("/api/vehicles/{vehicle_id}")
async def delete_vehicle(
    vehicle_id: int,
    ctx: AuthContext = Depends(require_manager),
    db: Session = Depends(get_db),
):
    vehicle = get_owned(db, Vehicle, vehicle_id, ctx, "Vehicle")
    records = (
        db.query(func.count(MaintenanceRecord.id))
        .filter(MaintenanceRecord.vehicle_id == vehicle.id)
        .scalar()
    )
    orders = db.query(func.count(Order.id)).filter(Order.vehicle_id == vehicle.id).scalar()
    if records or orders:
        raise ValidationFailed(
            "Cannot delete vehicle with related records",
            details={"maintenanceRecords": records, "orders": orders},
        )

    label = vehicle.vehicle_id
    db.delete(vehicle)
    log_activity(
        db,
        ctx,
        ActivityType.VEHICLE_DELETED,
        "Vehicle deleted",
        f"{label} was removed from the fleet",
        entity_type="Vehicle",
        entity_id=vehicle_id,
    )
    db.commit()
    return {"success": True}
