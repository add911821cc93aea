"""
routers/maintenance.py — Maintenance Record Routes

Scheduling and tracking of vehicle maintenance with the parts consumed.

Business Rules:
- maintenanceId is MAINT-YYYY-MM-NNN when not supplied, unique per organization
- Vehicle and parts must belong to the caller's organization (400 otherwise)
- Part line total = quantity used × unit cost
- completed_date is stamped on the transition to COMPLETED
- Create/update allow technicians; delete needs ADMIN or MANAGER

Called by: main.py (router mount)
Depends on: models, dependencies, serializers, schemas/fleet.py
"""

from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from loguru import logger
from sqlalchemy.orm import Session

from ..database import get_db, utcnow
from ..dependencies import (
    AuthContext,
    get_owned,
    paginate,
    require_manager,
    require_reader,
    require_technician,
)
from ..errors import ValidationFailed
from ..models import MaintenancePart, MaintenanceRecord, Part, Vehicle
from ..models.enums import ActivityType, MaintenanceStatus
from ..schemas.fleet import MaintenanceCreate, MaintenanceUpdate
from ..serializers import maintenance_to_dict
from ..services.activity_service import log_activity

router = APIRouter(tags=["maintenance"])

_ENUM_FIELDS = ("type", "status", "priority")


def generate_maintenance_id(db: Session, organization_id: int) -> str:
    now = utcnow()
    prefix = f"MAINT-{now:%Y}-{now:%m}-"
    seq = (
        db.query(MaintenanceRecord.id)
        .filter(
            MaintenanceRecord.organization_id == organization_id,
            MaintenanceRecord.maintenance_id.like(f"{prefix}%"),
        )
        .count()
        + 1
    )
    while True:
        candidate = f"{prefix}{seq:03d}"
        if not _maintenance_id_taken(db, organization_id, candidate):
            return candidate
        seq += 1


def _maintenance_id_taken(db: Session, organization_id: int, code: str) -> bool:
    return (
        db.query(MaintenanceRecord.id)
        .filter(
            MaintenanceRecord.organization_id == organization_id,
            MaintenanceRecord.maintenance_id == code,
        )
        .first()
        is not None
    )


def _vehicle_in_org(db: Session, ctx: AuthContext, vehicle_id: int) -> Vehicle:
    vehicle = (
        db.query(Vehicle)
        .filter(Vehicle.id == vehicle_id, Vehicle.organization_id == ctx.organization_id)
        .first()
    )
    if vehicle is None:
        raise ValidationFailed("Vehicle not found in your organization", details={"vehicleId": vehicle_id})
    return vehicle


def _build_part_lines(db: Session, ctx: AuthContext, lines) -> list[MaintenancePart]:
    ids = {line.part_id for line in lines}
    found: set[int] = set()
    if ids:
        rows = db.query(Part.id).filter(Part.id.in_(ids), Part.organization_id == ctx.organization_id)
        found = {row.id for row in rows}
    missing = sorted(ids - found)
    if missing:
        raise ValidationFailed("Parts not found in your organization", details={"partIds": missing})

    rows = []
    for line in lines:
        unit = Decimal(str(line.unit_cost)).quantize(Decimal("0.01"))
        rows.append(
            MaintenancePart(
                part_id=line.part_id,
                quantity_used=line.quantity_used,
                unit_cost=unit,
                total_cost=unit * line.quantity_used,
            )
        )
    return rows


def _log_completed(db: Session, ctx: AuthContext, record: MaintenanceRecord):
    log_activity(
        db,
        ctx,
        ActivityType.MAINTENANCE_COMPLETED,
        "Maintenance completed",
        f"{record.type} maintenance {record.maintenance_id} was completed",
        entity_type="MaintenanceRecord",
        entity_id=record.id,
        metadata={"maintenanceId": record.maintenance_id, "vehicleId": record.vehicle_id},
    )


@router.get("/api/maintenance")
async def list_maintenance(
    vehicle_id: int | None = Query(None, alias="vehicleId"),
    type: str | None = None,
    status: str | None = None,
    priority: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    query = db.query(MaintenanceRecord).filter(
        MaintenanceRecord.organization_id == ctx.organization_id
    )
    if vehicle_id:
        query = query.filter(MaintenanceRecord.vehicle_id == vehicle_id)
    if type:
        query = query.filter(MaintenanceRecord.type == type.upper())
    if status:
        query = query.filter(MaintenanceRecord.status == status.upper())
    if priority:
        query = query.filter(MaintenanceRecord.priority == priority.upper())

    query = query.order_by(MaintenanceRecord.scheduled_date.desc(), MaintenanceRecord.id.desc())
    rows, meta = paginate(query, page, limit)
    return {"data": [maintenance_to_dict(m) for m in rows], "meta": meta}


@router.post("/api/maintenance", status_code=201)
async def create_maintenance(
    body: MaintenanceCreate,
    ctx: AuthContext = Depends(require_technician),
    db: Session = Depends(get_db),
):
    vehicle = _vehicle_in_org(db, ctx, body.vehicle_id)
    code = body.maintenance_id or generate_maintenance_id(db, ctx.organization_id)
    if _maintenance_id_taken(db, ctx.organization_id, code):
        raise ValidationFailed("Maintenance ID already exists", details={"maintenanceId": code})

    fields = body.model_dump(exclude={"parts", "maintenance_id", "vehicle_id"})
    for field in _ENUM_FIELDS:
        fields[field] = fields[field].value
    record = MaintenanceRecord(
        organization_id=ctx.organization_id,
        maintenance_id=code,
        vehicle_id=vehicle.id,
        created_by_id=ctx.user_id,
        **fields,
    )
    if record.status == MaintenanceStatus.COMPLETED.value and not record.completed_date:
        record.completed_date = utcnow()
    record.parts = _build_part_lines(db, ctx, body.parts)
    db.add(record)
    db.flush()

    log_activity(
        db,
        ctx,
        ActivityType.MAINTENANCE_SCHEDULED,
        "Maintenance scheduled",
        f"{record.type} maintenance {code} scheduled for {vehicle.vehicle_id}",
        entity_type="MaintenanceRecord",
        entity_id=record.id,
        metadata={"maintenanceId": code, "vehicleId": vehicle.id, "priority": record.priority},
    )
    if record.status == MaintenanceStatus.COMPLETED.value:
        _log_completed(db, ctx, record)
    db.commit()
    logger.info(f"Maintenance {code} created for vehicle {vehicle.id}")
    return {"data": maintenance_to_dict(record)}


@router.get("/api/maintenance/{record_id}")
async def get_maintenance(
    record_id: int,
    ctx: AuthContext = Depends(require_reader),
    db: Session = Depends(get_db),
):
    record = get_owned(db, MaintenanceRecord, record_id, ctx, "Maintenance record")
    return {"data": maintenance_to_dict(record)}


@router.patch("/api/maintenance/{record_id}")
async def update_maintenance(
    record_id: int,
    body: MaintenanceUpdate,
    ctx: AuthContext = Depends(require_technician),
    db: Session = Depends(get_db),
):
    record = get_owned(db, MaintenanceRecord, record_id, ctx, "Maintenance record")
    was_completed = record.status == MaintenanceStatus.COMPLETED.value
    changes = body.model_dump(exclude_unset=True, exclude={"parts"})
    for field, value in changes.items():
        if field in _ENUM_FIELDS and value is not None:
            value = value.value
        setattr(record, field, value)
    if body.parts is not None:
        record.parts = _build_part_lines(db, ctx, body.parts)

    completed_now = record.status == MaintenanceStatus.COMPLETED.value and not was_completed
    if completed_now and not record.completed_date:
        record.completed_date = utcnow()

    log_activity(
        db,
        ctx,
        ActivityType.MAINTENANCE_UPDATED,
        "Maintenance updated",
        f"Maintenance {record.maintenance_id} was updated",
        entity_type="MaintenanceRecord",
        entity_id=record.id,
        metadata={"fields": sorted(changes) + (["parts"] if body.parts is not None else [])},
    )
    if completed_now:
        _log_completed(db, ctx, record)
    db.commit()
    return {"data": maintenance_to_dict(record)}


@router.delete("/api/maintenance/{record_id}")
async def delete_maintenance(
    record_id: int,
    ctx: AuthContext = Depends(require_manager),
    db: Session = Depends(get_db),
):
    record = get_owned(db, MaintenanceRecord, record_id, ctx, "Maintenance record")
    code = record.maintenance_id
    db.delete(record)
    log_activity(
        db,
        ctx,
        ActivityType.MAINTENANCE_DELETED,
        "Maintenance deleted",
        f"Maintenance {code} was deleted",
        entity_type="MaintenanceRecord",
        entity_id=record_id,
    )
    db.commit()
    return {"success": True}
