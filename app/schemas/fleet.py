"""
schemas/fleet.py — Pydantic models for Vehicle, Part & Maintenance endpoints

Business Rules:
- vehicleId at least 3 chars, serial at least 5, make/model at least 2
- Year between 1900 and next year; health score 0-100
- Maintenance part lines need a positive quantity and a non-negative cost
- Part numbers are trimmed and required

Called by: routers/vehicles.py, routers/maintenance.py, routers/parts.py
Depends on: pydantic
"""

from __future__ import annotations

from datetime import date, datetime

from pydantic import Field, field_validator

from app.models.enums import (
    IndustryCategory,
    MaintenanceStatus,
    MaintenanceType,
    Priority,
    VehicleStatus,
    VehicleType,
)
from app.schemas.base import CamelModel


def _check_year(v: int | None) -> int | None:
    if v is None:
        return v
    if v < 1900 or v > date.today().year + 1:
        raise ValueError(f"Year must be between 1900 and {date.today().year + 1}")
    return v


# ── Vehicles ──────────────────────────────────────────────────────────


class VehicleCreate(CamelModel):
    vehicle_id: str = Field(min_length=3, max_length=50)
    serial_number: str = Field(min_length=5, max_length=100)
    make: str = Field(min_length=2, max_length=100)
    model: str = Field(min_length=2, max_length=100)
    year: int
    type: VehicleType
    industry_category: IndustryCategory = IndustryCategory.CONSTRUCTION
    status: VehicleStatus = VehicleStatus.ACTIVE
    current_location: str | None = None
    operating_hours: int = Field(default=0, ge=0)
    health_score: int = Field(default=100, ge=0, le=100)
    engine_model: str | None = None
    specifications: dict | None = None

    @field_validator("year")
    @classmethod
    def check_year(cls, v: int) -> int:
        return _check_year(v)


class VehicleUpdate(CamelModel):
    vehicle_id: str | None = Field(default=None, min_length=3, max_length=50)
    serial_number: str | None = Field(default=None, min_length=5, max_length=100)
    make: str | None = Field(default=None, min_length=2, max_length=100)
    model: str | None = Field(default=None, min_length=2, max_length=100)
    year: int | None = None
    type: VehicleType | None = None
    industry_category: IndustryCategory | None = None
    status: VehicleStatus | None = None
    current_location: str | None = None
    operating_hours: int | None = Field(default=None, ge=0)
    health_score: int | None = Field(default=None, ge=0, le=100)
    engine_model: str | None = None
    specifications: dict | None = None

    @field_validator("year")
    @classmethod
    def check_year(cls, v: int | None) -> int | None:
        return _check_year(v)


# ── Parts ─────────────────────────────────────────────────────────────


class PartCreate(CamelModel):
    part_number: str = Field(min_length=1, max_length=100)
    description: str = Field(min_length=1)
    category: str = "GENERAL"
    supplier_part_number: str | None = None
    stock_quantity: int = Field(default=0, ge=0)
    min_stock_level: int = Field(default=0, ge=0)
    price: float = Field(default=0, ge=0)
    cost: float = Field(default=0, ge=0)

    @field_validator("part_number")
    @classmethod
    def strip_part_number(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("partNumber must not be blank")
        return v


# ── Maintenance ───────────────────────────────────────────────────────


class MaintenancePartIn(CamelModel):
    part_id: int
    quantity_used: int = Field(ge=1)
    unit_cost: float = Field(ge=0)


class MaintenanceCreate(CamelModel):
    maintenance_id: str | None = Field(default=None, max_length=50)
    vehicle_id: int
    type: MaintenanceType
    status: MaintenanceStatus = MaintenanceStatus.SCHEDULED
    priority: Priority = Priority.MEDIUM
    scheduled_date: datetime
    completed_date: datetime | None = None
    estimated_hours: float | None = Field(default=None, ge=0)
    actual_hours: float | None = Field(default=None, ge=0)
    estimated_cost: float | None = Field(default=None, ge=0)
    actual_cost: float | None = Field(default=None, ge=0)
    labor_cost: float | None = Field(default=None, ge=0)
    parts_cost: float | None = Field(default=None, ge=0)
    description: str = Field(min_length=1)
    work_performed: str | None = None
    notes: str | None = None
    location: str | None = None
    assigned_technician: str | None = None
    technician_notes: str | None = None
    parts: list[MaintenancePartIn] = Field(default_factory=list)


class MaintenanceUpdate(CamelModel):
    type: MaintenanceType | None = None
    status: MaintenanceStatus | None = None
    priority: Priority | None = None
    scheduled_date: datetime | None = None
    completed_date: datetime | None = None
    estimated_hours: float | None = Field(default=None, ge=0)
    actual_hours: float | None = Field(default=None, ge=0)
    estimated_cost: float | None = Field(default=None, ge=0)
    actual_cost: float | None = Field(default=None, ge=0)
    labor_cost: float | None = Field(default=None, ge=0)
    parts_cost: float | None = Field(default=None, ge=0)
    description: str | None = Field(default=None, min_length=1)
    work_performed: str | None = None
    notes: str | None = None
    location: str | None = None
    assigned_technician: str | None = None
    technician_notes: str | None = None
    parts: list[MaintenancePartIn] | None = None
