"""Fleet models — Vehicle, Part, MaintenanceRecord, MaintenancePart."""

from sqlalchemy import (
    JSON,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from ..database import UTCDateTime, utcnow
from .base import Base


class Vehicle(Base):
    __tablename__ = "vehicles"
    id = Column(Integer, primary_key=True)
    organization_id = Column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    vehicle_id = Column(String(50), nullable=False)  # fleet number, unique per org
    serial_number = Column(String(100), nullable=False)
    make = Column(String(100), nullable=False)
    model = Column(String(100), nullable=False)
    year = Column(Integer, nullable=False)
    type = Column(String(30), nullable=False)
    industry_category = Column(String(30), default="CONSTRUCTION")
    status = Column(String(20), default="ACTIVE")  # ACTIVE | INACTIVE | MAINTENANCE | RETIRED
    current_location = Column(String(255))
    operating_hours = Column(Integer, default=0)
    health_score = Column(Integer, default=100)
    engine_model = Column(String(100))
    specifications = Column(JSON)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    maintenance_records = relationship("MaintenanceRecord", back_populates="vehicle")

    __table_args__ = (
        UniqueConstraint("organization_id", "vehicle_id", name="uq_vehicles_org_code"),
    )


class Part(Base):
    __tablename__ = "parts"
    id = Column(Integer, primary_key=True)
    organization_id = Column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    part_number = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    category = Column(String(50), default="GENERAL")
    supplier_part_number = Column(String(100))
    superseded_by = Column(String(100))
    supersedes = Column(String(100))
    supersession_date = Column(UTCDateTime)
    supersession_notes = Column(Text)
    stock_quantity = Column(Integer, default=0)
    min_stock_level = Column(Integer, default=0)
    price = Column(Numeric(12, 2), default=0)
    cost = Column(Numeric(12, 2), default=0)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("organization_id", "part_number", name="uq_parts_org_number"),
    )


class MaintenanceRecord(Base):
    __tablename__ = "maintenance_records"
    id = Column(Integer, primary_key=True)
    organization_id = Column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    maintenance_id = Column(String(50), nullable=False)  # MAINT-YYYY-MM-NNN
    vehicle_id = Column(
        Integer, ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False
    )
    type = Column(String(20), nullable=False)
    status = Column(String(20), default="SCHEDULED")
    priority = Column(String(20), default="MEDIUM")
    scheduled_date = Column(UTCDateTime, nullable=False)
    completed_date = Column(UTCDateTime)
    estimated_hours = Column(Numeric(8, 2))
    actual_hours = Column(Numeric(8, 2))
    estimated_cost = Column(Numeric(12, 2))
    actual_cost = Column(Numeric(12, 2))
    labor_cost = Column(Numeric(12, 2))
    parts_cost = Column(Numeric(12, 2))
    description = Column(Text, nullable=False)
    work_performed = Column(Text)
    notes = Column(Text)
    location = Column(String(255))
    assigned_technician = Column(String(255))
    technician_notes = Column(Text)
    created_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    vehicle = relationship("Vehicle", back_populates="maintenance_records")
    parts = relationship(
        "MaintenancePart", back_populates="record", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("organization_id", "maintenance_id", name="uq_maintenance_org_code"),
        Index("ix_maintenance_vehicle_status", "vehicle_id", "status"),
    )


class MaintenancePart(Base):
    __tablename__ = "maintenance_parts"
    id = Column(Integer, primary_key=True)
    maintenance_record_id = Column(
        Integer, ForeignKey("maintenance_records.id", ondelete="CASCADE"), nullable=False
    )
    part_id = Column(Integer, ForeignKey("parts.id"), nullable=False)
    quantity_used = Column(Integer, nullable=False)
    unit_cost = Column(Numeric(12, 2), nullable=False)
    total_cost = Column(Numeric(12, 2), nullable=False)

    record = relationship("MaintenanceRecord", back_populates="parts")
    part = relationship("Part")
