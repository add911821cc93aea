"""Order models — Order, OrderItem."""

from sqlalchemy import (
    JSON,
    Boolean,
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


class Order(Base):
    __tablename__ = "orders"
    id = Column(Integer, primary_key=True)
    organization_id = Column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    order_number = Column(String(50), nullable=False)  # ORD-YYYY-XXXX
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=False)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id", ondelete="SET NULL"))
    email_thread_id = Column(Integer, ForeignKey("email_threads.id", ondelete="SET NULL"))
    quote_request_id = Column(Integer, ForeignKey("quote_requests.id", ondelete="SET NULL"))

    status = Column(String(20), default="PENDING")
    priority = Column(String(20), default="MEDIUM")
    order_date = Column(UTCDateTime, default=utcnow)
    expected_delivery = Column(UTCDateTime)
    actual_delivery = Column(UTCDateTime)

    subtotal = Column(Numeric(12, 2), default=0)
    tax = Column(Numeric(12, 2), default=0)
    shipping = Column(Numeric(12, 2), default=0)
    total = Column(Numeric(12, 2), default=0)

    tracking_number = Column(String(255))
    shipping_carrier = Column(String(100))
    shipping_method = Column(String(100))
    shipping_address = Column(JSON)
    notes = Column(Text)
    quote_reference = Column(String(50))

    fulfillment_method = Column(String(20), default="DELIVERY")
    partial_fulfillment = Column(Boolean, default=False)
    pickup_location = Column(String(500))
    pickup_date = Column(UTCDateTime)

    created_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    supplier = relationship("Supplier", back_populates="orders")
    vehicle = relationship("Vehicle")
    email_thread = relationship("EmailThread")
    items = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id"
    )

    __table_args__ = (
        UniqueConstraint("organization_id", "order_number", name="uq_orders_org_number"),
        Index("ix_orders_org_status", "organization_id", "status"),
    )


class OrderItem(Base):
    __tablename__ = "order_items"
    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    part_id = Column(Integer, ForeignKey("parts.id"))
    part_number = Column(String(100))
    description = Column(Text)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), default=0)
    total_price = Column(Numeric(12, 2), default=0)
    availability = Column(String(20), default="UNKNOWN")
    fulfillment_method = Column(String(20))
    expected_delivery = Column(UTCDateTime)
    tracking_number = Column(String(255))
    supplier_notes = Column(Text)

    order = relationship("Order", back_populates="items")
    part = relationship("Part")
