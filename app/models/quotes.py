"""Quote request models — QuoteRequest, QuoteRequestItem, QuoteRequestEmailThread."""

from sqlalchemy import (
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


class QuoteRequest(Base):
    """Solicitation for pricing on a set of parts, sent to one or more suppliers."""

    __tablename__ = "quote_requests"
    id = Column(Integer, primary_key=True)
    organization_id = Column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    quote_number = Column(String(50), nullable=False)  # QR-MM-YYYY-XXXX
    title = Column(String(255), nullable=False)
    description = Column(Text)
    notes = Column(Text)
    status = Column(String(30), default="DRAFT")
    request_date = Column(UTCDateTime, default=utcnow)
    expiry_date = Column(UTCDateTime)
    total_amount = Column(Numeric(12, 2), default=0)
    suggested_fulfillment_method = Column(String(20))  # PICKUP | DELIVERY | SPLIT

    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=False)
    selected_supplier_id = Column(Integer, ForeignKey("suppliers.id", ondelete="SET NULL"))
    vehicle_id = Column(Integer, ForeignKey("vehicles.id", ondelete="SET NULL"))
    # JSON array of supplier ids; legacy rows may hold a comma-joined string
    additional_supplier_ids = Column(Text)

    created_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    supplier = relationship("Supplier", foreign_keys=[supplier_id])
    selected_supplier = relationship("Supplier", foreign_keys=[selected_supplier_id])
    vehicle = relationship("Vehicle")
    created_by = relationship("User")
    items = relationship(
        "QuoteRequestItem",
        back_populates="quote_request",
        cascade="all, delete-orphan",
        order_by="QuoteRequestItem.id",
    )
    email_links = relationship(
        "QuoteRequestEmailThread",
        back_populates="quote_request",
        cascade="all, delete-orphan",
        order_by=lambda: (QuoteRequestEmailThread.is_primary.desc(), QuoteRequestEmailThread.created_at),
    )
    threads = relationship("EmailThread", back_populates="quote_request")

    __table_args__ = (
        UniqueConstraint("organization_id", "quote_number", name="uq_quote_requests_org_number"),
        Index("ix_quote_requests_org_status", "organization_id", "status"),
    )


class QuoteRequestItem(Base):
    """Line item. supplier_id NULL marks a template item shared before cloning."""

    __tablename__ = "quote_request_items"
    id = Column(Integer, primary_key=True)
    quote_request_id = Column(
        Integer, ForeignKey("quote_requests.id", ondelete="CASCADE"), nullable=False
    )
    supplier_id = Column(Integer, ForeignKey("suppliers.id", ondelete="CASCADE"))
    part_id = Column(Integer, ForeignKey("parts.id", ondelete="SET NULL"))

    part_number = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(12, 2))
    total_price = Column(Numeric(12, 2))

    supplier_part_number = Column(String(100))
    lead_time = Column(Integer)  # days
    availability = Column(String(20), default="UNKNOWN")
    estimated_delivery_days = Column(Integer)
    suggested_fulfillment_method = Column(String(20))

    is_superseded = Column(Boolean, default=False)
    original_part_number = Column(String(100))
    supersession_notes = Column(Text)
    is_alternative = Column(Boolean, default=False)
    alternative_reason = Column(Text)
    supplier_notes = Column(Text)

    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    quote_request = relationship("QuoteRequest", back_populates="items")
    supplier = relationship("Supplier")

    __table_args__ = (
        Index("ix_qri_qr_supplier_part", "quote_request_id", "supplier_id", "part_number"),
    )


class QuoteRequestEmailThread(Base):
    """Junction: one email thread per (quote request, supplier)."""

    __tablename__ = "quote_request_email_threads"
    id = Column(Integer, primary_key=True)
    quote_request_id = Column(
        Integer, ForeignKey("quote_requests.id", ondelete="CASCADE"), nullable=False
    )
    email_thread_id = Column(
        Integer, ForeignKey("email_threads.id", ondelete="CASCADE"), nullable=False
    )
    supplier_id = Column(
        Integer, ForeignKey("suppliers.id", ondelete="CASCADE"), nullable=False
    )
    is_primary = Column(Boolean, default=False)
    status = Column(String(20), default="SENT")  # SENT | RESPONDED | ACCEPTED | REJECTED | NO_RESPONSE
    response_date = Column(UTCDateTime)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    quote_request = relationship("QuoteRequest", back_populates="email_links")
    email_thread = relationship("EmailThread", back_populates="quote_links")
    supplier = relationship("Supplier")

    __table_args__ = (
        UniqueConstraint("quote_request_id", "supplier_id", name="uq_qr_thread_supplier"),
    )
