"""Supplier models — Supplier, AuxiliaryEmail."""

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
from ..utils.encrypted_type import EncryptedText
from .base import Base


class Supplier(Base):
    __tablename__ = "suppliers"
    id = Column(Integer, primary_key=True)
    organization_id = Column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    supplier_id = Column(String(50), nullable=False)  # human-facing code, unique per org
    name = Column(String(255), nullable=False)
    type = Column(String(20), nullable=False)  # OEM_DIRECT | DISTRIBUTOR | AFTERMARKET | LOCAL_DEALER | ONLINE_RETAILER
    status = Column(String(20), default="ACTIVE")  # ACTIVE | INACTIVE | PENDING_APPROVAL | SUSPENDED

    contact_person = Column(String(255))
    email = Column(String(255))
    phone = Column(String(50))
    website = Column(String(500))

    address = Column(String(500))
    city = Column(String(100))
    state = Column(String(100))
    zip_code = Column(String(20))
    country = Column(String(100), default="USA")

    rating = Column(Numeric(3, 2))
    delivery_rating = Column(Numeric(3, 2))
    quality_rating = Column(Numeric(3, 2))
    avg_delivery_time = Column(Integer)

    payment_terms = Column(String(255))
    tax_id = Column(EncryptedText)
    certifications = Column(JSON, default=list)
    specialties = Column(JSON, default=list)
    notes = Column(Text)

    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    auxiliary_emails = relationship(
        "AuxiliaryEmail",
        back_populates="supplier",
        cascade="all, delete-orphan",
        order_by="AuxiliaryEmail.id",
    )
    orders = relationship("Order", back_populates="supplier")

    __table_args__ = (
        UniqueConstraint("organization_id", "supplier_id", name="uq_suppliers_org_code"),
        Index("ix_suppliers_org_name", "organization_id", "name"),
    )

    def known_emails(self) -> set[str]:
        """Lowercased primary + auxiliary addresses."""
        emails = {a.email.strip().lower() for a in self.auxiliary_emails if a.email}
        if self.email:
            emails.add(self.email.strip().lower())
        return emails


class AuxiliaryEmail(Base):
    """Extra address a supplier sends from (branch desk, salesperson, etc.)."""

    __tablename__ = "auxiliary_emails"
    id = Column(Integer, primary_key=True)
    supplier_id = Column(
        Integer, ForeignKey("suppliers.id", ondelete="CASCADE"), nullable=False
    )
    email = Column(String(255), nullable=False)
    name = Column(String(255))
    phone = Column(String(50))
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    supplier = relationship("Supplier", back_populates="auxiliary_emails")

    __table_args__ = (
        UniqueConstraint("supplier_id", "email", name="uq_auxiliary_emails_supplier_email"),
        Index("ix_auxiliary_emails_email", "email"),
    )
