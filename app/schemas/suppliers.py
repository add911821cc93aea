"""
schemas/suppliers.py — Pydantic models for Supplier endpoints

Validates supplier create/update bodies and auxiliary email entries.

Business Rules:
- supplierId at least 3 chars, name at least 2
- Emails must look like an address and are lowercased
- Ratings are 0-5
- Auxiliary emails may be nested in the create body

Called by: routers/suppliers.py
Depends on: pydantic
"""

from __future__ import annotations

import re

from pydantic import Field, field_validator

from app.models.enums import SupplierStatus, SupplierType
from app.schemas.base import CamelModel

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def clean_email(v: str | None) -> str | None:
    if v is None or not str(v).strip():
        return None
    cleaned = str(v).strip().lower()
    if not EMAIL_RE.match(cleaned):
        raise ValueError("Invalid email address")
    return cleaned


class AuxiliaryEmailIn(CamelModel):
    email: str
    name: str | None = None
    phone: str | None = None

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        cleaned = clean_email(v)
        if cleaned is None:
            raise ValueError("Email is required")
        return cleaned


class AuxiliaryEmailUpdate(CamelModel):
    email: str | None = None
    name: str | None = None
    phone: str | None = None

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str | None) -> str | None:
        return clean_email(v)


class SupplierBase(CamelModel):
    contact_person: str | None = None
    email: str | None = None
    phone: str | None = None
    website: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    country: str | None = None
    rating: float | None = Field(default=None, ge=0, le=5)
    delivery_rating: float | None = Field(default=None, ge=0, le=5)
    quality_rating: float | None = Field(default=None, ge=0, le=5)
    avg_delivery_time: int | None = Field(default=None, ge=0)
    payment_terms: str | None = None
    tax_id: str | None = None
    certifications: list[str] | None = None
    specialties: list[str] | None = None
    notes: str | None = None

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str | None) -> str | None:
        return clean_email(v)


class SupplierCreate(SupplierBase):
    supplier_id: str = Field(min_length=3, max_length=50)
    name: str = Field(min_length=2, max_length=255)
    type: SupplierType
    status: SupplierStatus = SupplierStatus.ACTIVE
    country: str | None = "USA"
    auxiliary_emails: list[AuxiliaryEmailIn] = Field(default_factory=list)

    @field_validator("supplier_id", "name")
    @classmethod
    def strip_text(cls, v: str) -> str:
        return v.strip()


class SupplierUpdate(SupplierBase):
    supplier_id: str | None = Field(default=None, min_length=3, max_length=50)
    name: str | None = Field(default=None, min_length=2, max_length=255)
    type: SupplierType | None = None
    status: SupplierStatus | None = None
