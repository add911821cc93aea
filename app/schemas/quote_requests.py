"""
schemas/quote_requests.py — Pydantic models for Quote Request endpoints

Validates quote-request create/update bodies and the bodies of the
workflow-backed actions (price refresh, follow-up, convert-to-order).

Business Rules:
- A quote request needs a supplier, a vehicle, a title and at least one item
- additionalSupplierIds may arrive as a list, a JSON string or a comma string
- SPLIT fulfillment needs a per-item method map

Called by: routers/quote_requests.py
Depends on: pydantic, services/quote_requests.py (parse_supplier_ids)
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import Field, field_validator, model_validator

from app.models.enums import FulfillmentMethod, QuoteStatus
from app.schemas.base import CamelModel
from app.services.quote_requests import parse_supplier_ids


def _coerce_supplier_ids(v):
    if v is None:
        return v
    if isinstance(v, str):
        v = parse_supplier_ids(v)
    ids = []
    for token in v:
        try:
            ids.append(int(token))
        except (TypeError, ValueError):
            raise ValueError(f"invalid supplier id: {token!r}")
    return ids


class QuoteItemIn(CamelModel):
    part_number: str = Field(min_length=1, max_length=100)
    description: str = Field(min_length=1)
    quantity: int = Field(default=1, ge=1)
    unit_price: float | None = Field(default=None, ge=0)
    part_id: int | None = None

    @field_validator("part_number")
    @classmethod
    def strip_part_number(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("partNumber must not be blank")
        return v


class QuoteItemUpdate(CamelModel):
    part_number: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, min_length=1)
    quantity: int | None = Field(default=None, ge=1)
    unit_price: float | None = Field(default=None, ge=0)
    supplier_notes: str | None = None


class QuoteRequestCreate(CamelModel):
    supplier_id: int
    vehicle_id: int
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    notes: str | None = None
    expiry_date: datetime | None = None
    additional_supplier_ids: list[int] = Field(default_factory=list)
    items: list[QuoteItemIn] = Field(min_length=1)

    @field_validator("additional_supplier_ids", mode="before")
    @classmethod
    def parse_additional_ids(cls, v):
        return _coerce_supplier_ids(v) or []


class QuoteRequestUpdate(CamelModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    notes: str | None = None
    status: QuoteStatus | None = None
    expiry_date: datetime | None = None
    vehicle_id: int | None = None
    additional_supplier_ids: list[int] | None = None
    items: list[QuoteItemIn] | None = None

    @field_validator("additional_supplier_ids", mode="before")
    @classmethod
    def parse_additional_ids(cls, v):
        return _coerce_supplier_ids(v)


class PriceRefreshRequest(CamelModel):
    supplier_id: int | None = None


class LinkEmailThreadRequest(CamelModel):
    supplier_id: int
    email_thread_id: int
    is_primary: bool = False


class SyncThreadsRequest(CamelModel):
    force_resync: bool = False


class FollowUpEmailContent(CamelModel):
    subject: str
    body: str
    body_html: str | None = None


class FollowUpRequest(CamelModel):
    supplier_id: int | None = None
    follow_up_reason: str = "No response received by expected date"
    workflow_branch: str | None = None
    additional_message: str | None = None
    expected_response_by: datetime | None = None
    action: Literal["preview", "send"] = "preview"
    email_content: FollowUpEmailContent | None = None


class ItemFulfillment(CamelModel):
    item_id: int
    method: Literal["PICKUP", "DELIVERY"]


class ShippingAddress(CamelModel):
    street: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    country: str = "USA"


class ConvertToOrderRequest(CamelModel):
    fulfillment_method: FulfillmentMethod = FulfillmentMethod.DELIVERY
    item_fulfillment: list[ItemFulfillment] | None = None
    shipping_address: ShippingAddress | None = None
    pickup_location: str | None = None
    pickup_date: datetime | None = None
    special_instructions: str | None = None
    selected_supplier_id: int | None = None

    @model_validator(mode="after")
    def split_needs_item_map(self):
        if self.fulfillment_method == FulfillmentMethod.SPLIT and not self.item_fulfillment:
            raise ValueError("itemFulfillment is required for SPLIT fulfillment")
        return self
