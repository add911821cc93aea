"""
schemas/support.py — Pydantic models for the customer-support assistant

Called by: routers/support.py
Depends on: pydantic
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field

from app.schemas.base import CamelModel


class ConversationCreate(CamelModel):
    title: str | None = Field(default=None, max_length=255)
    context: Literal["GENERAL", "CUSTOMER_SUPPORT", "PARTS_SEARCH"] = "CUSTOMER_SUPPORT"


class SupportQuery(CamelModel):
    query: str = Field(min_length=1, max_length=5000)
    conversation_id: int | None = None
    context: dict | None = None


class VehicleContext(CamelModel):
    make: str | None = None
    model: str | None = None
    year: int | None = None
    serial_number: str | None = None


class PartsSearchFilters(CamelModel):
    category: str | None = None
    in_stock: bool | None = None


class PartsSearchRequest(CamelModel):
    query: str = Field(min_length=1, max_length=1000)
    vehicle_context: VehicleContext | None = None
    filters: PartsSearchFilters | None = None
    conversation_id: int | None = None
