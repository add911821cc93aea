"""
schemas/orders.py — Pydantic models for Order endpoints

Called by: routers/orders.py
Depends on: pydantic
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import Field

from app.schemas.base import CamelModel

OrderFollowUpBranch = Literal[
    "no_confirmation",
    "missing_tracking",
    "delivery_delayed",
    "quality_issue",
    "other",
]


class OrderFollowUpRequest(CamelModel):
    branch: OrderFollowUpBranch
    action: Literal["preview", "send"] = "preview"
    user_message: str | None = Field(default=None, max_length=5000)
    expected_response_date: datetime | None = None
