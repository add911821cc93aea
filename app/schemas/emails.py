"""
schemas/emails.py — Pydantic models for email reconciliation endpoints

Business Rules:
- Inbound mail needs a sender; addresses are lowercased
- Assign needs both threadId and quoteRequestId
- Merge needs both source and target thread ids
- A thread status must be one of EmailThreadStatus

Called by: routers/emails.py
Depends on: pydantic
"""

from __future__ import annotations

from datetime import datetime

from pydantic import Field, field_validator

from app.models.enums import EmailThreadStatus
from app.schemas.base import CamelModel


class AttachmentIn(CamelModel):
    filename: str = Field(min_length=1)
    content_type: str | None = None
    size: int | None = Field(default=None, ge=0)
    extracted_text: str | None = None


class InboundEmail(CamelModel):
    sender: str = Field(alias="from", min_length=3)
    to: str | None = None
    cc: list[str] = Field(default_factory=list)
    bcc: list[str] = Field(default_factory=list)
    subject: str | None = None
    body: str | None = None
    body_html: str | None = None
    received_at: datetime | None = None
    external_message_id: str | None = None
    external_thread_id: str | None = None
    in_reply_to: str | None = None
    attachments: list[AttachmentIn] = Field(default_factory=list)

    @field_validator("sender")
    @classmethod
    def clean_sender(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("from must be an email address")
        return v


class AssignThreadRequest(CamelModel):
    thread_id: int
    quote_request_id: int


class MergeThreadsRequest(CamelModel):
    source_thread_id: int
    target_thread_id: int


class ThreadStatusUpdate(CamelModel):
    status: EmailThreadStatus
