"""Email models — EmailThread, EmailMessage, EmailAttachment."""

from sqlalchemy import JSON, Column, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from ..database import UTCDateTime, utcnow
from .base import Base


class EmailThread(Base):
    """Ordered conversation with one supplier.

    A thread with supplier_id set and quote_request_id NULL is "orphaned":
    the sender is known but no quote request claims it yet.
    """

    __tablename__ = "email_threads"
    id = Column(Integer, primary_key=True)
    organization_id = Column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    supplier_id = Column(Integer, ForeignKey("suppliers.id", ondelete="SET NULL"))
    quote_request_id = Column(Integer, ForeignKey("quote_requests.id", ondelete="SET NULL"))
    subject = Column(String(500))
    status = Column(String(30), default="DRAFT")
    external_thread_id = Column(String(255), index=True)
    created_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    supplier = relationship("Supplier")
    quote_request = relationship("QuoteRequest", back_populates="threads")
    messages = relationship(
        "EmailMessage",
        back_populates="thread",
        cascade="all, delete-orphan",
        order_by=lambda: (EmailMessage.created_at, EmailMessage.id),
    )
    quote_links = relationship("QuoteRequestEmailThread", back_populates="email_thread")

    __table_args__ = (
        Index("ix_email_threads_org_orphan", "organization_id", "supplier_id", "quote_request_id"),
    )


class EmailMessage(Base):
    __tablename__ = "email_messages"
    id = Column(Integer, primary_key=True)
    thread_id = Column(
        Integer, ForeignKey("email_threads.id", ondelete="CASCADE"), nullable=False, index=True
    )
    direction = Column(String(10), nullable=False)  # INBOUND | OUTBOUND
    from_email = Column(String(255))
    to_email = Column(String(1000))
    cc = Column(JSON, default=list)
    bcc = Column(JSON, default=list)
    subject = Column(String(500))
    body = Column(Text)
    body_html = Column(Text)
    sent_at = Column(UTCDateTime)
    received_at = Column(UTCDateTime)
    external_message_id = Column(String(255), index=True)
    in_reply_to = Column(String(255))
    follow_up_sent_at = Column(UTCDateTime)
    follow_up_reason = Column(String(255))
    created_at = Column(UTCDateTime, default=utcnow)

    thread = relationship("EmailThread", back_populates="messages")
    attachments = relationship(
        "EmailAttachment", back_populates="message", cascade="all, delete-orphan"
    )


class EmailAttachment(Base):
    __tablename__ = "email_attachments"
    id = Column(Integer, primary_key=True)
    message_id = Column(
        Integer, ForeignKey("email_messages.id", ondelete="CASCADE"), nullable=False
    )
    filename = Column(String(500), nullable=False)
    content_type = Column(String(255))
    size = Column(Integer)
    extracted_text = Column(Text)
    created_at = Column(UTCDateTime, default=utcnow)

    message = relationship("EmailMessage", back_populates="attachments")
