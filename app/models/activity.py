"""Audit & assistant models — ActivityLog, Conversation, ChatMessage."""

from sqlalchemy import JSON, Column, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from ..database import UTCDateTime, utcnow
from .base import Base


class ActivityLog(Base):
    """Append-only audit row, written in the same transaction as its mutation."""

    __tablename__ = "activity_logs"
    id = Column(Integer, primary_key=True)
    organization_id = Column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    type = Column(String(40), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    entity_type = Column(String(50))
    entity_id = Column(Integer)
    details = Column("metadata", JSON)
    created_at = Column(UTCDateTime, default=utcnow)

    __table_args__ = (
        Index("ix_activity_org_created", "organization_id", "created_at"),
        Index("ix_activity_entity", "entity_type", "entity_id"),
    )


class Conversation(Base):
    __tablename__ = "conversations"
    id = Column(Integer, primary_key=True)
    organization_id = Column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(255))
    context = Column(String(30), default="GENERAL")  # GENERAL | CUSTOMER_SUPPORT | PARTS_SEARCH
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    messages = relationship(
        "ChatMessage",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by=lambda: (ChatMessage.created_at, ChatMessage.id),
    )


class ChatMessage(Base):
    __tablename__ = "chat_messages"
    id = Column(Integer, primary_key=True)
    conversation_id = Column(
        Integer, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    role = Column(String(20), nullable=False)  # USER | ASSISTANT
    content = Column(Text, nullable=False)
    context = Column(JSON)
    created_at = Column(UTCDateTime, default=utcnow)

    conversation = relationship("Conversation", back_populates="messages")
