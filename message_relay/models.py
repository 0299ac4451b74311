"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from enum import Enum

from sqlalchemy import Column, DateTime, Index, Integer, String

from message_relay.storage import Base
from message_relay.utils import utc_now

MAX_CONTENT_LENGTH = 160


class MessageStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    # Defined for completeness; the scheduler never sets it (failed sends stay PENDING).
    FAILED = "FAILED"


class Message(Base):
    """
    SQLAlchemy model for outbox messages.

    Table: messages
    external_message_id and sent_at are only populated once status is SENT.
    """
    __tablename__ = "messages"
    __table_args__ = (
        Index("idx_messages_status_created_at", "status", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    to = Column(String(20), nullable=False)
    content = Column(String(MAX_CONTENT_LENGTH), nullable=False)
    status = Column(String(16), nullable=False, default=MessageStatus.PENDING.value)
    external_message_id = Column(String(64), nullable=False, default="")
    sent_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now)

    def __repr__(self) -> str:
        return f"<Message id={self.id} status={self.status}>"
