"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming API data
- Response models and envelopes for API responses
- The cache entry and webhook response models used by the core components
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from message_relay.models import MAX_CONTENT_LENGTH
from message_relay.utils import current_timestamp_ns, format_sent_at


# =============================================================================
# Core Models
# =============================================================================

class SentMessageCache(BaseModel):
    """
    Cache entry for a message that was dispatched successfully.

    A denormalized projection of a SENT message; stored as JSON in Redis.
    """
    message_id: int = Field(..., description="Store-assigned message id")
    external_message_id: str = Field(..., description="Id assigned by the external channel")
    to: str = Field(..., description="Recipient phone number")
    content: str = Field(..., description="Message content")
    sent_at: datetime = Field(..., description="Send time (naive UTC)")

    @classmethod
    def from_message(cls, message) -> "SentMessageCache":
        """Build a cache entry from a SENT Message ORM object."""
        return cls(
            message_id=message.id,
            external_message_id=message.external_message_id,
            to=message.to,
            content=message.content,
            sent_at=message.sent_at,
        )


class WebhookResponse(BaseModel):
    """
    Body returned by the external channel when it accepts a message.

    Example: {"message": "Accepted", "messageId": "67f2f8a8-ea58-4ed0-a6f9-ff217df4d849"}
    """
    message: Optional[str] = Field(None, description="Human readable status")
    message_id: str = Field(..., alias="messageId", min_length=1, description="External message id")

    model_config = {"populate_by_name": True}


# =============================================================================
# Pydantic Request Models
# =============================================================================

class CreateMessageRequest(BaseModel):
    """
    Request body for enqueueing a message.

    Validates:
    - to: E.164-like format (starts with +, then digits only)
    - content: non-empty, max 160 characters
    """
    to: str = Field(..., max_length=20, description="Recipient phone number in E.164 format")
    content: str = Field(
        ...,
        min_length=1,
        max_length=MAX_CONTENT_LENGTH,
        description="Message text content",
    )

    @field_validator("to")
    @classmethod
    def validate_e164_format(cls, v: str) -> str:
        """Validate E.164-like phone number format: starts with +, then digits only."""
        if not v.startswith("+"):
            raise ValueError("to must start with '+'")
        if len(v) < 2 or not v[1:].isdigit():
            raise ValueError("to must contain only digits after '+'")
        return v

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"to": "+905551111111", "content": "Insider - Project"}
            ]
        }
    }


# =============================================================================
# Pydantic Response Models
# =============================================================================

class MessageResponse(BaseModel):
    """A stored message, as returned after creation."""
    id: int
    to: str
    content: str
    status: str
    external_message_id: str
    sent_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class SentMessageResponse(BaseModel):
    """
    A sent message in the list returned by GET /messages/sent.
    sent_at is formatted as YYYY-MM-DD HH:MM:SS.
    """
    message_id: int = Field(..., description="Store-assigned message id")
    external_message_id: str = Field(..., description="Id assigned by the external channel")
    to: str = Field(..., description="Recipient phone number")
    content: str = Field(..., description="Message content")
    sent_at: str = Field(..., description="Send time")

    @classmethod
    def from_cache_entry(cls, entry: SentMessageCache) -> "SentMessageResponse":
        return cls(
            message_id=entry.message_id,
            external_message_id=entry.external_message_id,
            to=entry.to,
            content=entry.content,
            sent_at=format_sent_at(entry.sent_at),
        )


class SchedulerStateResponse(BaseModel):
    """Resulting scheduler state after a start/stop request."""
    state: str = Field(..., description="started or stopped")


class SuccessResponse(BaseModel):
    """Envelope for successful responses."""
    status: str = Field(default="success")
    timestamp: int = Field(default_factory=current_timestamp_ns, description="Unix time in nanoseconds")
    data: Any = None


class ErrorSchema(BaseModel):
    code: str = Field(..., description="Machine readable error code")
    message: str = Field(..., description="Error description")


class ErrorResponse(BaseModel):
    """Envelope for error responses."""
    status: str = Field(default="error")
    timestamp: int = Field(default_factory=current_timestamp_ns, description="Unix time in nanoseconds")
    error: ErrorSchema


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
