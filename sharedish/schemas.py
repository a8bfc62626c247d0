"""
Pydantic schemas for socket events and REST payloads.

This module contains:
- Inbound socket event payloads (validated before any store access)
- Outbound socket event payloads (receiveMessage, newMessage, error)
- Request/response models for the REST read path
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator


def normalize_id(v, field_name: str) -> str:
    """Ids travel as strings; numeric ids from clients are accepted as text."""
    if isinstance(v, bool) or not isinstance(v, (str, int)):
        raise ValueError(f"{field_name} must be a string")
    v = str(v).strip()
    if not v:
        raise ValueError(f"{field_name} is required")
    return v


# =============================================================================
# Inbound Socket Payloads
# =============================================================================

class JoinUserRoomPayload(BaseModel):
    """Payload of the joinUserRoom event."""
    user_id: str = Field(..., alias="userId")

    @field_validator("user_id", mode="before")
    @classmethod
    def validate_ids(cls, v, info):
        return normalize_id(v, info.field_name)

    model_config = {"populate_by_name": True}


class JoinRoomPayload(BaseModel):
    """Payload of the joinRoom event."""
    post_id: str = Field(..., alias="postId")
    user_id: str = Field(..., alias="userId")

    @field_validator("post_id", "user_id", mode="before")
    @classmethod
    def validate_ids(cls, v, info):
        return normalize_id(v, info.field_name)

    model_config = {"populate_by_name": True}


class SendMessagePayload(BaseModel):
    """
    Payload of the sendMessage event.

    Validates:
    - postId, receiverId: non-empty
    - text: non-blank string, kept as sent (not stripped or sanitized)
    """
    post_id: str = Field(..., alias="postId")
    receiver_id: str = Field(..., alias="receiverId")
    text: str = Field(...)

    @field_validator("post_id", "receiver_id", mode="before")
    @classmethod
    def validate_ids(cls, v, info):
        return normalize_id(v, info.field_name)

    @field_validator("text", mode="before")
    @classmethod
    def validate_text(cls, v):
        if not isinstance(v, str):
            raise ValueError("text must be a string")
        if not v.strip():
            raise ValueError("text is required")
        return v

    model_config = {"populate_by_name": True}


# =============================================================================
# Outbound Socket Payloads
# =============================================================================

class ReceiveMessageEvent(BaseModel):
    """Full message broadcast to the post room."""
    sender: str
    text: str
    created_at: str = Field(..., alias="createdAt")

    model_config = {"populate_by_name": True}


class NewMessageEvent(BaseModel):
    """Truncated notification sent to the receiver's personal room."""
    sender_id: str = Field(..., alias="senderId")
    sender_name: str = Field(..., alias="senderName")
    post_id: str = Field(..., alias="postId")
    text: str
    timestamp: str

    model_config = {"populate_by_name": True}


# =============================================================================
# REST Request Models
# =============================================================================

class ReportRequest(BaseModel):
    """Body of POST /api/chat/{thread_id}/report."""
    reported_user_id: str = Field(..., alias="reportedUserId", min_length=1)
    message: Optional[str] = Field(None, max_length=2000)

    model_config = {"populate_by_name": True}


class BlockRequest(BaseModel):
    """Body of POST /api/users/{user_id}/block."""
    blocked_user_id: str = Field(..., alias="blockedUserId", min_length=1)

    model_config = {"populate_by_name": True}


# =============================================================================
# REST Response Models
# =============================================================================

class MessageResponse(BaseModel):
    id: int
    sender: str = Field(..., validation_alias="sender_id")
    text: str
    created_at: str = Field(..., alias="createdAt")
    read: bool

    model_config = {"populate_by_name": True, "from_attributes": True}


class ThreadSummary(BaseModel):
    """A thread in the caller's inbox, with its latest message."""
    id: int
    post_id: str = Field(..., alias="postId")
    users: list[str]
    updated_at: str = Field(..., alias="updatedAt")
    last_message: Optional[MessageResponse] = Field(None, alias="lastMessage")

    model_config = {"populate_by_name": True}


class ThreadsListResponse(BaseModel):
    data: list[ThreadSummary] = Field(default_factory=list)
    total: int = Field(..., ge=0)


class ThreadDetailResponse(BaseModel):
    """Full ordered history of one thread."""
    id: int
    post_id: str = Field(..., alias="postId")
    users: list[str]
    messages: list[MessageResponse] = Field(default_factory=list)

    model_config = {"populate_by_name": True}


class UnreadCountResponse(BaseModel):
    count: int = Field(..., ge=0)


class StatusResponse(BaseModel):
    status: str = Field(default="ok", description="Operation status")


class ErrorResponse(BaseModel):
    detail: str = Field(..., description="Error description")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
