"""Pydantic schemas for executions, message logs, and conversation links."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from followups.db.enums import ExecutionStatus


# =============================================================================
# Executions
# =============================================================================


class ExecutionStart(BaseModel):
    """Start request sent by a trigger source."""

    sequence_id: UUID
    contact_phone: str = Field(min_length=3, max_length=50)
    contact_name: str | None = Field(default=None, max_length=200)
    conversation_id: str | None = Field(default=None, max_length=100)
    conversation_context: dict[str, object] = Field(default_factory=dict)
    trigger_data: dict[str, object] = Field(default_factory=dict)


class ExecutionRead(BaseModel):
    id: UUID
    sequence_id: UUID | None
    organization_id: UUID
    contact_phone: str
    contact_name: str | None
    conversation_id: str | None
    status: ExecutionStatus
    current_step: int
    next_scheduled_at: datetime | None
    conversation_context: dict
    trigger_data: dict
    started_at: datetime
    completed_at: datetime | None
    last_message_sent_at: datetime | None
    converted: bool
    total_messages_sent: int
    failed_attempts: int

    model_config = {"from_attributes": True}


class MessageLogRead(BaseModel):
    id: UUID
    step_order: int
    sent_at: datetime
    message_sent: str
    delivery_status: str
    external_message_id: str | None
    error_message: str | None
    contact_responded: bool
    response_received_at: datetime | None
    response_text: str | None

    model_config = {"from_attributes": True}


class ExecutionDetail(ExecutionRead):
    """Execution with its message history."""

    message_logs: list[MessageLogRead]


class SweepResult(BaseModel):
    """Outcome counts of one scheduler sweep."""

    due: int = 0
    sent: int = 0
    completed: int = 0
    abandoned: int = 0
    failed: int = 0
    deferred: int = 0
    skipped: int = 0  # Claimed by someone else or no longer due
    errors: int = 0


# =============================================================================
# Conversation tracking
# =============================================================================


class ConversationTrack(BaseModel):
    """Outbound message notification for a conversation."""

    conversation_id: str = Field(min_length=1, max_length=100)
    inbox_id: str | None = Field(default=None, max_length=100)
    account_id: str | None = Field(default=None, max_length=100)
    contact_ref: str | None = Field(default=None, max_length=100)


class InboundMessage(BaseModel):
    """Inbound contact message notification."""

    response_text: str | None = None


class ConversationLinkRead(BaseModel):
    id: UUID
    conversation_id: str
    inbox_id: str | None
    account_id: str | None
    contact_ref: str | None
    awaiting_response: bool
    last_outbound_at: datetime | None
    last_inbound_at: datetime | None

    model_config = {"from_attributes": True}


class CancelOnResponseResult(BaseModel):
    cancelled_execution_ids: list[UUID]
