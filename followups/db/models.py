"""SQLAlchemy ORM models for the follow-up engine."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from followups.db.base import Base
from followups.db.types import JSONType


class Sequence(Base):
    """
    Follow-up sequence definition.

    A named, organization-scoped automation: the trigger that starts it,
    the guard rails around it, and its ordered steps.
    """

    __tablename__ = "follow_up_sequences"
    __table_args__ = (
        Index("idx_follow_up_sequences_org", "organization_id", "created_at"),
        Index("idx_follow_up_sequences_org_enabled", "organization_id", "enabled"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(nullable=False)

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Trigger
    trigger_type: Mapped[str] = mapped_column(String(30), nullable=False)
    trigger_config: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)

    strategy: Mapped[str] = mapped_column(String(20), default="moderate", nullable=False)
    conditions: Mapped[dict] = mapped_column(
        JSONType, default=dict, nullable=False
    )  # {min_conversation_messages, max_follow_ups_per_contact, business_hours_only, ...}

    # Counters
    total_executions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    successful_conversions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )

    # Relationships
    steps: Mapped[list["Step"]] = relationship(
        back_populates="sequence",
        cascade="all, delete-orphan",
        order_by="Step.step_order",
    )


class Step(Base):
    """One templated message of a sequence, delayed from the previous send."""

    __tablename__ = "follow_up_steps"
    __table_args__ = (
        UniqueConstraint("sequence_id", "step_order", name="uq_follow_up_step_order"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    sequence_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("follow_up_sequences.id", ondelete="CASCADE"), nullable=False
    )

    step_order: Mapped[int] = mapped_column(Integer, nullable=False)  # 1-based
    delay_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    delay_unit: Mapped[str] = mapped_column(String(10), nullable=False)  # minutes | hours | days
    message_template: Mapped[str] = mapped_column(Text, nullable=False)
    available_variables: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    send_conditions: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)

    sequence: Mapped["Sequence"] = relationship(back_populates="steps")


class Execution(Base):
    """
    One run of a sequence against one contact.

    Outlives its sequence: deleting the sequence nulls sequence_id
    but keeps the execution and its logs.
    """

    __tablename__ = "follow_up_executions"
    __table_args__ = (
        Index("idx_follow_up_executions_due", "status", "next_scheduled_at"),
        Index("idx_follow_up_executions_org", "organization_id", "started_at"),
        Index("idx_follow_up_executions_sequence", "sequence_id", "contact_phone"),
        Index("idx_follow_up_executions_conversation", "conversation_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    sequence_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("follow_up_sequences.id", ondelete="SET NULL"), nullable=True
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(nullable=False)

    # Contact
    contact_phone: Mapped[str] = mapped_column(String(50), nullable=False)
    contact_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    conversation_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # State
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)
    current_step: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    next_scheduled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    claimed_until: Mapped[datetime | None] = mapped_column(nullable=True)
    failed_attempts: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )  # Consecutive failures of the current step

    conversation_context: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    trigger_data: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)

    started_at: Mapped[datetime] = mapped_column(nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_message_sent_at: Mapped[datetime | None] = mapped_column(nullable=True)

    converted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    total_messages_sent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Relationships
    sequence: Mapped["Sequence | None"] = relationship()
    message_logs: Mapped[list["MessageLog"]] = relationship(
        back_populates="execution",
        cascade="all, delete-orphan",
        order_by="MessageLog.sent_at",
    )


class MessageLog(Base):
    """Audit record of one attempted step send."""

    __tablename__ = "follow_up_message_logs"
    __table_args__ = (
        Index("idx_follow_up_message_logs_execution", "execution_id", "step_order"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    execution_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("follow_up_executions.id", ondelete="CASCADE"), nullable=False
    )
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)

    sent_at: Mapped[datetime] = mapped_column(nullable=False)
    message_sent: Mapped[str] = mapped_column(Text, nullable=False)
    delivery_status: Mapped[str] = mapped_column(
        String(20), nullable=False
    )  # sent | delivered | read | failed
    external_message_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Response tracking
    contact_responded: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    response_received_at: Mapped[datetime | None] = mapped_column(nullable=True)
    response_text: Mapped[str | None] = mapped_column(Text, nullable=True)

    execution: Mapped["Execution"] = relationship(back_populates="message_logs")


class ConversationLink(Base):
    """
    Conversation that may become a follow-up candidate.

    Refreshed on every outbound message; a no-response trigger evaluator
    reads it to find conversations that went quiet.
    """

    __tablename__ = "follow_up_conversation_links"
    __table_args__ = (
        UniqueConstraint(
            "organization_id", "conversation_id", name="uq_follow_up_conversation_link"
        ),
        Index(
            "idx_follow_up_conversation_links_awaiting",
            "organization_id",
            "awaiting_response",
            "last_outbound_at",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    conversation_id: Mapped[str] = mapped_column(String(100), nullable=False)
    inbox_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    account_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    contact_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)

    awaiting_response: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_outbound_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_inbound_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )
