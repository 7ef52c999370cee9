"""Enum definitions for follow-up constants."""

from enum import Enum


class TriggerType(str, Enum):
    """What starts a sequence. Evaluated by an external trigger source."""

    KEYWORD = "keyword"
    VARIABLE = "variable"
    CONVERSATION_STATE = "conversation_state"
    BOT_STAGE = "bot_stage"
    TIME_BASED = "time_based"
    ACTION = "action"


class ActionType(str, Enum):
    """Outbound actions an action trigger can watch for."""

    DOCUMENT_SENT = "document_sent"
    QUOTATION_SENT = "quotation_sent"
    LINK_SENT = "link_sent"
    IMAGE_SENT = "image_sent"


class FollowUpStrategy(str, Enum):
    """Advisory tone of a sequence. Does not affect scheduling."""

    PASSIVE = "passive"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"


class DelayUnit(str, Enum):
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"


class ExecutionStatus(str, Enum):
    """
    Execution lifecycle status.

    Flow: active → completed
             ↘ abandoned
             ↘ cancelled
          active ⇄ paused
    """

    ACTIVE = "active"  # Waiting for the next step
    PAUSED = "paused"  # Administrative hold
    COMPLETED = "completed"  # Last step sent, or converted
    ABANDONED = "abandoned"  # Next step missing
    CANCELLED = "cancelled"  # Manual or contact replied


TERMINAL_EXECUTION_STATUSES = (
    ExecutionStatus.COMPLETED.value,
    ExecutionStatus.ABANDONED.value,
    ExecutionStatus.CANCELLED.value,
)
OPEN_EXECUTION_STATUSES = (ExecutionStatus.ACTIVE.value, ExecutionStatus.PAUSED.value)


class DeliveryStatus(str, Enum):
    """Message log delivery status."""

    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


class MessageTransport(str, Enum):
    DRY_RUN = "dry_run"
    WHATSAPP_CLOUD = "whatsapp_cloud"
    EVOLUTION = "evolution"
