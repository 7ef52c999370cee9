"""Pydantic schemas for follow-up sequences and their steps."""

from datetime import datetime
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator

from followups.core.constants import BUSINESS_DAYS, BUSINESS_HOURS_END, BUSINESS_HOURS_START
from followups.db.enums import ActionType, DelayUnit, FollowUpStrategy, TriggerType


HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


# =============================================================================
# Trigger Config Schemas
# =============================================================================


class KeywordTriggerConfig(BaseModel):
    """Config for keyword trigger."""

    keywords: list[str] = Field(min_length=1)
    min_no_response_minutes: int | None = Field(default=None, ge=0)

    @field_validator("keywords")
    @classmethod
    def strip_keywords(cls, v: list[str]) -> list[str]:
        cleaned = [k.strip() for k in v if k and k.strip()]
        if not cleaned:
            raise ValueError("At least one non-empty keyword is required")
        return cleaned


class VariableTriggerConfig(BaseModel):
    """Config for variable trigger."""

    variable_name: str = Field(min_length=1, max_length=100)
    value_exists: bool = True
    expected_value: str | None = None
    min_no_response_minutes: int | None = Field(default=None, ge=0)


class ConversationStateTriggerConfig(BaseModel):
    """Config for conversation_state trigger."""

    bot_sent_info: bool = False
    no_response_minutes: int = Field(ge=1)


class BotStageTriggerConfig(BaseModel):
    """Config for bot_stage trigger."""

    stage_id: str = Field(min_length=1)
    min_no_response_minutes: int | None = Field(default=None, ge=0)


class TimeBasedTriggerConfig(BaseModel):
    """Config for time_based trigger."""

    no_response_minutes: int = Field(ge=1)


class ActionTriggerConfig(BaseModel):
    """Config for action trigger."""

    action_type: ActionType
    min_no_response_minutes: int | None = Field(default=None, ge=0)


TRIGGER_CONFIG_MODELS: dict[TriggerType, type[BaseModel]] = {
    TriggerType.KEYWORD: KeywordTriggerConfig,
    TriggerType.VARIABLE: VariableTriggerConfig,
    TriggerType.CONVERSATION_STATE: ConversationStateTriggerConfig,
    TriggerType.BOT_STAGE: BotStageTriggerConfig,
    TriggerType.TIME_BASED: TimeBasedTriggerConfig,
    TriggerType.ACTION: ActionTriggerConfig,
}


# =============================================================================
# Conditions
# =============================================================================


class SequenceConditions(BaseModel):
    """Guard rails applied when starting and advancing executions."""

    min_conversation_messages: int | None = Field(default=None, ge=0)
    max_follow_ups_per_contact: int | None = Field(default=None, ge=1)
    business_hours_only: bool = False
    days_of_week: list[int] = Field(default_factory=lambda: list(BUSINESS_DAYS))  # 0 = Sunday
    hours_start: str = Field(default=BUSINESS_HOURS_START, pattern=HHMM_PATTERN)
    hours_end: str = Field(default=BUSINESS_HOURS_END, pattern=HHMM_PATTERN)
    timezone: str | None = None  # IANA zone, falls back to DEFAULT_TIMEZONE
    exclude_keywords: list[str] = Field(default_factory=list)

    @field_validator("days_of_week")
    @classmethod
    def validate_days(cls, v: list[int]) -> list[int]:
        for day in v:
            if day < 0 or day > 6:
                raise ValueError("days_of_week values must be between 0 (Sunday) and 6 (Saturday)")
        return sorted(set(v))

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str | None) -> str | None:
        if v is None:
            return v
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone '{v}'")
        return v

    @model_validator(mode="after")
    def validate_window(self) -> "SequenceConditions":
        if self.business_hours_only:
            if self.hours_start >= self.hours_end:
                raise ValueError("hours_start must be before hours_end")
            if not self.days_of_week:
                raise ValueError("days_of_week cannot be empty when business_hours_only is set")
        return self


class StepSendConditions(BaseModel):
    """Per-step send conditions."""

    previous_message_opened: bool | None = None
    previous_message_responded: bool | None = None
    contact_active: bool | None = None
    min_time_since_last_message: int | None = Field(default=None, ge=0)  # minutes
    max_attempts: int | None = Field(default=None, ge=1)


# =============================================================================
# Step Schemas
# =============================================================================


class StepCreate(BaseModel):
    """Schema for one step in a create/update request."""

    step_order: int | None = Field(default=None, ge=1)  # Defaults to list position
    delay_amount: int = Field(ge=0)
    delay_unit: DelayUnit
    message_template: str = Field(min_length=1, max_length=4096)
    available_variables: list[str] = Field(default_factory=list)
    send_conditions: StepSendConditions | None = None


class StepRead(BaseModel):
    id: UUID
    step_order: int
    delay_amount: int
    delay_unit: str
    message_template: str
    available_variables: list[str]
    send_conditions: dict | None

    model_config = {"from_attributes": True}


# =============================================================================
# Sequence CRUD Schemas
# =============================================================================


class SequenceCreate(BaseModel):
    """Schema for creating a sequence with its steps."""

    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    enabled: bool = True
    trigger_type: TriggerType
    trigger_config: dict[str, object] = Field(default_factory=dict)  # Validated per trigger_type
    strategy: FollowUpStrategy = FollowUpStrategy.MODERATE
    conditions: SequenceConditions = Field(default_factory=SequenceConditions)
    steps: list[StepCreate] = Field(min_length=1)


class SequenceUpdate(BaseModel):
    """Schema for updating a sequence. A steps list replaces all steps."""

    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    enabled: bool | None = None
    trigger_type: TriggerType | None = None
    trigger_config: dict[str, object] | None = None
    strategy: FollowUpStrategy | None = None
    conditions: SequenceConditions | None = None
    steps: list[StepCreate] | None = Field(default=None, min_length=1)


class SequenceRead(BaseModel):
    """Schema for reading a sequence."""

    id: UUID
    organization_id: UUID
    name: str
    description: str | None
    enabled: bool
    trigger_type: str
    trigger_config: dict
    strategy: str
    conditions: dict
    total_executions: int
    successful_conversions: int
    created_at: datetime
    updated_at: datetime
    steps: list[StepRead]

    model_config = {"from_attributes": True}


class SequenceListItem(BaseModel):
    id: UUID
    name: str
    enabled: bool
    trigger_type: str
    strategy: str
    total_executions: int
    successful_conversions: int
    created_at: datetime

    model_config = {"from_attributes": True}
