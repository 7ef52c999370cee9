"""Pydantic schemas for follow-up statistics."""

from uuid import UUID

from pydantic import BaseModel


class SequenceStats(BaseModel):
    """Derived execution and conversion figures for one sequence."""

    sequence_id: UUID
    name: str
    total_executions: int
    conversions: int
    conversion_rate: float  # Percentage, one decimal
    average_steps_to_conversion: float | None
    by_status: dict[str, int]
    messages_sent: int
    failed_sends: int
