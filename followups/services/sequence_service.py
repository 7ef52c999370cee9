"""Sequence store: CRUD of follow-up sequences and their ordered steps."""

import logging
from datetime import datetime, timedelta, timezone
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.orm import Session, selectinload

from followups.core.exceptions import NotFoundError, SequenceValidationError
from followups.core.structured_logging import build_log_context
from followups.db.enums import DelayUnit, TriggerType
from followups.db.models import Execution, Sequence, Step
from followups.schemas.sequence import (
    TRIGGER_CONFIG_MODELS,
    SequenceCreate,
    SequenceUpdate,
    StepCreate,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Delay math
# =============================================================================


def compute_delay(delay_amount: int, delay_unit: str) -> timedelta:
    """Convert a step delay into a timedelta."""
    unit = DelayUnit(delay_unit)
    if unit == DelayUnit.MINUTES:
        return timedelta(minutes=delay_amount)
    if unit == DelayUnit.HOURS:
        return timedelta(hours=delay_amount)
    return timedelta(days=delay_amount)


def step_delay(step: Step) -> timedelta:
    return compute_delay(step.delay_amount, step.delay_unit)


# =============================================================================
# Validation
# =============================================================================


def _validate_trigger_config(trigger_type: TriggerType | str, config: dict | None) -> dict:
    """
    Validate trigger_config against the model for its trigger_type.

    Keys belonging to other trigger types are dropped, not rejected.
    Returns the normalized config to persist.
    """
    trigger = TriggerType(trigger_type)
    model = TRIGGER_CONFIG_MODELS[trigger]
    try:
        parsed = model.model_validate(config or {})
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'trigger_config'}: {err['msg']}"
            for err in e.errors()
        )
        raise SequenceValidationError(
            f"Invalid trigger_config for {trigger.value}: {problems}"
        ) from e
    return parsed.model_dump(mode="json", exclude_none=True)


def _normalize_steps(steps: list[StepCreate]) -> list[StepCreate]:
    """
    Return steps sorted by step_order, numbering them by position if unset.

    Explicit orders must be unique and contiguous from 1.
    """
    if not steps:
        raise SequenceValidationError("A sequence needs at least one step")

    explicit = [s.step_order for s in steps if s.step_order is not None]
    if not explicit:
        return [s.model_copy(update={"step_order": i}) for i, s in enumerate(steps, start=1)]
    if len(explicit) != len(steps):
        raise SequenceValidationError("Either all steps set step_order or none do")

    ordered = sorted(steps, key=lambda s: s.step_order)
    expected = list(range(1, len(ordered) + 1))
    actual = [s.step_order for s in ordered]
    if actual != expected:
        raise SequenceValidationError(
            f"step_order values must be contiguous starting at 1, got {actual}"
        )
    return ordered


def _build_step(sequence_id: UUID, data: StepCreate) -> Step:
    return Step(
        sequence_id=sequence_id,
        step_order=data.step_order,
        delay_amount=data.delay_amount,
        delay_unit=data.delay_unit.value,
        message_template=data.message_template,
        available_variables=list(data.available_variables),
        send_conditions=(
            data.send_conditions.model_dump(mode="json", exclude_none=True)
            if data.send_conditions
            else None
        ),
    )


# =============================================================================
# CRUD
# =============================================================================


def create_sequence(db: Session, org_id: UUID, data: SequenceCreate) -> Sequence:
    """
    Create a sequence and its steps in one transaction.

    Raises:
        SequenceValidationError: trigger_config or step list is malformed
    """
    trigger_config = _validate_trigger_config(data.trigger_type, data.trigger_config)
    steps = _normalize_steps(data.steps)

    sequence = Sequence(
        organization_id=org_id,
        name=data.name,
        description=data.description,
        enabled=data.enabled,
        trigger_type=data.trigger_type.value,
        trigger_config=trigger_config,
        strategy=data.strategy.value,
        conditions=data.conditions.model_dump(mode="json", exclude_none=True),
        total_executions=0,
        successful_conversions=0,
    )
    try:
        db.add(sequence)
        db.flush()
        for step in steps:
            db.add(_build_step(sequence.id, step))
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(sequence)
    logger.info(
        "Follow-up sequence created with %d steps",
        len(steps),
        extra=build_log_context(org_id=org_id, sequence_id=sequence.id),
    )
    return sequence


def get_sequence(db: Session, org_id: UUID, sequence_id: UUID) -> Sequence | None:
    """Get sequence by ID (org-scoped)."""
    return (
        db.query(Sequence)
        .options(selectinload(Sequence.steps))
        .filter(Sequence.id == sequence_id, Sequence.organization_id == org_id)
        .first()
    )


def list_sequences(
    db: Session, org_id: UUID, enabled: bool | None = None
) -> list[Sequence]:
    """List sequences for an organization, newest first."""
    query = db.query(Sequence).filter(Sequence.organization_id == org_id)
    if enabled is not None:
        query = query.filter(Sequence.enabled.is_(enabled))
    return query.order_by(Sequence.created_at.desc(), Sequence.name).all()


def get_step(db: Session, sequence_id: UUID | None, step_order: int) -> Step | None:
    """Look up a step by its 1-based order."""
    if sequence_id is None:
        return None
    return (
        db.query(Step)
        .filter(Step.sequence_id == sequence_id, Step.step_order == step_order)
        .first()
    )


def update_sequence(
    db: Session, org_id: UUID, sequence_id: UUID, data: SequenceUpdate
) -> Sequence:
    """
    Update a sequence.

    A steps list fully replaces the existing steps. Running executions
    keep pointing at step_order numbers, so they pick up the new content.

    Raises:
        NotFoundError: sequence missing
        SequenceValidationError: trigger_config or step list is malformed
    """
    sequence = get_sequence(db, org_id, sequence_id)
    if not sequence:
        raise NotFoundError("Sequence not found")

    if data.trigger_type is not None or data.trigger_config is not None:
        trigger_type = data.trigger_type or sequence.trigger_type
        trigger_config = (
            data.trigger_config if data.trigger_config is not None else sequence.trigger_config
        )
        sequence.trigger_config = _validate_trigger_config(trigger_type, trigger_config)
        sequence.trigger_type = TriggerType(trigger_type).value

    new_steps = _normalize_steps(data.steps) if data.steps is not None else None

    if data.name is not None:
        sequence.name = data.name
    if data.description is not None:
        sequence.description = data.description
    if data.enabled is not None:
        sequence.enabled = data.enabled
    if data.strategy is not None:
        sequence.strategy = data.strategy.value
    if data.conditions is not None:
        sequence.conditions = data.conditions.model_dump(mode="json", exclude_none=True)

    try:
        if new_steps is not None:
            # Deletes must hit the DB before inserts reuse the same step_order values
            sequence.steps.clear()
            db.flush()
            for step in new_steps:
                sequence.steps.append(_build_step(sequence.id, step))
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(sequence)
    return sequence


def delete_sequence(
    db: Session, org_id: UUID, sequence_id: UUID, now: datetime | None = None
) -> None:
    """
    Delete a sequence and its steps.

    Open executions are cancelled first; all executions and their logs
    survive with sequence_id cleared.

    Raises:
        NotFoundError: sequence missing
    """
    from followups.services import execution_service

    now = now or datetime.now(timezone.utc)
    sequence = get_sequence(db, org_id, sequence_id)
    if not sequence:
        raise NotFoundError("Sequence not found")

    try:
        cancelled = execution_service.cancel_open_executions_for_sequence(db, sequence.id, now=now)
        db.query(Execution).filter(Execution.sequence_id == sequence.id).update(
            {Execution.sequence_id: None}, synchronize_session=False
        )
        db.delete(sequence)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "Follow-up sequence deleted, %d open executions cancelled",
        cancelled,
        extra=build_log_context(org_id=org_id, sequence_id=sequence_id),
    )
