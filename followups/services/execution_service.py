"""
Execution state machine.

Owns every status transition of a follow-up execution:

    active → active      (step sent, more steps remain)
    active → completed   (last step sent, or converted)
    active → abandoned   (next step missing, or max_attempts exhausted)
    active → cancelled   (manual, or contact replied)
    active ⇄ paused      (administrative hold)

Terminal executions never change again, except that mark_converted may
move any execution to completed/converted.
"""

import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from uuid import UUID

import anyio
from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from followups.core.config import settings
from followups.core.constants import MAX_ERROR_MESSAGE_LENGTH
from followups.core.exceptions import (
    ContactLimitReachedError,
    DispatchError,
    InvalidStateError,
    NotFoundError,
    StartGuardRejectedError,
)
from followups.core.structured_logging import build_log_context, mask_phone
from followups.db.enums import (
    OPEN_EXECUTION_STATUSES,
    TERMINAL_EXECUTION_STATUSES,
    DeliveryStatus,
    ExecutionStatus,
)
from followups.db.models import Execution, MessageLog, Sequence
from followups.schemas.execution import ExecutionStart
from followups.schemas.sequence import SequenceConditions, StepSendConditions
from followups.services import sequence_service
from followups.services.dispatchers import ContactRef, MessageDispatcher
from followups.services.template_service import render_template
from followups.utils.business_hours import is_within_window, next_window_start

logger = logging.getLogger(__name__)


class AdvanceOutcome(str, Enum):
    """Result of one advance attempt, reported by the scheduler."""

    SENT = "sent"  # Step sent, more steps remain
    COMPLETED = "completed"  # Last step sent
    ABANDONED = "abandoned"
    FAILED = "failed"  # Dispatch failed, step will be retried
    DEFERRED = "deferred"  # Outside send window or too soon after last message
    SKIPPED = "skipped"  # No longer active when processed
    ERROR = "error"  # Unexpected error, swallowed by the sweep


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _load_conditions(sequence: Sequence | None) -> SequenceConditions:
    if sequence is None:
        return SequenceConditions()
    return SequenceConditions.model_validate(sequence.conditions or {})


def _finish(execution: Execution, status: ExecutionStatus, now: datetime) -> None:
    """Move an execution into a terminal status."""
    execution.status = status.value
    execution.completed_at = now
    execution.next_scheduled_at = None
    execution.claimed_until = None


def is_terminal(execution: Execution) -> bool:
    return execution.status in TERMINAL_EXECUTION_STATUSES


# =============================================================================
# Start
# =============================================================================


def _check_start_conditions(
    db: Session, sequence: Sequence, data: ExecutionStart
) -> None:
    """Apply the sequence guard rails to a start request."""
    conditions = _load_conditions(sequence)

    if conditions.max_follow_ups_per_contact is not None:
        existing = (
            db.query(func.count(Execution.id))
            .filter(
                Execution.sequence_id == sequence.id,
                Execution.contact_phone == data.contact_phone,
            )
            .scalar()
        )
        if existing >= conditions.max_follow_ups_per_contact:
            raise ContactLimitReachedError(
                f"Contact already received {existing} follow-ups from this sequence"
            )

    if conditions.min_conversation_messages is not None:
        message_count = data.trigger_data.get("conversation_message_count")
        if message_count is not None:
            try:
                message_count = int(message_count)
            except (TypeError, ValueError):
                raise StartGuardRejectedError(
                    f"conversation_message_count must be an integer, got {message_count!r}"
                ) from None
        if message_count is not None and message_count < conditions.min_conversation_messages:
            raise StartGuardRejectedError(
                f"Conversation has {message_count} messages, "
                f"needs {conditions.min_conversation_messages}"
            )

    if conditions.exclude_keywords:
        message_text = data.trigger_data.get("message_text")
        if isinstance(message_text, str):
            lowered = message_text.lower()
            for keyword in conditions.exclude_keywords:
                if keyword and keyword.lower() in lowered:
                    raise StartGuardRejectedError(f"Excluded keyword '{keyword}' present")


def start_execution(
    db: Session,
    org_id: UUID,
    data: ExecutionStart,
    now: datetime | None = None,
) -> Execution:
    """
    Start a sequence for a contact.

    Schedules step 1 at now + its delay with current_step = 0.

    Raises:
        NotFoundError: sequence missing, or it has no step 1
        InvalidStateError: sequence disabled, or a start guard rejected the request
    """
    now = now or _utcnow()
    sequence = (
        db.query(Sequence)
        .filter(Sequence.id == data.sequence_id, Sequence.organization_id == org_id)
        .first()
    )
    if not sequence:
        raise NotFoundError("Sequence not found")
    if not sequence.enabled:
        raise InvalidStateError("Sequence is disabled")

    first_step = sequence_service.get_step(db, sequence.id, 1)
    if not first_step:
        raise NotFoundError("Sequence has no step 1")

    _check_start_conditions(db, sequence, data)

    conversation_id = data.conversation_id
    if conversation_id is None:
        for source in (data.trigger_data, data.conversation_context):
            if source.get("conversation_id") is not None:
                conversation_id = str(source["conversation_id"])
                break

    execution = Execution(
        sequence_id=sequence.id,
        organization_id=org_id,
        contact_phone=data.contact_phone,
        contact_name=data.contact_name,
        conversation_id=conversation_id,
        status=ExecutionStatus.ACTIVE.value,
        current_step=0,
        next_scheduled_at=now + sequence_service.step_delay(first_step),
        conversation_context=dict(data.conversation_context),
        trigger_data=dict(data.trigger_data),
        started_at=now,
        converted=False,
        total_messages_sent=0,
        failed_attempts=0,
    )
    db.add(execution)
    # Counter update in SQL so concurrent starts don't lose increments
    sequence.total_executions = Sequence.total_executions + 1
    db.commit()
    db.refresh(execution)

    logger.info(
        "Follow-up execution started for contact=%s, step 1 due at %s",
        mask_phone(execution.contact_phone),
        execution.next_scheduled_at.isoformat(),
        extra=build_log_context(
            org_id=org_id, sequence_id=sequence.id, execution_id=execution.id
        ),
    )
    return execution


# =============================================================================
# Queries
# =============================================================================


def get_execution(db: Session, org_id: UUID, execution_id: UUID) -> Execution | None:
    """Get execution by ID (org-scoped)."""
    return (
        db.query(Execution)
        .filter(Execution.id == execution_id, Execution.organization_id == org_id)
        .first()
    )


def _require_execution(db: Session, org_id: UUID, execution_id: UUID) -> Execution:
    execution = get_execution(db, org_id, execution_id)
    if not execution:
        raise NotFoundError("Execution not found")
    return execution


def list_executions(
    db: Session,
    org_id: UUID,
    *,
    status: str | None = None,
    sequence_id: UUID | None = None,
    contact_phone: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Execution], int]:
    """List executions with optional filters, newest first."""
    query = db.query(Execution).filter(Execution.organization_id == org_id)
    if status:
        query = query.filter(Execution.status == status)
    if sequence_id:
        query = query.filter(Execution.sequence_id == sequence_id)
    if contact_phone:
        query = query.filter(Execution.contact_phone == contact_phone)

    total = query.count()
    items = (
        query.order_by(Execution.started_at.desc(), Execution.id)
        .offset(offset)
        .limit(limit)
        .all()
    )
    return items, total


def find_due_execution_ids(db: Session, *, now: datetime, limit: int) -> list[UUID]:
    """Ids of active executions whose next step is due and not claimed."""
    stmt = (
        select(Execution.id)
        .where(
            Execution.status == ExecutionStatus.ACTIVE.value,
            Execution.next_scheduled_at.is_not(None),
            Execution.next_scheduled_at <= now,
            or_(Execution.claimed_until.is_(None), Execution.claimed_until <= now),
        )
        .order_by(Execution.next_scheduled_at)
        .limit(limit)
    )
    return list(db.execute(stmt).scalars().all())


# =============================================================================
# Claim
# =============================================================================


def claim_execution(
    db: Session,
    execution_id: UUID,
    *,
    now: datetime,
    lease_seconds: int | None = None,
) -> bool:
    """
    Atomically claim a due execution for advancement.

    Conditional write: succeeds only if the row is still active, due, and
    not held by another sweep. A cancel that commits first makes the claim
    fail, so the step is never sent.
    """
    lease = lease_seconds if lease_seconds is not None else settings.CLAIM_LEASE_SECONDS
    result = db.execute(
        update(Execution)
        .where(
            Execution.id == execution_id,
            Execution.status == ExecutionStatus.ACTIVE.value,
            Execution.next_scheduled_at.is_not(None),
            Execution.next_scheduled_at <= now,
            or_(Execution.claimed_until.is_(None), Execution.claimed_until <= now),
        )
        .values(claimed_until=now + timedelta(seconds=lease))
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def release_claim(db: Session, execution_id: UUID) -> None:
    """Drop a claim so the next sweep can retry."""
    db.execute(
        update(Execution)
        .where(Execution.id == execution_id)
        .values(claimed_until=None)
        .execution_options(synchronize_session=False)
    )
    db.commit()


# =============================================================================
# Advance
# =============================================================================


def _defer(db: Session, execution: Execution, until: datetime) -> AdvanceOutcome:
    execution.next_scheduled_at = until
    execution.claimed_until = None
    db.commit()
    return AdvanceOutcome.DEFERRED


def _retry_at(failed_attempts: int, now: datetime, base_seconds: int, max_seconds: int) -> datetime:
    delay = min(max_seconds, base_seconds * (2 ** max(failed_attempts - 1, 0)))
    return now + timedelta(seconds=delay)


async def advance_execution(
    db: Session,
    execution_id: UUID,
    dispatcher: MessageDispatcher,
    *,
    now: datetime | None = None,
    timeout: float | None = None,
    retry_backoff_seconds: int | None = None,
) -> AdvanceOutcome:
    """
    Send the next step of a claimed execution and move it forward.

    A failed dispatch is logged and leaves current_step untouched so the
    same step is retried. Without backoff the retry happens on the next
    sweep; with backoff next_scheduled_at is pushed out exponentially.
    """
    now = now or _utcnow()
    timeout = timeout if timeout is not None else settings.DISPATCH_TIMEOUT_SECONDS
    backoff = (
        retry_backoff_seconds
        if retry_backoff_seconds is not None
        else settings.DISPATCH_RETRY_BACKOFF_SECONDS
    )

    execution = db.get(Execution, execution_id)
    if not execution or execution.status != ExecutionStatus.ACTIVE.value:
        return AdvanceOutcome.SKIPPED

    log_context = build_log_context(
        org_id=execution.organization_id,
        sequence_id=execution.sequence_id,
        execution_id=execution.id,
    )

    next_order = execution.current_step + 1
    step = sequence_service.get_step(db, execution.sequence_id, next_order)
    if step is None:
        _finish(execution, ExecutionStatus.ABANDONED, now)
        db.commit()
        logger.info("Follow-up abandoned, no step %d", next_order, extra=log_context)
        return AdvanceOutcome.ABANDONED

    # Sequence-level send window
    conditions = _load_conditions(execution.sequence)
    if conditions.business_hours_only:
        window = dict(
            days_of_week=conditions.days_of_week,
            hours_start=conditions.hours_start,
            hours_end=conditions.hours_end,
            tz_name=conditions.timezone or settings.DEFAULT_TIMEZONE,
        )
        if not is_within_window(now, **window):
            opens_at = next_window_start(now, **window)
            logger.info(
                "Follow-up step %d outside send window, deferred to %s",
                next_order,
                opens_at.isoformat(),
                extra=log_context,
            )
            return _defer(db, execution, opens_at)

    # Step-level send conditions
    send_conditions = StepSendConditions.model_validate(step.send_conditions or {})
    if (
        send_conditions.max_attempts is not None
        and execution.failed_attempts >= send_conditions.max_attempts
    ):
        _finish(execution, ExecutionStatus.ABANDONED, now)
        db.commit()
        logger.warning(
            "Follow-up abandoned after %d failed attempts on step %d",
            execution.failed_attempts,
            next_order,
            extra=log_context,
        )
        return AdvanceOutcome.ABANDONED
    if send_conditions.min_time_since_last_message and execution.last_message_sent_at:
        earliest = execution.last_message_sent_at + timedelta(
            minutes=send_conditions.min_time_since_last_message
        )
        if now < earliest:
            return _defer(db, execution, earliest)

    text = render_template(step.message_template, execution.conversation_context)
    contact = ContactRef(
        phone=execution.contact_phone,
        name=execution.contact_name,
        conversation_id=execution.conversation_id,
    )
    step_order = step.step_order
    sequence_id = execution.sequence_id

    # No transaction stays open across the transport call
    db.commit()

    external_id: str | None = None
    error: str | None = None
    try:
        with anyio.fail_after(timeout):
            result = await dispatcher.send(contact, text)
        external_id = result.external_message_id
    except TimeoutError:
        error = f"Dispatch timed out after {timeout}s"
    except DispatchError as exc:
        error = str(exc) or "Dispatch failed"
    except Exception as exc:
        logger.exception("Unexpected dispatcher error", extra=log_context)
        error = f"Unexpected dispatch error: {exc}"

    # Re-read under lock: a cancel may have landed while the send was in flight
    db.refresh(execution, with_for_update=True)

    db.add(
        MessageLog(
            execution_id=execution.id,
            step_order=step_order,
            sent_at=now,
            message_sent=text,
            delivery_status=(DeliveryStatus.FAILED if error else DeliveryStatus.SENT).value,
            external_message_id=external_id,
            error_message=error[:MAX_ERROR_MESSAGE_LENGTH] if error else None,
            contact_responded=False,
        )
    )

    if error:
        execution.failed_attempts += 1
        execution.claimed_until = None
        if backoff > 0 and execution.status == ExecutionStatus.ACTIVE.value:
            execution.next_scheduled_at = _retry_at(
                execution.failed_attempts,
                now,
                backoff,
                settings.DISPATCH_RETRY_BACKOFF_MAX_SECONDS,
            )
        db.commit()
        logger.warning(
            "Follow-up step %d dispatch failed (attempt %d): %s",
            step_order,
            execution.failed_attempts,
            error,
            extra=log_context,
        )
        return AdvanceOutcome.FAILED

    execution.failed_attempts = 0
    execution.current_step = max(execution.current_step, step_order)
    execution.total_messages_sent += 1
    execution.last_message_sent_at = now
    execution.claimed_until = None

    if is_terminal(execution):
        # Cancelled or converted mid-flight: record the send, keep the status
        db.commit()
        logger.info(
            "Follow-up step %d sent after execution became %s",
            step_order,
            execution.status,
            extra=log_context,
        )
        return AdvanceOutcome.SENT

    following = sequence_service.get_step(db, sequence_id, step_order + 1)
    if following is None:
        _finish(execution, ExecutionStatus.COMPLETED, now)
        outcome = AdvanceOutcome.COMPLETED
    else:
        execution.next_scheduled_at = now + sequence_service.step_delay(following)
        outcome = AdvanceOutcome.SENT
    db.commit()

    logger.info(
        "Follow-up step %d sent, outcome=%s", step_order, outcome.value, extra=log_context
    )
    return outcome


# =============================================================================
# Administrative transitions
# =============================================================================


def apply_cancel(execution: Execution, now: datetime) -> bool:
    """Cancel a non-terminal execution in place. Returns False if already terminal."""
    if is_terminal(execution):
        return False
    _finish(execution, ExecutionStatus.CANCELLED, now)
    return True


def cancel_execution(
    db: Session, org_id: UUID, execution_id: UUID, now: datetime | None = None
) -> Execution:
    """
    Cancel an execution. No-op on terminal executions.

    Raises:
        NotFoundError: execution missing
    """
    now = now or _utcnow()
    execution = _require_execution(db, org_id, execution_id)
    if apply_cancel(execution, now):
        db.commit()
        db.refresh(execution)
        logger.info(
            "Follow-up execution cancelled",
            extra=build_log_context(org_id=org_id, execution_id=execution_id),
        )
    return execution


def cancel_open_executions_for_sequence(
    db: Session, sequence_id: UUID, now: datetime
) -> int:
    """Cancel every active/paused execution of a sequence. Caller commits."""
    executions = (
        db.query(Execution)
        .filter(
            Execution.sequence_id == sequence_id,
            Execution.status.in_(OPEN_EXECUTION_STATUSES),
        )
        .all()
    )
    return sum(1 for execution in executions if apply_cancel(execution, now))


def mark_converted(
    db: Session, org_id: UUID, execution_id: UUID, now: datetime | None = None
) -> Execution:
    """
    Record a conversion. Any status moves to completed with converted set.

    Every call increments the sequence's successful_conversions counter.

    Raises:
        NotFoundError: execution missing
    """
    now = now or _utcnow()
    execution = _require_execution(db, org_id, execution_id)

    _finish(execution, ExecutionStatus.COMPLETED, now)
    execution.converted = True
    if execution.sequence_id is not None:
        db.execute(
            update(Sequence)
            .where(Sequence.id == execution.sequence_id)
            .values(successful_conversions=Sequence.successful_conversions + 1)
            .execution_options(synchronize_session=False)
        )
    db.commit()
    db.refresh(execution)

    logger.info(
        "Follow-up execution converted after %d messages",
        execution.total_messages_sent,
        extra=build_log_context(
            org_id=org_id, sequence_id=execution.sequence_id, execution_id=execution_id
        ),
    )
    return execution


def pause_execution(
    db: Session, org_id: UUID, execution_id: UUID
) -> Execution:
    """
    Put an active execution on hold. The pending step time is kept.

    Raises:
        NotFoundError: execution missing
        InvalidStateError: execution already finished
    """
    execution = _require_execution(db, org_id, execution_id)
    if execution.status == ExecutionStatus.PAUSED.value:
        return execution
    if is_terminal(execution):
        raise InvalidStateError(f"Cannot pause a {execution.status} execution")

    execution.status = ExecutionStatus.PAUSED.value
    db.commit()
    db.refresh(execution)
    return execution


def resume_execution(
    db: Session, org_id: UUID, execution_id: UUID, now: datetime | None = None
) -> Execution:
    """
    Resume a paused execution. An overdue step fires on the next sweep.

    Raises:
        NotFoundError: execution missing
        InvalidStateError: execution already finished
    """
    now = now or _utcnow()
    execution = _require_execution(db, org_id, execution_id)
    if execution.status == ExecutionStatus.ACTIVE.value:
        return execution
    if is_terminal(execution):
        raise InvalidStateError(f"Cannot resume a {execution.status} execution")

    execution.status = ExecutionStatus.ACTIVE.value
    if execution.next_scheduled_at is None:
        execution.next_scheduled_at = now
    db.commit()
    db.refresh(execution)
    return execution
