"""Read-only follow-up statistics."""

from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from followups.core.exceptions import NotFoundError
from followups.db.enums import DeliveryStatus
from followups.db.models import Execution, MessageLog, Sequence
from followups.schemas.stats import SequenceStats


def _rate(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole > 0 else 0.0


def _build_stats(db: Session, sequence: Sequence) -> SequenceStats:
    by_status = dict(
        db.query(Execution.status, func.count(Execution.id))
        .filter(Execution.sequence_id == sequence.id)
        .group_by(Execution.status)
        .all()
    )

    avg_steps = (
        db.query(func.avg(Execution.current_step))
        .filter(Execution.sequence_id == sequence.id, Execution.converted.is_(True))
        .scalar()
    )

    log_counts = dict(
        db.query(MessageLog.delivery_status, func.count(MessageLog.id))
        .join(Execution, Execution.id == MessageLog.execution_id)
        .filter(Execution.sequence_id == sequence.id)
        .group_by(MessageLog.delivery_status)
        .all()
    )
    failed_sends = log_counts.pop(DeliveryStatus.FAILED.value, 0)

    return SequenceStats(
        sequence_id=sequence.id,
        name=sequence.name,
        total_executions=sequence.total_executions,
        conversions=sequence.successful_conversions,
        conversion_rate=_rate(sequence.successful_conversions, sequence.total_executions),
        average_steps_to_conversion=round(float(avg_steps), 2) if avg_steps is not None else None,
        by_status=by_status,
        messages_sent=sum(log_counts.values()),
        failed_sends=failed_sends,
    )


def get_sequence_stats(db: Session, org_id: UUID, sequence_id: UUID) -> SequenceStats:
    """
    Stats for one sequence.

    Raises:
        NotFoundError: sequence missing
    """
    sequence = (
        db.query(Sequence)
        .filter(Sequence.id == sequence_id, Sequence.organization_id == org_id)
        .first()
    )
    if not sequence:
        raise NotFoundError("Sequence not found")
    return _build_stats(db, sequence)


def get_org_stats(db: Session, org_id: UUID) -> list[SequenceStats]:
    """Stats for every sequence of an organization."""
    sequences = (
        db.query(Sequence)
        .filter(Sequence.organization_id == org_id)
        .order_by(Sequence.name)
        .all()
    )
    return [_build_stats(db, sequence) for sequence in sequences]
