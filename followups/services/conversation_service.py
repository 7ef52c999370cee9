"""Conversation link tracking and cancel-on-response."""

import logging
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from followups.core.constants import MAX_RESPONSE_TEXT_LENGTH
from followups.core.structured_logging import build_log_context
from followups.db.enums import OPEN_EXECUTION_STATUSES
from followups.db.models import ConversationLink, Execution, MessageLog
from followups.schemas.execution import ConversationTrack
from followups.services import execution_service

logger = logging.getLogger(__name__)


def _get_link(db: Session, org_id: UUID, conversation_id: str) -> ConversationLink | None:
    return (
        db.query(ConversationLink)
        .filter(
            ConversationLink.organization_id == org_id,
            ConversationLink.conversation_id == conversation_id,
        )
        .first()
    )


def _apply_outbound(link: ConversationLink, data: ConversationTrack, now: datetime) -> None:
    if data.inbox_id is not None:
        link.inbox_id = data.inbox_id
    if data.account_id is not None:
        link.account_id = data.account_id
    if data.contact_ref is not None:
        link.contact_ref = data.contact_ref
    link.awaiting_response = True
    link.last_outbound_at = now


def track_for_follow_up(
    db: Session,
    org_id: UUID,
    data: ConversationTrack,
    now: datetime | None = None,
) -> ConversationLink:
    """
    Mark a conversation as awaiting a reply after an outbound message.

    Does not start an execution; trigger evaluators read these links.
    """
    now = now or datetime.now(timezone.utc)
    link = _get_link(db, org_id, data.conversation_id)
    if link is None:
        link = ConversationLink(organization_id=org_id, conversation_id=data.conversation_id)
        _apply_outbound(link, data, now)
        db.add(link)
        try:
            db.commit()
        except IntegrityError:
            # Concurrent insert for the same conversation won the race
            db.rollback()
            link = _get_link(db, org_id, data.conversation_id)
            if link is None:
                raise
            _apply_outbound(link, data, now)
            db.commit()
    else:
        _apply_outbound(link, data, now)
        db.commit()

    db.refresh(link)
    return link


def cancel_on_response(
    db: Session,
    conversation_id: str,
    *,
    org_id: UUID | None = None,
    response_text: str | None = None,
    now: datetime | None = None,
) -> list[UUID]:
    """
    Cancel every open execution linked to a conversation the contact replied on.

    The reply is recorded on the latest message log of each cancelled
    execution. Returns the ids of the executions cancelled.
    """
    now = now or datetime.now(timezone.utc)

    query = db.query(Execution).filter(
        Execution.conversation_id == conversation_id,
        Execution.status.in_(OPEN_EXECUTION_STATUSES),
    )
    link_query = db.query(ConversationLink).filter(
        ConversationLink.conversation_id == conversation_id
    )
    if org_id is not None:
        query = query.filter(Execution.organization_id == org_id)
        link_query = link_query.filter(ConversationLink.organization_id == org_id)

    cancelled: list[UUID] = []
    for execution in query.with_for_update().all():
        if not execution_service.apply_cancel(execution, now):
            continue
        cancelled.append(execution.id)

        latest_log = (
            db.query(MessageLog)
            .filter(MessageLog.execution_id == execution.id)
            .order_by(MessageLog.sent_at.desc(), MessageLog.step_order.desc())
            .first()
        )
        if latest_log is not None:
            latest_log.contact_responded = True
            latest_log.response_received_at = now
            if response_text:
                latest_log.response_text = response_text[:MAX_RESPONSE_TEXT_LENGTH]

    for link in link_query.all():
        link.awaiting_response = False
        link.last_inbound_at = now

    db.commit()

    if cancelled:
        logger.info(
            "Contact replied, %d follow-up executions cancelled",
            len(cancelled),
            extra=build_log_context(org_id=org_id),
        )
    return cancelled


def list_stale_conversations(
    db: Session,
    org_id: UUID,
    no_response_minutes: int,
    *,
    now: datetime | None = None,
    limit: int = 100,
) -> list[ConversationLink]:
    """Conversations still awaiting a reply after no_response_minutes."""
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(minutes=no_response_minutes)
    return (
        db.query(ConversationLink)
        .filter(
            ConversationLink.organization_id == org_id,
            ConversationLink.awaiting_response.is_(True),
            ConversationLink.last_outbound_at.is_not(None),
            ConversationLink.last_outbound_at <= cutoff,
        )
        .order_by(ConversationLink.last_outbound_at)
        .limit(limit)
        .all()
    )
