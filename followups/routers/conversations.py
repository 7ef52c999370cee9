"""Conversations router - outbound tracking and inbound reply notifications."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from followups.core.deps import get_db, get_org_id
from followups.schemas.execution import (
    CancelOnResponseResult,
    ConversationLinkRead,
    ConversationTrack,
    InboundMessage,
)
from followups.services import conversation_service


router = APIRouter(prefix="/conversations", tags=["Follow-up Conversations"])


@router.post("/track", response_model=ConversationLinkRead)
def track_conversation(
    data: ConversationTrack,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    """Record an outbound message; the conversation now awaits a reply."""
    return conversation_service.track_for_follow_up(db, org_id, data)


@router.post("/{conversation_id}/inbound", response_model=CancelOnResponseResult)
def inbound_message(
    conversation_id: str,
    data: InboundMessage | None = None,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    """Contact replied: cancel pending follow-ups on this conversation."""
    cancelled = conversation_service.cancel_on_response(
        db,
        conversation_id,
        org_id=org_id,
        response_text=data.response_text if data else None,
    )
    return CancelOnResponseResult(cancelled_execution_ids=cancelled)


@router.get("/stale", response_model=list[ConversationLinkRead])
def list_stale_conversations(
    no_response_minutes: int = Query(..., ge=1),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    """Conversations awaiting a reply for at least no_response_minutes."""
    return conversation_service.list_stale_conversations(
        db, org_id, no_response_minutes, limit=limit
    )
