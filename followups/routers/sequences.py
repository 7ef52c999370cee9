"""Sequences router - CRUD and stats for follow-up sequences."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from followups.core.deps import get_db, get_org_id
from followups.core.exceptions import NotFoundError, SequenceValidationError
from followups.schemas.sequence import (
    SequenceCreate,
    SequenceListItem,
    SequenceRead,
    SequenceUpdate,
)
from followups.schemas.stats import SequenceStats
from followups.services import sequence_service, stats_service


router = APIRouter(tags=["Follow-up Sequences"])


# =============================================================================
# Sequence CRUD
# =============================================================================


@router.get("/sequences", response_model=list[SequenceListItem])
def list_sequences(
    enabled: bool | None = Query(None, description="Filter by enabled flag"),
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    """List sequences for the organization."""
    return sequence_service.list_sequences(db, org_id, enabled=enabled)


@router.post("/sequences", response_model=SequenceRead, status_code=status.HTTP_201_CREATED)
def create_sequence(
    data: SequenceCreate,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    """Create a sequence together with its steps."""
    try:
        return sequence_service.create_sequence(db, org_id, data)
    except SequenceValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/sequences/{sequence_id}", response_model=SequenceRead)
def get_sequence(
    sequence_id: UUID,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    """Get a sequence with its steps."""
    sequence = sequence_service.get_sequence(db, org_id, sequence_id)
    if not sequence:
        raise HTTPException(status_code=404, detail="Sequence not found")
    return sequence


@router.put("/sequences/{sequence_id}", response_model=SequenceRead)
def update_sequence(
    sequence_id: UUID,
    data: SequenceUpdate,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    """Update a sequence. A steps list replaces all existing steps."""
    try:
        return sequence_service.update_sequence(db, org_id, sequence_id, data)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SequenceValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/sequences/{sequence_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_sequence(
    sequence_id: UUID,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    """Delete a sequence. Its open executions are cancelled."""
    try:
        sequence_service.delete_sequence(db, org_id, sequence_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return None


# =============================================================================
# Stats
# =============================================================================


@router.get("/sequences/{sequence_id}/stats", response_model=SequenceStats)
def get_sequence_stats(
    sequence_id: UUID,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    """Execution and conversion figures for one sequence."""
    try:
        return stats_service.get_sequence_stats(db, org_id, sequence_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/stats", response_model=list[SequenceStats])
def get_org_stats(
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    """Stats for every sequence of the organization."""
    return stats_service.get_org_stats(db, org_id)
