"""Executions router - start, inspect, and drive follow-up executions."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from followups.core.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from followups.core.deps import get_db, get_org_id
from followups.core.exceptions import InvalidStateError, NotFoundError
from followups.db.enums import ExecutionStatus
from followups.schemas.execution import ExecutionDetail, ExecutionRead, ExecutionStart
from followups.services import execution_service


router = APIRouter(prefix="/executions", tags=["Follow-up Executions"])

TOTAL_COUNT_HEADER = "X-Total-Count"


@router.post("/start", response_model=ExecutionRead, status_code=status.HTTP_201_CREATED)
def start_execution(
    data: ExecutionStart,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    """Start a sequence for a contact (called by trigger sources)."""
    try:
        return execution_service.start_execution(db, org_id, data)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidStateError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("", response_model=list[ExecutionRead])
def list_executions(
    response: Response,
    status_filter: ExecutionStatus | None = Query(None, alias="status"),
    sequence_id: UUID | None = Query(None),
    contact_phone: str | None = Query(None),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    """List executions with optional filters. Total count is in X-Total-Count."""
    items, total = execution_service.list_executions(
        db,
        org_id,
        status=status_filter.value if status_filter else None,
        sequence_id=sequence_id,
        contact_phone=contact_phone,
        limit=limit,
        offset=offset,
    )
    response.headers[TOTAL_COUNT_HEADER] = str(total)
    return items


@router.get("/{execution_id}", response_model=ExecutionDetail)
def get_execution(
    execution_id: UUID,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    """Get an execution with its message logs."""
    execution = execution_service.get_execution(db, org_id, execution_id)
    if not execution:
        raise HTTPException(status_code=404, detail="Execution not found")
    return execution


@router.put("/{execution_id}/cancel", response_model=ExecutionRead)
def cancel_execution(
    execution_id: UUID,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    """Cancel an execution. Already finished executions are returned unchanged."""
    try:
        return execution_service.cancel_execution(db, org_id, execution_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.put("/{execution_id}/convert", response_model=ExecutionRead)
def convert_execution(
    execution_id: UUID,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    """Mark an execution as converted."""
    try:
        return execution_service.mark_converted(db, org_id, execution_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.put("/{execution_id}/pause", response_model=ExecutionRead)
def pause_execution(
    execution_id: UUID,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    try:
        return execution_service.pause_execution(db, org_id, execution_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidStateError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.put("/{execution_id}/resume", response_model=ExecutionRead)
def resume_execution(
    execution_id: UUID,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    try:
        return execution_service.resume_execution(db, org_id, execution_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
