"""
Internal endpoints for scheduled/cron operations.

Protected by X-Internal-Secret header.
"""

from fastapi import APIRouter, Depends, Header, HTTPException

from followups.core.config import settings
from followups.core.exceptions import TransportConfigError
from followups.schemas.execution import SweepResult
from followups.services.scheduler import Scheduler


router = APIRouter(tags=["internal"])


def verify_internal_secret(x_internal_secret: str = Header(...)):
    """Verify the internal secret header."""
    expected = settings.INTERNAL_SECRET
    if not expected:
        raise HTTPException(status_code=501, detail="INTERNAL_SECRET not configured")
    if x_internal_secret != expected:
        raise HTTPException(status_code=403, detail="Invalid internal secret")


def get_scheduler() -> Scheduler:
    try:
        return Scheduler()
    except TransportConfigError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.post(
    "/process-pending",
    response_model=SweepResult,
    dependencies=[Depends(verify_internal_secret)],
)
async def process_pending(scheduler: Scheduler = Depends(get_scheduler)):
    """Run one scheduler sweep now (operational testing, external cron)."""
    return await scheduler.run_once()
