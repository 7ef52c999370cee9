"""
Periodic sweep that advances due follow-up executions.

Each execution is claimed and advanced in its own session. Failures are
logged per execution and never abort the batch.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session

from followups.core.config import settings
from followups.core.structured_logging import build_log_context
from followups.db.session import SessionLocal
from followups.schemas.execution import SweepResult
from followups.services import execution_service
from followups.services.dispatchers import MessageDispatcher, get_dispatcher
from followups.services.execution_service import AdvanceOutcome

logger = logging.getLogger(__name__)


_OUTCOME_FIELDS = {
    AdvanceOutcome.SENT: "sent",
    AdvanceOutcome.COMPLETED: "completed",
    AdvanceOutcome.ABANDONED: "abandoned",
    AdvanceOutcome.FAILED: "failed",
    AdvanceOutcome.DEFERRED: "deferred",
    AdvanceOutcome.SKIPPED: "skipped",
    AdvanceOutcome.ERROR: "errors",
}


class Scheduler:
    """Owns the sweep loop; run_once() performs a single deterministic pass."""

    def __init__(
        self,
        dispatcher: MessageDispatcher | None = None,
        *,
        session_factory: Callable[[], Session] = SessionLocal,
        batch_size: int | None = None,
        max_concurrency: int | None = None,
        interval_seconds: float | None = None,
        lease_seconds: int | None = None,
        dispatch_timeout: float | None = None,
    ):
        self.dispatcher = dispatcher or get_dispatcher()
        self.session_factory = session_factory
        self.batch_size = batch_size or settings.SCHEDULER_BATCH_SIZE
        self.max_concurrency = max_concurrency or settings.SCHEDULER_MAX_CONCURRENCY
        self.interval_seconds = interval_seconds or settings.SCHEDULER_INTERVAL_SECONDS
        self.lease_seconds = lease_seconds or settings.CLAIM_LEASE_SECONDS
        self.dispatch_timeout = dispatch_timeout or settings.DISPATCH_TIMEOUT_SECONDS

    async def run_once(self, now: datetime | None = None) -> SweepResult:
        """Advance every execution due at `now`."""
        now = now or datetime.now(timezone.utc)

        db = self.session_factory()
        try:
            due_ids = execution_service.find_due_execution_ids(
                db, now=now, limit=self.batch_size
            )
        finally:
            db.close()

        result = SweepResult(due=len(due_ids))
        if not due_ids:
            return result

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _bounded(execution_id: UUID) -> AdvanceOutcome:
            async with semaphore:
                return await self._process(execution_id, now)

        outcomes = await asyncio.gather(*(_bounded(eid) for eid in due_ids))
        for outcome in outcomes:
            field = _OUTCOME_FIELDS[outcome]
            setattr(result, field, getattr(result, field) + 1)

        logger.info(
            "Follow-up sweep: due=%d sent=%d completed=%d abandoned=%d failed=%d deferred=%d skipped=%d errors=%d",
            result.due,
            result.sent,
            result.completed,
            result.abandoned,
            result.failed,
            result.deferred,
            result.skipped,
            result.errors,
        )
        return result

    async def _process(self, execution_id: UUID, now: datetime) -> AdvanceOutcome:
        db = self.session_factory()
        try:
            claimed = execution_service.claim_execution(
                db, execution_id, now=now, lease_seconds=self.lease_seconds
            )
            if not claimed:
                return AdvanceOutcome.SKIPPED
            return await execution_service.advance_execution(
                db,
                execution_id,
                self.dispatcher,
                now=now,
                timeout=self.dispatch_timeout,
            )
        except Exception:
            db.rollback()
            logger.exception(
                "Follow-up advance failed",
                extra=build_log_context(execution_id=execution_id),
            )
            self._release(db, execution_id)
            return AdvanceOutcome.ERROR
        finally:
            db.close()

    def _release(self, db: Session, execution_id: UUID) -> None:
        # Free the claim so the next sweep retries instead of waiting out the lease
        try:
            execution_service.release_claim(db, execution_id)
        except Exception:
            db.rollback()
            logger.exception(
                "Failed to release follow-up claim",
                extra=build_log_context(execution_id=execution_id),
            )

    async def run_forever(self, stop_event: asyncio.Event | None = None) -> None:
        """Sweep every interval until stop_event is set."""
        stop_event = stop_event or asyncio.Event()
        logger.info(
            "Follow-up scheduler started (interval=%ss, batch=%d, concurrency=%d)",
            self.interval_seconds,
            self.batch_size,
            self.max_concurrency,
        )
        while not stop_event.is_set():
            try:
                await self.run_once()
            except Exception:
                logger.exception("Follow-up sweep failed")
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("Follow-up scheduler stopped")


async def process_pending(
    dispatcher: MessageDispatcher | None = None, now: datetime | None = None
) -> SweepResult:
    """Run one sweep with default settings (manual trigger, CLI)."""
    return await Scheduler(dispatcher).run_once(now=now)
