"""
Background Scheduler Service

Runs the periodic sweeps in-process with the FastAPI application:
- Closing sweep (every CLOSE_POLLS_INTERVAL_MINUTES)
- Outcome reconciliation sweep (every RECONCILE_INTERVAL_MINUTES)

Each job takes its distributed lock first, so with several replicas only one
of them sweeps at a time.
"""

import logging
from datetime import timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from core.config import settings
from db.session import async_session_maker
from services.distributed_lock_service import (
    LOCK_CLOSE_POLLS,
    LOCK_RECONCILE_OUTCOMES,
    DistributedLockService,
)
from services.polymarket_client import OutcomeOracle
from services.vocdoni_client import AnonymousTallyAdapter

logger = logging.getLogger(__name__)

# Global scheduler instance and the adapters its jobs use
_scheduler: AsyncIOScheduler | None = None
_tally: Optional[AnonymousTallyAdapter] = None
_oracle: Optional[OutcomeOracle] = None


async def close_polls_job() -> None:
    """Close every active poll whose window has elapsed."""
    from services.poll_resolution import PollResolutionEngine

    try:
        async with async_session_maker() as lock_db:
            async with DistributedLockService.acquire_lock(lock_db, LOCK_CLOSE_POLLS) as acquired:
                if not acquired:
                    logger.debug("Closing sweep already running on another instance")
                    return

                async with async_session_maker() as db:
                    results = await PollResolutionEngine(db, _tally).close_due_polls()

                if results:
                    logger.info(f"Closing sweep processed {len(results)} polls")
    except Exception as e:
        logger.error(f"Closing sweep job failed: {e}", exc_info=True)


async def reconcile_outcomes_job() -> None:
    """Check market-linked resolved polls against the outcome oracle."""
    from services.outcome_reconciliation import OutcomeReconciler

    if _oracle is None:
        logger.warning("Outcome oracle not configured, skipping reconciliation")
        return

    try:
        async with async_session_maker() as lock_db:
            async with DistributedLockService.acquire_lock(lock_db, LOCK_RECONCILE_OUTCOMES) as acquired:
                if not acquired:
                    logger.debug("Reconciliation sweep already running on another instance")
                    return

                async with async_session_maker() as db:
                    results = await OutcomeReconciler(db, _oracle).reconcile_outcomes()

                if results:
                    logger.info(f"Reconciliation sweep processed {len(results)} polls")
    except Exception as e:
        logger.error(f"Reconciliation sweep job failed: {e}", exc_info=True)


def get_scheduler() -> AsyncIOScheduler:
    """Get the global scheduler instance."""
    global _scheduler
    if _scheduler is None:
        _scheduler = AsyncIOScheduler(timezone=timezone.utc)
    return _scheduler


async def start_scheduler(
    tally: Optional[AnonymousTallyAdapter] = None,
    oracle: Optional[OutcomeOracle] = None,
) -> None:
    """Register the sweep jobs and start the scheduler."""
    global _tally, _oracle
    _tally = tally
    _oracle = oracle

    scheduler = get_scheduler()
    if scheduler.running:
        logger.info("Scheduler already running")
        return

    scheduler.add_job(
        close_polls_job,
        trigger=IntervalTrigger(minutes=settings.CLOSE_POLLS_INTERVAL_MINUTES),
        id="close_polls",
        name="Close Due Polls",
        replace_existing=True,
        max_instances=1,
    )
    scheduler.add_job(
        reconcile_outcomes_job,
        trigger=IntervalTrigger(minutes=settings.RECONCILE_INTERVAL_MINUTES),
        id="reconcile_outcomes",
        name="Reconcile Outcomes",
        replace_existing=True,
        max_instances=1,
    )

    scheduler.start()
    logger.info(
        f"Background scheduler started (close every {settings.CLOSE_POLLS_INTERVAL_MINUTES}m, "
        f"reconcile every {settings.RECONCILE_INTERVAL_MINUTES}m)"
    )


async def stop_scheduler() -> None:
    """Stop the background scheduler gracefully."""
    global _scheduler, _tally, _oracle

    if _scheduler and _scheduler.running:
        logger.info("Stopping background scheduler...")
        _scheduler.shutdown(wait=True)
        logger.info("Background scheduler stopped")

    _scheduler = None
    _tally = None
    _oracle = None
