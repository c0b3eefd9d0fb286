"""Job scheduler using APScheduler."""

import asyncio
import logging
import signal

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from wagerbot.config import Settings
from wagerbot.reconciler import BetReconciler
from wagerbot.runtime import open_runtime

logger = logging.getLogger(__name__)

RECONCILE_JOB_ID = "reconcile-bets"


async def reconcile_job(reconciler: BetReconciler) -> None:
    """Scheduler job wrapper. A failed tick is logged and retried next interval."""
    try:
        result = await reconciler.run_tick()
        if not result.skipped:
            logger.info(
                "Reconciler: %d bets resolved, %d participants settled",
                result.bets_resolved,
                result.participants_settled,
            )
    except Exception as exc:
        logger.error("Reconciliation tick failed: %s", exc, exc_info=True)


def create_scheduler(settings: Settings, reconciler: BetReconciler) -> AsyncIOScheduler:
    """Build the scheduler. Overdue firings are coalesced, never queued."""
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        reconcile_job,
        IntervalTrigger(seconds=settings.reconciler.interval_seconds),
        args=[reconciler],
        id=RECONCILE_JOB_ID,
        name="Reconciler: Resolve & Settle Bets",
        max_instances=1,
        coalesce=True,
    )
    logger.info(
        f"Registered job: Bet Reconciler (every {settings.reconciler.interval_seconds}s)"
    )
    return scheduler


async def run_service(settings: Settings) -> None:
    """Run the reconciler on its interval until SIGINT/SIGTERM."""
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    async with open_runtime(settings) as runtime:
        scheduler = create_scheduler(settings, runtime.reconciler)
        scheduler.start()
        logger.info("✓ Scheduler started")
        logger.info(f"✓ {len(scheduler.get_jobs())} jobs registered")

        try:
            await stop.wait()
            logger.info("Received shutdown signal")
        finally:
            scheduler.shutdown(wait=False)
            if runtime.reconciler.is_running:
                logger.info("Waiting for in-flight reconciliation tick to finish...")
            await runtime.reconciler.wait_idle()
            logger.info("✓ Scheduler stopped cleanly")
