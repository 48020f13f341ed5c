"""
Background Scheduler for the Claim Escrow

Handles automatic tasks:
- Closing betting on claims past their deadline
- Asking the oracle to resolve locked claims
- Periodic health check

Uses asyncio for non-blocking background tasks.
"""

import asyncio
import logging
import traceback
from typing import Callable, List, Optional, Tuple

from escrow import ClaimStatus, EscrowError, EscrowManager, get_escrow_manager
from oracle import OracleError, OracleProvider, get_oracle

logger = logging.getLogger("Escrow-Scheduler")


class BackgroundScheduler:
    """
    Background task scheduler using asyncio.
    Runs periodic tasks without blocking the main API.
    """

    def __init__(self):
        self.tasks: dict[str, asyncio.Task] = {}
        self.running = False
        self._stop_event: Optional[asyncio.Event] = None

    async def start(self):
        """Start the scheduler."""
        if self.running:
            logger.warning("Scheduler already running")
            return

        self.running = True
        self._stop_event = asyncio.Event()
        logger.info("Background scheduler started")

    async def stop(self):
        """Stop all scheduled tasks."""
        self.running = False
        if self._stop_event:
            self._stop_event.set()

        for name, task in self.tasks.items():
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        self.tasks.clear()
        logger.info("Background scheduler stopped")

    def schedule_periodic(
        self,
        name: str,
        coro_func: Callable,
        interval_seconds: int,
        run_immediately: bool = False
    ):
        """
        Schedule a coroutine to run periodically.

        Args:
            name: Unique task name
            coro_func: Async function to run
            interval_seconds: Seconds between runs
            run_immediately: Whether to run immediately on start
        """
        if name in self.tasks:
            self.tasks[name].cancel()

        async def periodic_wrapper():
            if not run_immediately:
                await asyncio.sleep(interval_seconds)

            while self.running:
                try:
                    await coro_func()
                except asyncio.CancelledError:
                    break
                except Exception as e:
                    logger.error(f"Error in scheduled task '{name}': {e}")
                    logger.error(traceback.format_exc())

                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=interval_seconds)
                except asyncio.TimeoutError:
                    pass  # Normal timeout, continue loop

        task = asyncio.create_task(periodic_wrapper())
        self.tasks[name] = task
        logger.info(f"Scheduled task '{name}' to run every {interval_seconds}s")

    def unschedule(self, name: str):
        """Remove a scheduled task."""
        if name in self.tasks:
            self.tasks[name].cancel()
            del self.tasks[name]
            logger.info(f"Unscheduled task '{name}'")


# Global scheduler instance
_scheduler: Optional[BackgroundScheduler] = None


def get_scheduler() -> BackgroundScheduler:
    """Get or create the global scheduler instance."""
    global _scheduler
    if _scheduler is None:
        _scheduler = BackgroundScheduler()
    return _scheduler


# ==================== Scheduled Tasks ====================

async def lock_expired_claims(manager: Optional[EscrowManager] = None) -> List[str]:
    """Close betting on open claims whose deadline has passed."""
    manager = manager or get_escrow_manager()
    locked = await asyncio.to_thread(manager.lock_expired_claims)
    for claim_id in locked:
        logger.info(f"  Claim {claim_id}: betting closed")
    return locked


async def resolve_pending_claims(
    manager: Optional[EscrowManager] = None,
    oracle: Optional[OracleProvider] = None,
    resolver_id: str = "oracle"
) -> List[Tuple[str, str]]:
    """
    Ask the oracle about every locked claim and apply its verdict.

    A claim whose oracle call fails stays RESOLVING and is picked up again on
    the next run.
    """
    manager = manager or get_escrow_manager()
    oracle = oracle or get_oracle()
    if oracle is None:
        logger.debug("No oracle configured; skipping automated resolution")
        return []

    results = []
    locked = await asyncio.to_thread(manager.list_claims, ClaimStatus.LOCKED)
    resolving = await asyncio.to_thread(manager.list_claims, ClaimStatus.RESOLVING)
    pending = [(claim, True) for claim in locked] + [(claim, False) for claim in resolving]

    for claim, needs_start in pending:
        try:
            if needs_start:
                await asyncio.to_thread(manager.begin_resolution, claim.claim_id)
            verdict = await oracle.evaluate(claim)
            await asyncio.to_thread(
                manager.resolve_automated,
                claim.claim_id,
                verdict.verdict,
                verdict.confidence,
                resolver=resolver_id,
                evidence=verdict.evidence_cid,
                reason=verdict.reason
            )
            snapshot = await asyncio.to_thread(manager.snapshot, claim.claim_id)
            results.append((claim.claim_id, snapshot["status"]))
        except OracleError as e:
            logger.warning(f"Oracle unavailable for claim {claim.claim_id}: {e}")
        except EscrowError as e:
            logger.error(f"Could not resolve claim {claim.claim_id}: {e}")

    if results:
        logger.info(f"Processed {len(results)} claim(s) through the oracle")
    return results


async def health_check():
    """Periodic health check to ensure storage is responsive."""
    try:
        stats = await asyncio.to_thread(get_escrow_manager().get_stats)
        logger.debug(f"Health check OK - {stats['total_claims']} claim(s), treasury {stats['treasury_balance']}")
    except Exception as e:
        logger.error(f"Health check failed: {e}")


# ==================== Setup Function ====================

async def setup_scheduler():
    """
    Setup and start the background scheduler with all tasks.
    Call this when the API starts.
    """
    import settings

    scheduler = get_scheduler()
    await scheduler.start()

    scheduler.schedule_periodic(
        name="lock_expired",
        coro_func=lock_expired_claims,
        interval_seconds=settings.LOCK_SWEEP_INTERVAL,
        run_immediately=True
    )

    scheduler.schedule_periodic(
        name="resolve_claims",
        coro_func=lambda: resolve_pending_claims(resolver_id=settings.RESOLVER_ID),
        interval_seconds=settings.RESOLVE_INTERVAL,
        run_immediately=False
    )

    scheduler.schedule_periodic(
        name="health_check",
        coro_func=health_check,
        interval_seconds=60,
        run_immediately=False
    )

    logger.info("All background tasks scheduled")
    return scheduler


async def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    scheduler = get_scheduler()
    await scheduler.stop()
