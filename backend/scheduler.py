"""
Background Scheduler for the Points Market

Handles automatic tasks:
- Closing markets whose betting deadline has passed
- Resolving closed markets that have a news summary

Uses asyncio for non-blocking background tasks.
"""

import asyncio
import logging
import traceback
from typing import Callable, Optional

from config import EngineConfig
from market.manager import MarketManager

logger = logging.getLogger("PointsMarket-Scheduler")


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
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=interval_seconds)
                    return
                except asyncio.TimeoutError:
                    pass

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


# ==================== Scheduled Tasks ====================

async def close_expired_markets(manager: MarketManager):
    """Close every OPEN market past its closing time."""
    closed = await asyncio.to_thread(manager.close_expired_markets)
    if closed:
        logger.info(f"Auto-closed {len(closed)} market(s)")
        for market_id in closed:
            logger.info(f"  Market {market_id}: CLOSED")


async def resolve_closed_markets(manager: MarketManager):
    """
    Ask the oracle to resolve every CLOSED market with a news summary.
    Failures leave the market CLOSED; it is retried on the next run.
    """
    results = await manager.resolve_pending()
    for result in results:
        if result.success:
            logger.info(f"  Market {result.market_id}: RESOLVED -> {result.resolution.winner_outcome_id}")
        else:
            logger.warning(f"  Market {result.market_id}: not resolved ({result.message})")


# ==================== Setup Function ====================

async def setup_scheduler(manager: MarketManager, config: EngineConfig) -> BackgroundScheduler:
    """
    Setup and start the background scheduler with all tasks.
    Call this when the API starts.
    """
    scheduler = BackgroundScheduler()
    await scheduler.start()

    scheduler.schedule_periodic(
        name="close_markets",
        coro_func=lambda: close_expired_markets(manager),
        interval_seconds=config.close_check_interval,
        run_immediately=True
    )

    scheduler.schedule_periodic(
        name="resolve_markets",
        coro_func=lambda: resolve_closed_markets(manager),
        interval_seconds=config.resolve_check_interval,
        run_immediately=False
    )

    logger.info("All background tasks scheduled")
    return scheduler


async def shutdown_scheduler(scheduler: BackgroundScheduler):
    """Shutdown the scheduler gracefully."""
    await scheduler.stop()
