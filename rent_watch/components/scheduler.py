"""
Polling scheduler for the Rent Watch system.

Runs a pass over all active searches at a fixed interval. The timer and
the manual trigger share ``run_pass``, which is single-flight: a pass
requested while another one is still running is skipped, not queued.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from ..exceptions import FetchFailure
from ..interfaces import ISearchRegistry
from ..services.listing_pipeline import ListingPipeline
from ..utils.error_handling import ErrorCategory, ErrorSeverity, get_error_tracker
from ..utils.logging import get_logger

logger = get_logger("scheduler")


@dataclass
class PassSummary:
    """Outcome of one scheduler pass."""

    trigger: str
    started_at: datetime
    skipped: bool = False
    searches_total: int = 0
    searches_processed: int = 0
    searches_failed: int = 0
    searches_withdrawn: int = 0
    listings_sent: int = 0
    duration_seconds: float = 0.0
    failed_search_ids: List[int] = field(default_factory=list)


class PollingScheduler:
    """Fixed-rate ticker with cancellation and a single-flight guard."""

    def __init__(
        self,
        pipeline: ListingPipeline,
        registry: ISearchRegistry,
        interval_seconds: float = 900,
        initial_delay_seconds: float = 900,
    ):
        """
        Initialize scheduler.

        Args:
            pipeline: Per-search fetch-dedup-dispatch pipeline
            registry: Source of active searches
            interval_seconds: Time between pass starts
            initial_delay_seconds: Wait before the first timed pass
        """
        self.pipeline = pipeline
        self.registry = registry
        self.interval_seconds = interval_seconds
        self.initial_delay_seconds = initial_delay_seconds

        self.is_running = False
        self.last_summary: Optional[PassSummary] = None
        self._pass_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start the timer task."""
        if self.is_running:
            logger.warning("Scheduler is already running")
            return

        self.is_running = True
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            "Scheduler started",
            extra={
                "interval_seconds": self.interval_seconds,
                "initial_delay_seconds": self.initial_delay_seconds,
            },
        )

    async def stop(self) -> None:
        """Stop the timer and wait for an in-flight pass to be cancelled."""
        if not self.is_running:
            return

        self.is_running = False
        self._stop_event.set()
        logger.info("Stopping scheduler")

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def trigger_now(self) -> PassSummary:
        """Run a pass immediately, unless one is already running."""
        return await self.run_pass(trigger="manual")

    async def _run_loop(self) -> None:
        if await self._wait(self.initial_delay_seconds):
            return

        while self.is_running:
            started = time.monotonic()
            try:
                await self.run_pass(trigger="timer")
            except Exception as e:
                logger.error(f"Error in scheduler loop: {e}", exc_info=True)

            # fixed rate: the next pass starts one interval after this one started
            elapsed = time.monotonic() - started
            if await self._wait(max(self.interval_seconds - elapsed, 0)):
                return

    async def _wait(self, seconds: float) -> bool:
        """Sleep for ``seconds``; True if stop was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def run_pass(self, trigger: str = "timer") -> PassSummary:
        """
        Process every active search once.

        Each search is isolated: a failure is logged and recorded, and the
        pass moves on to the next search.
        """
        summary = PassSummary(trigger=trigger, started_at=datetime.now())

        if self._pass_lock.locked():
            summary.skipped = True
            logger.warning("Pass already in progress, skipping", extra={"trigger": trigger})
            return summary

        async with self._pass_lock:
            started = time.monotonic()
            searches = self.registry.find_active_searches()
            summary.searches_total = len(searches)
            logger.info(
                "Starting pass", extra={"trigger": trigger, "searches": len(searches)}
            )

            for search in searches:
                try:
                    outcome = await self.pipeline.process_search(search)
                    if outcome.skipped:
                        summary.searches_withdrawn += 1
                        continue
                    summary.searches_processed += 1
                    summary.listings_sent += outcome.delivered
                except FetchFailure as e:
                    self._record_failure(summary, search.id, e, ErrorCategory.LISTING_SOURCE)
                except Exception as e:
                    self._record_failure(summary, search.id, e, ErrorCategory.SYSTEM)

            summary.duration_seconds = time.monotonic() - started

        self.last_summary = summary
        logger.info(
            "Pass finished",
            extra={
                "trigger": trigger,
                "processed": summary.searches_processed,
                "failed": summary.searches_failed,
                "withdrawn": summary.searches_withdrawn,
                "sent": summary.listings_sent,
                "duration_seconds": round(summary.duration_seconds, 2),
            },
        )
        return summary

    def _record_failure(
        self,
        summary: PassSummary,
        search_id: int,
        error: Exception,
        category: ErrorCategory,
    ) -> None:
        summary.searches_failed += 1
        summary.failed_search_ids.append(search_id)
        logger.error(
            f"Failed to process search: {error}",
            extra={"search_id": search_id},
            exc_info=category != ErrorCategory.LISTING_SOURCE,
        )
        get_error_tracker().record_error(
            component="scheduler",
            category=category,
            severity=ErrorSeverity.MEDIUM,
            message=f"Search {search_id} failed: {error}",
            exception=error,
            context={"search_id": search_id},
        )

    def get_status(self) -> dict:
        last = self.last_summary
        return {
            "running": self.is_running,
            "pass_in_progress": self._pass_lock.locked(),
            "interval_seconds": self.interval_seconds,
            "last_pass": {
                "trigger": last.trigger,
                "started_at": last.started_at.isoformat(),
                "processed": last.searches_processed,
                "failed": last.searches_failed,
                "withdrawn": last.searches_withdrawn,
                "sent": last.listings_sent,
            }
            if last
            else None,
        }
