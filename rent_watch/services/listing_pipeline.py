"""
Fetch, dedup, dispatch and commit pass for a single search.

Shared by the scheduler's periodic passes and the immediate pass that
follows search creation. Ledger rows are written only for listings the
dispatcher confirmed.
"""

import asyncio
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..components.dispatcher import ListingDispatcher
from ..components.listing_fetcher import filter_by_districts
from ..components.listing_formatter import ListingFormatter
from ..exceptions import FetchFailure
from ..interfaces import IDedupLedger, IListingFetcher, IMessagingChannel, ISearchRegistry
from ..models.listing import Listing
from ..models.search import Search
from ..utils.logging import get_logger

logger = get_logger("pipeline")


@dataclass
class PipelineOutcome:
    """Counters for one processed search."""

    search_id: int
    skipped: bool = False
    fetched: int = 0
    matched: int = 0
    already_sent: int = 0
    attempted: int = 0
    delivered: int = 0
    failed: int = 0
    recorded: int = 0


class ListingPipeline:
    """Runs the fetch-dedup-dispatch-commit sequence for one search."""

    def __init__(
        self,
        fetcher: IListingFetcher,
        ledger: IDedupLedger,
        dispatcher: ListingDispatcher,
        registry: ISearchRegistry,
        channel: IMessagingChannel,
        formatter: Optional[ListingFormatter] = None,
        fetch_timeout: float = 120.0,
    ):
        self.fetcher = fetcher
        self.ledger = ledger
        self.dispatcher = dispatcher
        self.registry = registry
        self.channel = channel
        self.formatter = formatter or ListingFormatter()
        self.fetch_timeout = fetch_timeout
        self._search_locks: Dict[int, asyncio.Lock] = {}
        self._lock_holders: Dict[int, int] = {}

    async def process_search(
        self, search: Search, announce_empty: bool = False
    ) -> PipelineOutcome:
        """
        Process one search.

        Passes over the same search never overlap: a second caller waits
        for the first to commit, then sees its ledger rows.

        The stored search is read again before fetching and before sending,
        so criteria edits are honoured and a search paused or deleted in the
        meantime is skipped.

        Args:
            search: The search to check; only its id is relied on
            announce_empty: Tell the user when nothing new was found

        Raises:
            FetchFailure: If the listing source failed; last check time is
                left untouched in that case.
        """
        lock = self._search_locks.setdefault(search.id, asyncio.Lock())
        self._lock_holders[search.id] = self._lock_holders.get(search.id, 0) + 1
        try:
            async with lock:
                return await self._process(search, announce_empty)
        finally:
            self._lock_holders[search.id] -= 1
            if self._lock_holders[search.id] == 0:
                del self._lock_holders[search.id]
                del self._search_locks[search.id]

    async def _process(self, search: Search, announce_empty: bool) -> PipelineOutcome:
        outcome = PipelineOutcome(search_id=search.id)

        search = self._reload_active(search.id, "fetch")
        if search is None:
            outcome.skipped = True
            return outcome
        chat_id = search.owner_id

        listings = await self._fetch(search)
        outcome.fetched = len(listings)

        matched = filter_by_districts(listings, search.criteria.districts)
        outcome.matched = len(matched)

        already_sent, candidates = self.ledger.partition(search.id, matched)
        outcome.already_sent = len(already_sent)

        if self._reload_active(search.id, "dispatch") is None:
            outcome.skipped = True
            return outcome

        if not candidates:
            self.registry.update_last_checked(search.id)
            if announce_empty:
                await self.channel.send_text(
                    chat_id, self.formatter.format_no_listings_yet()
                )
            logger.info(
                "No new listings",
                extra={"search_id": search.id, "fetched": outcome.fetched},
            )
            return outcome

        await self._send_header(chat_id, search.id, len(candidates))

        report = await self.dispatcher.send(chat_id, candidates)
        outcome.attempted = report.attempted_count
        outcome.delivered = report.confirmed_count
        outcome.failed = len(report.failed)

        outcome.recorded = self.ledger.commit(search.id, report.confirmed)
        self.registry.update_last_checked(search.id)

        logger.info(
            "Search processed",
            extra={
                "search_id": search.id,
                "fetched": outcome.fetched,
                "matched": outcome.matched,
                "already_sent": outcome.already_sent,
                "delivered": outcome.delivered,
                "failed": outcome.failed,
            },
        )
        return outcome

    def _reload_active(self, search_id: int, stage: str) -> Optional[Search]:
        """Current stored search, or None once it is no longer active."""
        current = self.registry.get_search(search_id)
        if current is None or not current.is_active:
            logger.info(
                "Search no longer active, skipping",
                extra={
                    "search_id": search_id,
                    "stage": stage,
                    "status": current.status.value if current else None,
                },
            )
            return None
        return current

    async def _fetch(self, search: Search) -> List[Listing]:
        """Run the blocking fetch in the default executor, bounded by a timeout."""
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, self.fetcher.search, search.criteria.copy()),
                timeout=self.fetch_timeout,
            )
        except asyncio.TimeoutError as e:
            raise FetchFailure(
                f"Listing source timed out after {self.fetch_timeout:.0f}s", e
            ) from e
        except FetchFailure:
            raise
        except Exception as e:
            raise FetchFailure(f"Listing source error: {e}", e) from e

    async def _send_header(self, chat_id: int, search_id: int, count: int) -> None:
        try:
            await self.channel.send_text(
                chat_id, self.formatter.format_new_listings_header(count)
            )
        except Exception as e:
            logger.warning(
                f"Failed to send listings header: {e}",
                extra={"search_id": search_id, "chat_id": chat_id},
            )
