"""
Message formatting for listings and searches.

All text is plain (no parse mode) so listing descriptions never need
escaping.
"""

from datetime import datetime
from typing import List, Optional

from ..models.listing import Listing
from ..models.search import MAX_ROOMS, Search, SearchCriteria, SearchStatus

DESCRIPTION_LIMIT = 300


def format_amount(value: int) -> str:
    return f"{value:,}"


def truncate(text: str, limit: int = DESCRIPTION_LIMIT) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def pluralize(count: int, singular: str, plural: Optional[str] = None) -> str:
    word = singular if count == 1 else (plural or singular + "s")
    return f"{count} {word}"


def format_relative_time(moment: datetime, now: Optional[datetime] = None) -> str:
    """Render a past moment as 'just now', '5 min ago', '3 h ago' or '2 days ago'."""
    now = now or datetime.now()
    minutes = int((now - moment).total_seconds() // 60)

    if minutes < 1:
        return "just now"
    if minutes < 60:
        return f"{minutes} min ago"
    if minutes < 24 * 60:
        return f"{minutes // 60} h ago"
    return pluralize(minutes // (24 * 60), "day") + " ago"


class ListingFormatter:
    """Builds the user-facing texts for listings and searches."""

    def format_listing(self, listing: Listing) -> str:
        lines = ["🏠 New apartment found!", ""]

        if listing.price is not None:
            lines.append(f"💰 Price: {format_amount(listing.price)} EUR/month")
        if listing.rooms is not None:
            lines.append(f"🛏 Rooms: {listing.rooms}")
        if listing.district:
            lines.append(f"📍 District: {listing.district}")

        lines.append("")
        if listing.description:
            lines.append(truncate(listing.description.strip()))
            lines.append("")

        lines.append(f"🔗 Link: {listing.url}")
        return "\n".join(lines)

    def format_new_listings_header(self, count: int) -> str:
        return f"🔔 Found {pluralize(count, 'new apartment')} for your search!"

    def format_no_listings_yet(self) -> str:
        return (
            "No apartments match your search right now. "
            "I'll keep looking and message you as soon as something appears."
        )

    def format_price_range(self, criteria: SearchCriteria) -> str:
        if criteria.min_price is not None and criteria.max_price is not None:
            return (
                f"{format_amount(criteria.min_price)} - "
                f"{format_amount(criteria.max_price)} EUR"
            )
        if criteria.min_price is not None:
            return f"from {format_amount(criteria.min_price)} EUR"
        if criteria.max_price is not None:
            return f"up to {format_amount(criteria.max_price)} EUR"
        return "any"

    def format_rooms(self, num_rooms: Optional[int]) -> str:
        if num_rooms is None:
            return "any"
        if num_rooms >= MAX_ROOMS:
            return f"{MAX_ROOMS}+"
        return str(num_rooms)

    def format_districts(self, districts: List[str]) -> str:
        return ", ".join(districts) if districts else "All districts"

    def format_criteria(self, criteria: SearchCriteria) -> str:
        return "\n".join(
            [
                f"💰 Price: {self.format_price_range(criteria)}",
                f"🛏 Rooms: {self.format_rooms(criteria.num_rooms)}",
                f"📍 Districts: {self.format_districts(criteria.districts)}",
            ]
        )

    def format_search_summary(
        self, search: Search, sent_count: int = 0, now: Optional[datetime] = None
    ) -> str:
        """Summary shown by /mysearch and the 'My search' button."""
        status = (
            "Active ✅" if search.status == SearchStatus.ACTIVE else "Paused ⏸"
        )
        lines = [
            "📋 Your search:",
            "",
            self.format_criteria(search.criteria),
            "",
            f"Status: {status}",
            f"Apartments sent: {sent_count}",
        ]
        if search.last_checked_at:
            lines.append(
                f"Last checked: {format_relative_time(search.last_checked_at, now)}"
            )
        return "\n".join(lines)
