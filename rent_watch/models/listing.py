"""
Listing models for rental apartments returned by the listing source.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

MAX_PHOTOS = 3


@dataclass
class Listing:
    """A rental listing as returned by the listing source."""

    external_id: str
    url: str
    price: Optional[int] = None
    rooms: Optional[int] = None
    district: Optional[str] = None
    description: Optional[str] = None
    photo_urls: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.photo_urls = [url for url in self.photo_urls if url][:MAX_PHOTOS]

    def validate(self) -> bool:
        """Validate listing data."""
        if not self.external_id or not str(self.external_id).strip():
            raise ValueError("Listing external_id cannot be empty")

        if not self.url or not self.url.strip():
            raise ValueError("Listing URL cannot be empty")

        if self.price is not None and self.price < 0:
            raise ValueError("Listing price cannot be negative")

        if self.rooms is not None and self.rooms < 0:
            raise ValueError("Listing rooms cannot be negative")

        return True


@dataclass
class SentListingRecord:
    """Ledger entry: a listing confirmed as delivered for a search."""

    search_id: int
    external_id: str
    url: str
    sent_at: datetime
    price: Optional[int] = None
    rooms: Optional[int] = None
    district: Optional[str] = None
    description: Optional[str] = None
    photo_urls: List[str] = field(default_factory=list)
