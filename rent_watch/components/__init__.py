"""
Core components for the Rent Watch system.

This module contains the listing fetcher, formatter and dispatcher. The
conversation engine, scheduler and Telegram adapters are imported from
their own modules.
"""

from .dispatcher import ListingDispatcher
from .listing_fetcher import ApifyListingFetcher, filter_by_districts
from .listing_formatter import ListingFormatter

__all__ = [
    "ApifyListingFetcher",
    "ListingDispatcher",
    "ListingFormatter",
    "filter_by_districts",
]
