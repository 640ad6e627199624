"""
Data models for the Rent Watch system.

This module contains the data classes and enums used throughout the
application for representing users, searches, listings, wizard sessions
and configuration.
"""

from .config import (
    Configuration,
    ConversationConfig,
    DatabaseConfig,
    DispatchConfig,
    ListingSourceConfig,
    LoggingConfig,
    SchedulerConfig,
    TelegramConfig,
)
from .conversation import (
    ConversationEvent,
    ConversationSession,
    ConversationState,
    EventKind,
    Keyboard,
    KeyboardButton,
)
from .delivery import DeliveryResult, DispatchReport
from .listing import Listing, SentListingRecord
from .results import ErrorKind, RegistryResult
from .search import Search, SearchCriteria, SearchStatus, User

__all__ = [
    "Configuration",
    "ConversationConfig",
    "DatabaseConfig",
    "DispatchConfig",
    "ListingSourceConfig",
    "LoggingConfig",
    "SchedulerConfig",
    "TelegramConfig",
    "ConversationEvent",
    "ConversationSession",
    "ConversationState",
    "EventKind",
    "Keyboard",
    "KeyboardButton",
    "DeliveryResult",
    "DispatchReport",
    "Listing",
    "SentListingRecord",
    "ErrorKind",
    "RegistryResult",
    "Search",
    "SearchCriteria",
    "SearchStatus",
    "User",
]
