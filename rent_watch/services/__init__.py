"""
Service layer for the Rent Watch system.

This module contains persistence and state services: configuration
loading, the search registry, the sent-listing ledger and wizard sessions.
"""

from .config_manager import ConfigurationManager
from .database import Database
from .dedup_ledger import DedupLedger
from .search_registry import SearchRegistry
from .session_store import SessionStore

__all__ = [
    "ConfigurationManager",
    "Database",
    "DedupLedger",
    "SearchRegistry",
    "SessionStore",
]
