"""
Result values returned by the search registry.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .search import Search


class ErrorKind(Enum):
    """Expected business-rule failures."""

    INVALID_CRITERIA = "invalid_criteria"
    LIMIT_EXCEEDED = "limit_exceeded"
    NOT_FOUND = "not_found"


@dataclass
class RegistryResult:
    """Outcome of a registry mutation."""

    ok: bool
    search: Optional[Search] = None
    error_kind: Optional[ErrorKind] = None
    message: str = ""

    @classmethod
    def success(cls, search: Search, message: str = "") -> "RegistryResult":
        return cls(ok=True, search=search, message=message)

    @classmethod
    def failure(cls, error_kind: ErrorKind, message: str) -> "RegistryResult":
        return cls(ok=False, error_kind=error_kind, message=message)
