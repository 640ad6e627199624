"""
Message delivery result models.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from .listing import Listing


@dataclass
class DeliveryResult:
    """Result of delivering one listing."""

    success: bool
    delivery_time: datetime
    error_message: Optional[str]
    attempts: int = 1

    def validate(self) -> bool:
        """Validate delivery result data."""
        if not isinstance(self.delivery_time, datetime):
            raise ValueError("delivery_time must be a datetime object")

        if self.error_message is not None and len(self.error_message) > 500:
            raise ValueError("error_message too long (max 500 characters)")

        if not self.success and not self.error_message:
            raise ValueError("error_message should be provided when success is False")

        if self.attempts < 1:
            raise ValueError("attempts must be at least 1")

        return True


@dataclass
class DispatchReport:
    """Outcome of sending a batch of listings to one chat."""

    confirmed: List[Listing] = field(default_factory=list)
    failed: List[Listing] = field(default_factory=list)

    @property
    def confirmed_count(self) -> int:
        return len(self.confirmed)

    @property
    def attempted_count(self) -> int:
        return len(self.confirmed) + len(self.failed)
