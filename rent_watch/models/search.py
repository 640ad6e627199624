"""
Search and user models.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import List, Optional

from ..exceptions import CriteriaValidationError

MIN_ROOMS = 1
MAX_ROOMS = 5  # "5 or more"


class SearchStatus(Enum):
    """Lifecycle status of a standing search."""

    ACTIVE = "active"
    PAUSED = "paused"
    DELETED = "deleted"


@dataclass
class SearchCriteria:
    """Filter values for a standing search. Empty districts means any district."""

    min_price: Optional[int] = None
    max_price: Optional[int] = None
    num_rooms: Optional[int] = None
    districts: List[str] = field(default_factory=list)

    @property
    def has_any_field(self) -> bool:
        return (
            self.min_price is not None
            or self.max_price is not None
            or self.num_rooms is not None
            or bool(self.districts)
        )

    def validate(self) -> bool:
        """Validate criteria values."""
        if not self.has_any_field:
            raise CriteriaValidationError("At least one search criterion must be set")

        for name in ("min_price", "max_price"):
            value = getattr(self, name)
            if value is None:
                continue
            if not isinstance(value, int) or isinstance(value, bool):
                raise CriteriaValidationError(f"{name} must be an integer")
            if value < 0:
                raise CriteriaValidationError(f"{name} cannot be negative")

        if (
            self.min_price is not None
            and self.max_price is not None
            and self.min_price >= self.max_price
        ):
            raise CriteriaValidationError(
                "Minimum price must be lower than maximum price"
            )

        if self.num_rooms is not None:
            if not isinstance(self.num_rooms, int) or not (
                MIN_ROOMS <= self.num_rooms <= MAX_ROOMS
            ):
                raise CriteriaValidationError(
                    f"Number of rooms must be between {MIN_ROOMS} and {MAX_ROOMS}"
                )

        if not isinstance(self.districts, list):
            raise CriteriaValidationError("Districts must be a list")

        for district in self.districts:
            if not isinstance(district, str) or not district.strip():
                raise CriteriaValidationError("All districts must be non-empty strings")

        return True

    def with_prices(
        self, min_price: Optional[int], max_price: Optional[int]
    ) -> "SearchCriteria":
        return replace(
            self,
            min_price=min_price,
            max_price=max_price,
            districts=list(self.districts),
        )

    def with_rooms(self, num_rooms: Optional[int]) -> "SearchCriteria":
        return replace(self, num_rooms=num_rooms, districts=list(self.districts))

    def with_districts(self, districts: List[str]) -> "SearchCriteria":
        return replace(self, districts=list(districts))

    def copy(self) -> "SearchCriteria":
        return replace(self, districts=list(self.districts))


@dataclass
class User:
    """A person interacting with the bot, keyed by their Telegram id."""

    id: int
    display_name: str
    username: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class Search:
    """A persisted standing search owned by a user."""

    id: int
    owner_id: int
    status: SearchStatus
    criteria: SearchCriteria
    created_at: datetime
    updated_at: datetime
    last_checked_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == SearchStatus.ACTIVE

    @property
    def is_deleted(self) -> bool:
        return self.status == SearchStatus.DELETED
