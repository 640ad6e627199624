"""
Protocol interfaces for the Rent Watch system.

These protocols establish the boundaries between components and allow
tests to substitute fakes for the listing source and messaging platform.
"""

from datetime import datetime
from typing import TYPE_CHECKING, List, Optional, Protocol, Tuple

from .models.conversation import Keyboard
from .models.delivery import DispatchReport
from .models.listing import Listing
from .models.results import RegistryResult
from .models.search import Search, SearchCriteria, User

if TYPE_CHECKING:
    from .models.config import Configuration


class IListingFetcher(Protocol):
    """Protocol for listing sources."""

    def search(self, criteria: SearchCriteria) -> List[Listing]:
        """Return listings matching the criteria. Raises FetchFailure on error."""
        ...


class IMessagingChannel(Protocol):
    """Protocol for the chat platform used to talk to users."""

    async def send_text(
        self, chat_id: int, text: str, keyboard: Optional[Keyboard] = None
    ) -> None:
        """Send a text message, optionally with an inline keyboard."""
        ...

    async def send_photo(self, chat_id: int, text: str, photo_url: str) -> None:
        """Send one photo with a caption."""
        ...

    async def send_photo_group(
        self, chat_id: int, text: str, photo_urls: List[str]
    ) -> None:
        """Send a group of photos with the caption on the first one."""
        ...

    async def update_keyboard(
        self, chat_id: int, message_id: int, keyboard: Keyboard
    ) -> None:
        """Replace the inline keyboard of a message already sent."""
        ...

    async def acknowledge(self, event_id: str, alert_text: Optional[str] = None) -> None:
        """Acknowledge a button press, optionally with a short alert."""
        ...

    async def test_connection(self) -> bool:
        """Test connection to the messaging platform."""
        ...


class IListingDispatcher(Protocol):
    """Protocol for delivering listings to a chat."""

    async def send(self, chat_id: int, listings: List[Listing]) -> DispatchReport:
        """Send listings in order; report confirmed and failed deliveries."""
        ...


class ISearchRegistry(Protocol):
    """Protocol for search persistence and lifecycle."""

    def ensure_user(
        self, user_id: int, display_name: Optional[str], username: Optional[str] = None
    ) -> User:
        ...

    def create_search(self, user_id: int, criteria: SearchCriteria) -> RegistryResult:
        ...

    def pause_search(self, search_id: int) -> RegistryResult:
        ...

    def resume_search(self, search_id: int) -> RegistryResult:
        ...

    def update_criteria(self, search_id: int, criteria: SearchCriteria) -> RegistryResult:
        ...

    def delete_search(self, search_id: int) -> RegistryResult:
        ...

    def find_active_searches(self) -> List[Search]:
        ...

    def get_search(self, search_id: int) -> Optional[Search]:
        ...

    def get_active_search(self, user_id: int) -> Optional[Search]:
        ...

    def get_current_search(self, user_id: int) -> Optional[Search]:
        ...

    def update_last_checked(
        self, search_id: int, checked_at: Optional[datetime] = None
    ) -> bool:
        ...


class IDedupLedger(Protocol):
    """Protocol for the sent-listing ledger."""

    def partition(
        self, search_id: int, listings: List[Listing]
    ) -> Tuple[List[Listing], List[Listing]]:
        """Split listings into (already_sent, candidate_new)."""
        ...

    def commit(self, search_id: int, confirmed: List[Listing]) -> int:
        """Record confirmed deliveries; returns rows inserted."""
        ...

    def count_sent(self, search_id: int) -> int:
        ...


class IConfigurationManager(Protocol):
    """Protocol for configuration management."""

    def load_config(self) -> "Configuration":
        """Load configuration from file."""
        ...

    def get_config(self) -> "Configuration":
        """Get current configuration, loading if necessary."""
        ...
