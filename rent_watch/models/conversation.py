"""
Conversation models for the search wizard.

Events reaching the conversation engine belong to a closed set of kinds.
Button presses carry their kind as a callback tag, optionally followed by
``:`` and a payload (``SET_ROOMS:2``, ``TOGGLE_DISTRICT:Ruzafa``).
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from .search import SearchCriteria

CALLBACK_SEPARATOR = ":"


class ConversationState(Enum):
    """Wizard states for a single user."""

    IDLE = "idle"
    AWAITING_MIN_PRICE = "awaiting_min_price"
    AWAITING_MAX_PRICE = "awaiting_max_price"
    AWAITING_ROOM_COUNT = "awaiting_room_count"
    AWAITING_DISTRICTS = "awaiting_districts"
    EDITING_MIN_PRICE = "editing_min_price"
    EDITING_MAX_PRICE = "editing_max_price"
    EDITING_ROOM_COUNT = "editing_room_count"
    EDITING_DISTRICTS = "editing_districts"

    @property
    def is_editing(self) -> bool:
        return self in (
            ConversationState.EDITING_MIN_PRICE,
            ConversationState.EDITING_MAX_PRICE,
            ConversationState.EDITING_ROOM_COUNT,
            ConversationState.EDITING_DISTRICTS,
        )


class EventKind(Enum):
    """Closed set of user input events. Values double as callback tags."""

    TEXT = "TEXT"
    START = "START"
    HELP = "HELP"
    BACK = "BACK_TO_MAIN"
    START_CREATE = "CREATE_SEARCH"
    SHOW_SEARCH = "MY_SEARCH"
    SELECT_ROOMS = "SET_ROOMS"
    TOGGLE_DISTRICT = "TOGGLE_DISTRICT"
    SELECT_ALL_DISTRICTS = "DISTRICTS_ALL"
    DONE = "DISTRICTS_DONE"
    CANCEL = "CANCEL"
    EDIT_MENU = "EDIT_SEARCH"
    EDIT_PRICE = "EDIT_PRICE"
    EDIT_ROOMS = "EDIT_ROOMS"
    EDIT_DISTRICTS = "EDIT_DISTRICTS"
    PAUSE = "PAUSE_SEARCH"
    RESUME = "RESUME_SEARCH"
    DELETE = "DELETE_SEARCH"
    CONFIRM_DELETE = "CONFIRM_DELETE"
    CANCEL_DELETE = "CANCEL_DELETE"


def build_callback_data(kind: EventKind, payload: Optional[str] = None) -> str:
    """Encode an event kind and optional payload as callback data."""
    if kind == EventKind.TEXT:
        raise ValueError("Text events cannot be encoded as callback data")
    if payload is None:
        return kind.value
    return f"{kind.value}{CALLBACK_SEPARATOR}{payload}"


def parse_callback_data(data: str) -> Tuple[EventKind, Optional[str]]:
    """
    Decode callback data into an event kind and payload.

    Raises:
        ValueError: If the tag does not name a known button event.
    """
    if not data:
        raise ValueError("Empty callback data")

    tag, _, payload = data.partition(CALLBACK_SEPARATOR)
    kind = EventKind(tag)
    if kind == EventKind.TEXT:
        raise ValueError("Text events cannot arrive as callback data")
    return kind, payload or None


@dataclass
class ConversationEvent:
    """A single user input delivered to the conversation engine."""

    kind: EventKind
    user_id: int
    chat_id: int
    payload: Optional[str] = None
    event_id: Optional[str] = None  # callback query id, set for button presses
    message_id: Optional[int] = None  # message carrying the pressed keyboard
    display_name: Optional[str] = None
    username: Optional[str] = None

    @property
    def is_button(self) -> bool:
        return self.event_id is not None


@dataclass
class ConversationSession:
    """Per-user wizard state. Held in memory only."""

    user_id: int
    state: ConversationState = ConversationState.IDLE
    draft: SearchCriteria = field(default_factory=SearchCriteria)
    editing_search_id: Optional[int] = None
    last_activity: datetime = field(default_factory=datetime.now)

    def reset(self) -> None:
        self.state = ConversationState.IDLE
        self.draft = SearchCriteria()
        self.editing_search_id = None

    def touch(self, now: Optional[datetime] = None) -> None:
        self.last_activity = now or datetime.now()


@dataclass
class KeyboardButton:
    """An inline button; pressing it produces a callback event."""

    text: str
    callback_data: str


@dataclass
class Keyboard:
    """Transport-neutral inline keyboard, rendered by the messaging channel."""

    rows: List[List[KeyboardButton]] = field(default_factory=list)

    def buttons(self) -> List[KeyboardButton]:
        return [button for row in self.rows for button in row]
