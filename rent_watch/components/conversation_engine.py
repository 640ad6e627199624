"""
Conversation engine for the search wizard and search management.

Every user event is handled while holding that user's session lock, so
events from one user apply strictly in arrival order. Work that talks to
the listing source (the first pass after a search is created) runs only
after the lock has been released.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional

from ..exceptions import FetchFailure
from ..interfaces import IDedupLedger, IMessagingChannel, ISearchRegistry
from ..models.conversation import (
    ConversationEvent,
    ConversationSession,
    ConversationState,
    EventKind,
    Keyboard,
)
from ..models.results import ErrorKind, RegistryResult
from ..models.search import MAX_ROOMS, MIN_ROOMS, Search, SearchCriteria
from ..services.listing_pipeline import ListingPipeline
from ..services.session_store import SessionStore
from ..utils.error_handling import ErrorCategory, ErrorSeverity, get_error_tracker
from ..utils.logging import get_logger
from . import keyboards
from .listing_formatter import ListingFormatter, format_amount

logger = get_logger("conversation.engine")

S = ConversationState

WELCOME_TEXT = (
    "Welcome to Rent Watch! 🏠\n\n"
    "Hi {name}! I help you find an apartment to rent.\n\n"
    "What I do:\n"
    "✅ Search apartments by price, rooms and district\n"
    "✅ Send you new listings as soon as they appear (every 15 minutes)\n"
    "✅ Never send the same apartment twice\n\n"
    "Choose an action:"
)

HELP_TEXT = (
    "❓ Help\n\n"
    "Commands:\n"
    "/start - Open the main menu\n"
    "/mysearch - Show your search\n"
    "/help - Show this help\n\n"
    "How it works:\n"
    "1. Create a search with your criteria\n"
    "2. Get the current matching apartments right away\n"
    "3. Receive new ones as they are published\n"
    "4. Pause, edit or delete your search at any time\n\n"
    "Limits:\n"
    "• One active search per user"
)

IDLE_HINT = "Use /start to open the menu or /help to see what I can do."
BUTTONS_HINT = "Please use the buttons above."
EXPIRED_TEXT = "This menu has expired. Please start again."
NO_SEARCH_TEXT = (
    "You don't have a search yet.\n\n"
    "Create one to get notified about new apartments!"
)
GENERIC_ERROR_TEXT = "❌ Something went wrong. Please start again with /start."
NUMBER_PROMPT = "Please enter a whole number, for example 800."


@dataclass
class _Turn:
    """One event being handled under the user's lock."""

    event: ConversationEvent
    session: ConversationSession
    ack_text: Optional[str] = None
    follow_up: Optional[Search] = None


def parse_price(text: Optional[str]) -> int:
    """
    Parse a price typed by the user.

    Raises:
        ValueError: If the text is not a whole number.
    """
    cleaned = (text or "").strip().replace(" ", "").replace(",", "").replace("€", "")
    return int(cleaned)


class ConversationEngine:
    """Routes user events to handlers through a closed dispatch table."""

    def __init__(
        self,
        registry: ISearchRegistry,
        ledger: IDedupLedger,
        channel: IMessagingChannel,
        pipeline: ListingPipeline,
        sessions: SessionStore,
        districts: List[str],
        formatter: Optional[ListingFormatter] = None,
    ):
        self.registry = registry
        self.ledger = ledger
        self.channel = channel
        self.pipeline = pipeline
        self.sessions = sessions
        self.districts = list(districts)
        self.formatter = formatter or ListingFormatter()

        self._handlers: Dict[EventKind, Callable[[_Turn], Awaitable[None]]] = {
            EventKind.TEXT: self._on_text,
            EventKind.START: self._on_start,
            EventKind.HELP: self._on_help,
            EventKind.BACK: self._on_back,
            EventKind.START_CREATE: self._on_start_create,
            EventKind.SHOW_SEARCH: self._on_show_search,
            EventKind.SELECT_ROOMS: self._on_select_rooms,
            EventKind.TOGGLE_DISTRICT: self._on_toggle_district,
            EventKind.SELECT_ALL_DISTRICTS: self._on_select_all_districts,
            EventKind.DONE: self._on_done,
            EventKind.CANCEL: self._on_cancel,
            EventKind.EDIT_MENU: self._on_edit_menu,
            EventKind.EDIT_PRICE: self._on_edit_price,
            EventKind.EDIT_ROOMS: self._on_edit_rooms,
            EventKind.EDIT_DISTRICTS: self._on_edit_districts,
            EventKind.PAUSE: self._on_pause,
            EventKind.RESUME: self._on_resume,
            EventKind.DELETE: self._on_delete,
            EventKind.CONFIRM_DELETE: self._on_confirm_delete,
            EventKind.CANCEL_DELETE: self._on_show_search,
        }
        missing = [kind.name for kind in EventKind if kind not in self._handlers]
        if missing:
            raise ValueError(f"No handler registered for event kinds: {missing}")

    # Entry point

    async def handle_event(self, event: ConversationEvent) -> None:
        """Apply one user event, then run any follow-up work outside the lock."""
        async with self.sessions.session(event.user_id) as session:
            turn = _Turn(event=event, session=session)
            try:
                await self._handlers[event.kind](turn)
            except Exception as e:
                logger.error(
                    f"Error handling {event.kind.name}: {e}",
                    extra={"user_id": event.user_id, "state": session.state.value},
                    exc_info=True,
                )
                get_error_tracker().record_error(
                    component="conversation.engine",
                    category=ErrorCategory.CONVERSATION,
                    severity=ErrorSeverity.MEDIUM,
                    message=f"Handler for {event.kind.name} failed: {e}",
                    exception=e,
                    context={"user_id": event.user_id},
                )
                session.reset()
                turn.follow_up = None
                await self._safe_reply(event.chat_id, GENERIC_ERROR_TEXT)

        if event.is_button:
            await self._acknowledge(event, turn.ack_text)

        if turn.follow_up is not None:
            await self._run_initial_pass(turn.follow_up)

    # Menus

    async def _on_start(self, turn: _Turn) -> None:
        event = turn.event
        user = self.registry.ensure_user(
            event.user_id, event.display_name, event.username
        )
        turn.session.reset()
        name = user.display_name or "there"
        await self._reply(turn, WELCOME_TEXT.format(name=name), keyboards.main_menu())

    async def _on_help(self, turn: _Turn) -> None:
        await self._reply(turn, HELP_TEXT, keyboards.main_menu())

    async def _on_back(self, turn: _Turn) -> None:
        await self._reply(turn, "Choose an action:", keyboards.main_menu())

    async def _on_show_search(self, turn: _Turn) -> None:
        search = self.registry.get_current_search(turn.event.user_id)
        if search is None:
            await self._reply(turn, NO_SEARCH_TEXT, keyboards.main_menu())
            return

        summary = self.formatter.format_search_summary(
            search, self.ledger.count_sent(search.id)
        )
        await self._reply(turn, summary, keyboards.search_management(search.is_active))

    async def _on_cancel(self, turn: _Turn) -> None:
        if turn.session.state == S.IDLE:
            await self._reply(turn, "Nothing to cancel.", keyboards.main_menu())
            return

        logger.info(
            "Wizard cancelled",
            extra={"user_id": turn.event.user_id, "state": turn.session.state.value},
        )
        turn.session.reset()
        await self._reply(turn, "Cancelled.", keyboards.main_menu())

    # Creation wizard

    async def _on_start_create(self, turn: _Turn) -> None:
        event = turn.event
        self.registry.ensure_user(event.user_id, event.display_name, event.username)

        active = self.registry.get_active_search(event.user_id)
        if active is not None:
            await self._reply(
                turn,
                "You already have an active search. "
                "Pause or delete it before creating a new one.",
                keyboards.search_management(True),
            )
            return

        turn.session.reset()
        turn.session.state = S.AWAITING_MIN_PRICE
        await self._reply(
            turn,
            "Let's set up your search. 🔍\n\n"
            "Enter the minimum monthly rent in EUR:",
            keyboards.cancel_only(),
        )

    async def _on_text(self, turn: _Turn) -> None:
        state = turn.session.state
        if state in (S.AWAITING_MIN_PRICE, S.EDITING_MIN_PRICE):
            await self._on_min_price(turn)
        elif state in (S.AWAITING_MAX_PRICE, S.EDITING_MAX_PRICE):
            await self._on_max_price(turn)
        elif state in (S.AWAITING_ROOM_COUNT, S.EDITING_ROOM_COUNT):
            await self._reply(turn, BUTTONS_HINT, keyboards.room_selection())
        elif state in (S.AWAITING_DISTRICTS, S.EDITING_DISTRICTS):
            await self._reply(turn, BUTTONS_HINT, self._district_keyboard(turn))
        else:
            await self._reply(turn, IDLE_HINT)

    async def _on_min_price(self, turn: _Turn) -> None:
        value = await self._read_price(turn)
        if value is None:
            return

        turn.session.draft.min_price = value
        turn.session.state = (
            S.EDITING_MAX_PRICE
            if turn.session.state == S.EDITING_MIN_PRICE
            else S.AWAITING_MAX_PRICE
        )
        await self._reply(
            turn,
            f"Minimum: {format_amount(value)} EUR.\n\n"
            "Now enter the maximum monthly rent in EUR:",
            keyboards.cancel_only(),
        )

    async def _on_max_price(self, turn: _Turn) -> None:
        value = await self._read_price(turn)
        if value is None:
            return

        min_price = turn.session.draft.min_price
        if min_price is not None and value <= min_price:
            await self._reply(
                turn,
                f"The maximum must be greater than the minimum "
                f"({format_amount(min_price)} EUR). Enter the maximum again:",
                keyboards.cancel_only(),
            )
            return

        turn.session.draft.max_price = value

        if turn.session.state == S.EDITING_MAX_PRICE:
            draft = turn.session.draft
            await self._commit_edit(
                turn, lambda current: current.with_prices(draft.min_price, draft.max_price)
            )
            return

        turn.session.state = S.AWAITING_ROOM_COUNT
        await self._reply(turn, "How many rooms do you need?", keyboards.room_selection())

    async def _read_price(self, turn: _Turn) -> Optional[int]:
        try:
            value = parse_price(turn.event.payload)
        except ValueError:
            await self._reply(turn, NUMBER_PROMPT, keyboards.cancel_only())
            return None

        if value < 0:
            await self._reply(
                turn,
                "The price cannot be negative. Enter a positive amount:",
                keyboards.cancel_only(),
            )
            return None
        return value

    async def _on_select_rooms(self, turn: _Turn) -> None:
        state = turn.session.state
        if state not in (S.AWAITING_ROOM_COUNT, S.EDITING_ROOM_COUNT):
            await self._expire(turn)
            return

        try:
            rooms = int(turn.event.payload or "")
        except ValueError:
            rooms = None
        if rooms is None or not MIN_ROOMS <= rooms <= MAX_ROOMS:
            turn.ack_text = f"Choose between {MIN_ROOMS} and {MAX_ROOMS} rooms"
            await self._reply(turn, "Please choose the number of rooms:", keyboards.room_selection())
            return

        if state == S.EDITING_ROOM_COUNT:
            await self._commit_edit(turn, lambda current: current.with_rooms(rooms))
            return

        turn.session.draft.num_rooms = rooms
        turn.session.state = S.AWAITING_DISTRICTS
        await self._reply(
            turn,
            f"Rooms: {self.formatter.format_rooms(rooms)}.\n\n"
            "Select the districts you are interested in, then press Done:",
            self._district_keyboard(turn),
        )

    async def _on_toggle_district(self, turn: _Turn) -> None:
        if turn.session.state not in (S.AWAITING_DISTRICTS, S.EDITING_DISTRICTS):
            await self._expire(turn)
            return

        district = turn.event.payload
        if district not in self.districts:
            turn.ack_text = "Unknown district"
            return

        selected = turn.session.draft.districts
        if district in selected:
            selected.remove(district)
            turn.ack_text = f"Removed: {district}"
        else:
            selected.append(district)
            turn.ack_text = f"Added: {district}"

        await self._refresh_district_keyboard(turn)

    async def _on_select_all_districts(self, turn: _Turn) -> None:
        state = turn.session.state
        if state not in (S.AWAITING_DISTRICTS, S.EDITING_DISTRICTS):
            await self._expire(turn)
            return

        turn.session.draft.districts = []
        if state == S.EDITING_DISTRICTS:
            await self._commit_edit(turn, lambda current: current.with_districts([]))
        else:
            await self._complete_creation(turn)

    async def _on_done(self, turn: _Turn) -> None:
        state = turn.session.state
        if state not in (S.AWAITING_DISTRICTS, S.EDITING_DISTRICTS):
            await self._expire(turn)
            return

        selected = list(turn.session.draft.districts)
        if not selected:
            turn.ack_text = "Select at least one district"
            await self._reply(
                turn,
                "Select at least one district, or choose All districts.",
                self._district_keyboard(turn),
            )
            return

        if state == S.EDITING_DISTRICTS:
            await self._commit_edit(turn, lambda current: current.with_districts(selected))
        else:
            await self._complete_creation(turn)

    async def _complete_creation(self, turn: _Turn) -> None:
        draft = turn.session.draft.copy()
        turn.session.reset()

        result = self.registry.create_search(turn.event.user_id, draft)
        if result.ok:
            await self._reply(
                turn,
                "✅ Search created!\n\n"
                f"{self.formatter.format_criteria(result.search.criteria)}\n\n"
                "Looking for apartments now...",
            )
            turn.follow_up = result.search
            return

        await self._report_failure(turn, result)

    # Editing

    async def _on_edit_menu(self, turn: _Turn) -> None:
        search = self.registry.get_current_search(turn.event.user_id)
        if search is None:
            await self._reply(turn, NO_SEARCH_TEXT, keyboards.main_menu())
            return
        await self._reply(turn, "What would you like to change?", keyboards.edit_options())

    async def _on_edit_price(self, turn: _Turn) -> None:
        search = await self._begin_edit(turn)
        if search is None:
            return

        turn.session.state = S.EDITING_MIN_PRICE
        await self._reply(
            turn,
            f"Current price: {self.formatter.format_price_range(search.criteria)}.\n\n"
            "Enter the new minimum monthly rent in EUR:",
            keyboards.cancel_only(),
        )

    async def _on_edit_rooms(self, turn: _Turn) -> None:
        search = await self._begin_edit(turn)
        if search is None:
            return

        turn.session.state = S.EDITING_ROOM_COUNT
        await self._reply(
            turn,
            f"Current rooms: {self.formatter.format_rooms(search.criteria.num_rooms)}.\n\n"
            "Choose the new number of rooms:",
            keyboards.room_selection(),
        )

    async def _on_edit_districts(self, turn: _Turn) -> None:
        search = await self._begin_edit(turn)
        if search is None:
            return

        turn.session.state = S.EDITING_DISTRICTS
        turn.session.draft.districts = list(search.criteria.districts)
        await self._reply(
            turn,
            "Select the districts you are interested in, then press Done:",
            self._district_keyboard(turn),
        )

    async def _begin_edit(self, turn: _Turn) -> Optional[Search]:
        search = self.registry.get_current_search(turn.event.user_id)
        turn.session.reset()
        if search is None:
            await self._reply(turn, NO_SEARCH_TEXT, keyboards.main_menu())
            return None

        turn.session.editing_search_id = search.id
        return search

    async def _commit_edit(
        self,
        turn: _Turn,
        apply: Callable[[SearchCriteria], SearchCriteria],
    ) -> None:
        """Overwrite only the edited field group on the search's current criteria."""
        search_id = turn.session.editing_search_id
        turn.session.reset()

        search = self.registry.get_search(search_id) if search_id is not None else None
        if search is None or search.is_deleted:
            await self._reply(
                turn, "This search no longer exists.", keyboards.main_menu()
            )
            return

        result = self.registry.update_criteria(search.id, apply(search.criteria))
        if not result.ok:
            await self._report_failure(turn, result)
            return

        summary = self.formatter.format_search_summary(
            result.search, self.ledger.count_sent(result.search.id)
        )
        await self._reply(
            turn,
            f"✅ Search updated.\n\n{summary}",
            keyboards.search_management(result.search.is_active),
        )

    # Management

    async def _on_pause(self, turn: _Turn) -> None:
        search = self.registry.get_active_search(turn.event.user_id)
        if search is None:
            await self._reply(turn, "You have no active search to pause.", keyboards.main_menu())
            return

        result = self.registry.pause_search(search.id)
        if not result.ok:
            await self._report_failure(turn, result)
            return

        await self._reply(
            turn,
            "⏸ Search paused. You won't receive new apartments until you resume it.",
            keyboards.search_management(False),
        )

    async def _on_resume(self, turn: _Turn) -> None:
        search = self.registry.get_current_search(turn.event.user_id)
        if search is None:
            await self._reply(turn, NO_SEARCH_TEXT, keyboards.main_menu())
            return

        if search.is_active:
            await self._reply(
                turn, "Your search is already active.", keyboards.search_management(True)
            )
            return

        result = self.registry.resume_search(search.id)
        if not result.ok:
            await self._report_failure(turn, result)
            return

        await self._reply(
            turn,
            "▶️ Search resumed. New apartments will be sent to you again.",
            keyboards.search_management(True),
        )

    async def _on_delete(self, turn: _Turn) -> None:
        search = self.registry.get_current_search(turn.event.user_id)
        if search is None:
            await self._reply(turn, NO_SEARCH_TEXT, keyboards.main_menu())
            return

        await self._reply(
            turn,
            "Are you sure you want to delete your search?",
            keyboards.delete_confirmation(),
        )

    async def _on_confirm_delete(self, turn: _Turn) -> None:
        search = self.registry.get_current_search(turn.event.user_id)
        turn.session.reset()
        if search is None:
            await self._reply(turn, NO_SEARCH_TEXT, keyboards.main_menu())
            return

        result = self.registry.delete_search(search.id)
        if not result.ok:
            await self._report_failure(turn, result)
            return

        await self._reply(turn, "🗑 Search deleted.", keyboards.main_menu())

    # Helpers

    async def _report_failure(self, turn: _Turn, result: RegistryResult) -> None:
        turn.session.reset()
        if result.error_kind == ErrorKind.LIMIT_EXCEEDED:
            text = (
                "You already have an active search. "
                "Pause or delete it first."
            )
            keyboard = keyboards.search_management(True)
        elif result.error_kind == ErrorKind.INVALID_CRITERIA:
            text = f"❌ The search could not be saved: {result.message}"
            keyboard = keyboards.main_menu()
        else:
            text = "This search no longer exists."
            keyboard = keyboards.main_menu()

        logger.info(
            "Registry refused operation",
            extra={
                "user_id": turn.event.user_id,
                "error_kind": result.error_kind.value if result.error_kind else None,
            },
        )
        await self._reply(turn, text, keyboard)

    async def _expire(self, turn: _Turn) -> None:
        turn.session.reset()
        await self._reply(turn, EXPIRED_TEXT, keyboards.main_menu())

    def _district_keyboard(self, turn: _Turn) -> Keyboard:
        return keyboards.district_selection(self.districts, turn.session.draft.districts)

    async def _refresh_district_keyboard(self, turn: _Turn) -> None:
        keyboard = self._district_keyboard(turn)
        if turn.event.message_id is None:
            await self._reply(turn, "Selected districts updated.", keyboard)
            return
        await self.channel.update_keyboard(
            turn.event.chat_id, turn.event.message_id, keyboard
        )

    async def _reply(
        self, turn: _Turn, text: str, keyboard: Optional[Keyboard] = None
    ) -> None:
        await self.channel.send_text(turn.event.chat_id, text, keyboard)

    async def _safe_reply(self, chat_id: int, text: str) -> None:
        try:
            await self.channel.send_text(chat_id, text)
        except Exception as e:
            logger.warning(f"Failed to send error reply: {e}", extra={"chat_id": chat_id})

    async def _acknowledge(self, event: ConversationEvent, text: Optional[str]) -> None:
        try:
            await self.channel.acknowledge(event.event_id, text)
        except Exception as e:
            logger.warning(
                f"Failed to acknowledge button press: {e}",
                extra={"user_id": event.user_id},
            )

    async def _run_initial_pass(self, search: Search) -> None:
        """First fetch for a freshly created search."""
        try:
            await self.pipeline.process_search(search, announce_empty=True)
        except FetchFailure as e:
            logger.warning(
                f"Initial pass failed: {e}", extra={"search_id": search.id}
            )
            await self._safe_reply(
                search.owner_id,
                "I couldn't reach the listings service right now. "
                "I'll try again on the next scheduled check.",
            )
        except Exception as e:
            logger.error(
                f"Unexpected error in initial pass: {e}",
                extra={"search_id": search.id},
                exc_info=True,
            )
            get_error_tracker().record_error(
                component="conversation.engine",
                category=ErrorCategory.SYSTEM,
                severity=ErrorSeverity.HIGH,
                message=f"Initial pass failed: {e}",
                exception=e,
                context={"search_id": search.id},
            )
