"""
Telegram bot handler for the Rent Watch system.

Translates Telegram updates (commands, button presses and free text) into
conversation events and hands them to the conversation engine.
"""

from typing import Awaitable, Callable, List, Optional

from telegram import Update
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from ..models.conversation import ConversationEvent, EventKind, parse_callback_data
from ..utils.logging import get_logger
from .conversation_engine import ConversationEngine
from .scheduler import PassSummary

logger = get_logger("telegram.bot")

COMMAND_EVENTS = {
    "start": EventKind.START,
    "help": EventKind.HELP,
    "mysearch": EventKind.SHOW_SEARCH,
}


def event_from_update(
    update: Update, kind: EventKind, payload: Optional[str] = None
) -> Optional[ConversationEvent]:
    """Build a conversation event from a Telegram update."""
    user = update.effective_user
    chat = update.effective_chat
    if user is None or chat is None:
        return None

    query = update.callback_query
    return ConversationEvent(
        kind=kind,
        user_id=user.id,
        chat_id=chat.id,
        payload=payload,
        event_id=query.id if query else None,
        message_id=query.message.message_id if query and query.message else None,
        display_name=user.first_name or user.username,
        username=user.username,
    )


class TelegramBotHandler:
    """Handles Telegram bot polling and routes updates to the engine."""

    def __init__(
        self,
        bot_token: str,
        engine: Optional[ConversationEngine] = None,
        admin_user_ids: Optional[List[int]] = None,
        manual_trigger: Optional[Callable[[], Awaitable[PassSummary]]] = None,
    ):
        """
        Initialize Telegram bot handler.

        Args:
            bot_token: Telegram bot token
            engine: Conversation engine receiving user events
            admin_user_ids: Users allowed to run /check_now
            manual_trigger: Coroutine function starting an immediate pass
        """
        self.engine = engine
        self.admin_user_ids = set(admin_user_ids or [])
        self.manual_trigger = manual_trigger

        self.application = (
            Application.builder().token(bot_token).concurrent_updates(True).build()
        )
        self.bot = self.application.bot
        self.is_polling = False

        self._setup_handlers()
        logger.info("Telegram bot handler initialized")

    def _setup_handlers(self) -> None:
        for command in COMMAND_EVENTS:
            self.application.add_handler(CommandHandler(command, self._handle_command))
        self.application.add_handler(CommandHandler("check_now", self._handle_check_now))
        self.application.add_handler(CallbackQueryHandler(self._handle_callback))
        self.application.add_handler(
            MessageHandler(filters.TEXT & ~filters.COMMAND, self._handle_text)
        )
        self.application.add_handler(
            MessageHandler(filters.COMMAND, self._handle_unknown_command)
        )
        self.application.add_error_handler(self._handle_error)

    async def start_polling(self) -> None:
        """Start polling for updates from Telegram."""
        if self.is_polling:
            logger.warning("Bot is already polling")
            return

        try:
            self.is_polling = True
            await self.application.initialize()
            await self.application.start()
            await self.application.updater.start_polling()
            logger.info("Telegram bot polling started")
        except Exception as e:
            logger.error(f"Error starting bot polling: {e}")
            self.is_polling = False
            raise

    async def stop_polling(self) -> None:
        """Stop polling for updates."""
        if not self.is_polling:
            return

        self.is_polling = False
        try:
            if self.application.updater:
                await self.application.updater.stop()
            await self.application.stop()
            await self.application.shutdown()
            logger.info("Telegram bot polling stopped")
        except Exception as e:
            logger.error(f"Error stopping bot polling: {e}")

    async def _dispatch(self, event: Optional[ConversationEvent]) -> None:
        if event is None:
            logger.warning("Received update without user or chat information")
            return
        if self.engine is None:
            logger.error("Conversation engine not available")
            return
        await self.engine.handle_event(event)

    async def _handle_command(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        command = update.message.text.split()[0].lstrip("/").split("@")[0].lower()
        await self._dispatch(event_from_update(update, COMMAND_EVENTS[command]))

    async def _handle_text(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        if not update.message or update.message.text is None:
            return
        await self._dispatch(
            event_from_update(update, EventKind.TEXT, update.message.text)
        )

    async def _handle_callback(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        query = update.callback_query
        try:
            kind, payload = parse_callback_data(query.data or "")
        except ValueError:
            logger.warning("Unknown callback data", extra={"data": query.data})
            await query.answer(text="This button is no longer supported.")
            return
        await self._dispatch(event_from_update(update, kind, payload))

    async def _handle_check_now(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        user = update.effective_user
        chat = update.effective_chat
        if user is None or chat is None:
            return

        if user.id not in self.admin_user_ids or self.manual_trigger is None:
            await self.send_response(chat.id, "❌ This command is not available.")
            return

        await self.send_response(chat.id, "🔄 Checking all active searches...")
        summary = await self.manual_trigger()
        if summary.skipped:
            await self.send_response(chat.id, "⏳ A check is already running.")
            return

        await self.send_response(
            chat.id,
            f"✅ Check finished: {summary.searches_processed} searches processed, "
            f"{summary.searches_failed} failed, {summary.listings_sent} apartments sent.",
        )

    async def _handle_unknown_command(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        if update.effective_chat:
            await self.send_response(
                update.effective_chat.id,
                "Unknown command. Use /help to see the available commands.",
            )

    async def _handle_error(
        self, update: object, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        logger.error(
            f"Unhandled error while processing update: {context.error}",
            extra={"update_type": type(update).__name__},
        )

    async def send_response(self, chat_id: int, text: str) -> bool:
        """
        Send a plain response message to a chat.

        Returns:
            True if message was sent successfully
        """
        try:
            await self.bot.send_message(chat_id=chat_id, text=text)
            return True
        except Exception as e:
            logger.error(f"Error sending response to chat {chat_id}: {e}")
            return False
