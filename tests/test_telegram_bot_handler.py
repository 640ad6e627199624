"""
Tests for the Telegram adapter: update translation and the messaging channel.
"""

from unittest.mock import AsyncMock, Mock

import pytest
from telegram import InlineKeyboardMarkup
from telegram.error import BadRequest

from rent_watch.components import keyboards
from rent_watch.components.scheduler import PassSummary
from rent_watch.components.telegram_bot_handler import (
    COMMAND_EVENTS,
    TelegramBotHandler,
    event_from_update,
)
from rent_watch.components.telegram_channel import CAPTION_LIMIT, TelegramChannel, to_markup
from rent_watch.models.conversation import EventKind


def make_update(text=None, callback_data=None, user_id=1001, first_name="Ana", username="ana_v"):
    update = Mock()
    update.effective_user.id = user_id
    update.effective_user.first_name = first_name
    update.effective_user.username = username
    update.effective_chat.id = user_id
    if callback_data is None:
        update.callback_query = None
        update.message.text = text
    else:
        update.callback_query.id = "cbq-1"
        update.callback_query.data = callback_data
        update.callback_query.message.message_id = 77
        update.callback_query.answer = AsyncMock()
    return update


class TestEventFromUpdate:
    """Test translation of updates into conversation events."""

    def test_text_message(self):
        """Test a plain text message."""
        event = event_from_update(make_update(text="800"), EventKind.TEXT, "800")

        assert event.kind == EventKind.TEXT
        assert event.user_id == 1001
        assert event.chat_id == 1001
        assert event.payload == "800"
        assert event.event_id is None
        assert not event.is_button
        assert event.display_name == "Ana"
        assert event.username == "ana_v"

    def test_button_press(self):
        """Test a callback query."""
        update = make_update(callback_data="SET_ROOMS:2")

        event = event_from_update(update, EventKind.SELECT_ROOMS, "2")

        assert event.is_button
        assert event.event_id == "cbq-1"
        assert event.message_id == 77

    def test_display_name_falls_back_to_username(self):
        """Test users without a first name."""
        event = event_from_update(make_update(text="hi", first_name=None), EventKind.TEXT)

        assert event.display_name == "ana_v"

    def test_missing_user(self):
        """Test updates without user information."""
        update = make_update(text="hi")
        update.effective_user = None

        assert event_from_update(update, EventKind.TEXT) is None


class TestTelegramBotHandler:
    """Test TelegramBotHandler routing."""

    def setup_method(self):
        """Set up test fixtures."""
        self.engine = Mock()
        self.engine.handle_event = AsyncMock()
        self.trigger = AsyncMock()
        self.handler = TelegramBotHandler(
            "123456:test_bot_token",
            engine=self.engine,
            admin_user_ids=[42],
            manual_trigger=self.trigger,
        )
        self.handler.bot = AsyncMock()

    def sent_texts(self):
        return [call.kwargs["text"] for call in self.handler.bot.send_message.await_args_list]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("command,kind", sorted(COMMAND_EVENTS.items()))
    async def test_commands_routed(self, command, kind):
        """Test that each command becomes its event kind."""
        await self.handler._handle_command(make_update(text=f"/{command}"), None)

        event = self.engine.handle_event.await_args.args[0]
        assert event.kind == kind

    @pytest.mark.asyncio
    async def test_command_with_bot_suffix(self):
        """Test commands addressed as /start@BotName."""
        await self.handler._handle_command(make_update(text="/start@RentWatchBot"), None)

        assert self.engine.handle_event.await_args.args[0].kind == EventKind.START

    @pytest.mark.asyncio
    async def test_text_routed(self):
        """Test free text."""
        await self.handler._handle_text(make_update(text="1200"), None)

        event = self.engine.handle_event.await_args.args[0]
        assert event.kind == EventKind.TEXT
        assert event.payload == "1200"

    @pytest.mark.asyncio
    async def test_callback_routed(self):
        """Test a button press carrying a payload."""
        await self.handler._handle_callback(make_update(callback_data="TOGGLE_DISTRICT:Ruzafa"), None)

        event = self.engine.handle_event.await_args.args[0]
        assert event.kind == EventKind.TOGGLE_DISTRICT
        assert event.payload == "Ruzafa"

    @pytest.mark.asyncio
    async def test_unknown_callback_answered(self):
        """Test that buttons from older versions are answered, not routed."""
        update = make_update(callback_data="LEGACY_BUTTON")

        await self.handler._handle_callback(update, None)

        update.callback_query.answer.assert_awaited_once_with(
            text="This button is no longer supported."
        )
        self.engine.handle_event.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_engine(self):
        """Test that events are dropped before the engine is wired."""
        self.handler.engine = None

        await self.handler._handle_text(make_update(text="hi"), None)

        self.engine.handle_event.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_check_now_requires_admin(self):
        """Test that non-admins cannot trigger a pass."""
        await self.handler._handle_check_now(make_update(text="/check_now"), None)

        self.trigger.assert_not_awaited()
        assert self.sent_texts() == ["❌ This command is not available."]

    @pytest.mark.asyncio
    async def test_check_now_reports_summary(self, fixed_now):
        """Test the admin-triggered pass."""
        self.trigger.return_value = PassSummary(
            trigger="manual",
            started_at=fixed_now,
            searches_processed=3,
            searches_failed=1,
            listings_sent=5,
        )

        await self.handler._handle_check_now(make_update(text="/check_now", user_id=42), None)

        self.trigger.assert_awaited_once()
        assert self.sent_texts()[-1] == (
            "✅ Check finished: 3 searches processed, 1 failed, 5 apartments sent."
        )

    @pytest.mark.asyncio
    async def test_check_now_skipped(self, fixed_now):
        """Test the reply when a pass is already running."""
        self.trigger.return_value = PassSummary(
            trigger="manual", started_at=fixed_now, skipped=True
        )

        await self.handler._handle_check_now(make_update(text="/check_now", user_id=42), None)

        assert self.sent_texts()[-1] == "⏳ A check is already running."

    @pytest.mark.asyncio
    async def test_send_response_failure(self):
        """Test that send failures are reported, not raised."""
        self.handler.bot.send_message.side_effect = RuntimeError("network down")

        assert await self.handler.send_response(1, "hello") is False


class TestTelegramChannel:
    """Test TelegramChannel."""

    def setup_method(self):
        """Set up test fixtures."""
        self.bot = AsyncMock()
        self.channel = TelegramChannel(self.bot)

    def test_to_markup(self):
        """Test keyboard rendering."""
        markup = to_markup(keyboards.edit_options())

        assert isinstance(markup, InlineKeyboardMarkup)
        assert markup.inline_keyboard[0][0].callback_data == "EDIT_PRICE"
        assert to_markup(None) is None

    @pytest.mark.asyncio
    async def test_send_text_with_keyboard(self):
        """Test text with an inline keyboard."""
        await self.channel.send_text(5, "Choose", keyboards.main_menu())

        kwargs = self.bot.send_message.await_args.kwargs
        assert kwargs["chat_id"] == 5
        assert kwargs["text"] == "Choose"
        assert isinstance(kwargs["reply_markup"], InlineKeyboardMarkup)

    @pytest.mark.asyncio
    async def test_photo_caption_truncated(self):
        """Test that captions respect the Telegram limit."""
        await self.channel.send_photo(5, "x" * 2000, "https://img/1.jpg")

        caption = self.bot.send_photo.await_args.kwargs["caption"]
        assert len(caption) == CAPTION_LIMIT
        assert caption.endswith("...")

    @pytest.mark.asyncio
    async def test_photo_group_caption_on_first_only(self):
        """Test the media group layout."""
        urls = [f"https://img/{i}.jpg" for i in range(3)]

        await self.channel.send_photo_group(5, "Listing", urls)

        media = self.bot.send_media_group.await_args.kwargs["media"]
        assert [m.media for m in media] == urls
        assert media[0].caption == "Listing"
        assert media[1].caption is None

    @pytest.mark.asyncio
    async def test_unchanged_keyboard_edit_ignored(self):
        """Test that 'message is not modified' is not an error."""
        self.bot.edit_message_reply_markup.side_effect = BadRequest(
            "Message is not modified"
        )

        await self.channel.update_keyboard(5, 10, keyboards.cancel_only())

    @pytest.mark.asyncio
    async def test_other_edit_errors_raised(self):
        """Test that other edit failures propagate."""
        self.bot.edit_message_reply_markup.side_effect = BadRequest("Message to edit not found")

        with pytest.raises(BadRequest):
            await self.channel.update_keyboard(5, 10, keyboards.cancel_only())

    @pytest.mark.asyncio
    async def test_acknowledge(self):
        """Test answering a callback query."""
        await self.channel.acknowledge("cbq-1", "Added: Ruzafa")

        self.bot.answer_callback_query.assert_awaited_once_with(
            callback_query_id="cbq-1", text="Added: Ruzafa"
        )

    @pytest.mark.asyncio
    async def test_connection(self):
        """Test the connection probe."""
        self.bot.get_me.return_value = Mock(username="rent_watch_bot")
        assert await self.channel.test_connection() is True

        self.bot.get_me.side_effect = RuntimeError("unauthorized")
        assert await self.channel.test_connection() is False
