"""
Telegram messaging channel.

Renders transport-neutral keyboards as inline keyboards and sends text,
photos and photo groups through the Bot API. Errors propagate so callers
can decide whether to retry.
"""

from typing import List, Optional

from telegram import (
    Bot,
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    InputMediaPhoto,
)
from telegram.error import BadRequest

from ..models.conversation import Keyboard
from ..models.listing import MAX_PHOTOS
from ..utils.logging import get_logger

logger = get_logger("telegram.channel")

CAPTION_LIMIT = 1024


def to_markup(keyboard: Optional[Keyboard]) -> Optional[InlineKeyboardMarkup]:
    if keyboard is None:
        return None
    return InlineKeyboardMarkup(
        [
            [
                InlineKeyboardButton(text=button.text, callback_data=button.callback_data)
                for button in row
            ]
            for row in keyboard.rows
        ]
    )


def _caption(text: str) -> str:
    if len(text) <= CAPTION_LIMIT:
        return text
    return text[: CAPTION_LIMIT - 3] + "..."


class TelegramChannel:
    """IMessagingChannel implementation on python-telegram-bot."""

    def __init__(self, bot: Bot):
        self.bot = bot

    async def send_text(
        self, chat_id: int, text: str, keyboard: Optional[Keyboard] = None
    ) -> None:
        await self.bot.send_message(
            chat_id=chat_id,
            text=text,
            reply_markup=to_markup(keyboard),
        )
        logger.debug("Sent text message", extra={"chat_id": chat_id})

    async def send_photo(self, chat_id: int, text: str, photo_url: str) -> None:
        await self.bot.send_photo(
            chat_id=chat_id, photo=photo_url, caption=_caption(text)
        )
        logger.debug("Sent photo message", extra={"chat_id": chat_id})

    async def send_photo_group(
        self, chat_id: int, text: str, photo_urls: List[str]
    ) -> None:
        media = [
            InputMediaPhoto(media=url, caption=_caption(text) if index == 0 else None)
            for index, url in enumerate(photo_urls[:MAX_PHOTOS])
        ]
        await self.bot.send_media_group(chat_id=chat_id, media=media)
        logger.debug(
            "Sent photo group", extra={"chat_id": chat_id, "photos": len(media)}
        )

    async def update_keyboard(
        self, chat_id: int, message_id: int, keyboard: Keyboard
    ) -> None:
        try:
            await self.bot.edit_message_reply_markup(
                chat_id=chat_id, message_id=message_id, reply_markup=to_markup(keyboard)
            )
        except BadRequest as e:
            # Telegram rejects edits that leave the markup unchanged
            if "not modified" not in str(e).lower():
                raise

    async def acknowledge(self, event_id: str, alert_text: Optional[str] = None) -> None:
        await self.bot.answer_callback_query(callback_query_id=event_id, text=alert_text)

    async def test_connection(self) -> bool:
        """
        Test connection to Telegram Bot API.

        Returns:
            True if connection test successful
        """
        try:
            bot_info = await self.bot.get_me()
            logger.info(f"Bot connection test successful. Bot: @{bot_info.username}")
            return True
        except Exception as e:
            logger.error(f"Bot connection test failed: {e}")
            return False
