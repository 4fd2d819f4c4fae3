"""Telegram Bot API client for the single bridged chat.

Long-polls `getUpdates` in a background task and sends HTML messages with
optional inline keyboards. Outbound delivery is best-effort: failures are
logged and never raised to callers.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence

from telegram import Bot, BotCommand, InlineKeyboardButton, InlineKeyboardMarkup, Update, User
from telegram.error import BadRequest, RetryAfter, TelegramError

from claudio.constants import (
    TELEGRAM_MESSAGE_MAX_CHARS,
    TELEGRAM_PARSE_MODE,
    TELEGRAM_POLL_BACKOFF_S,
    TELEGRAM_POLL_TIMEOUT_S,
)

logger = logging.getLogger(__name__)

# Rows of (label, callback_data).
Buttons = Sequence[Sequence[tuple[str, str]]]
UpdateHandler = Callable[[Update], Awaitable[None]]

ALLOWED_UPDATES = ["message", "callback_query"]


def build_keyboard(buttons: Optional[Buttons]) -> Optional[InlineKeyboardMarkup]:
    if not buttons:
        return None
    return InlineKeyboardMarkup(
        [[InlineKeyboardButton(text=label, callback_data=data) for label, data in row] for row in buttons]
    )


def _is_entity_parse_error(error: BadRequest) -> bool:
    return "can't parse entities" in str(error).lower()


class RemoteChatClient:
    """Wrapper around `telegram.Bot` bound to one chat."""

    def __init__(
        self,
        bot_token: str,
        chat_id: Optional[int] = None,
        *,
        poll_timeout: int = TELEGRAM_POLL_TIMEOUT_S,
        poll_backoff: float = TELEGRAM_POLL_BACKOFF_S,
        message_max_chars: int = TELEGRAM_MESSAGE_MAX_CHARS,
        bot: Optional[Bot] = None,
    ) -> None:
        self.bot_token = bot_token
        self._chat_id = chat_id
        self.poll_timeout = poll_timeout
        self.poll_backoff = poll_backoff
        self.message_max_chars = message_max_chars
        self.bot: Optional[Bot] = bot if bot is not None else (Bot(bot_token) if bot_token else None)
        self._offset = 0
        self._poll_task: Optional[asyncio.Task[None]] = None
        self._running = False

    @property
    def is_configured(self) -> bool:
        return bool(self.bot_token)

    @property
    def offset(self) -> int:
        return self._offset

    @property
    def chat_id(self) -> Optional[int]:
        return self._chat_id

    def set_chat_id(self, chat_id: int) -> None:
        self._chat_id = chat_id

    def _require_bot(self) -> Bot:
        if self.bot is None:
            raise RuntimeError("Telegram bot token not configured")
        return self.bot

    # ==================== Bot setup ====================

    async def get_me(self) -> User:
        """Validate the token. Raises TelegramError on rejection."""
        bot = self._require_bot()
        await bot.initialize()
        return await bot.get_me()

    async def set_commands(self, commands: Sequence[tuple[str, str]]) -> bool:
        try:
            return await self._require_bot().set_my_commands(
                [BotCommand(command, description) for command, description in commands]
            )
        except TelegramError as e:
            logger.warning("Failed to register bot commands: %s", e)
            return False

    async def close(self) -> None:
        if self.bot is not None:
            try:
                await self.bot.shutdown()
            except TelegramError as e:
                logger.debug("Bot shutdown error: %s", e)

    # ==================== Polling ====================

    async def start_polling(self, handler: UpdateHandler) -> None:
        if self._poll_task and not self._poll_task.done():
            return
        self._require_bot()
        self._running = True
        self._poll_task = asyncio.create_task(self._poll_loop(handler))
        logger.info("Telegram polling started (offset=%d)", self._offset)

    async def stop_polling(self) -> None:
        self._running = False
        task = self._poll_task
        self._poll_task = None
        if task:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error("Telegram poll task ended with an error: %s", e, exc_info=True)
        logger.info("Telegram polling stopped")

    async def _poll_loop(self, handler: UpdateHandler) -> None:
        while self._running:
            try:
                await self.poll_once(handler)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Telegram polling error: %s; retrying in %.0fs", e, self.poll_backoff, exc_info=True)
                await asyncio.sleep(self.poll_backoff)

    async def poll_once(self, handler: UpdateHandler) -> int:
        """Fetch one batch of updates and dispatch them in order; returns the batch size."""
        bot = self._require_bot()
        try:
            updates = await bot.get_updates(
                offset=self._offset,
                timeout=self.poll_timeout,
                allowed_updates=ALLOWED_UPDATES,
            )
        except RetryAfter as e:
            delay = e.retry_after if isinstance(e.retry_after, (int, float)) else e.retry_after.total_seconds()
            logger.warning("Telegram rate limited polling; retrying in %ss", delay)
            await asyncio.sleep(delay)
            return 0
        except TelegramError as e:
            logger.warning("Telegram polling failed: %s; retrying in %.0fs", e, self.poll_backoff)
            await asyncio.sleep(self.poll_backoff)
            return 0

        for update in updates:
            # Advance first so a crashing handler cannot cause redelivery.
            self._offset = max(self._offset, update.update_id + 1)
            try:
                await handler(update)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Update %s handler failed: %s", update.update_id, e, exc_info=True)
        return len(updates)

    # ==================== Outbound ====================

    async def send(self, text: str, buttons: Optional[Buttons] = None) -> bool:
        """Send a message to the bound chat. Returns False on any failure."""
        if self._chat_id is None or self.bot is None:
            logger.debug("No chat bound; dropping message")
            return False

        if len(text) > self.message_max_chars:
            text = text[: self.message_max_chars]
        markup = build_keyboard(buttons)

        try:
            await self.bot.send_message(
                chat_id=self._chat_id, text=text, parse_mode=TELEGRAM_PARSE_MODE, reply_markup=markup
            )
            return True
        except BadRequest as e:
            if not _is_entity_parse_error(e):
                logger.error("Failed to send message: %s", e)
                return False
            logger.warning("HTML rejected (%s); resending as plain text", e)
        except TelegramError as e:
            logger.error("Failed to send message: %s", e)
            return False

        try:
            await self.bot.send_message(chat_id=self._chat_id, text=text, reply_markup=markup)
            return True
        except TelegramError as e:
            logger.error("Failed to send plain-text message: %s", e)
            return False

    async def answer_callback(self, callback_id: str, text: Optional[str] = None) -> None:
        if self.bot is None:
            return
        try:
            await self.bot.answer_callback_query(callback_query_id=callback_id, text=text)
        except TelegramError as e:
            logger.warning("Failed to answer callback %s: %s", callback_id, e)

    async def edit_buttons(self, chat_id: int, message_id: int, buttons: Optional[Buttons] = None) -> None:
        """Replace (or with no buttons, remove) a message's inline keyboard."""
        if self.bot is None:
            return
        try:
            await self.bot.edit_message_reply_markup(
                chat_id=chat_id, message_id=message_id, reply_markup=build_keyboard(buttons)
            )
        except BadRequest as e:
            if "message is not modified" in str(e).lower():
                return
            logger.warning("Failed to edit buttons on message %s: %s", message_id, e)
        except TelegramError as e:
            logger.warning("Failed to edit buttons on message %s: %s", message_id, e)
