"""Telegram transport: turns updates into inbound events and sends replies."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, InputMediaPhoto
from telegram.constants import ParseMode
from telegram.error import TelegramError
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from ..events import InboundEvent

if TYPE_CHECKING:
    from telegram import Update

    from ..dispatcher import Dispatcher

logger = logging.getLogger(__name__)


def _button(label: str, data: str) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([[InlineKeyboardButton(label, callback_data=data)]])


class TelegramBot:
    def __init__(self, token: str, housekeeping_interval: float = 60.0) -> None:
        self._token = token
        self._housekeeping_interval = housekeeping_interval
        self._app: Application | None = None
        self._dispatcher: Dispatcher | None = None
        self._housekeeping_task: asyncio.Task | None = None

    def set_dispatcher(self, dispatcher: Dispatcher) -> None:
        self._dispatcher = dispatcher

    async def start(self) -> None:
        self._app = Application.builder().token(self._token).build()

        # Every text goes to the dispatcher; "/..." is valid terminal input too
        self._app.add_handler(CallbackQueryHandler(self._handle_callback))
        self._app.add_handler(MessageHandler(filters.TEXT, self._handle_message))

        await self._app.initialize()
        await self._app.start()
        await self._app.updater.start_polling(drop_pending_updates=True)

        self._housekeeping_task = asyncio.create_task(self._housekeeping_loop())
        logger.info("Telegram bot started")

    async def stop(self) -> None:
        task, self._housekeeping_task = self._housekeeping_task, None
        if task and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        if self._app:
            await self._app.updater.stop()
            await self._app.stop()
            await self._app.shutdown()
            self._app = None
            logger.info("Telegram bot stopped")

    async def _housekeeping_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self._housekeeping_interval)
                if self._dispatcher:
                    await self._dispatcher.housekeeping()
        except asyncio.CancelledError:
            return

    # ── Inbound ───────────────────────────────────────────────

    async def _handle_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.message
        if not message or not message.text or not update.effective_user:
            return
        if not self._dispatcher:
            return

        user = update.effective_user
        event = InboundEvent.message(
            sender_id=user.id,
            target=message.chat_id,
            text=message.text,
            message_id=message.message_id,
            sender_name=user.username or user.first_name or "",
        )
        await self._dispatcher.handle(event)

    async def _handle_callback(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        query = update.callback_query
        if not query or not query.message or not self._dispatcher:
            return

        user = query.from_user
        event = InboundEvent.callback(
            sender_id=user.id,
            target=query.message.chat.id,
            callback_id=query.id,
            data=query.data or "",
            message_id=query.message.message_id,
            sender_name=user.username or user.first_name or "",
        )
        await self._dispatcher.handle(event)

    # ── ChatTransport ─────────────────────────────────────────

    async def send_text(self, target: int, text: str, markdown: bool = False) -> None:
        if not self._app:
            return
        try:
            await self._app.bot.send_message(
                chat_id=target,
                text=text,
                parse_mode=ParseMode.MARKDOWN if markdown else None,
            )
        except TelegramError:
            logger.exception("Failed to send message to chat %d", target)

    async def send_image(
        self, target: int, path: str, button_label: str, button_data: str
    ) -> None:
        if not self._app:
            return
        try:
            with open(path, "rb") as f:
                await self._app.bot.send_photo(
                    chat_id=target,
                    photo=f,
                    reply_markup=_button(button_label, button_data),
                )
        except (OSError, TelegramError):
            logger.exception("Failed to send screenshot to chat %d", target)

    async def edit_image(
        self, target: int, message_id: int, path: str, button_label: str, button_data: str
    ) -> None:
        if not self._app:
            return
        try:
            with open(path, "rb") as f:
                await self._app.bot.edit_message_media(
                    chat_id=target,
                    message_id=message_id,
                    media=InputMediaPhoto(media=f),
                    reply_markup=_button(button_label, button_data),
                )
        except (OSError, TelegramError):
            logger.exception("Failed to refresh screenshot %d in chat %d", message_id, target)

    async def answer_callback(self, callback_id: str) -> None:
        if not self._app:
            return
        try:
            await self._app.bot.answer_callback_query(callback_query_id=callback_id)
        except TelegramError:
            logger.exception("Failed to answer callback query")
