"""
Fire-and-forget delivery of messages to Telegram users.

notify() schedules the send and returns immediately; a failed delivery is
logged and never reaches the caller. In private chats the chat ID equals the
user ID, so user IDs are used directly as targets.
"""

import asyncio
import logging

from telegram import Bot
from telegram.error import TelegramError

logger = logging.getLogger(__name__)


class TelegramNotifier:

    def __init__(self, bot: Bot):
        self.bot = bot
        self._pending: set[asyncio.Task] = set()

    def notify(self, user_id: int, message: str) -> None:
        task = asyncio.get_running_loop().create_task(self._send(user_id, message))
        # Keep a reference until done so the task is not garbage-collected
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _send(self, user_id: int, message: str) -> None:
        try:
            await self.bot.send_message(chat_id=user_id, text=message, parse_mode="Markdown")
        except TelegramError as e:
            logger.error("Notification to user_id=%d failed: %s", user_id, e)

    async def drain(self) -> None:
        """Wait for in-flight notifications (used on shutdown)."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
