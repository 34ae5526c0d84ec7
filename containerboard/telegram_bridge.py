"""
Telegram notification sink: forwards selected dashboard notifications to a chat.

Subscribes to ``notification`` events on the bus. Sends run as tasks on the
running event loop; when no loop is running they are queued until ``drain``.
"""
import asyncio
import logging
from typing import Iterable, List, Optional, Set

from telegram import Bot

from .config import Config
from .events import EventBus, Notification

logger = logging.getLogger(__name__)

SEVERITY_ICONS = {
    "success": "✅",
    "info": "ℹ️",
    "warning": "⚠️",
    "error": "❌",
}


class TelegramNotifier:
    """Forward notifications of the configured severities to one Telegram chat."""

    def __init__(self, bot, chat_id, bus: EventBus, severities: Iterable[str] = ("error",)):
        self.bot = bot
        self.chat_id = chat_id
        self.severities = set(severities)
        self.sent = 0
        self._queue: List[str] = []
        self._tasks: Set[asyncio.Task] = set()
        bus.subscribe("notification", self._on_notification)

    @classmethod
    def from_config(cls, config: Config, bus: EventBus) -> Optional["TelegramNotifier"]:
        """Build the sink when both a token and a chat id are configured."""
        token = config.telegram_token()
        if not token or not config.telegram_chat_id:
            logger.info("Telegram forwarding disabled (no token or chat id)")
            return None
        return cls(Bot(token), config.telegram_chat_id, bus, config.telegram_forward_severities)

    @staticmethod
    def format(note: Notification) -> str:
        icon = SEVERITY_ICONS.get(note.severity, "")
        return f"{icon} Container board {note.severity}: {note.message}"

    def _on_notification(self, notification: Notification) -> None:
        if notification.severity not in self.severities:
            return
        text = self.format(notification)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._queue.append(text)
            return
        task = loop.create_task(self._send(text))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _send(self, text: str) -> bool:
        try:
            await self.bot.send_message(chat_id=self.chat_id, text=text)
        except Exception as e:
            logger.error(f"Failed to forward notification to {self.chat_id}: {e}")
            return False
        self.sent += 1
        return True

    async def drain(self) -> None:
        """Send queued messages and wait for in-flight sends to finish."""
        queued, self._queue = self._queue, []
        for text in queued:
            await self._send(text)
        if self._tasks:
            await asyncio.gather(*list(self._tasks))
