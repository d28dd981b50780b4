"""
Telegram sink for relaying crawler alerts to a Telegram chat.
"""

import logging
from typing import Optional

from telegram import Bot

from core.interfaces import Sink
from core.models import AlertKind, Event


logger = logging.getLogger(__name__)

_ICONS = {
    AlertKind.ANTI_BOT_PROTECTION: "⚠️",
    AlertKind.API_ERROR: "⚠️",
    AlertKind.CRAWLER_BLOCKED: "🛑",
}


class TelegramSink(Sink):
    """Sink that sends alert messages to a Telegram chat."""

    name = "TelegramSink"

    def __init__(
        self,
        bot_token: Optional[str] = None,
        chat_id: Optional[str] = None,
        bot: Optional[Bot] = None,
    ):
        self.bot = bot or (Bot(token=bot_token) if bot_token else None)
        self.chat_id = chat_id

    @staticmethod
    def format_message(event: Event) -> str:
        message = f"{_ICONS.get(event.kind, '')} *{event.kind.value}*\n\n{event.message}\n"
        for key, value in event.metadata.items():
            if isinstance(value, list):
                value = "; ".join(str(v) for v in value) or "-"
            message += f"\n*{key}:* {value}"
        return message

    async def handle(self, event: Event) -> None:
        if not self.bot or not self.chat_id:
            logger.warning("Telegram bot or chat_id not configured, skipping notification")
            return

        await self.bot.send_message(
            chat_id=self.chat_id,
            text=self.format_message(event),
            parse_mode="Markdown",
        )
