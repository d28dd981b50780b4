"""
Discord sink for relaying crawler alerts through a channel webhook.
"""

import logging
from typing import Optional

import aiohttp
import discord
from discord import Embed

from core.interfaces import Sink
from core.models import AlertKind, Event


logger = logging.getLogger(__name__)

_COLORS = {
    AlertKind.ANTI_BOT_PROTECTION: 0xff8c00,
    AlertKind.API_ERROR: 0xffcc00,
    AlertKind.CRAWLER_BLOCKED: 0xff0000,
}


class DiscordSink(Sink):
    """Sink that posts alert embeds to a Discord webhook."""

    name = "DiscordSink"

    def __init__(self, webhook_url: Optional[str] = None, username: str = "Review Crawler"):
        self.webhook_url = webhook_url
        self.username = username
        self._session: Optional[aiohttp.ClientSession] = None

    @staticmethod
    def build_embed(event: Event) -> Embed:
        embed = Embed(
            title=event.kind.value.replace("_", " ").title(),
            description=event.message,
            color=_COLORS.get(event.kind, 0x0099ff),
            timestamp=event.timestamp,
        )
        for key, value in event.metadata.items():
            if isinstance(value, list):
                value = "\n".join(str(v)[:200] for v in value) or "-"
            text = str(value) or "-"
            embed.add_field(
                name=key,
                value=text[:1000] + "..." if len(text) > 1000 else text,
                inline=not isinstance(event.metadata[key], list),
            )
        embed.set_footer(text=event.source)
        return embed

    async def handle(self, event: Event) -> None:
        if not self.webhook_url:
            logger.warning("Discord webhook not configured, skipping notification")
            return

        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        webhook = discord.Webhook.from_url(self.webhook_url, session=self._session)
        await webhook.send(embed=self.build_embed(event), username=self.username)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
