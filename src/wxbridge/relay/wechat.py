from __future__ import annotations

import asyncio
import logging

from ..client import WeChatClient
from ..constants import BOT_NAME
from ..contacts import Contact
from ..events import Document, Location, NormalizedEvent, Photo, Sticker, Text, Video, Voice
from ..sync import EventSink

logger = logging.getLogger("wxbridge.relay.wechat")

_FORWARDED = ("text", "photo", "voice", "video", "document", "location")


class WeChatChannel:
    name = "wechat"

    def __init__(self, client: WeChatClient) -> None:
        self.client = client
        self.task: asyncio.Task[None] | None = None
        self._sink: EventSink | None = None
        for event in _FORWARDED:
            client.on(event, self._forward)  # type: ignore[arg-type]

    def set_sink(self, sink: EventSink) -> None:
        self._sink = sink

    async def start(self) -> None:
        self.task = self.client.start()

    async def stop(self) -> None:
        await self.client.close()

    def peers(self) -> list[Contact]:
        """Contacts an operator can address, the logged-in account excluded."""

        me = self.client.api.username
        return [c for c in self.client.directory.contacts() if c.username != me]

    async def _forward(self, event: NormalizedEvent) -> None:
        if self._sink is not None:
            await self._sink(event)

    async def deliver(self, event: NormalizedEvent) -> None:
        # Relay notices are addressed to the operator, who has no WeChat username.
        if event.sender == BOT_NAME:
            logger.warning("relay notice: %s", event.content)
            return

        to = event.recipient
        c = self.client
        if isinstance(event, Text):
            await c.send_text(event.content, to)
        elif isinstance(event, Sticker):
            await c.send_sticker(event.content, to)
        elif isinstance(event, Photo):
            await c.send_image(event.content, to)
        elif isinstance(event, Video):
            await c.send_video(event.content, to)
        elif isinstance(event, Document):
            await c.send_document(event.filename or "file", event.content, to)
        elif isinstance(event, Voice):
            await c.send_voice(event.content, to)
        elif isinstance(event, Location):
            await c.send_location(event.content, to)
