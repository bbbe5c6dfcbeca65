from __future__ import annotations

import logging
from functools import partial

from ..constants import BOT_NAME, OPERATOR_NAME
from ..events import NormalizedEvent, Text
from ..exceptions import WxBridgeError
from .channel import Channel

logger = logging.getLogger("wxbridge.relay")


class Dispatcher:
    """Routes each channel's inbound events to the other channel's `deliver`."""

    def __init__(self, left: Channel, right: Channel) -> None:
        self.left = left
        self.right = right
        left.set_sink(partial(self._route, left, right))
        right.set_sink(partial(self._route, right, left))

    async def start(self) -> None:
        await self.left.start()
        await self.right.start()

    async def stop(self) -> None:
        await self.right.stop()
        await self.left.stop()

    async def _route(self, origin: Channel, target: Channel, event: NormalizedEvent) -> None:
        try:
            await target.deliver(event)
        except WxBridgeError as e:
            logger.warning(
                "%s -> %s: failed to deliver %s: %s", origin.name, target.name, event.kind, e
            )
            notice = Text(
                f"Failed to deliver {event.kind} to {target.name}: {e}",
                sender=BOT_NAME,
                recipient=OPERATOR_NAME,
                peer=event.peer,
            )
            try:
                await origin.deliver(notice)
            except WxBridgeError as e2:
                logger.error("failed to report delivery failure to %s: %s", origin.name, e2)
