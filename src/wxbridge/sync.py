from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from .api import WebApi
from .config import ClientConfig
from .decoder import MessageDecoder, RawMessage
from .events import NormalizedEvent
from .exceptions import DecodeError, DirectoryError, ProtocolError, TransportError
from .session import SyncKey

logger = logging.getLogger("wxbridge.sync")

EventSink = Callable[[NormalizedEvent], Awaitable[Any]]


class SyncEngine:
    """
    Long-poll loop over `synccheck` / `webwxsync`.

    The cursor is replaced only after a sync response has been parsed, and a
    batch is fully decoded before the next check, so a request never carries
    an older cursor than the last one applied.
    """

    def __init__(
        self,
        *,
        api: WebApi,
        decoder: MessageDecoder,
        sink: EventSink,
        config: ClientConfig,
    ) -> None:
        self._api = api
        self._decoder = decoder
        self._sink = sink
        self._config = config
        self.sync_key = SyncKey()

    def reset(self, sync_key: SyncKey) -> None:
        self.sync_key = sync_key

    async def run(self) -> None:
        """Poll until the session is invalidated or a protocol error escapes."""

        while self._api.session.valid:
            await self.poll_once()
            await asyncio.sleep(self._config.sync_interval_s)

    async def poll_once(self) -> int:
        selector = await self._api.sync_check(self.sync_key)
        if not selector:
            return 0

        body = await self._api.sync(self.sync_key)
        try:
            new_key = SyncKey.from_wire(body.get("SyncKey"))
        except ValueError as e:
            raise ProtocolError(f"failed to sync: {e}") from e

        messages = [m for m in body.get("AddMsgList") or [] if isinstance(m, dict)]
        self._log_directory_changes(body)
        self.sync_key = new_key

        await self.process_batch(messages)
        return len(messages)

    async def process_batch(self, messages: list[dict[str, Any]]) -> None:
        if not messages:
            return
        await asyncio.gather(*(self._handle(RawMessage.from_wire(m)) for m in messages))

    async def _handle(self, raw: RawMessage) -> None:
        try:
            event = await self._decoder.decode(raw)
        except (DirectoryError, DecodeError, TransportError) as e:
            logger.warning("dropping message %s (type %s): %s", raw.msg_id, raw.msg_type, e)
            return
        except Exception:
            logger.exception("dropping message %s (type %s)", raw.msg_id, raw.msg_type)
            return
        if event is not None:
            await self._sink(event)

    @staticmethod
    def _log_directory_changes(body: dict[str, Any]) -> None:
        for field in ("ModContactList", "DelContactList", "ModChatRoomMemberList"):
            items = body.get(field) or []
            if items:
                logger.debug("sync reported %d %s entries (not applied)", len(items), field)
