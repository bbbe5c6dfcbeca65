from __future__ import annotations

from typing import Protocol

from ..events import NormalizedEvent
from ..sync import EventSink


class Channel(Protocol):
    """
    One side of the relay.

    Inbound traffic is pushed into the sink as normalized events; `deliver`
    accepts the same event types as outbound commands, addressed by
    `recipient`.
    """

    name: str

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    def set_sink(self, sink: EventSink) -> None: ...

    async def deliver(self, event: NormalizedEvent) -> None: ...
