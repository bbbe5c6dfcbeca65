from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any, Literal, get_args

logger = logging.getLogger("wxbridge.events")

EventName = Literal[
    # message events, payload: a NormalizedEvent
    "text",
    "photo",
    "voice",
    "video",
    "document",
    "location",
    # lifecycle events
    "launch",
    "logged_in",  # "loggedIn" for relays using camelCase lifecycle names
    "scanning",
    "scanned",
    "qr",
]

EVENT_NAMES: frozenset[str] = frozenset(get_args(EventName))

Listener = Callable[..., Awaitable[None]] | Callable[..., None]


class AsyncEventEmitter:
    """
    Typed async event channel.

    - only the names in `EventName` are accepted, so a typo fails at `on()`
      time rather than silently never firing;
    - listeners may be sync or async;
    - a failing listener is logged and does not stop delivery to the others,
      nor the loop that emitted the event.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    @staticmethod
    def _check(event: str) -> None:
        if event not in EVENT_NAMES:
            raise ValueError(f"unknown event: {event!r}")

    def on(self, event: EventName, listener: Listener) -> None:
        self._check(event)
        self._listeners[event].append(listener)

    async def emit(self, event: EventName, *args: Any) -> bool:
        self._check(event)
        any_triggered = False

        for listener in list(self._listeners.get(event, [])):
            any_triggered = True
            try:
                res = listener(*args)
                if asyncio.iscoroutine(res):
                    await res
            except Exception:
                logger.exception("listener for %r failed", event)

        return any_triggered
