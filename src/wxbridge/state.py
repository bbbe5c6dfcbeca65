from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .session import Session
from .transport import CookieSnapshot

logger = logging.getLogger("wxbridge.state")


@dataclass(slots=True)
class PersistedState:
    session: Session = field(default_factory=Session)
    cookies: CookieSnapshot = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"session": self.session.to_dict(), "cookies": list(self.cookies)}


class StateStore:
    """
    Single-file JSON store for the session tokens and cookie jar.

    A missing or unreadable file yields a fresh, invalid session so the
    client falls back to the QR login.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()
        self._lock = asyncio.Lock()

    def load_sync(self) -> PersistedState:
        try:
            raw = self.path.read_text("utf-8")
        except FileNotFoundError:
            return PersistedState()
        except OSError as e:
            logger.warning("failed to read %s, starting fresh: %s", self.path, e)
            return PersistedState()

        try:
            d = json.loads(raw)
            if not isinstance(d, dict):
                raise TypeError("state file did not contain an object")
            session = Session.from_dict(d.get("session") or {})
            cookies = [c for c in d.get("cookies") or [] if isinstance(c, dict)]
        except (TypeError, ValueError, AttributeError) as e:
            logger.warning("ignoring unparsable state file %s: %s", self.path, e)
            return PersistedState()
        return PersistedState(session=session, cookies=cookies)

    def save_sync(self, state: PersistedState) -> None:
        """Write atomically; safe to call from a signal handler."""

        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(json.dumps(state.to_dict(), indent=2), "utf-8")
        os.replace(tmp, self.path)

    async def load(self) -> PersistedState:
        async with self._lock:
            return await asyncio.to_thread(self.load_sync)

    async def save(self, state: PersistedState) -> None:
        async with self._lock:
            await asyncio.to_thread(self.save_sync, state)
