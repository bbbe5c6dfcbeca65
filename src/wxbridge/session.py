from __future__ import annotations

import dataclasses
import random
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class Session:
    """
    The four opaque tokens that authorize every call after login.

    Sessions are values: a new handshake replaces the whole object and
    invalidation produces a copy with `valid=False`.
    """

    skey: str = ""
    uin: str = ""
    sid: str = ""
    ticket: str = ""
    valid: bool = False

    def invalidated(self) -> Session:
        return dataclasses.replace(self, valid=False)

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Session:
        return cls(
            skey=str(d.get("skey") or ""),
            uin=str(d.get("uin") or ""),
            sid=str(d.get("sid") or ""),
            ticket=str(d.get("ticket") or ""),
            valid=bool(d.get("valid", False)),
        )


@dataclass(frozen=True, slots=True)
class SyncKey:
    """
    The server's incremental-sync bookmark.

    An ordered list of `(key, value)` pairs threaded verbatim from one sync
    response into the next request.
    """

    pairs: tuple[tuple[Any, Any], ...] = ()

    @classmethod
    def from_wire(cls, d: dict[str, Any] | None) -> SyncKey:
        if not isinstance(d, dict):
            raise ValueError("SyncKey must be an object")
        items = d.get("List")
        if not isinstance(items, list):
            raise ValueError("SyncKey.List must be a list")
        pairs: list[tuple[Any, Any]] = []
        for item in items:
            if not isinstance(item, dict) or "Key" not in item or "Val" not in item:
                raise ValueError(f"invalid SyncKey entry: {item!r}")
            pairs.append((item["Key"], item["Val"]))
        return cls(pairs=tuple(pairs))

    def to_wire(self) -> dict[str, Any]:
        return {
            "Count": len(self.pairs),
            "List": [{"Key": k, "Val": v} for k, v in self.pairs],
        }

    def to_query(self) -> str:
        return "|".join(f"{k}_{v}" for k, v in self.pairs)


def device_id() -> str:
    """Per-call device id in the frontend's `e` + 15 digits shape."""

    return "e" + "".join(random.choice("0123456789") for _ in range(15))


def base_request(session: Session) -> dict[str, str]:
    return {
        "Uin": session.uin,
        "Sid": session.sid,
        "Skey": session.skey,
        "DeviceID": device_id(),
    }
