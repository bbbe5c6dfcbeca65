from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

import httpx

from .api import WebApi
from .contacts import ContactDirectory, is_group
from .emoji import parse_emoji
from .events import Document, Location, NormalizedEvent, Photo, Text, Video, Voice
from .exceptions import DecodeError, TransportError
from .markup import MarkupError, parse_coordinates, scan_attributes

logger = logging.getLogger("wxbridge.decoder")

UNKNOWN_MESSAGE = "Unknown message"
UNSUPPORTED_STICKER = "Unsupported sticker"


class MsgType(IntEnum):
    UNKNOWN = 0
    TEXT = 1
    IMAGE = 3
    VOICE = 34
    VERIFYMSG = 37
    POSSIBLEFRIEND_MSG = 40
    SHARECARD = 42
    VIDEO = 43
    EMOTICON = 47
    LOCATION = 48
    APP = 49
    VOIPMSG = 50
    STATUSNOTIFY = 51
    VOIPNOTIFY = 52
    VOIPINVITE = 53
    MICROVIDEO = 62
    SYSNOTICE = 9999
    SYS = 10000
    RECALLED = 10002


class AppMsgType(IntEnum):
    UNKNOWN = 0
    TEXT = 1
    IMG = 2
    AUDIO = 3
    VIDEO = 4
    URL = 5
    ATTACH = 6
    OPEN = 7
    EMOJI = 8
    VOICE_REMIND = 9
    SCAN_GOOD = 10
    GOOD = 13
    EMOTION = 15
    CARD_TICKET = 16
    REALTIME_SHARE_LOCATION = 17
    TRANSFERS = 2000
    RED_ENVELOPES = 2001
    READER_TYPE = 100001


# Types consumed silently.
_DROPPED = frozenset({MsgType.STATUSNOTIFY, MsgType.RECALLED, MsgType.SYSNOTICE})

# `<sender>:<br/>` prefix the server puts in front of group message content.
_GROUP_SENDER = re.compile(r"^(@[a-zA-Z0-9]+|[a-zA-Z0-9_-]+):<br/>")


def _int(v: Any) -> int:
    try:
        return int(v or 0)
    except (TypeError, ValueError):
        return 0


@dataclass(slots=True)
class RawMessage:
    msg_id: str
    from_user: str
    to_user: str
    msg_type: int
    content: str = ""
    app_msg_type: int = 0
    sub_msg_type: int = 0
    ori_content: str = ""
    file_name: str = ""
    media_id: str = ""
    encry_file_name: str = ""
    has_product_id: bool = False

    @classmethod
    def from_wire(cls, d: dict[str, Any]) -> RawMessage:
        return cls(
            msg_id=str(d.get("MsgId") or ""),
            from_user=str(d.get("FromUserName") or ""),
            to_user=str(d.get("ToUserName") or ""),
            msg_type=_int(d.get("MsgType")),
            content=str(d.get("Content") or ""),
            app_msg_type=_int(d.get("AppMsgType")),
            sub_msg_type=_int(d.get("SubMsgType")),
            ori_content=str(d.get("OriContent") or ""),
            file_name=str(d.get("FileName") or ""),
            media_id=str(d.get("MediaId") or ""),
            encry_file_name=str(d.get("EncryFileName") or ""),
            has_product_id=bool(_int(d.get("HasProductId"))),
        )


@dataclass(slots=True)
class _Route:
    sender: str
    recipient: str
    peer: str


class MessageDecoder:
    """
    Turns one `RawMessage` into at most one normalized event.

    Media types trigger a secondary fetch through the session (`WebApi`);
    contact cards fetch the avatar through `public_http`, which carries no
    session cookies. Group messages may trigger lazy directory lookups, whose
    `DirectoryError` propagates to the caller so only this message is lost.
    """

    def __init__(
        self, *, api: WebApi, directory: ContactDirectory, public_http: httpx.AsyncClient
    ) -> None:
        self._api = api
        self._directory = directory
        self._public_http = public_http

    async def _route(self, raw: RawMessage) -> tuple[_Route, str]:
        me = self._api.username
        peer = raw.to_user if raw.from_user in (me, "") else raw.from_user
        sender = raw.from_user
        recipient = raw.to_user
        content = raw.content

        if is_group(peer):
            m = _GROUP_SENDER.match(content)
            if m:
                sender = m.group(1)
                content = content[m.end() :]
            recipient = peer
            group = self._directory.get(peer)
            if group is None:
                group = await self._directory.fetch_group(peer)
            if sender not in self._directory:
                await self._directory.fetch_group_member(group.encrypted_room_id, sender)

        route = _Route(
            sender=self._directory.display_name(sender),
            recipient=self._directory.display_name(recipient),
            peer=peer,
        )
        return route, content

    async def decode(self, raw: RawMessage) -> NormalizedEvent | None:
        route, body = await self._route(raw)
        content = html.unescape(parse_emoji(body.replace("<br/>", "\n")))
        r = (route.sender, route.recipient, route.peer)

        msg_type = MsgType.APP if raw.app_msg_type else raw.msg_type

        if msg_type == MsgType.TEXT:
            if raw.sub_msg_type == MsgType.LOCATION:
                return Location(self._coordinates(raw), *r)
            return Text(content, *r)

        if msg_type == MsgType.EMOTICON and raw.has_product_id:
            return Text(UNSUPPORTED_STICKER, *r)

        if msg_type in (MsgType.EMOTICON, MsgType.IMAGE):
            return Photo(await self._api.get_msg_img(raw.msg_id), *r)

        if msg_type == MsgType.VOICE:
            return Voice(await self._api.get_voice(raw.msg_id), *r)

        if msg_type in (MsgType.VIDEO, MsgType.MICROVIDEO):
            return Video(await self._api.get_video(raw.msg_id), *r)

        if msg_type == MsgType.LOCATION:
            return Location(self._coordinates(raw), *r)

        if msg_type == MsgType.APP:
            return await self._decode_app(raw, r)

        if msg_type == MsgType.SHARECARD:
            return await self._decode_card(raw, body, r)

        if msg_type == MsgType.SYS:
            return Text(content, *r)

        if msg_type in _DROPPED:
            logger.debug("dropping message %s of type %s", raw.msg_id, msg_type)
            return None

        logger.warning("unhandled message type %s: %r", msg_type, raw)
        return Text(UNKNOWN_MESSAGE, *r)

    async def _decode_app(self, raw: RawMessage, r: tuple[str, str, str]) -> NormalizedEvent:
        if raw.app_msg_type in (AppMsgType.IMG, AppMsgType.EMOJI):
            return Photo(await self._api.get_msg_img(raw.msg_id), *r)
        if raw.app_msg_type == AppMsgType.ATTACH:
            data = await self._api.get_media(
                sender=raw.from_user,
                media_id=raw.media_id,
                encry_file_name=raw.encry_file_name,
            )
            return Document(data, *r, filename=raw.file_name or None)
        logger.warning("unhandled app message subtype %s: %r", raw.app_msg_type, raw)
        return Text(UNKNOWN_MESSAGE, *r)

    async def _decode_card(self, raw: RawMessage, body: str, r: tuple[str, str, str]) -> Photo:
        attrs = scan_attributes(html.unescape(body))
        avatar = attrs.get("bigheadimgurl") or attrs.get("smallheadimgurl")
        if not avatar:
            raise DecodeError(f"contact card {raw.msg_id} has no avatar url")
        if avatar.startswith("http://"):
            avatar = "https://" + avatar[len("http://") :]
        try:
            resp = await self._public_http.get(avatar)
            resp.raise_for_status()
        except httpx.InvalidURL as e:
            raise DecodeError(f"contact card {raw.msg_id} has a malformed avatar url: {e}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"failed to fetch card avatar: {e!r}") from e
        name = attrs.get("nickname") or attrs.get("username") or ""
        return Photo(resp.content, *r, filename=f"User Card: {name}")

    @staticmethod
    def _coordinates(raw: RawMessage) -> tuple[float, float]:
        for markup in (raw.ori_content, html.unescape(raw.content)):
            if not markup:
                continue
            try:
                return parse_coordinates(markup)
            except MarkupError:
                continue
        raise DecodeError(f"location message {raw.msg_id} has no coordinates")
