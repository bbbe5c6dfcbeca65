"""
Endpoint layer for the WeChat web protocol.

`WebApi` owns the current `Session` and exposes one coroutine per endpoint.
Login-host calls raise `HandshakeError`; authenticated calls raise
`ProtocolError` when the body reports a non-zero status or cannot be parsed.
Network failures surface as `TransportError` after the transport's retries.
"""

from __future__ import annotations

import json
import logging
import random
import time
from collections.abc import Mapping
from typing import Any

import httpx

from .config import ClientConfig
from .constants import (
    APP_ID,
    CGI_PATH,
    DESKTOP_CLIENT_VERSION,
    DESKTOP_REFERER,
    STATUS_NOTIFY_INITED,
)
from .exceptions import HandshakeError, ProtocolError
from .markup import (
    LoginStatus,
    MarkupError,
    parse_login_status,
    parse_login_ticket,
    parse_login_tokens,
    parse_sync_check,
)
from .session import Session, SyncKey, base_request, device_id
from .transport import HttpTransport

logger = logging.getLogger("wxbridge.api")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _negated_ts() -> int:
    """The frontend's `~new Date()` cache buster (bitwise NOT on an int32)."""

    x = _now_ms() & 0xFFFFFFFF
    if x >= 0x80000000:
        x -= 0x100000000
    return ~x


def client_msg_id() -> str:
    return f"{_now_ms()}{random.randint(0, 999):03d}"


class WebApi:
    def __init__(
        self, *, config: ClientConfig, http: HttpTransport, session: Session | None = None
    ) -> None:
        self.config = config
        self.http = http
        self._session = session or Session()

        # Filled in from `webwxinit`.
        self.username: str = ""
        self.uin: str = ""

    @property
    def session(self) -> Session:
        return self._session

    def replace_session(self, session: Session) -> None:
        self._session = session

    def invalidate_session(self) -> None:
        self._session = self._session.invalidated()

    def base_request(self) -> dict[str, str]:
        return base_request(self._session)

    def _main(self, endpoint: str) -> str:
        return f"{self.config.main_host}{CGI_PATH}/{endpoint}"

    def _push(self, endpoint: str) -> str:
        return f"{self.config.push_host}{CGI_PATH}/{endpoint}"

    def _file(self, endpoint: str) -> str:
        return f"{self.config.file_host}{CGI_PATH}/{endpoint}"

    def _login(self, path: str) -> str:
        return f"{self.config.login_host}/{path}"

    @staticmethod
    def _json(resp: httpx.Response, *, what: str) -> dict[str, Any]:
        try:
            parsed = json.loads(resp.content.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise ProtocolError(f"failed to {what}: invalid json body ({e})") from e
        if not isinstance(parsed, dict):
            raise ProtocolError(f"failed to {what}: unexpected body type {type(parsed).__name__}")
        return parsed

    @staticmethod
    def _check(body: Mapping[str, Any], *, what: str) -> None:
        br = body.get("BaseResponse")
        if not isinstance(br, Mapping):
            raise ProtocolError(f"failed to {what}: response without BaseResponse")
        ret = br.get("Ret")
        if ret:
            raise ProtocolError(f"failed to {what}: {br.get('ErrMsg') or ret}", ret=ret)

    async def _post_json(
        self,
        url: str,
        payload: Mapping[str, Any],
        *,
        what: str,
        params: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        # The server mangles `\uXXXX` escapes, so non-ASCII text is sent raw.
        resp = await self.http.request(
            "POST",
            url,
            params=params,
            content=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
            headers={"Content-Type": "application/json;charset=UTF-8"},
        )
        body = self._json(resp, what=what)
        self._check(body, what=what)
        return body

    # -- login host -------------------------------------------------------

    async def get_uuid(self) -> str:
        body = await self.http.get_text(
            self._login("jslogin"), params={"appid": APP_ID, "fun": "new"}
        )
        try:
            ticket = parse_login_ticket(body)
        except MarkupError as e:
            raise HandshakeError(f"failed to get uuid: {e}") from e
        if ticket.code != 200:
            raise HandshakeError(f"failed to get uuid (code={ticket.code})")
        return ticket.uuid

    async def qrcode(self, uuid: str) -> bytes:
        return await self.http.get_bytes(self._login(f"qrcode/{uuid}"))

    async def check_login(self, uuid: str) -> LoginStatus:
        body = await self.http.get_text(
            self._login("cgi-bin/mmwebwx-bin/login"),
            params={"loginicon": "true", "uuid": uuid, "tip": 1, "r": _negated_ts()},
        )
        try:
            return parse_login_status(body)
        except MarkupError as e:
            raise HandshakeError(f"failed to poll login status: {e}") from e

    async def new_login_page(self, redirect_params: Mapping[str, str]) -> Session:
        params = dict(redirect_params)
        params.update({"fun": "new", "version": "v2", "mod": "desktop"})
        headers = {"client-version": DESKTOP_CLIENT_VERSION, "referer": DESKTOP_REFERER}
        if self.config.extspam:
            headers["extspam"] = self.config.extspam

        body = await self.http.get_text(
            self._main("webwxnewloginpage"), params=params, headers=headers
        )
        try:
            tokens = parse_login_tokens(body)
        except MarkupError as e:
            raise HandshakeError(f"failed to login: {e}") from e

        if tokens.redirect_url:
            raise HandshakeError("unexpected redirect url")
        if tokens.ret != "0":
            raise HandshakeError(f"failed to login: {tokens.message or tokens.ret}")

        missing = [
            name
            for name, value in (
                ("skey", tokens.skey),
                ("wxsid", tokens.sid),
                ("wxuin", tokens.uin),
                ("pass_ticket", tokens.pass_ticket),
            )
            if not value
        ]
        if missing:
            raise HandshakeError(f"failed to login: missing {', '.join(missing)}")

        return Session(
            skey=tokens.skey or "",
            uin=tokens.uin or "",
            sid=tokens.sid or "",
            ticket=tokens.pass_ticket or "",
            valid=True,
        )

    # -- authenticated calls ----------------------------------------------

    async def init(self) -> dict[str, Any]:
        return await self._post_json(
            self._main("webwxinit"),
            {"BaseRequest": self.base_request()},
            what="init page",
            params={"r": _negated_ts()},
        )

    async def status_notify(self, username: str) -> None:
        await self._post_json(
            self._main("webwxstatusnotify"),
            {
                "BaseRequest": self.base_request(),
                "Code": STATUS_NOTIFY_INITED,
                "FromUserName": username,
                "ToUserName": username,
                "ClientMsgId": _now_ms(),
            },
            what="notify mobile",
        )

    async def get_contacts(self, seq: int) -> tuple[list[dict[str, Any]], int]:
        resp = await self.http.request(
            "GET",
            self._main("webwxgetcontact"),
            params={
                "skey": self._session.skey,
                "pass_ticket": self._session.ticket,
                "seq": seq,
                "r": _now_ms(),
            },
        )
        body = self._json(resp, what="get contacts")
        self._check(body, what="get contacts")
        members = body.get("MemberList") or []
        try:
            next_seq = int(body.get("Seq") or 0)
        except (TypeError, ValueError) as e:
            raise ProtocolError(f"failed to get contacts: invalid Seq {body.get('Seq')!r}") from e
        return [m for m in members if isinstance(m, dict)], next_seq

    async def batch_get_contact(self, entries: list[dict[str, str]]) -> list[dict[str, Any]]:
        body = await self._post_json(
            self._main("webwxbatchgetcontact"),
            {"BaseRequest": self.base_request(), "Count": len(entries), "List": entries},
            what="get contact",
            params={"type": "ex", "r": _now_ms()},
        )
        return [c for c in body.get("ContactList") or [] if isinstance(c, dict)]

    async def sync_check(self, sync_key: SyncKey) -> int:
        body = await self.http.get_text(
            self._push("synccheck"),
            params={
                "r": _now_ms(),
                "skey": self._session.skey,
                "sid": self._session.sid,
                "uin": self._session.uin,
                "deviceid": device_id(),
                "synckey": sync_key.to_query(),
            },
        )
        try:
            check = parse_sync_check(body)
        except MarkupError as e:
            raise ProtocolError(f"failed to sync: {e}") from e
        if check.retcode != "0":
            raise ProtocolError(f"failed to sync (retcode={check.retcode})", ret=check.retcode)
        return check.selector

    async def sync(self, sync_key: SyncKey) -> dict[str, Any]:
        return await self._post_json(
            self._main("webwxsync"),
            {
                "BaseRequest": self.base_request(),
                "SyncKey": sync_key.to_wire(),
                "rr": _negated_ts(),
            },
            what="sync",
            params={"skey": self._session.skey, "sid": self._session.sid},
        )

    # -- media ------------------------------------------------------------

    async def get_msg_img(self, msg_id: str) -> bytes:
        return await self.http.get_bytes(
            self._main("webwxgetmsgimg"), params={"msgid": msg_id, "skey": self._session.skey}
        )

    async def get_voice(self, msg_id: str) -> bytes:
        return await self.http.get_bytes(
            self._main("webwxgetvoice"), params={"msgid": msg_id, "skey": self._session.skey}
        )

    async def get_video(self, msg_id: str) -> bytes:
        # The video endpoint answers 416/empty without an explicit range.
        return await self.http.get_bytes(
            self._main("webwxgetvideo"),
            params={"msgid": msg_id, "skey": self._session.skey},
            headers={"Range": "bytes=0-", "Connection": "keep-alive"},
        )

    async def get_media(self, *, sender: str, media_id: str, encry_file_name: str) -> bytes:
        return await self.http.get_bytes(
            self._file("webwxgetmedia"),
            params={
                "sender": sender,
                "mediaid": media_id,
                "encryfilename": encry_file_name,
                "fromuser": self.uin,
                "pass_ticket": self._session.ticket,
            },
        )

    async def upload_chunk(
        self, fields: Mapping[str, str], chunk: bytes, *, filename: str = "blob"
    ) -> dict[str, Any]:
        resp = await self.http.request(
            "POST",
            self._file("webwxuploadmedia"),
            params={"f": "json"},
            data=fields,
            files={"filename": (filename, chunk, "application/octet-stream")},
        )
        return self._json(resp, what="upload")

    async def send(
        self,
        endpoint: str,
        msg: Mapping[str, Any],
        *,
        params: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        local_id = client_msg_id()
        return await self._post_json(
            self._main(endpoint),
            {
                "BaseRequest": self.base_request(),
                "Msg": {
                    "FromUserName": self.username,
                    "LocalID": local_id,
                    "ClientMsgId": local_id,
                    **msg,
                },
                "Scene": 0,
            },
            what="send",
            params=params,
        )
