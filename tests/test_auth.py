from __future__ import annotations

import pytest
from conftest import raw, text

from wxbridge.auth import AuthFlow, AuthState
from wxbridge.events import Photo
from wxbridge.exceptions import HandshakeError
from wxbridge.util.events import AsyncEventEmitter

UUID = "gZx1_4Bq-A=="
JSLOGIN = f'window.QRLogin.code = 200; window.QRLogin.uuid = "{UUID}";'
CONFIRMED = (
    "window.code=200;\n"
    'window.redirect_uri="https://wx2.qq.com/cgi-bin/mmwebwx-bin/webwxnewloginpage'
    '?ticket=AbC&uuid=xyz&lang=zh_CN&scan=1500000000";'
)
TOKENS = (
    "<error><ret>0</ret><message></message><skey>@crypt_1</skey><wxsid>sid1</wxsid>"
    "<wxuin>777</wxuin><pass_ticket>pt1</pass_ticket><isgrayscale>1</isgrayscale></error>"
)


class Recorder:
    def __init__(self, events: AsyncEventEmitter) -> None:
        self.seen: list[tuple[str, object]] = []
        for name in ("qr", "photo", "scanning", "scanned"):
            events.on(name, self._listener(name))

    def _listener(self, name: str):
        async def listener(*args) -> None:
            self.seen.append((name, args[0] if args else None))

        return listener

    def names(self) -> list[str]:
        return [n for n, _ in self.seen]


def _flow(api, config) -> tuple[AuthFlow, Recorder]:
    events = AsyncEventEmitter()
    return AuthFlow(api=api, events=events, config=config), Recorder(events)


@pytest.mark.asyncio
async def test_handshake_happy_path(api, fake, config) -> None:
    fake.on("jslogin", text(JSLOGIN))
    fake.on("qrcode", raw(b"\xff\xd8jpeg"))
    fake.on("login", text("window.code=408;"), text("window.code=201;"), text(CONFIRMED))
    fake.on("webwxnewloginpage", text(TOKENS))
    flow, rec = _flow(api, config)

    session = await flow.handshake()

    assert session.valid
    assert (session.skey, session.sid, session.uin, session.ticket) == (
        "@crypt_1",
        "sid1",
        "777",
        "pt1",
    )
    assert flow.state == AuthState.CONFIRMED
    assert rec.names() == ["qr", "photo", "scanning", "scanned"]
    assert rec.seen[0][1] == f"https://login.weixin.qq.com/l/{UUID}"
    photo = rec.seen[1][1]
    assert isinstance(photo, Photo)
    assert photo.content == b"\xff\xd8jpeg"

    page = fake.calls("webwxnewloginpage")[0]
    assert page.url.params["ticket"] == "AbC"
    assert page.url.params["fun"] == "new"
    assert page.url.params["version"] == "v2"
    assert page.url.params["mod"] == "desktop"
    assert page.headers["client-version"] == "2.0.0"
    assert "extspam" not in page.headers


@pytest.mark.asyncio
async def test_unexpected_status_code_fails_handshake(api, fake, config) -> None:
    fake.on("jslogin", text(JSLOGIN))
    fake.on("qrcode", raw(b"img"))
    fake.on("login", text("window.code=400;"))
    flow, _ = _flow(api, config)

    with pytest.raises(HandshakeError):
        await flow.handshake()


@pytest.mark.parametrize(
    "body",
    [
        "<error><ret>0</ret><redirecturl>https://wx.qq.com/</redirecturl></error>",
        "<error><ret>1203</ret><message>denied</message></error>",
        "<error><ret>0</ret><skey>k</skey><wxsid>s</wxsid><wxuin>1</wxuin></error>",
        "not xml",
    ],
)
@pytest.mark.asyncio
async def test_bad_login_page_fails_handshake(api, fake, config, body: str) -> None:
    fake.on("jslogin", text(JSLOGIN))
    fake.on("qrcode", raw(b"img"))
    fake.on("login", text(CONFIRMED))
    fake.on("webwxnewloginpage", text(body))
    flow, _ = _flow(api, config)

    with pytest.raises(HandshakeError):
        await flow.handshake()


@pytest.mark.asyncio
async def test_login_restarts_after_failure(api, fake, config) -> None:
    fake.on("jslogin", text("window.QRLogin.code = 500;"), text(JSLOGIN))
    fake.on("qrcode", raw(b"img"))
    fake.on("login", text(CONFIRMED))
    fake.on("webwxnewloginpage", text(TOKENS))
    flow, rec = _flow(api, config)

    session = await flow.login()

    assert session.valid
    assert len(fake.calls("jslogin")) == 2
    assert rec.names().count("qr") == 1
