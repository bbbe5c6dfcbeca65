from __future__ import annotations

import json
from collections import defaultdict, deque
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from wxbridge.api import WebApi
from wxbridge.config import ClientConfig, RetryPolicy
from wxbridge.session import Session
from wxbridge.transport import HttpTransport

Reply = Callable[[httpx.Request], httpx.Response]


def text(body: str, status: int = 200) -> Reply:
    return lambda _req: httpx.Response(status, text=body)


def raw(body: bytes, status: int = 200) -> Reply:
    return lambda _req: httpx.Response(status, content=body)


def ok(body: dict[str, Any] | None = None, *, ret: int = 0) -> Reply:
    payload = {"BaseResponse": {"Ret": ret, "ErrMsg": ""}, **(body or {})}
    return lambda _req: httpx.Response(200, content=json.dumps(payload).encode("utf-8"))


class FakeWeChat:
    """
    Scripted stand-in for the web endpoints.

    Replies are queued per endpoint (last path segment, `qrcode` for the QR
    image); the last queued reply keeps answering once the queue drains.
    Unscripted endpoints answer 404.
    """

    def __init__(self) -> None:
        self.replies: dict[str, deque[Reply]] = defaultdict(deque)
        self.requests: list[httpx.Request] = []

    def on(self, endpoint: str, *replies: Reply) -> FakeWeChat:
        self.replies[endpoint].extend(replies)
        return self

    @staticmethod
    def endpoint(request: httpx.Request) -> str:
        path = request.url.path
        if path.startswith("/qrcode/"):
            return "qrcode"
        return path.rsplit("/", 1)[-1]

    def calls(self, endpoint: str) -> list[httpx.Request]:
        return [r for r in self.requests if self.endpoint(r) == endpoint]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.replies.get(self.endpoint(request))
        if not queue:
            return httpx.Response(404)
        reply = queue.popleft() if len(queue) > 1 else queue[0]
        return reply(request)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def json_body(request: httpx.Request) -> dict[str, Any]:
    return json.loads(request.content.decode("utf-8"))


@pytest.fixture
def config() -> ClientConfig:
    return ClientConfig(
        retry=RetryPolicy(limit=2, delay_s=0.0),
        login_poll_interval_s=0.0,
        handshake_retry_delay_s=0.0,
        sync_interval_s=0.0,
    )


@pytest.fixture
def fake() -> FakeWeChat:
    return FakeWeChat()


@pytest.fixture
def session() -> Session:
    return Session(skey="@crypt_skey", uin="12345", sid="sid0", ticket="pt0", valid=True)


@pytest.fixture
def api(config: ClientConfig, fake: FakeWeChat, session: Session) -> WebApi:
    http = HttpTransport(config, transport=fake.transport())
    a = WebApi(config=config, http=http, session=session)
    a.username = "@me"
    a.uin = "12345"
    return a
