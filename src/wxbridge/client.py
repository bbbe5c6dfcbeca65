from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any
from xml.sax.saxutils import escape

import httpx

from .api import WebApi
from .auth import AuthFlow, AuthState
from .config import ClientConfig
from .constants import BOT_NAME, OPERATOR_NAME
from .contacts import Contact, ContactDirectory
from .decoder import AppMsgType, MessageDecoder, MsgType
from .events import NormalizedEvent, Text
from .exceptions import NotSupportedError, ProtocolError, TransportError, WxBridgeError
from .session import Session, SyncKey
from .state import PersistedState, StateStore
from .sync import SyncEngine
from .transport import CookieSnapshot, HttpTransport
from .upload import MediaKind, MediaUploader
from .util.asyncio import cancel_and_wait, ensure_task
from .util.events import AsyncEventEmitter, EventName, Listener

logger = logging.getLogger("wxbridge.client")


def _file_ext(filename: str) -> str:
    return filename.rpartition(".")[2] if "." in filename else ""


class WeChatClient:
    """
    High-level async client for the WeChat web protocol.

    `run()` alternates between the QR login (`AuthFlow`) and the long-poll
    loop (`SyncEngine`); exactly one of them is active at a time, gated by
    `Session.valid`. Decoded messages and lifecycle notifications are
    delivered through `on(event, listener)`.
    """

    def __init__(
        self,
        *,
        config: ClientConfig | None = None,
        session: Session | None = None,
        cookies: CookieSnapshot | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        public_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or ClientConfig()
        self.events = AsyncEventEmitter()

        self.http = HttpTransport(self.config, transport=transport)
        if cookies:
            self.http.restore_cookies(cookies)
        self.api = WebApi(config=self.config, http=self.http, session=session)
        self.directory = ContactDirectory(self.api)

        # Avatars in contact cards live on a CDN that must not see session cookies.
        self._public_http = httpx.AsyncClient(
            timeout=self.config.timeout_s, follow_redirects=True, transport=public_transport
        )

        self.auth = AuthFlow(api=self.api, events=self.events, config=self.config)
        self.decoder = MessageDecoder(
            api=self.api, directory=self.directory, public_http=self._public_http
        )
        self.sync = SyncEngine(
            api=self.api, decoder=self.decoder, sink=self._emit_message, config=self.config
        )
        self.uploader = MediaUploader(self.api)

        self.user: Contact | None = None
        self._run_task: asyncio.Task[None] | None = None

    @classmethod
    async def from_state_file(
        cls, path: str | Path, *, config: ClientConfig | None = None
    ) -> tuple[WeChatClient, StateStore]:
        """
        Build a client from a persisted state file.

        Returns `(client, store)` so callers can flush `client.snapshot()` on exit.
        """

        store = StateStore(path)
        state = await store.load()
        client = cls(config=config, session=state.session, cookies=state.cookies)
        return client, store

    @property
    def session(self) -> Session:
        return self.api.session

    @property
    def logged_in(self) -> bool:
        return self.auth.state == AuthState.INITIALIZED and self.api.session.valid

    def snapshot(self) -> PersistedState:
        return PersistedState(session=self.api.session, cookies=self.http.cookie_snapshot())

    def on(self, event: EventName, listener: Listener) -> None:
        self.events.on(event, listener)

    # -- lifecycle --------------------------------------------------------

    def start(self) -> asyncio.Task[None]:
        if self._run_task is None or self._run_task.done():
            self._run_task = ensure_task(self.run(), name="wxbridge.run")
        return self._run_task

    async def stop(self, store: StateStore | None = None) -> None:
        """Cancel the run loop and, if a store is given, flush the current state."""

        await cancel_and_wait(self._run_task)
        self._run_task = None
        if store is not None:
            await store.save(self.snapshot())

    async def close(self) -> None:
        await self.stop()
        await self.http.close()
        await self._public_http.aclose()

    async def run(self) -> None:
        await self.events.emit("launch")
        while True:
            if not self.api.session.valid:
                self.api.replace_session(await self.auth.login())

            try:
                await self._initialize()
            except WxBridgeError as e:
                await self._recover(e)
                continue

            logger.info("logged in as %s", self.user.display_name if self.user else "?")
            await self.events.emit("logged_in")

            try:
                await self.sync.run()
            except WxBridgeError as e:
                await self._recover(e)

    async def _initialize(self) -> None:
        body = await self.api.init()
        user = body.get("User")
        if not isinstance(user, dict) or not user.get("UserName"):
            raise ProtocolError("failed to init page: response without User")
        try:
            sync_key = SyncKey.from_wire(body.get("SyncKey"))
        except ValueError as e:
            raise ProtocolError(f"failed to init page: {e}") from e

        self.user = Contact.from_wire(user)
        self.api.username = self.user.username
        self.api.uin = self.user.uin
        self.directory.merge(self.user)
        self.sync.reset(sync_key)

        await self._notify_presence()
        await self.directory.fetch_all()
        self.auth.state = AuthState.INITIALIZED

    async def _notify_presence(self) -> None:
        try:
            await self.api.status_notify(self.api.username)
        except (ProtocolError, TransportError) as e:
            logger.warning("presence notification failed: %s", e)
            notice = f"Presence notification failed (session kept): {e}"
            await self.events.emit(
                "text", Text(notice, sender=BOT_NAME, recipient=OPERATOR_NAME, peer="")
            )

    async def _recover(self, err: Exception) -> None:
        """Single recovery path for every session-fatal error."""

        logger.warning("session lost, re-authenticating: %s", err)
        self.api.invalidate_session()
        self.auth.state = AuthState.IDLE
        await self.events.emit(
            "text", Text(str(err), sender=BOT_NAME, recipient=OPERATOR_NAME, peer="")
        )

    async def _emit_message(self, event: NormalizedEvent) -> None:
        await self.events.emit(event.kind, event)  # type: ignore[arg-type]

    # -- outbound ---------------------------------------------------------

    async def _send(
        self, endpoint: str, msg: dict[str, Any], params: dict[str, str] | None = None
    ) -> dict[str, Any]:
        if not self.api.session.valid:
            raise ProtocolError("not logged in")
        try:
            return await self.api.send(endpoint, msg, params=params)
        except ProtocolError as e:
            await self._recover(e)
            raise

    async def _upload(self, data: bytes, kind: MediaKind, to: str) -> str:
        if not self.api.session.valid:
            raise ProtocolError("not logged in")
        return await self.uploader.upload(data, kind, to)

    async def send_text(self, content: str, to: str) -> None:
        await self._send(
            "webwxsendmsg", {"Type": MsgType.TEXT, "Content": content, "ToUserName": to}
        )

    async def send_sticker(self, data: bytes, to: str) -> None:
        media_id = await self._upload(data, "doc", to)
        await self._send(
            "webwxsendemoticon",
            {"Type": MsgType.EMOTICON, "MediaId": media_id, "ToUserName": to, "EmojiFlag": 2},
            {"fun": "sys"},
        )

    async def send_image(self, data: bytes, to: str) -> None:
        media_id = await self._upload(data, "pic", to)
        await self._send(
            "webwxsendmsgimg",
            {"Type": MsgType.IMAGE, "MediaId": media_id, "ToUserName": to},
            {"fun": "async", "f": "json"},
        )

    async def send_video(self, data: bytes, to: str) -> None:
        media_id = await self._upload(data, "video", to)
        await self._send(
            "webwxsendvideomsg",
            {"Type": MsgType.VIDEO, "MediaId": media_id, "ToUserName": to},
            {"fun": "async", "f": "json"},
        )

    async def send_document(self, filename: str, data: bytes, to: str) -> None:
        media_id = await self._upload(data, "doc", to)
        content = (
            "<appmsg appid='' sdkver=''>"
            f"<title>{escape(filename)}</title><des></des><action></action>"
            f"<type>{int(AppMsgType.ATTACH)}</type><content></content><url></url><lowurl></lowurl>"
            f"<appattach><totallen>{len(data)}</totallen><attachid>{media_id}</attachid>"
            f"<fileext>{escape(_file_ext(filename))}</fileext></appattach>"
            "<extinfo></extinfo></appmsg>"
        )
        await self._send(
            "webwxsendappmsg",
            {"Type": AppMsgType.ATTACH, "ToUserName": to, "Content": content},
            {"fun": "async", "f": "json", "mod": "desktop"},
        )

    async def send_voice(self, data: bytes, to: str) -> None:
        raise NotSupportedError("Sending voice message is not supported yet")

    async def send_location(self, location: tuple[float, float], to: str) -> None:
        raise NotSupportedError("Sending location is not supported yet")
