from __future__ import annotations

import asyncio
import logging
from enum import Enum

from .api import WebApi
from .config import ClientConfig
from .constants import BOT_NAME, LOGIN_URL_PREFIX, OPERATOR_NAME
from .events import Photo
from .exceptions import HandshakeError, TransportError
from .session import Session
from .util.events import AsyncEventEmitter

logger = logging.getLogger("wxbridge.auth")

# `cgi-bin/mmwebwx-bin/login` status codes.
LOGIN_CONFIRMED = 200
LOGIN_SCANNED = 201
LOGIN_PENDING = 408


class AuthState(Enum):
    IDLE = "idle"
    AWAITING_SCAN = "awaiting_scan"
    SCANNED = "scanned"
    CONFIRMED = "confirmed"
    INITIALIZED = "initialized"


class AuthFlow:
    """
    QR-code login handshake.

    `login()` keeps restarting the handshake from `IDLE` until it yields a
    valid `Session`; only the status poll is paced by a fixed interval.
    `INITIALIZED` is entered by the client once page init and the directory
    fetch have succeeded on top of the new session.
    """

    def __init__(self, *, api: WebApi, events: AsyncEventEmitter, config: ClientConfig) -> None:
        self._api = api
        self._events = events
        self._config = config
        self.state = AuthState.IDLE

    async def login(self) -> Session:
        while True:
            self.state = AuthState.IDLE
            try:
                return await self.handshake()
            except (HandshakeError, TransportError) as e:
                logger.warning("login handshake failed, restarting: %s", e)
                await asyncio.sleep(self._config.handshake_retry_delay_s)

    async def handshake(self) -> Session:
        uuid = await self._api.get_uuid()
        self.state = AuthState.AWAITING_SCAN
        await self._announce_qr(uuid)

        redirect_params = await self._wait_for_confirmation(uuid)
        self.state = AuthState.CONFIRMED

        session = await self._api.new_login_page(redirect_params)
        logger.info("login confirmed, session tokens received")
        return session

    async def _announce_qr(self, uuid: str) -> None:
        await self._events.emit("qr", f"{LOGIN_URL_PREFIX}{uuid}")
        image = await self._api.qrcode(uuid)
        await self._events.emit(
            "photo", Photo(image, sender=BOT_NAME, recipient=OPERATOR_NAME, filename="qrcode.jpg")
        )

    async def _wait_for_confirmation(self, uuid: str) -> dict[str, str]:
        while True:
            status = await self._api.check_login(uuid)
            if status.code == LOGIN_CONFIRMED:
                try:
                    return status.redirect_params()
                except ValueError as e:
                    raise HandshakeError(f"failed to login: {e}") from e
            if status.code == LOGIN_SCANNED:
                if self.state != AuthState.SCANNED:
                    logger.info("QR code scanned, waiting for confirmation")
                self.state = AuthState.SCANNED
                await self._events.emit("scanned")
            elif status.code == LOGIN_PENDING:
                await self._events.emit("scanning")
            else:
                raise HandshakeError(f"failed to login (status code {status.code})")
            await asyncio.sleep(self._config.login_poll_interval_s)
