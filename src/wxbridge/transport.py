from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import httpx

from .config import ClientConfig, RetryPolicy
from .exceptions import TransportError

logger = logging.getLogger("wxbridge.transport")

# Network-level failures worth retransmitting: timeouts, refused/unreachable
# connections, resets and half-closed sockets. Anything that produced an HTTP
# response is deliberately absent.
RETRYABLE_ERRORS: tuple[type[Exception], ...] = (
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.ReadError,
    httpx.WriteError,
    httpx.RemoteProtocolError,
)

CookieSnapshot = list[dict[str, Any]]


class HttpTransport:
    """
    Cookie-affine HTTP client shared by every protocol call.

    One `httpx.AsyncClient` (and therefore one cookie jar) is used for all hosts
    so the login cookies follow the session to the push and file hosts.
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.retry: RetryPolicy = config.retry
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            headers={"User-Agent": config.user_agent, **config.headers},
            timeout=config.timeout_s,
            follow_redirects=False,
            transport=transport,
        )

    @property
    def cookies(self) -> httpx.Cookies:
        return self._client.cookies

    async def close(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        content: bytes | None = None,
        data: Mapping[str, Any] | None = None,
        files: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        attempt = 0
        while True:
            try:
                resp = await self._client.request(
                    method,
                    url,
                    params=params,
                    content=content,
                    data=data,
                    files=files,
                    headers=headers,
                )
            except RETRYABLE_ERRORS as e:
                attempt += 1
                if attempt > self.retry.limit:
                    raise TransportError(
                        f"{method} {url} failed after {self.retry.limit} retries: {e!r}"
                    ) from e
                logger.warning(
                    "%s %s failed (%s), retrying in %.1fs (attempt %d/%d)",
                    method,
                    url,
                    type(e).__name__,
                    self.retry.delay_s,
                    attempt,
                    self.retry.limit,
                )
                await self._sleep(self.retry.delay_s)
                continue
            except httpx.HTTPError as e:
                raise TransportError(f"{method} {url} failed: {e!r}") from e

            if resp.is_error:
                raise TransportError(
                    f"{method} {url} returned http {resp.status_code}",
                    status_code=resp.status_code,
                )
            return resp

    async def get_text(self, url: str, **kwargs: Any) -> str:
        resp = await self.request("GET", url, **kwargs)
        return resp.text

    async def get_bytes(self, url: str, **kwargs: Any) -> bytes:
        resp = await self.request("GET", url, **kwargs)
        return resp.content

    def cookie(self, name: str) -> str | None:
        for c in self._client.cookies.jar:
            if c.name == name:
                return c.value
        return None

    def cookie_snapshot(self) -> CookieSnapshot:
        out: CookieSnapshot = []
        for c in self._client.cookies.jar:
            out.append(
                {
                    "name": c.name,
                    "value": c.value,
                    "domain": c.domain,
                    "path": c.path,
                    "expires": c.expires,
                    "secure": bool(c.secure),
                }
            )
        return out

    def restore_cookies(self, snapshot: CookieSnapshot) -> None:
        for item in snapshot:
            name = item.get("name")
            if not name:
                continue
            self._client.cookies.set(
                str(name),
                str(item.get("value") or ""),
                domain=str(item.get("domain") or ""),
                path=str(item.get("path") or "/"),
            )
