from __future__ import annotations

import os
from dataclasses import dataclass, field

from .constants import DEFAULT_USER_AGENT, FILE_HOST, LOGIN_HOST, MAIN_HOST, PUSH_HOST


@dataclass(slots=True)
class RetryPolicy:
    """
    Fixed-delay retry for network-level failures only.

    HTTP responses (including ones carrying a protocol error) are never retried.
    """

    limit: int = 10
    delay_s: float = 10.0


@dataclass(slots=True)
class ClientConfig:
    login_host: str = LOGIN_HOST
    main_host: str = MAIN_HOST
    push_host: str = PUSH_HOST
    file_host: str = FILE_HOST

    user_agent: str = DEFAULT_USER_AGENT
    # Opaque `extspam` header the desktop frontend sends with `webwxnewloginpage`.
    extspam: str = ""

    # The push host holds `synccheck` for ~25s, so reads must outlast that.
    timeout_s: float = 35.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    login_poll_interval_s: float = 1.0
    handshake_retry_delay_s: float = 1.0
    sync_interval_s: float = 5.0

    headers: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class RelayConfig:
    """Process-level settings for the WeChat <-> Telegram relay."""

    telegram_token: str
    telegram_chat_id: int
    state_path: str = "state.json"
    client: ClientConfig = field(default_factory=ClientConfig)

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> RelayConfig:
        env = dict(os.environ) if env is None else env
        token = env.get("TELEGRAM_API_KEY", "")
        chat_id = env.get("TELEGRAM_CHAT_ID", "")
        if not token:
            raise ValueError("TELEGRAM_API_KEY is not set")
        try:
            chat = int(chat_id)
        except ValueError as e:
            raise ValueError(f"TELEGRAM_CHAT_ID must be an integer, got {chat_id!r}") from e

        client = ClientConfig()
        if env.get("WECHAT_UA"):
            client.user_agent = env["WECHAT_UA"]
        if env.get("WECHAT_EXTSPAM"):
            client.extspam = env["WECHAT_EXTSPAM"]

        return cls(
            telegram_token=token,
            telegram_chat_id=chat,
            state_path=env.get("WXBRIDGE_STATE") or "state.json",
            client=client,
        )
