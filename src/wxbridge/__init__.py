"""
wxbridge: an asyncio client for the WeChat web protocol, with a Telegram relay.

The client emulates the browser frontend (QR login, long-poll sync, contact
directory, media fetch and chunked upload) and emits normalized message
events; `wxbridge.relay` forwards them to and from a Telegram chat.
"""

from __future__ import annotations

from .client import WeChatClient
from .exceptions import WxBridgeError

__all__ = [
    "WeChatClient",
    "WxBridgeError",
]

__version__ = "0.1.0"
