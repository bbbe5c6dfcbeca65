from __future__ import annotations

from .channel import Channel
from .dispatcher import Dispatcher
from .telegram import TelegramChannel, decode_peer, encode_peer
from .wechat import WeChatChannel

__all__ = [
    "Channel",
    "Dispatcher",
    "TelegramChannel",
    "WeChatChannel",
    "decode_peer",
    "encode_peer",
]
