from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

import qrcode

from .client import WeChatClient
from .config import RelayConfig
from .relay import Dispatcher, TelegramChannel, WeChatChannel

logger = logging.getLogger("wxbridge")

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="wxbridge",
        description="Relay messages between the WeChat web frontend and a Telegram chat.",
    )
    p.add_argument("--state", help="path of the session state file (default: $WXBRIDGE_STATE)")
    p.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    return p


def print_qr(url: str) -> None:
    print("\nScan this QR code with WeChat to log in:\n")
    qr = qrcode.QRCode(border=1)
    qr.add_data(url)
    qr.make(fit=True)
    qr.print_ascii(invert=True)
    print(url)


async def run(config: RelayConfig) -> None:
    client, store = await WeChatClient.from_state_file(config.state_path, config=config.client)
    client.on("qr", print_qr)
    client.on("scanned", lambda: logger.info("QR code scanned, confirm the login on your phone"))

    wechat = WeChatChannel(client)
    telegram = TelegramChannel(config.telegram_token, config.telegram_chat_id, peers=wechat.peers)
    dispatcher = Dispatcher(wechat, telegram)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await dispatcher.start()
    if wechat.task is not None:
        wechat.task.add_done_callback(lambda _t: stop.set())
    try:
        await stop.wait()
    finally:
        # One synchronous flush, before any teardown can fail.
        store.save_sync(client.snapshot())
        logger.info("state saved to %s", store.path)
        await dispatcher.stop()

    if wechat.task is not None and wechat.task.done() and not wechat.task.cancelled():
        exc = wechat.task.exception()
        if exc is not None:
            raise exc


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format=_LOG_FORMAT)
    # httpx logs every request at INFO, including each long-poll.
    logging.getLogger("httpx").setLevel(logging.WARNING)

    try:
        config = RelayConfig.from_env()
    except ValueError as e:
        parser.error(str(e))
    if args.state:
        config.state_path = args.state

    asyncio.run(run(config))
    return 0


if __name__ == "__main__":
    sys.exit(main())
