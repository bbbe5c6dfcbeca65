"""Telegram side of the relay (operator chat)."""

from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import Callable
from typing import Any

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup, Message, Update
from telegram.error import TelegramError
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from ..constants import OPERATOR_NAME
from ..contacts import Contact
from ..events import (
    Document,
    Location,
    NormalizedEvent,
    Photo,
    Sticker,
    Text,
    Video,
    Voice,
)
from ..exceptions import TransportError
from ..sync import EventSink

logger = logging.getLogger("wxbridge.relay.telegram")

PAGE_SIZE = 10

PeerSource = Callable[[], list[Contact]]
# Builds the outbound commands once a peer is known.
PendingAction = Callable[[str], list[NormalizedEvent]]


def encode_peer(username: str) -> str:
    """
    Compact a WeChat username for Telegram callback data (64 bytes max).

    `@<hex>` / `@@<hex>` become `@<base64>` / `@@<base64>`; anything else is
    returned unchanged.
    """

    for prefix in ("@@", "@"):
        if username.startswith(prefix):
            try:
                raw = bytes.fromhex(username[len(prefix) :])
            except ValueError:
                return username
            return prefix + base64.b64encode(raw).decode("ascii")
    return username


def decode_peer(data: str) -> str:
    for prefix in ("@@", "@"):
        if data.startswith(prefix):
            try:
                raw = base64.b64decode(data[len(prefix) :], validate=True)
            except (binascii.Error, ValueError):
                return data
            return prefix + raw.hex()
    return data


class TelegramChannel:
    """
    Relay endpoint backed by a python-telegram-bot `Application`.

    Only updates from the configured chat are accepted. Outbound commands go
    to the last selected WeChat peer, or to the peer of the replied-to message;
    without one the operator is asked to pick a peer from an inline keyboard.
    """

    name = "telegram"

    def __init__(
        self,
        token: str,
        chat_id: int,
        *,
        peers: PeerSource,
        bot: Bot | None = None,
    ) -> None:
        self.token = token
        self.chat_id = chat_id
        self.app: Application | None = None
        self.last_peer = ""
        self._bot = bot
        self._peer_source = peers
        self._sink: EventSink | None = None
        self._message_peers: dict[int, str] = {}
        self._pending: PendingAction | None = None

    def set_sink(self, sink: EventSink) -> None:
        self._sink = sink

    async def start(self) -> None:
        self.app = Application.builder().token(self.token).build()
        self._bot = self.app.bot

        chat = filters.Chat(chat_id=self.chat_id)
        self.app.add_handler(CommandHandler("peer", self._cmd_peer, filters=chat))
        self.app.add_handler(MessageHandler(chat & filters.COMMAND, self._cmd_unknown))
        self.app.add_handler(MessageHandler(chat & filters.TEXT & ~filters.COMMAND, self._on_text))
        self.app.add_handler(MessageHandler(chat & filters.Sticker.ALL, self._on_sticker))
        self.app.add_handler(MessageHandler(chat & filters.PHOTO, self._on_photo))
        self.app.add_handler(MessageHandler(chat & filters.Document.ALL, self._on_document))
        self.app.add_handler(MessageHandler(chat & filters.AUDIO, self._on_audio))
        self.app.add_handler(MessageHandler(chat & filters.VOICE, self._on_voice))
        self.app.add_handler(MessageHandler(chat & filters.VIDEO, self._on_video))
        self.app.add_handler(MessageHandler(chat & filters.LOCATION, self._on_location))
        self.app.add_handler(CallbackQueryHandler(self._on_select_peer, pattern=r"^PEER "))
        self.app.add_handler(CallbackQueryHandler(self._on_page, pattern=r"^PAGE "))
        self.app.add_error_handler(self._on_error)

        logger.info("starting Telegram bot")
        await self.app.initialize()
        await self.app.start()
        await self.app.updater.start_polling(drop_pending_updates=True)

    async def stop(self) -> None:
        if self.app:
            await self.app.updater.stop()
            await self.app.stop()
            await self.app.shutdown()
            logger.info("Telegram bot stopped")

    # -- outbound (WeChat -> Telegram) -----------------------------------

    async def deliver(self, event: NormalizedEvent) -> None:
        if self._bot is None:
            raise TransportError("telegram bot is not started")

        bot = self._bot
        head = f"{event.sender} → {event.recipient}"
        try:
            if isinstance(event, Text):
                text = f"🔤 {head}:\n{event.content}"
                msg = await bot.send_message(chat_id=self.chat_id, text=text)
            elif isinstance(event, (Photo, Sticker)):
                caption = f"🖼️ {head}" + (f"\n{event.filename}" if event.filename else "")
                msg = await bot.send_photo(
                    chat_id=self.chat_id, photo=event.content, caption=caption
                )
            elif isinstance(event, Video):
                msg = await bot.send_video(
                    chat_id=self.chat_id, video=event.content, caption=f"📽️ {head}"
                )
            elif isinstance(event, Document):
                msg = await bot.send_document(
                    chat_id=self.chat_id,
                    document=event.content,
                    filename=event.filename,
                    caption=f"📃 {head}",
                )
            elif isinstance(event, Voice):
                msg = await bot.send_voice(
                    chat_id=self.chat_id, voice=event.content, caption=f"🔊 {head}"
                )
            else:
                lat, lon = event.content
                msg = await bot.send_location(chat_id=self.chat_id, latitude=lat, longitude=lon)
        except TelegramError as e:
            raise TransportError(f"telegram: {e}") from e

        self._remember(msg.message_id, event.peer)

    def _remember(self, message_id: int, peer: str) -> None:
        if not peer:
            return
        self.last_peer = peer
        self._message_peers[message_id] = peer

    # -- inbound (Telegram -> WeChat) ------------------------------------

    async def _emit(self, events: list[NormalizedEvent]) -> None:
        if self._sink is None:
            logger.warning("no sink attached, dropping %d event(s)", len(events))
            return
        for event in events:
            await self._sink(event)

    async def submit(self, message: Message, action: PendingAction) -> None:
        """Run `action` for the resolved peer, or ask the operator to choose one."""

        reply = message.reply_to_message
        if reply is not None and reply.message_id in self._message_peers:
            self.last_peer = self._message_peers[reply.message_id]

        if self.last_peer:
            await self._emit(action(self.last_peer))
            return

        self._pending = action
        await message.reply_text("Please select a peer:", reply_markup=self.peer_keyboard(0))

    @staticmethod
    async def _download(context: ContextTypes.DEFAULT_TYPE, file_id: str) -> bytes:
        tg_file = await context.bot.get_file(file_id)
        return bytes(await tg_file.download_as_bytearray())

    @staticmethod
    def _with_caption(
        message: Message, build: Callable[[str], NormalizedEvent]
    ) -> PendingAction:
        caption = message.caption

        def action(peer: str) -> list[NormalizedEvent]:
            events = [build(peer)]
            if caption:
                events.append(Text(caption, sender=OPERATOR_NAME, recipient=peer, peer=peer))
            return events

        return action

    async def _on_text(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.effective_message
        text = message.text or ""
        await self.submit(
            message, lambda peer: [Text(text, sender=OPERATOR_NAME, recipient=peer, peer=peer)]
        )

    async def _on_sticker(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.effective_message
        data = await self._download(context, message.sticker.file_id)
        await self.submit(
            message, lambda peer: [Sticker(data, sender=OPERATOR_NAME, recipient=peer, peer=peer)]
        )

    async def _on_photo(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.effective_message
        largest = max(message.photo, key=lambda p: p.width * p.height)
        data = await self._download(context, largest.file_id)
        await self.submit(
            message,
            self._with_caption(
                message, lambda peer: Photo(data, sender=OPERATOR_NAME, recipient=peer, peer=peer)
            ),
        )

    async def _on_document(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.effective_message
        doc = message.document
        data = await self._download(context, doc.file_id)
        await self._submit_document(message, data, doc.file_name)

    async def _on_audio(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        # WeChat voice messages cannot be sent, audio files go out as documents.
        message = update.effective_message
        audio = message.audio
        await self._submit_document(
            message, await self._download(context, audio.file_id), audio.file_name
        )

    async def _submit_document(self, message: Message, data: bytes, filename: str | None) -> None:
        await self.submit(
            message,
            self._with_caption(
                message,
                lambda peer: Document(
                    data, sender=OPERATOR_NAME, recipient=peer, peer=peer, filename=filename
                ),
            ),
        )

    async def _on_voice(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.effective_message
        data = await self._download(context, message.voice.file_id)
        await self.submit(
            message,
            self._with_caption(
                message, lambda peer: Voice(data, sender=OPERATOR_NAME, recipient=peer, peer=peer)
            ),
        )

    async def _on_video(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.effective_message
        data = await self._download(context, message.video.file_id)
        await self.submit(
            message,
            self._with_caption(
                message, lambda peer: Video(data, sender=OPERATOR_NAME, recipient=peer, peer=peer)
            ),
        )

    async def _on_location(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.effective_message
        point = (message.location.latitude, message.location.longitude)
        await self.submit(
            message,
            lambda peer: [Location(point, sender=OPERATOR_NAME, recipient=peer, peer=peer)],
        )

    # -- peer selection --------------------------------------------------

    def peer_keyboard(self, page: int) -> InlineKeyboardMarkup:
        contacts = self._peer_source()
        start = max(page, 0) * PAGE_SIZE
        end = start + PAGE_SIZE

        rows: list[list[InlineKeyboardButton]] = [
            [InlineKeyboardButton(c.display_name, callback_data=f"PEER {encode_peer(c.username)}")]
            for c in contacts[start:end]
        ]
        nav: list[InlineKeyboardButton] = []
        if start > 0:
            nav.append(InlineKeyboardButton("<", callback_data=f"PAGE {page - 1}"))
        if end < len(contacts):
            nav.append(InlineKeyboardButton(">", callback_data=f"PAGE {page + 1}"))
        if nav:
            rows.append(nav)
        return InlineKeyboardMarkup(rows)

    async def select_peer(self, peer: str) -> None:
        self.last_peer = peer
        action, self._pending = self._pending, None
        if action is not None:
            await self._emit(action(peer))

    async def _on_select_peer(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        query = update.callback_query
        await query.answer()
        await self.select_peer(decode_peer(query.data.removeprefix("PEER ")))
        await query.edit_message_text("Done.")

    async def _on_page(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        query = update.callback_query
        await query.answer()
        try:
            page = int(query.data.removeprefix("PAGE "))
        except ValueError:
            return
        await query.edit_message_reply_markup(reply_markup=self.peer_keyboard(page))

    async def _cmd_peer(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        await update.effective_message.reply_text(
            "Please select a peer:", reply_markup=self.peer_keyboard(0)
        )

    async def _cmd_unknown(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.effective_message
        command = (message.text or "").split(maxsplit=1)[0]
        await message.reply_text(f"Unknown command {command}.")

    async def _on_error(self, update: Any, context: ContextTypes.DEFAULT_TYPE) -> None:
        logger.error("telegram handler failed: %s", context.error, exc_info=context.error)
