from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Literal, TypeAlias

MessageKind = Literal["text", "photo", "sticker", "voice", "video", "document", "location"]


@dataclass(slots=True)
class Text:
    content: str
    sender: str = ""
    recipient: str = ""
    peer: str = ""

    kind: ClassVar[MessageKind] = "text"


@dataclass(slots=True)
class Photo:
    content: bytes
    sender: str = ""
    recipient: str = ""
    peer: str = ""
    filename: str | None = None

    kind: ClassVar[MessageKind] = "photo"


@dataclass(slots=True)
class Sticker:
    content: bytes
    sender: str = ""
    recipient: str = ""
    peer: str = ""
    filename: str | None = None

    kind: ClassVar[MessageKind] = "sticker"


@dataclass(slots=True)
class Voice:
    content: bytes
    sender: str = ""
    recipient: str = ""
    peer: str = ""
    filename: str | None = None

    kind: ClassVar[MessageKind] = "voice"


@dataclass(slots=True)
class Video:
    content: bytes
    sender: str = ""
    recipient: str = ""
    peer: str = ""
    filename: str | None = None

    kind: ClassVar[MessageKind] = "video"


@dataclass(slots=True)
class Document:
    content: bytes
    sender: str = ""
    recipient: str = ""
    peer: str = ""
    filename: str | None = None

    kind: ClassVar[MessageKind] = "document"


@dataclass(slots=True)
class Location:
    content: tuple[float, float]
    sender: str = ""
    recipient: str = ""
    peer: str = ""

    kind: ClassVar[MessageKind] = "location"


NormalizedEvent: TypeAlias = Text | Photo | Sticker | Voice | Video | Document | Location
