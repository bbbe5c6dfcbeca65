from __future__ import annotations

from wxbridge.emoji import parse_emoji


def test_emoji_span() -> None:
    assert parse_emoji('hi <span class="emoji emoji1f604"></span>!') == "hi \U0001f604!"


def test_emoji_span_alias() -> None:
    assert parse_emoji('<span class="emoji emoji1f63c"></span>') == "\U0001f601"


def test_qq_face() -> None:
    assert parse_emoji("&lt;色&gt;") == "\U0001f60d"


def test_unknown_tokens_are_kept() -> None:
    assert parse_emoji("&lt;no such face&gt;") == "&lt;no such face&gt;"
    span = '<span class="emoji emojizz"></span>'
    assert parse_emoji(span) == span


def test_empty() -> None:
    assert parse_emoji(None) == ""
    assert parse_emoji("") == ""
