from __future__ import annotations

import pytest

from wxbridge.util.events import AsyncEventEmitter


def test_unknown_event_name_is_rejected() -> None:
    ee = AsyncEventEmitter()
    with pytest.raises(ValueError):
        ee.on("loggedIn", lambda: None)  # type: ignore[arg-type]
    ee.on("logged_in", lambda: None)


@pytest.mark.asyncio
async def test_failing_listener_does_not_stop_delivery() -> None:
    ee = AsyncEventEmitter()
    got: list[str] = []

    def broken(_payload) -> None:
        raise RuntimeError("boom")

    async def fine(payload) -> None:
        got.append(payload)

    ee.on("text", broken)
    ee.on("text", fine)

    assert await ee.emit("text", "hello")
    assert got == ["hello"]


@pytest.mark.asyncio
async def test_emit_without_listeners_reports_nothing_triggered() -> None:
    ee = AsyncEventEmitter()
    got: list[str] = []
    ee.on("scanned", lambda: got.append("scanned"))

    assert not await ee.emit("scanning")
    assert await ee.emit("scanned")
    assert got == ["scanned"]
