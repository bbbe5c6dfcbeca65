from __future__ import annotations

import httpx
import pytest
from conftest import json_body, ok, raw, text

from wxbridge.contacts import Contact, ContactDirectory
from wxbridge.decoder import MessageDecoder
from wxbridge.events import Text
from wxbridge.exceptions import ProtocolError
from wxbridge.session import SyncKey
from wxbridge.sync import SyncEngine

CHECK_NEW = text('window.synccheck={retcode:"0",selector:"2"}')
CHECK_IDLE = text('window.synccheck={retcode:"0",selector:"0"}')


def _key(*vals: int) -> dict:
    return {"Count": len(vals), "List": [{"Key": i + 1, "Val": v} for i, v in enumerate(vals)]}


def _engine(api, config) -> tuple[SyncEngine, list]:
    directory = ContactDirectory(api)
    directory.merge(Contact("@me", nickname="Me"))
    directory.merge(Contact("@alice", nickname="Alice"))
    public = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(404)))
    decoder = MessageDecoder(api=api, directory=directory, public_http=public)
    received: list = []

    async def sink(event) -> None:
        received.append(event)

    engine = SyncEngine(api=api, decoder=decoder, sink=sink, config=config)
    engine.reset(SyncKey.from_wire(_key(1, 1)))
    return engine, received


def _text(msg_id: str, content: str) -> dict:
    return {
        "MsgId": msg_id,
        "FromUserName": "@alice",
        "ToUserName": "@me",
        "MsgType": 1,
        "Content": content,
    }


@pytest.mark.asyncio
async def test_cursor_is_threaded_between_batches(api, fake, config) -> None:
    fake.on("synccheck", CHECK_NEW)
    fake.on(
        "webwxsync",
        ok({"SyncKey": _key(2, 1), "AddMsgList": [_text("1", "one")]}),
        ok({"SyncKey": _key(3, 2), "AddMsgList": [_text("2", "two")]}),
    )
    engine, received = _engine(api, config)

    assert await engine.poll_once() == 1
    assert await engine.poll_once() == 1

    syncs = fake.calls("webwxsync")
    assert json_body(syncs[0])["SyncKey"] == _key(1, 1)
    assert json_body(syncs[1])["SyncKey"] == _key(2, 1)
    checks = fake.calls("synccheck")
    assert [c.url.params["synckey"] for c in checks] == ["1_1|2_1", "1_2|2_1"]
    assert engine.sync_key == SyncKey.from_wire(_key(3, 2))
    assert [e.content for e in received] == ["one", "two"]


@pytest.mark.asyncio
async def test_idle_selector_skips_sync(api, fake, config) -> None:
    fake.on("synccheck", CHECK_IDLE)
    engine, _ = _engine(api, config)

    assert await engine.poll_once() == 0
    assert fake.calls("webwxsync") == []


@pytest.mark.asyncio
async def test_non_zero_retcode_is_fatal(api, fake, config) -> None:
    fake.on("synccheck", text('window.synccheck={retcode:"1101",selector:"0"}'))
    engine, _ = _engine(api, config)

    with pytest.raises(ProtocolError):
        await engine.poll_once()


@pytest.mark.asyncio
async def test_sync_error_keeps_previous_cursor(api, fake, config) -> None:
    fake.on("synccheck", CHECK_NEW)
    fake.on("webwxsync", ok(ret=1100))
    engine, _ = _engine(api, config)
    before = engine.sync_key

    with pytest.raises(ProtocolError):
        await engine.poll_once()
    assert engine.sync_key == before


@pytest.mark.asyncio
async def test_failed_message_does_not_sink_the_batch(api, fake, config) -> None:
    image = {**_text("2", ""), "MsgType": 3}
    fake.on("synccheck", CHECK_NEW)
    fake.on("webwxsync", ok({"SyncKey": _key(2, 1), "AddMsgList": [_text("1", "hello"), image]}))
    fake.on("webwxgetmsgimg", raw(b"", status=500))
    engine, received = _engine(api, config)

    assert await engine.poll_once() == 2
    assert received == [Text("hello", sender="Alice", recipient="Me", peer="@alice")]
    assert engine.sync_key == SyncKey.from_wire(_key(2, 1))


@pytest.mark.asyncio
async def test_bad_card_and_unknown_group_do_not_sink_the_batch(api, fake, config) -> None:
    bad_url = '&lt;msg bigheadimgurl="http://[::1" nickname="Carol" /&gt;'
    card = {**_text("2", bad_url), "MsgType": 42}
    group = {**_text("3", "@bob:<br/>hey"), "FromUserName": "@@room2"}
    fake.on("synccheck", CHECK_NEW)
    fake.on(
        "webwxsync",
        ok({"SyncKey": _key(2, 1), "AddMsgList": [_text("1", "hi"), card, group]}),
    )
    engine, received = _engine(api, config)

    assert await engine.poll_once() == 3
    assert received == [Text("hi", sender="Alice", recipient="Me", peer="@alice")]
    assert len(fake.calls("webwxbatchgetcontact")) == 1
    assert engine.sync_key == SyncKey.from_wire(_key(2, 1))


@pytest.mark.asyncio
async def test_unexpected_decoder_error_drops_only_that_message(
    api, fake, config, monkeypatch
) -> None:
    fake.on("synccheck", CHECK_NEW)
    fake.on(
        "webwxsync",
        ok({"SyncKey": _key(2, 1), "AddMsgList": [_text("1", "boom"), _text("2", "fine")]}),
    )
    engine, received = _engine(api, config)
    decode = engine._decoder.decode

    async def flaky(raw):
        if raw.content == "boom":
            raise RuntimeError("decoder bug")
        return await decode(raw)

    monkeypatch.setattr(engine._decoder, "decode", flaky)

    assert await engine.poll_once() == 2
    assert [e.content for e in received] == ["fine"]
    assert engine.sync_key == SyncKey.from_wire(_key(2, 1))


@pytest.mark.asyncio
async def test_run_stops_when_session_is_invalidated(api, fake, config) -> None:
    fake.on("synccheck", CHECK_NEW)
    fake.on("webwxsync", ok({"SyncKey": _key(2, 1), "AddMsgList": [_text("1", "bye")]}))
    engine, received = _engine(api, config)

    async def sink(event) -> None:
        received.append(event)
        api.invalidate_session()

    engine._sink = sink
    await engine.run()
    assert len(received) == 1
    assert len(fake.calls("synccheck")) == 1
