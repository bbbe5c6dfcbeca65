from __future__ import annotations

import re

import pytest

from wxbridge.session import Session, SyncKey, base_request, device_id

WIRE = {
    "Count": 3,
    "List": [{"Key": 1, "Val": 650}, {"Key": 2, "Val": 651}, {"Key": 1000, "Val": 0}],
}


def test_sync_key_round_trip() -> None:
    key = SyncKey.from_wire(WIRE)
    assert key.to_wire() == WIRE
    assert key.to_query() == "1_650|2_651|1000_0"
    assert len(key.pairs) == 3


def test_sync_key_empty() -> None:
    key = SyncKey.from_wire({"Count": 0, "List": []})
    assert key.pairs == ()
    assert key == SyncKey()
    assert key.to_query() == ""


@pytest.mark.parametrize(
    "bad",
    [None, [], {"Count": 1}, {"List": [{"Key": 1}]}, {"List": ["1_2"]}],
)
def test_sync_key_malformed(bad) -> None:
    with pytest.raises(ValueError):
        SyncKey.from_wire(bad)


def test_session_invalidated_is_a_copy() -> None:
    s = Session(skey="k", uin="1", sid="s", ticket="t", valid=True)
    dead = s.invalidated()
    assert s.valid
    assert not dead.valid
    assert dead.skey == "k"


def test_session_dict_round_trip() -> None:
    s = Session(skey="k", uin="1", sid="s", ticket="t", valid=True)
    assert Session.from_dict(s.to_dict()) == s
    assert Session.from_dict({}) == Session()


def test_base_request() -> None:
    s = Session(skey="k", uin="1", sid="s", ticket="t", valid=True)
    br = base_request(s)
    assert (br["Uin"], br["Sid"], br["Skey"]) == ("1", "s", "k")
    assert re.fullmatch(r"e\d{15}", br["DeviceID"])
    assert re.fullmatch(r"e\d{15}", device_id())
