from __future__ import annotations

import pytest

from wxbridge.markup import (
    MarkupError,
    parse_coordinates,
    parse_login_status,
    parse_login_ticket,
    parse_login_tokens,
    parse_sync_check,
    scan_attributes,
)


def test_login_ticket() -> None:
    t = parse_login_ticket('window.QRLogin.code = 200; window.QRLogin.uuid = "gZx1_4Bq-A==";')
    assert t.code == 200
    assert t.uuid == "gZx1_4Bq-A=="


def test_login_ticket_without_uuid() -> None:
    with pytest.raises(MarkupError):
        parse_login_ticket("window.QRLogin.code = 200;")
    assert parse_login_ticket("window.QRLogin.code = 400;").code == 400


def test_login_ticket_garbage() -> None:
    with pytest.raises(MarkupError):
        parse_login_ticket("<html>nope</html>")


def test_login_status_pending_and_scanned() -> None:
    assert parse_login_status("window.code=408;").code == 408
    scanned = parse_login_status("window.code=201;window.userAvatar = 'data:img/jpg;base64,AAAA';")
    assert scanned.code == 201
    assert scanned.redirect_uri is None


def test_login_status_confirmed_redirect_params() -> None:
    body = (
        "window.code=200;\n"
        'window.redirect_uri="https://wx2.qq.com/cgi-bin/mmwebwx-bin/webwxnewloginpage'
        '?ticket=AbC&uuid=xyz&lang=zh_CN&scan=1500000000";'
    )
    status = parse_login_status(body)
    assert status.code == 200
    assert status.redirect_params() == {
        "ticket": "AbC",
        "uuid": "xyz",
        "lang": "zh_CN",
        "scan": "1500000000",
    }


def test_redirect_params_without_uri() -> None:
    with pytest.raises(MarkupError):
        parse_login_status("window.code=200;").redirect_params()


def test_login_tokens() -> None:
    body = (
        "<error><ret>0</ret><message></message><skey>@crypt_1</skey>"
        "<wxsid>sid</wxsid><wxuin>123</wxuin><pass_ticket>pt%2B</pass_ticket>"
        "<isgrayscale>1</isgrayscale></error>"
    )
    tokens = parse_login_tokens(body)
    assert tokens.ret == "0"
    assert tokens.message == ""
    assert (tokens.skey, tokens.sid, tokens.uin, tokens.pass_ticket) == (
        "@crypt_1",
        "sid",
        "123",
        "pt%2B",
    )
    assert tokens.redirect_url is None


def test_login_tokens_invalid() -> None:
    with pytest.raises(MarkupError):
        parse_login_tokens("<error><ret>0</ret>")
    with pytest.raises(MarkupError):
        parse_login_tokens("<error><skey>x</skey></error>")


def test_sync_check() -> None:
    check = parse_sync_check('window.synccheck={retcode:"0",selector:"2"}')
    assert check.retcode == "0"
    assert check.selector == 2

    assert parse_sync_check('window.synccheck={retcode:"1101",selector:"0"}').retcode == "1101"
    with pytest.raises(MarkupError):
        parse_sync_check("window.synccheck={}")


def test_scan_attributes_unescapes_and_keeps_first() -> None:
    attrs = scan_attributes('<msg a="1 &amp; 2" b=\'x\' a="ignored" />')
    assert attrs == {"a": "1 & 2", "b": "x"}


def test_coordinates() -> None:
    markup = '<msg><location x="39.903" y="116.391" scale="16" label="Beijing" /></msg>'
    assert parse_coordinates(markup) == (39.903, 116.391)
    with pytest.raises(MarkupError):
        parse_coordinates('<msg><location label="nowhere" /></msg>')
    with pytest.raises(MarkupError):
        parse_coordinates('<msg><location x="north" y="1" /></msg>')
