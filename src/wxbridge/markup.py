"""
Tolerant parsers for the semi-structured bodies the web protocol returns.

The login and push hosts answer with JavaScript assignments
(`window.QRLogin.code = 200; window.QRLogin.uuid = "...";`), the token
exchange with a small XML document, and message payloads embed escaped XML
fragments. Every parser here returns a typed result or raises `MarkupError`;
callers convert that into the error type that fits their layer.
"""

from __future__ import annotations

import html
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from urllib.parse import parse_qsl, urlsplit


class MarkupError(ValueError):
    """A response body did not have the expected shape."""


_JS_PAIR = re.compile(r"""([A-Za-z_][\w.]*)\s*[=:]\s*(?:"([^"]*)"|'([^']*)'|([^;,{}\s"']+))""")
_ATTR = re.compile(r"""([A-Za-z_][\w\-]*)\s*=\s*(?:"([^"]*)"|'([^']*)')""")


def parse_js_assignments(body: str) -> dict[str, str]:
    """
    Collect `name = value` / `name: value` pairs from a JS-ish body.

    Keys are reduced to their last dotted component (`window.QRLogin.code` ->
    `code`). The first occurrence of a key wins.
    """

    out: dict[str, str] = {}
    for m in _JS_PAIR.finditer(body or ""):
        key = m.group(1).rsplit(".", 1)[-1]
        value = next((g for g in m.group(2, 3, 4) if g is not None), "")
        out.setdefault(key, value)
    return out


def scan_attributes(markup: str) -> dict[str, str]:
    """
    Collect `name="value"` attributes from an XML-ish fragment.

    Works on fragments that are not well-formed documents. Values are entity
    decoded; the first occurrence of a name wins.
    """

    out: dict[str, str] = {}
    for m in _ATTR.finditer(markup or ""):
        value = m.group(2) if m.group(2) is not None else m.group(3)
        out.setdefault(m.group(1), html.unescape(value))
    return out


def _int(value: str | None, *, field: str) -> int:
    if value is None:
        raise MarkupError(f"missing {field}")
    try:
        return int(value)
    except ValueError as e:
        raise MarkupError(f"invalid {field}: {value!r}") from e


@dataclass(frozen=True, slots=True)
class LoginTicket:
    code: int
    uuid: str


@dataclass(frozen=True, slots=True)
class LoginStatus:
    code: int
    redirect_uri: str | None = None

    def redirect_params(self) -> dict[str, str]:
        if not self.redirect_uri:
            raise MarkupError("login status has no redirect_uri")
        return dict(parse_qsl(urlsplit(self.redirect_uri).query, keep_blank_values=True))


@dataclass(frozen=True, slots=True)
class LoginTokens:
    ret: str
    message: str
    skey: str | None
    sid: str | None
    uin: str | None
    pass_ticket: str | None
    redirect_url: str | None


@dataclass(frozen=True, slots=True)
class SyncCheck:
    retcode: str
    selector: int


def parse_login_ticket(body: str) -> LoginTicket:
    pairs = parse_js_assignments(body)
    code = _int(pairs.get("code"), field="code")
    uuid = pairs.get("uuid") or ""
    if code == 200 and not uuid:
        raise MarkupError("login ticket response without uuid")
    return LoginTicket(code=code, uuid=uuid)


def parse_login_status(body: str) -> LoginStatus:
    pairs = parse_js_assignments(body)
    code = _int(pairs.get("code"), field="code")
    return LoginStatus(code=code, redirect_uri=pairs.get("redirect_uri"))


def parse_login_tokens(body: str) -> LoginTokens:
    try:
        root = ET.fromstring((body or "").strip())
    except ET.ParseError as e:
        raise MarkupError(f"invalid login page xml: {e}") from e

    def text(tag: str) -> str | None:
        el = root.find(tag)
        if el is None or el.text is None:
            return None
        return el.text.strip() or None

    ret = text("ret")
    if ret is None:
        raise MarkupError("login page xml has no <ret>")
    return LoginTokens(
        ret=ret,
        message=text("message") or "",
        skey=text("skey"),
        sid=text("wxsid"),
        uin=text("wxuin"),
        pass_ticket=text("pass_ticket"),
        redirect_url=text("redirecturl"),
    )


def parse_sync_check(body: str) -> SyncCheck:
    pairs = parse_js_assignments(body)
    retcode = pairs.get("retcode")
    if retcode is None:
        raise MarkupError("synccheck response has no retcode")
    selector = _int(pairs.get("selector"), field="selector")
    return SyncCheck(retcode=retcode, selector=selector)


def parse_coordinates(markup: str) -> tuple[float, float]:
    attrs = scan_attributes(markup)
    try:
        return float(attrs["x"]), float(attrs["y"])
    except KeyError as e:
        raise MarkupError(f"location markup missing {e.args[0]!r}") from e
    except ValueError as e:
        raise MarkupError(f"location markup has non-numeric coordinates: {e}") from e
