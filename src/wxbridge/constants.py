from __future__ import annotations

LOGIN_HOST = "https://login.wx2.qq.com"
MAIN_HOST = "https://wx2.qq.com"
PUSH_HOST = "https://webpush.wx2.qq.com"
FILE_HOST = "https://file.wx2.qq.com"

CGI_PATH = "/cgi-bin/mmwebwx-bin"
LOGIN_URL_PREFIX = "https://login.weixin.qq.com/l/"

APP_ID = "wx782c26e4c19acffb"

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
DESKTOP_CLIENT_VERSION = "2.0.0"
DESKTOP_REFERER = "https://wx.qq.com/?&lang=zh_CN&target=t"

# Upload chunk size used by the web frontend.
UPLOAD_CHUNK_SIZE = 512 * 1024

# Pseudo participants for operator-facing notices (QR image, diagnostics).
BOT_NAME = "Bot"
OPERATOR_NAME = "You"

# `webwxstatusnotify` codes.
STATUS_NOTIFY_INITED = 3
