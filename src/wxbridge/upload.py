from __future__ import annotations

import hashlib
import json
import logging
import math
import time
from typing import Literal

from .api import WebApi
from .constants import UPLOAD_CHUNK_SIZE
from .exceptions import ProtocolError, TransportError, UploadError

logger = logging.getLogger("wxbridge.upload")

MediaKind = Literal["pic", "video", "doc"]

# `uploadmediarequest.MediaType`: the frontend always declares "attachment".
_UPLOAD_MEDIA_TYPE_ATTACHMENT = 4
_UPLOAD_TYPE = 2


def chunk_count(size: int, chunk_size: int = UPLOAD_CHUNK_SIZE) -> int:
    return math.ceil(size / chunk_size) if size > 0 else 0


class MediaUploader:
    """
    Chunked upload to `webwxuploadmedia`.

    Every chunk repeats the same descriptor (total length and MD5 of the whole
    payload); the server only reports the final media id once all chunks are
    in, so the last non-empty `MediaId` seen wins.
    """

    def __init__(self, api: WebApi, *, chunk_size: int = UPLOAD_CHUNK_SIZE) -> None:
        self._api = api
        self.chunk_size = chunk_size

    def _descriptor(self, data: bytes, recipient: str) -> str:
        return json.dumps(
            {
                "UploadType": _UPLOAD_TYPE,
                "BaseRequest": self._api.base_request(),
                "ClientMediaId": int(time.time() * 1000),
                "TotalLen": len(data),
                "StartPos": 0,
                "DataLen": len(data),
                "MediaType": _UPLOAD_MEDIA_TYPE_ATTACHMENT,
                "FromUserName": self._api.username,
                "ToUserName": recipient,
                "FileMd5": hashlib.md5(data).hexdigest(),
            },
            ensure_ascii=False,
        )

    async def upload(self, data: bytes, media_kind: MediaKind, recipient: str) -> str:
        chunks = chunk_count(len(data), self.chunk_size)
        if chunks == 0:
            raise UploadError("cannot upload an empty payload")

        fields: dict[str, str] = {
            "id": f"WU_FILE_{int(time.time() * 1000)}",
            "name": "blob",
            "type": "application/octet-stream",
            "lastModifiedDate": time.strftime("%a %b %d %Y %H:%M:%S GMT+0000", time.gmtime()),
            "size": str(len(data)),
            "chunks": str(chunks),
            "mediatype": media_kind,
            "uploadmediarequest": self._descriptor(data, recipient),
            "webwx_data_ticket": self._api.http.cookie("webwx_data_ticket") or "",
            "pass_ticket": self._api.session.ticket,
        }

        media_id = ""
        for i in range(chunks):
            part = data[i * self.chunk_size : (i + 1) * self.chunk_size]
            try:
                body = await self._api.upload_chunk({**fields, "chunk": str(i)}, part)
            except (ProtocolError, TransportError) as e:
                raise UploadError(f"failed to upload chunk {i + 1}/{chunks}: {e}") from e

            br = body.get("BaseResponse") or {}
            ret = br.get("Ret") if isinstance(br, dict) else None
            if ret:
                raise UploadError(f"failed to upload: {br.get('ErrMsg') or ret}")
            chunk_media_id = body.get("MediaId")
            if isinstance(chunk_media_id, str) and chunk_media_id:
                media_id = chunk_media_id
            logger.debug("uploaded chunk %d/%d (%d bytes)", i + 1, chunks, len(part))

        if not media_id:
            raise UploadError("failed to get media id")
        return media_id
