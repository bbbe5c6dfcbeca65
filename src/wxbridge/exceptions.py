from __future__ import annotations


class WxBridgeError(Exception):
    """Base error for the wxbridge library."""


class TransportError(WxBridgeError):
    """
    HTTP transport-level failure.

    Raised once the bounded retry policy gives up on a network failure, or when
    the server answers with an HTTP error status.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class HandshakeError(WxBridgeError):
    """QR login handshake failure."""


class ProtocolError(WxBridgeError):
    """
    An authenticated call returned a non-zero application status.

    The web protocol reports these as `BaseResponse.Ret` (or `retcode` for the
    long-poll check). They require re-authentication, not retransmission.
    """

    def __init__(self, message: str, *, ret: int | str | None = None) -> None:
        super().__init__(message)
        self.ret = ret


class DirectoryError(WxBridgeError):
    """Lazy contact/group lookup failed."""


class DecodeError(WxBridgeError):
    """A single incoming message could not be decoded."""


class UploadError(WxBridgeError):
    """Chunked media upload failed or produced no media id."""


class NotSupportedError(WxBridgeError):
    """The requested outbound message kind is not implemented."""
