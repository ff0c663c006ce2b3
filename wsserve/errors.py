class WebSocketError(Exception):
    """Base error for wsserve."""


class HandshakeError(WebSocketError):
    """Raised when an upgrade request does not meet the handshake requirements."""

    def __init__(self, message: str, status: int = 400) -> None:
        self.status = status
        super().__init__(message)


class ProtocolError(WebSocketError):
    """Raised when a peer violates the framing protocol."""

    close_code = 1002


class FrameTooLarge(ProtocolError):
    """Raised when a frame declares a 64-bit length with a nonzero high half."""


class ContinuationWithoutStart(ProtocolError):
    """Raised when a continuation frame arrives with no message in progress."""


class ReservedBitsError(ProtocolError):
    """Raised when RSV1-3 are set and no extension negotiated them."""


class UnmaskedFrameError(ProtocolError):
    """Raised when a client frame arrives without a masking key."""


class ConnectionClosed(WebSocketError):
    """Raised when the underlying transport fails or reaches EOF."""
