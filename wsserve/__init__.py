from wsserve.errors import (
    WebSocketError,
    HandshakeError,
    ProtocolError,
    FrameTooLarge,
    ContinuationWithoutStart,
    ReservedBitsError,
    UnmaskedFrameError,
    ConnectionClosed,
)
from wsserve.frames import (
    Opcode,
    CloseCode,
    Frame,
    ParseResult,
    FrameBuffer,
    parse_frames,
    build_frame,
    apply_mask,
    build_close_payload,
    parse_close_payload,
)
from wsserve.handshake import compute_accept_key, validate_handshake
from wsserve.protocol import ServerProtocol, ConnectionState, Phase, echo
from wsserve.session import Session
from wsserve.async_session import AsyncSession
from wsserve.server import (
    WebSocketServer,
    AsyncWebSocketServer,
    handle_client,
    handle_client_async,
)

__all__ = [
    "WebSocketError",
    "HandshakeError",
    "ProtocolError",
    "FrameTooLarge",
    "ContinuationWithoutStart",
    "ReservedBitsError",
    "UnmaskedFrameError",
    "ConnectionClosed",
    "Opcode",
    "CloseCode",
    "Frame",
    "ParseResult",
    "FrameBuffer",
    "parse_frames",
    "build_frame",
    "apply_mask",
    "build_close_payload",
    "parse_close_payload",
    "compute_accept_key",
    "validate_handshake",
    "ServerProtocol",
    "ConnectionState",
    "Phase",
    "echo",
    "Session",
    "AsyncSession",
    "WebSocketServer",
    "AsyncWebSocketServer",
    "handle_client",
    "handle_client_async",
]
