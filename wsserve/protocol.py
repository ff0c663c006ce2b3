"""
Per-connection WebSocket state machine.

``ServerProtocol`` performs no I/O: bytes read from the peer go in through
``receive_data`` and the wire bytes to send back come out, in the order the
triggering frames were decoded. The socket and asyncio drivers in
``wsserve.session`` and ``wsserve.async_session`` own the actual transport.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum

from .errors import ContinuationWithoutStart, ProtocolError, ReservedBitsError, UnmaskedFrameError
from .frames import (
    CloseCode,
    Frame,
    FrameBuffer,
    Opcode,
    build_close_payload,
    build_frame,
    parse_close_payload,
)

logger = logging.getLogger(__name__)

MessageHandler = Callable[[Opcode, bytes], "tuple[Opcode, bytes] | None"]


def echo(opcode: Opcode, payload: bytes) -> tuple[Opcode, bytes]:
    """Send every message back unchanged: text stays text, binary stays binary."""
    return opcode, payload


class Phase(Enum):
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class ConnectionState:
    """Mutable state of a single connection. Never shared between connections."""

    def __init__(self) -> None:
        self.receive_buffer = FrameBuffer()
        self.fragment_accumulator = bytearray()
        self.fragment_opcode: Opcode | None = None
        self.phase = Phase.OPEN

    def start_fragment(self, opcode: Opcode, payload: bytes) -> None:
        self.fragment_opcode = opcode
        self.fragment_accumulator = bytearray(payload)

    def take_fragment(self) -> tuple[Opcode, bytes]:
        assert self.fragment_opcode is not None
        message = (self.fragment_opcode, bytes(self.fragment_accumulator))
        self.fragment_opcode = None
        self.fragment_accumulator = bytearray()
        return message


class ServerProtocol:
    """
    Server side of one WebSocket connection, from just after the upgrade
    until the close handshake completes.

    Args:
        handler: Called with each complete data message; returns the
            ``(opcode, payload)`` to send back, or None to stay silent.
        require_masked: Reject client frames that arrive without a mask.
        allow_reserved_bits: Accept frames with RSV1-3 set instead of
            failing the connection.
    """

    def __init__(
        self,
        handler: MessageHandler = echo,
        *,
        require_masked: bool = False,
        allow_reserved_bits: bool = False,
    ) -> None:
        self.handler = handler
        self.require_masked = require_masked
        self.allow_reserved_bits = allow_reserved_bits
        self.state = ConnectionState()
        self.close_code: int | None = None
        self._pending: list[bytes] | None = None

    @property
    def phase(self) -> Phase:
        return self.state.phase

    @property
    def closed(self) -> bool:
        return self.state.phase is Phase.CLOSED

    def receive_data(self, data: bytes) -> list[bytes]:
        """
        Consume bytes read from the peer and return the frames to write.

        An empty ``data`` means the peer reached EOF.
        """
        if self.closed:
            return []
        if not data:
            logger.debug("Peer closed the stream")
            self.abort()
            return []

        out: list[bytes] = []
        self._pending = out
        try:
            for frame in self.state.receive_buffer.feed(data):
                self._handle_frame(frame, out)
                if self.closed:
                    break
        except ProtocolError as exc:
            logger.info("Protocol error: %s", exc)
            self._fail(out, exc.close_code, "protocol error")
        finally:
            self._pending = None
        return out

    def close(self, code: int = CloseCode.NORMAL, reason: str = "") -> bytes:
        """
        Start the closing handshake. Returns the close frame to send, if any.

        Called from a message handler, the frame is queued behind the replies
        already produced by the current ``receive_data`` call and ``b""`` is
        returned instead.
        """
        if self.state.phase is not Phase.OPEN:
            return b""
        self.state.phase = Phase.CLOSING
        self.close_code = code
        frame = build_frame(Opcode.CLOSE, build_close_payload(code, reason))
        if self._pending is not None:
            self._pending.append(frame)
            return b""
        return frame

    def abort(self) -> None:
        """Drop all connection state without sending anything."""
        self.state.phase = Phase.CLOSED
        self.state.receive_buffer.clear()
        self.state.fragment_opcode = None
        self.state.fragment_accumulator = bytearray()

    def _fail(self, out: list[bytes], code: int, reason: str) -> None:
        if self.state.phase is Phase.OPEN:
            out.append(build_frame(Opcode.CLOSE, build_close_payload(code, reason)))
            self.close_code = code
        self.abort()

    def _handle_frame(self, frame: Frame, out: list[bytes]) -> None:
        if frame.rsv and not self.allow_reserved_bits:
            raise ReservedBitsError(f"Reserved bits set without an extension: {frame.rsv:#05b}")
        if self.require_masked and not frame.masked:
            raise UnmaskedFrameError("Client frames must be masked")

        state = self.state
        opcode = Opcode.lookup(frame.opcode)

        if opcode is None:
            logger.debug("Ignoring frame with reserved opcode %#x", frame.opcode)
        elif opcode is Opcode.TEXT or opcode is Opcode.BINARY:
            if frame.fin:
                self._dispatch(opcode, frame.payload, out)
            else:
                state.start_fragment(opcode, frame.payload)
        elif opcode is Opcode.CONTINUATION:
            if state.fragment_opcode is None:
                raise ContinuationWithoutStart("Continuation frame with no message in progress")
            state.fragment_accumulator.extend(frame.payload)
            if frame.fin:
                self._dispatch(*state.take_fragment(), out)
        elif opcode is Opcode.PING:
            if state.phase is Phase.OPEN:
                out.append(build_frame(Opcode.PONG, frame.payload))
        elif opcode is Opcode.PONG:
            pass
        elif opcode is Opcode.CLOSE:
            self._handle_close(frame.payload, out)
        else:
            raise AssertionError(f"Unhandled opcode {opcode!r}")

    def _handle_close(self, payload: bytes, out: list[bytes]) -> None:
        code: int | None = None
        if payload:
            code, reason = parse_close_payload(payload)
            logger.debug("Peer sent close %s %r", code, reason)
        if self.state.phase is Phase.OPEN:
            # Echo the peer's payload, status code included.
            out.append(build_frame(Opcode.CLOSE, payload))
            self.close_code = code
        self.abort()

    def _dispatch(self, opcode: Opcode, payload: bytes, out: list[bytes]) -> None:
        if self.state.phase is not Phase.OPEN:
            return
        logger.debug("Received %s message, %d bytes", opcode.name, len(payload))
        try:
            reply = self.handler(opcode, payload)
        except ProtocolError:
            raise
        except Exception:
            logger.exception("Message handler failed")
            self._fail(out, CloseCode.INTERNAL_ERROR, "internal error")
            return
        if reply is not None and self.state.phase is Phase.OPEN:
            reply_opcode, reply_payload = reply
            out.append(build_frame(reply_opcode, reply_payload))
