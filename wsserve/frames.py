"""WebSocket frame codec (RFC 6455 section 5).

Decoding works on an arbitrary slice of the byte stream: a single read may
hold several frames, and a frame may span several reads. Anything that does
not form a complete frame is handed back untouched as the remainder.
"""

from __future__ import annotations

import struct
from enum import IntEnum
from typing import NamedTuple

from .errors import FrameTooLarge, ProtocolError

MAX_PAYLOAD_LENGTH = 0xFFFFFFFF


class Opcode(IntEnum):
    CONTINUATION = 0x0
    TEXT = 0x1
    BINARY = 0x2
    CLOSE = 0x8
    PING = 0x9
    PONG = 0xA

    @classmethod
    def lookup(cls, value: int) -> Opcode | None:
        """Return the member for ``value``, or None for reserved opcodes."""
        try:
            return cls(value)
        except ValueError:
            return None


class CloseCode(IntEnum):
    NORMAL = 1000
    GOING_AWAY = 1001
    PROTOCOL_ERROR = 1002
    INTERNAL_ERROR = 1011


class Frame(NamedTuple):
    fin: bool
    opcode: int
    payload: bytes
    rsv: int = 0
    masked: bool = False


class ParseResult(NamedTuple):
    frames: list[Frame]
    remainder: bytes


def apply_mask(data: bytes, key: bytes) -> bytes:
    """
    XOR ``data`` with the 4-byte masking ``key`` repeated cyclically.
    Masking and unmasking are the same operation.
    """
    if len(key) != 4:
        raise ValueError("Masking key must be exactly 4 bytes")
    length = len(data)
    if not length:
        return b""
    stream = (bytes(key) * (length // 4 + 1))[:length]
    masked = int.from_bytes(data, "big") ^ int.from_bytes(stream, "big")
    return masked.to_bytes(length, "big")


def _decode(buffer: bytes | bytearray | memoryview) -> tuple[list[Frame], int]:
    """Decode complete frames from the start of ``buffer``; return them and the bytes consumed."""
    frames: list[Frame] = []
    size = len(buffer)
    offset = 0

    while size - offset >= 2:
        b1 = buffer[offset]
        b2 = buffer[offset + 1]
        fin = (b1 & 0x80) != 0
        rsv = (b1 >> 4) & 0x07
        opcode = b1 & 0x0F
        masked = (b2 & 0x80) != 0
        length = b2 & 0x7F
        pos = offset + 2

        if length == 126:
            if size - pos < 2:
                break
            (length,) = struct.unpack_from("!H", buffer, pos)
            pos += 2
        elif length == 127:
            if size - pos < 8:
                break
            high, low = struct.unpack_from("!II", buffer, pos)
            pos += 8
            if high != 0:
                raise FrameTooLarge(f"Declared frame length exceeds {MAX_PAYLOAD_LENGTH} bytes")
            length = low

        mask_key = b""
        if masked:
            if size - pos < 4:
                break
            mask_key = bytes(buffer[pos : pos + 4])
            pos += 4

        if size - pos < length:
            break  # incomplete payload

        payload = bytes(buffer[pos : pos + length])
        if masked:
            payload = apply_mask(payload, mask_key)

        frames.append(Frame(fin, opcode, payload, rsv, masked))
        offset = pos + length

    return frames, offset


def parse_frames(buffer: bytes) -> ParseResult:
    """
    Split ``buffer`` into every complete frame it holds plus the undecoded tail.

    The remainder always starts at the first header byte of the incomplete
    frame, so it can be prepended to the next read unchanged.

    Raises:
        FrameTooLarge: If a 64-bit length has any of its high 32 bits set.
    """
    frames, consumed = _decode(buffer)
    return ParseResult(frames, bytes(buffer[consumed:]))


def build_frame(opcode: int, payload: bytes, fin: bool = True) -> bytes:
    """
    Encode a server-to-client frame. Server frames are never masked.
    The header grows to 2, 4, or 10 bytes depending on payload size.
    """
    first = (0x80 if fin else 0x00) | (int(opcode) & 0x0F)
    length = len(payload)
    header = bytearray([first])

    if length < 126:
        header.append(length)
    elif length <= 0xFFFF:
        header.append(126)
        header.extend(struct.pack("!H", length))
    elif length <= MAX_PAYLOAD_LENGTH:
        header.append(127)
        header.extend(struct.pack("!II", 0, length))
    else:
        raise FrameTooLarge(f"Payload of {length} bytes cannot be sent in one frame")

    return bytes(header) + bytes(payload)


def build_close_payload(code: int, reason: str = "") -> bytes:
    return struct.pack("!H", code) + reason.encode("utf-8")


def parse_close_payload(payload: bytes) -> tuple[int | None, str]:
    """Return ``(code, reason)`` from a close frame body; an empty body has no code."""
    if not payload:
        return None, ""
    if len(payload) == 1:
        raise ProtocolError("Close payload must be empty or at least 2 bytes")
    (code,) = struct.unpack_from("!H", payload)
    return code, payload[2:].decode("utf-8", errors="replace")


class FrameBuffer:
    """
    Receive buffer for one connection.

    Chunks are appended as they arrive; after each decode only the consumed
    prefix is dropped, so the undecoded tail is the only thing ever moved.
    """

    def __init__(self) -> None:
        self._buf = bytearray()

    def feed(self, chunk: bytes) -> list[Frame]:
        self._buf.extend(chunk)
        frames, consumed = _decode(self._buf)
        if consumed:
            del self._buf[:consumed]
        return frames

    def pending(self) -> bytes:
        return bytes(self._buf)

    def clear(self) -> None:
        self._buf.clear()

    def __len__(self) -> int:
        return len(self._buf)
