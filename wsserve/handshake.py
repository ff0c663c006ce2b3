from __future__ import annotations

import base64
import hashlib
from collections.abc import Callable, Iterable, Mapping
from typing import NamedTuple

from .errors import HandshakeError

# Fixed GUID appended to Sec-WebSocket-Key when computing the accept token.
WS_GUID = "258EAFA5-E914-47DA-95CA-C5AB0DC85B11"

_REASONS = {400: "Bad Request", 404: "Not Found"}


class UpgradeRequest(NamedTuple):
    method: str
    path: str
    http_version: str
    headers: list[tuple[str, str]]


def _header_map(headers: Mapping[str, str] | Iterable[tuple[str, str]]) -> dict[str, str]:
    # Last-write wins while keeping lookups case-insensitive: a repeated
    # header resolves to its last value, not its first.
    items = headers.items() if isinstance(headers, Mapping) else headers
    out: dict[str, str] = {}
    for name, value in items:
        out[name.lower()] = value
    return out


def compute_accept_key(key: str) -> str:
    digest = hashlib.sha1((key + WS_GUID).encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")


def validate_handshake(headers: Mapping[str, str] | Iterable[tuple[str, str]]) -> str:
    """
    Check the upgrade request headers and return the Sec-WebSocket-Accept token.

    Raises:
        HandshakeError: If any required header is missing or has the wrong value.
            ``status`` is 404 when the request is not a WebSocket upgrade at all,
            400 otherwise.
    """
    values = _header_map(headers)

    if values.get("upgrade", "").strip().lower() != "websocket":
        raise HandshakeError("Use WebSocket upgrade", status=404)

    tokens = [part.strip() for part in values.get("connection", "").lower().split(",")]
    if "upgrade" not in tokens:
        raise HandshakeError("Connection header must include 'upgrade'")

    key = values.get("sec-websocket-key", "").strip()
    if not key:
        raise HandshakeError("Missing Sec-WebSocket-Key")

    if values.get("sec-websocket-version", "").strip() != "13":
        raise HandshakeError("Unsupported Sec-WebSocket-Version")

    return compute_accept_key(key)


def read_request_head(recv: Callable[[int], bytes], max_size: int = 65536) -> tuple[bytes, bytes]:
    """
    Read from ``recv`` until the blank line ending the request head.

    Returns the head (without the terminating blank line) and any bytes
    that arrived after it, which already belong to the WebSocket stream.
    """
    data = b""
    while b"\r\n\r\n" not in data:
        if len(data) > max_size:
            raise HandshakeError("Request head too large")
        chunk = recv(4096)
        if not chunk:
            raise HandshakeError("Connection closed during handshake")
        data += chunk
    head, _, rest = data.partition(b"\r\n\r\n")
    if len(head) > max_size:
        raise HandshakeError("Request head too large")
    return head, rest


def parse_request(head: bytes) -> UpgradeRequest:
    lines = head.decode("latin-1").split("\r\n")
    parts = lines[0].split(" ")
    if len(parts) != 3 or not parts[2].startswith("HTTP/"):
        raise HandshakeError(f"Malformed request line: {lines[0]!r}")
    method, path, version = parts

    headers: list[tuple[str, str]] = []
    for line in lines[1:]:
        if not line:
            continue
        name, sep, value = line.partition(":")
        if not sep or not name.strip():
            raise HandshakeError(f"Malformed header line: {line!r}")
        headers.append((name.strip(), value.strip()))
    return UpgradeRequest(method, path, version.split("/", 1)[1], headers)


def build_accept_response(accept: str) -> bytes:
    lines = [
        "HTTP/1.1 101 Switching Protocols\r\n",
        "Upgrade: websocket\r\n",
        "Connection: Upgrade\r\n",
        f"Sec-WebSocket-Accept: {accept}\r\n",
        "\r\n",
    ]
    return "".join(lines).encode("ascii")


def build_reject_response(status: int, message: str) -> bytes:
    body = message.encode("utf-8")
    lines = [
        f"HTTP/1.1 {status} {_REASONS.get(status, 'Error')}\r\n",
        "Content-Type: text/plain; charset=utf-8\r\n",
        f"Content-Length: {len(body)}\r\n",
        "Connection: close\r\n",
        "\r\n",
    ]
    return "".join(lines).encode("ascii") + body
