"""
Minimal HTTP/1.1 front end: accept TCP connections, perform the upgrade
handshake, then hand the socket to a session.

``WebSocketServer`` runs one thread per connection; ``AsyncWebSocketServer``
runs one task per connection on an asyncio loop. Failures never escape a
single connection.
"""

from __future__ import annotations

import asyncio
import logging
import socket
import threading
from typing import Any

from .async_session import AsyncSession
from .errors import HandshakeError
from .handshake import (
    build_accept_response,
    build_reject_response,
    parse_request,
    read_request_head,
    validate_handshake,
)
from .protocol import MessageHandler, echo
from .session import Session, peer_name

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8080

# Pause after a failed accept (EMFILE and friends) before trying again.
ACCEPT_BACKOFF = 0.1


def handle_client(
    sock: socket.socket,
    handler: MessageHandler = echo,
    *,
    timeout: float | None = None,
    max_header_size: int = 65536,
    **options: Any,
) -> None:
    """Upgrade one accepted socket and run its session to completion."""
    peer = peer_name(sock)
    try:
        sock.settimeout(timeout)
        head, rest = read_request_head(sock.recv, max_header_size)
        request = parse_request(head)
        accept = validate_handshake(request.headers)
        sock.sendall(build_accept_response(accept))
    except HandshakeError as exc:
        logger.info("Rejected upgrade from %s: %s", peer, exc)
        try:
            sock.sendall(build_reject_response(exc.status, str(exc)))
        except OSError as send_exc:
            logger.debug("Could not send rejection to %s: %s", peer, send_exc)
        sock.close()
        return
    except OSError as exc:
        logger.warning("Handshake with %s failed: %s", peer, exc)
        sock.close()
        return

    logger.info("Upgraded %s %s from %s", request.method, request.path, peer)
    Session(sock, handler, timeout=timeout, initial=rest, **options).run()


async def _read_request_head_async(
    reader: asyncio.StreamReader, timeout: float | None, max_size: int
) -> bytes:
    try:
        head = await asyncio.wait_for(reader.readuntil(b"\r\n\r\n"), timeout=timeout)
    except asyncio.IncompleteReadError as exc:
        raise HandshakeError("Connection closed during handshake") from exc
    except asyncio.LimitOverrunError as exc:
        raise HandshakeError("Request head too large") from exc
    if len(head) - 4 > max_size:
        raise HandshakeError("Request head too large")
    return head[:-4]


async def handle_client_async(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    handler: MessageHandler = echo,
    *,
    timeout: float | None = None,
    max_header_size: int = 65536,
    **options: Any,
) -> None:
    """Async counterpart of ``handle_client``."""
    peer = writer.get_extra_info("peername")
    try:
        head = await _read_request_head_async(reader, timeout, max_header_size)
        request = parse_request(head)
        accept = validate_handshake(request.headers)
        writer.write(build_accept_response(accept))
        await asyncio.wait_for(writer.drain(), timeout=timeout)
    except HandshakeError as exc:
        logger.info("Rejected upgrade from %s: %s", peer, exc)
        try:
            writer.write(build_reject_response(exc.status, str(exc)))
            await asyncio.wait_for(writer.drain(), timeout=timeout)
        except (OSError, asyncio.TimeoutError) as send_exc:
            logger.debug("Could not send rejection to %s: %r", peer, send_exc)
        writer.close()
        return
    except (OSError, asyncio.TimeoutError) as exc:
        logger.warning("Handshake with %s failed: %r", peer, exc)
        writer.close()
        return

    logger.info("Upgraded %s %s from %s", request.method, request.path, peer)
    await AsyncSession(reader, writer, handler, timeout=timeout, **options).run()


class WebSocketServer:
    """
    Threaded WebSocket server. The listening socket is bound on construction,
    so ``server_address`` is known before ``serve_forever`` starts.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = DEFAULT_PORT,
        handler: MessageHandler = echo,
        *,
        timeout: float | None = None,
        backlog: int = 128,
        poll_interval: float = 0.5,
        **options: Any,
    ) -> None:
        self.handler = handler
        self.timeout = timeout
        self.options = options
        self.sock = socket.create_server((host, port), backlog=backlog)
        self.sock.settimeout(poll_interval)
        self._shutdown = threading.Event()

    @property
    def server_address(self) -> tuple[str, int]:
        host, port = self.sock.getsockname()[:2]
        return host, port

    def serve_forever(self) -> None:
        logger.info("WebSocket server on ws://%s:%d", *self.server_address)
        try:
            while not self._shutdown.is_set():
                try:
                    conn, _ = self.sock.accept()
                except socket.timeout:
                    continue
                except OSError as exc:
                    if self._shutdown.is_set() or self.sock.fileno() == -1:
                        break
                    logger.warning("Accept failed: %s", exc)
                    self._shutdown.wait(ACCEPT_BACKOFF)
                    continue
                try:
                    conn.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
                except OSError as exc:
                    logger.warning("Dropping connection from %s: %s", peer_name(conn), exc)
                    conn.close()
                    continue
                thread = threading.Thread(
                    target=handle_client,
                    args=(conn, self.handler),
                    kwargs={"timeout": self.timeout, **self.options},
                    daemon=True,
                )
                thread.start()
        finally:
            self.sock.close()

    def shutdown(self) -> None:
        self._shutdown.set()

    def __enter__(self) -> WebSocketServer:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()
        self.sock.close()


class AsyncWebSocketServer:
    """WebSocket server on asyncio; one task per connection."""

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = DEFAULT_PORT,
        handler: MessageHandler = echo,
        *,
        timeout: float | None = None,
        **options: Any,
    ) -> None:
        self.host = host
        self.port = port
        self.handler = handler
        self.timeout = timeout
        self.options = options
        self._server: asyncio.Server | None = None
        self._writers: set[asyncio.StreamWriter] = set()

    @property
    def server_address(self) -> tuple[str, int]:
        if self._server is None:
            raise RuntimeError("Server is not started")
        host, port = self._server.sockets[0].getsockname()[:2]
        return host, port

    async def start(self) -> AsyncWebSocketServer:
        if self._server is None:
            self._server = await asyncio.start_server(self._on_client, self.host, self.port)
            logger.info("WebSocket server on ws://%s:%d", *self.server_address)
        return self

    async def serve_forever(self) -> None:
        await self.start()
        assert self._server is not None
        await self._server.serve_forever()

    async def close(self) -> None:
        if self._server is None:
            return
        self._server.close()
        for writer in list(self._writers):
            writer.close()
        await self._server.wait_closed()
        self._server = None

    async def _on_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._writers.add(writer)
        try:
            await handle_client_async(
                reader, writer, self.handler, timeout=self.timeout, **self.options
            )
        except Exception:
            logger.exception("Connection handler crashed")
            writer.close()
        finally:
            self._writers.discard(writer)

    async def __aenter__(self) -> AsyncWebSocketServer:
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
