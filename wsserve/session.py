from __future__ import annotations

import logging
import socket
import threading

from .errors import ConnectionClosed
from .frames import CloseCode
from .protocol import MessageHandler, ServerProtocol, echo

logger = logging.getLogger(__name__)


def peer_name(sock: socket.socket) -> str:
    try:
        host, port = sock.getpeername()[:2]
    except (OSError, TypeError, ValueError):
        return "<unknown>"
    return f"{host}:{port}"


class Session:
    """
    Blocking driver for one upgraded connection.

    ``run`` reads from the socket, feeds the bytes to a ``ServerProtocol`` and
    writes every reply before reading again, until the connection closes.
    """

    def __init__(
        self,
        sock: socket.socket,
        handler: MessageHandler = echo,
        *,
        timeout: float | None = None,
        read_size: int = 4096,
        initial: bytes = b"",
        require_masked: bool = False,
        allow_reserved_bits: bool = False,
    ) -> None:
        self.sock = sock
        self.timeout = timeout
        self.read_size = read_size
        self.protocol = ServerProtocol(
            handler,
            require_masked=require_masked,
            allow_reserved_bits=allow_reserved_bits,
        )
        self.peer = peer_name(sock)
        self._initial = initial
        # Held while a batch of replies is produced and written, so a close
        # from another thread lands between batches.
        self._lock = threading.RLock()

    @property
    def closed(self) -> bool:
        return self.protocol.closed

    def run(self) -> None:
        self.sock.settimeout(self.timeout)
        logger.debug("Session opened for %s", self.peer)
        try:
            if self._initial and not self._feed(self._initial):
                return
            while not self.closed:
                try:
                    chunk = self.sock.recv(self.read_size)
                except OSError as exc:
                    logger.warning("Read from %s failed: %s", self.peer, exc)
                    return
                if not self._feed(chunk):
                    return
        finally:
            self._release()

    def close(self, code: int = CloseCode.NORMAL, reason: str = "") -> None:
        """
        Send a close frame; the session ends once the peer answers.

        Safe to call from the message handler, where the frame is written
        after the replies already produced, and from other threads.
        """
        with self._lock:
            frame = self.protocol.close(code, reason)
            if not frame:
                return
            try:
                self.sock.sendall(frame)
            except OSError as exc:
                self._release()
                raise ConnectionClosed(f"Send failed: {exc}") from exc

    def _feed(self, data: bytes) -> bool:
        with self._lock:
            for out in self.protocol.receive_data(data):
                try:
                    self.sock.sendall(out)
                except OSError as exc:
                    logger.warning("Write to %s failed: %s", self.peer, exc)
                    return False
        return True

    def _release(self) -> None:
        self.protocol.abort()
        try:
            self.sock.close()
        except OSError:
            pass
        logger.debug("Session closed for %s (close code %s)", self.peer, self.protocol.close_code)
