from __future__ import annotations

import asyncio
import logging

from .errors import ConnectionClosed
from .frames import CloseCode
from .protocol import MessageHandler, ServerProtocol, echo

logger = logging.getLogger(__name__)


class AsyncSession:
    """
    Async driver for one upgraded connection over asyncio streams.
    Same loop as ``Session``; the read is the only point where it yields.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        handler: MessageHandler = echo,
        *,
        timeout: float | None = None,
        read_size: int = 4096,
        initial: bytes = b"",
        require_masked: bool = False,
        allow_reserved_bits: bool = False,
    ) -> None:
        self.reader = reader
        self.writer = writer
        self.timeout = timeout
        self.read_size = read_size
        self.protocol = ServerProtocol(
            handler,
            require_masked=require_masked,
            allow_reserved_bits=allow_reserved_bits,
        )
        peer = writer.get_extra_info("peername")
        self.peer = f"{peer[0]}:{peer[1]}" if isinstance(peer, tuple) else "<unknown>"
        self._initial = initial
        self._lock = asyncio.Lock()

    @property
    def closed(self) -> bool:
        return self.protocol.closed

    async def run(self) -> None:
        """Process frames until the connection closes."""
        logger.debug("Session opened for %s", self.peer)
        try:
            if self._initial and not await self._feed(self._initial):
                return
            while not self.closed:
                try:
                    chunk = await asyncio.wait_for(
                        self.reader.read(self.read_size), timeout=self.timeout
                    )
                except (OSError, asyncio.TimeoutError) as exc:
                    logger.warning("Read from %s failed: %r", self.peer, exc)
                    return
                if not await self._feed(chunk):
                    return
        finally:
            await self._release()

    async def close(self, code: int = CloseCode.NORMAL, reason: str = "") -> None:
        """
        Send a close frame; the session ends once the peer answers.

        A close from another task waits until the replies of the batch being
        written have been flushed.
        """
        async with self._lock:
            frame = self.protocol.close(code, reason)
            if not frame:
                return
            try:
                await self._write(frame)
            except (OSError, asyncio.TimeoutError) as exc:
                await self._release()
                raise ConnectionClosed(f"Send failed: {exc!r}") from exc

    async def _write(self, data: bytes) -> None:
        self.writer.write(data)
        await asyncio.wait_for(self.writer.drain(), timeout=self.timeout)

    async def _feed(self, data: bytes) -> bool:
        async with self._lock:
            for out in self.protocol.receive_data(data):
                try:
                    await self._write(out)
                except (OSError, asyncio.TimeoutError) as exc:
                    logger.warning("Write to %s failed: %r", self.peer, exc)
                    return False
        return True

    async def _release(self) -> None:
        self.protocol.abort()
        try:
            self.writer.close()
            await self.writer.wait_closed()
        except Exception:
            pass
        logger.debug("Session closed for %s (close code %s)", self.peer, self.protocol.close_code)
