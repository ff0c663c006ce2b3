"""
Async WebSocket echo server on asyncio.
"""

import asyncio
import logging

from wsserve import AsyncWebSocketServer


async def main() -> None:
    logging.basicConfig(level=logging.DEBUG)
    async with AsyncWebSocketServer("127.0.0.1", 8080, timeout=60.0) as server:
        await server.serve_forever()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
