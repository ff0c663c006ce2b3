"""
Run an echo WebSocket server.

    python -m wsserve --port 8080 --log-level debug
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from .server import DEFAULT_PORT, AsyncWebSocketServer, WebSocketServer

logger = logging.getLogger("wsserve")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="wsserve", description="WebSocket echo server")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Per-read/write deadline in seconds (default: none)",
    )
    parser.add_argument(
        "--async",
        dest="use_async",
        action="store_true",
        help="Serve on asyncio instead of one thread per connection",
    )
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error"],
    )
    return parser


async def _serve_async(args: argparse.Namespace) -> None:
    async with AsyncWebSocketServer(args.host, args.port, timeout=args.timeout) as server:
        await server.serve_forever()


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        if args.use_async:
            asyncio.run(_serve_async(args))
        else:
            with WebSocketServer(args.host, args.port, timeout=args.timeout) as server:
                server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    main()
