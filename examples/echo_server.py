"""
Threaded WebSocket echo server.

Connect with any client, e.g. `websocat ws://127.0.0.1:8080/`.
"""

import logging

from wsserve import WebSocketServer


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    with WebSocketServer("127.0.0.1", 8080, timeout=60.0) as server:
        server.serve_forever()


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        pass
