"""
Replace the echo behaviour with a handler: text is upper-cased,
binary messages are answered with their length, nothing else changes.
"""

import logging

from wsserve import Opcode, WebSocketServer


def shout(opcode: Opcode, payload: bytes):
    if opcode is Opcode.TEXT:
        return Opcode.TEXT, payload.decode("utf-8", errors="replace").upper().encode("utf-8")
    return Opcode.TEXT, f"{len(payload)} bytes".encode()


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    with WebSocketServer("127.0.0.1", 8080, handler=shout, require_masked=True) as server:
        server.serve_forever()


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        pass
