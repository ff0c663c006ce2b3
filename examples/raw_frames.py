"""
Drive the codec and the state machine by hand, without any sockets.
"""

from wsserve import Opcode, ServerProtocol, apply_mask, build_frame, parse_frames


def client_frame(opcode: Opcode, payload: bytes, fin: bool = True) -> bytes:
    key = b"\x01\x02\x03\x04"
    first = (0x80 if fin else 0x00) | opcode
    return bytes([first, 0x80 | len(payload)]) + key + apply_mask(payload, key)


def main() -> None:
    print("encoded:", build_frame(Opcode.TEXT, b"hi").hex())

    proto = ServerProtocol()
    stream = (
        client_frame(Opcode.TEXT, b"He", fin=False)
        + client_frame(Opcode.PING, b"x")
        + client_frame(Opcode.CONTINUATION, b"llo")
    )
    # Feed in two uneven pieces to show frames spanning reads.
    for chunk in (stream[:5], stream[5:]):
        for out in proto.receive_data(chunk):
            for frame in parse_frames(out).frames:
                print("reply:", Opcode(frame.opcode).name, frame.payload)


if __name__ == "__main__":
    main()
