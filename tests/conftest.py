"""Pytest configuration and fixtures."""

import os
import struct

import pytest

from wsserve.frames import apply_mask


@pytest.fixture
def client_frame():
    """Build a masked client-to-server frame, the way a browser would send it."""

    def build(opcode, payload=b"", fin=True, key=b"\x37\xfa\x21\x3d", masked=True, rsv=0):
        first = (0x80 if fin else 0x00) | (rsv << 4) | opcode
        mask_bit = 0x80 if masked else 0x00
        length = len(payload)
        header = bytearray([first])
        if length < 126:
            header.append(mask_bit | length)
        elif length < (1 << 16):
            header.append(mask_bit | 126)
            header.extend(struct.pack("!H", length))
        else:
            header.append(mask_bit | 127)
            header.extend(struct.pack("!Q", length))
        if not masked:
            return bytes(header) + payload
        return bytes(header) + key + apply_mask(payload, key)

    return build


@pytest.fixture
def random_key():
    """A fresh 4-byte masking key."""
    return os.urandom(4)


@pytest.fixture
def mock_socket(mocker):
    """Create a mock socket."""
    return mocker.MagicMock()
