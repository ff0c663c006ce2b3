"""Tests for wsserve.frames module."""

import struct

import pytest

from wsserve.errors import FrameTooLarge, ProtocolError
from wsserve.frames import (
    CloseCode,
    Frame,
    FrameBuffer,
    Opcode,
    ParseResult,
    apply_mask,
    build_close_payload,
    build_frame,
    parse_close_payload,
    parse_frames,
)


class TestOpcode:
    """Tests for the Opcode enum."""

    def test_wire_values(self):
        """Test opcode values match the wire format."""
        assert Opcode.CONTINUATION == 0x0
        assert Opcode.TEXT == 0x1
        assert Opcode.BINARY == 0x2
        assert Opcode.CLOSE == 0x8
        assert Opcode.PING == 0x9
        assert Opcode.PONG == 0xA

    def test_lookup_known(self):
        """Test lookup returns the member for known values."""
        assert Opcode.lookup(0x9) is Opcode.PING

    @pytest.mark.parametrize("value", [0x3, 0x7, 0xB, 0xF])
    def test_lookup_reserved_returns_none(self, value):
        """Test lookup returns None for reserved opcodes."""
        assert Opcode.lookup(value) is None


class TestApplyMask:
    """Tests for apply_mask."""

    @pytest.mark.parametrize(
        "payload",
        [b"", b"a", b"hello", b"\x00\x00\x00leading zeros", bytes(range(256)) * 3],
    )
    def test_mask_is_its_own_inverse(self, payload, random_key):
        """Test unmasking a masked payload with the same key gives it back."""
        assert apply_mask(apply_mask(payload, random_key), random_key) == payload

    def test_matches_bytewise_xor(self):
        """Test masking XORs byte i with key[i % 4]."""
        key = b"\x12\x34\x56\x78"
        payload = b"Hello, WebSocket!"
        expected = bytes(b ^ key[i % 4] for i, b in enumerate(payload))
        assert apply_mask(payload, key) == expected

    def test_preserves_length_when_result_has_leading_zeros(self):
        """Test bytes that XOR to zero are kept."""
        key = b"abcd"
        assert apply_mask(b"abcdab", key) == b"\x00" * 6

    def test_bad_key_length_raises(self):
        """Test a key that is not 4 bytes is rejected."""
        with pytest.raises(ValueError, match="4 bytes"):
            apply_mask(b"data", b"abc")


class TestBuildFrame:
    """Tests for build_frame."""

    def test_small_payload_two_byte_header(self):
        """Test payload of 125 bytes uses a 2-byte header."""
        data = build_frame(Opcode.TEXT, b"a" * 125)
        assert data[0] == 0x81
        assert data[1] == 125
        assert len(data) == 2 + 125

    def test_126_bytes_uses_16_bit_length(self):
        """Test payload of 126 bytes uses the 4-byte extended header."""
        data = build_frame(Opcode.TEXT, b"a" * 126)
        assert data[1] == 126
        assert struct.unpack("!H", data[2:4])[0] == 126
        assert len(data) == 4 + 126

    def test_65535_bytes_still_uses_16_bit_length(self):
        """Test the 16-bit form covers lengths up to 65535."""
        data = build_frame(Opcode.BINARY, b"\x00" * 65535)
        assert data[1] == 126
        assert struct.unpack("!H", data[2:4])[0] == 65535

    def test_65536_bytes_uses_64_bit_length(self):
        """Test payload of 65536 bytes uses the 10-byte extended header."""
        data = build_frame(Opcode.BINARY, b"b" * 65536)
        assert data[1] == 127
        assert data[2:6] == b"\x00\x00\x00\x00"
        assert struct.unpack("!Q", data[2:10])[0] == 65536
        assert len(data) == 10 + 65536

    def test_never_masked(self):
        """Test server frames never set the MASK bit."""
        for size in (0, 5, 200, 70000):
            assert build_frame(Opcode.TEXT, b"x" * size)[1] & 0x80 == 0

    def test_payload_is_copied_unmodified(self):
        """Test payload bytes follow the header untouched."""
        assert build_frame(Opcode.TEXT, b"hello") == b"\x81\x05hello"

    def test_fin_false(self):
        """Test clearing FIN leaves only the opcode in byte 0."""
        assert build_frame(Opcode.TEXT, b"He", fin=False)[0] == 0x01
        assert build_frame(Opcode.CONTINUATION, b"ll", fin=False)[0] == 0x00

    def test_control_frame(self):
        """Test control frames encode like any other."""
        assert build_frame(Opcode.PONG, b"ping") == b"\x8a\x04ping"

    def test_payload_beyond_32_bits_raises(self):
        """Test lengths the decoder would reject are refused on encode."""

        class Huge:
            def __len__(self):
                return 1 << 32

        with pytest.raises(FrameTooLarge):
            build_frame(Opcode.BINARY, Huge())


class TestParseFrames:
    """Tests for parse_frames."""

    @pytest.mark.parametrize("opcode", list(Opcode))
    @pytest.mark.parametrize("size", [0, 1, 125, 126, 65535, 65536])
    def test_round_trip(self, opcode, size):
        """Test parsing a built frame gives back the same frame."""
        payload = bytes(i % 251 for i in range(size))
        result = parse_frames(build_frame(opcode, payload, True))
        assert result.frames == [Frame(fin=True, opcode=opcode, payload=payload)]
        assert result.remainder == b""

    def test_returns_parse_result(self):
        """Test the result unpacks into frames and remainder."""
        frames, remainder = parse_frames(b"\x81\x02hi")
        assert isinstance(parse_frames(b""), ParseResult)
        assert frames == [Frame(True, Opcode.TEXT, b"hi")]
        assert remainder == b""

    @pytest.mark.parametrize("data", [b"", b"\x81"])
    def test_short_input_is_all_remainder(self, data):
        """Test fewer than 2 bytes yields no frames and the input unchanged."""
        assert parse_frames(data) == ParseResult([], data)

    def test_masked_frame_is_unmasked(self, client_frame):
        """Test a masked client frame decodes to the plain payload."""
        result = parse_frames(client_frame(Opcode.TEXT, b"hello"))
        assert result.frames[0].payload == b"hello"
        assert result.frames[0].masked is True

    def test_masked_extended_lengths(self, client_frame):
        """Test masking combined with both extended length forms."""
        for size in (200, 70000):
            payload = b"z" * size
            result = parse_frames(client_frame(Opcode.BINARY, payload))
            assert result.frames[0].payload == payload
            assert result.remainder == b""

    def test_partial_delivery_at_every_split(self, client_frame):
        """Test splitting a frame anywhere defers it until the rest arrives."""
        data = client_frame(Opcode.TEXT, b"a" * 200)
        for split in range(len(data)):
            first, second = data[:split], data[split:]
            result = parse_frames(first)
            assert result.frames == []
            assert result.remainder == first
            result = parse_frames(result.remainder + second)
            assert [f.payload for f in result.frames] == [b"a" * 200]
            assert result.remainder == b""

    def test_multiple_frames_in_one_read(self):
        """Test two concatenated frames come out in order."""
        data = build_frame(Opcode.TEXT, b"first") + build_frame(Opcode.BINARY, b"\x00second")
        result = parse_frames(data)
        assert result.frames == [
            Frame(True, Opcode.TEXT, b"first"),
            Frame(True, Opcode.BINARY, b"\x00second"),
        ]
        assert result.remainder == b""

    def test_complete_frames_then_partial_tail(self):
        """Test the remainder starts at the first byte of the incomplete frame."""
        complete = build_frame(Opcode.TEXT, b"one")
        partial = build_frame(Opcode.TEXT, b"x" * 300)[:7]
        result = parse_frames(complete + partial)
        assert result.frames == [Frame(True, Opcode.TEXT, b"one")]
        assert result.remainder == partial

    def test_incomplete_mask_key_deferred(self):
        """Test a header whose mask key is cut short is deferred."""
        data = bytes([0x81, 0x85]) + b"\x01\x02"
        assert parse_frames(data) == ParseResult([], data)

    def test_high_length_bits_raise(self):
        """Test a 64-bit length with a nonzero high half is rejected, not truncated."""
        data = bytes([0x82, 127]) + struct.pack("!II", 1, 5) + b"hello"
        with pytest.raises(FrameTooLarge):
            parse_frames(data)

    def test_high_length_bits_raise_before_payload_arrives(self):
        """Test the length check does not wait for the payload."""
        data = bytes([0x82, 127]) + struct.pack("!II", 0x80000000, 0)
        with pytest.raises(FrameTooLarge):
            parse_frames(data)

    def test_low_32_bits_accepted(self):
        """Test a 64-bit length with a zero high half decodes normally."""
        data = bytes([0x82, 127]) + struct.pack("!II", 0, 3) + b"abc"
        assert parse_frames(data).frames == [Frame(True, Opcode.BINARY, b"abc")]

    def test_reserved_opcode_preserved(self):
        """Test reserved opcodes decode instead of failing."""
        result = parse_frames(bytes([0x83, 0x01]) + b"?")
        assert result.frames == [Frame(True, 0x3, b"?")]

    def test_reserved_bits_recorded(self):
        """Test RSV1-3 are reported, not rejected, by the codec."""
        frame = parse_frames(bytes([0xC1, 0x00])).frames[0]
        assert frame.rsv == 0b100
        assert frame.opcode == Opcode.TEXT
        assert frame.fin is True

    def test_input_not_mutated(self):
        """Test parsing a bytearray leaves it untouched."""
        data = bytearray(build_frame(Opcode.TEXT, b"abc"))
        before = bytes(data)
        parse_frames(data)
        assert bytes(data) == before


class TestFrameBuffer:
    """Tests for FrameBuffer."""

    def test_feed_in_pieces(self, client_frame):
        """Test a frame fed byte by byte comes out once, at the end."""
        data = client_frame(Opcode.TEXT, b"hello")
        buf = FrameBuffer()
        for byte in data[:-1]:
            assert buf.feed(bytes([byte])) == []
        assert len(buf) == len(data) - 1
        assert buf.feed(data[-1:]) == [Frame(True, Opcode.TEXT, b"hello", 0, True)]
        assert len(buf) == 0

    def test_keeps_only_undecoded_tail(self):
        """Test decoded frames are dropped from the buffer."""
        buf = FrameBuffer()
        tail = build_frame(Opcode.BINARY, b"tail")[:3]
        frames = buf.feed(build_frame(Opcode.TEXT, b"a") + build_frame(Opcode.TEXT, b"b") + tail)
        assert [f.payload for f in frames] == [b"a", b"b"]
        assert buf.pending() == tail

    def test_clear(self):
        """Test clear drops pending bytes."""
        buf = FrameBuffer()
        buf.feed(b"\x81")
        buf.clear()
        assert len(buf) == 0

    def test_frame_too_large_propagates(self):
        """Test the buffer surfaces codec errors."""
        buf = FrameBuffer()
        with pytest.raises(FrameTooLarge):
            buf.feed(bytes([0x81, 127]) + struct.pack("!II", 2, 0))


class TestClosePayload:
    """Tests for close payload helpers."""

    def test_build_code_only(self):
        """Test a code-only payload is two big-endian bytes."""
        assert build_close_payload(1002) == b"\x03\xea"

    def test_build_with_reason(self):
        """Test the reason follows the code as UTF-8."""
        assert build_close_payload(CloseCode.PROTOCOL_ERROR, "protocol error") == (
            b"\x03\xeaprotocol error"
        )

    def test_parse(self):
        """Test parsing code and reason."""
        assert parse_close_payload(b"\x03\xe8bye") == (1000, "bye")

    def test_parse_empty(self):
        """Test an empty payload has no code."""
        assert parse_close_payload(b"") == (None, "")

    def test_parse_single_byte_raises(self):
        """Test a 1-byte payload is a protocol error."""
        with pytest.raises(ProtocolError):
            parse_close_payload(b"\x03")

    def test_parse_invalid_utf8_reason(self):
        """Test undecodable reasons are replaced rather than failing."""
        code, reason = parse_close_payload(b"\x03\xe8\xff")
        assert code == 1000
        assert reason == "�"
