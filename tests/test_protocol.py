"""Tests for frame encoding and incremental decoding."""

from __future__ import annotations

import json
import random

import pytest

from tee_bridge.errors import FrameTooLargeError, TransportParseError
from tee_bridge.protocol import (
    HEADER,
    FrameDecoder,
    TeeRequest,
    TeeResponse,
    build_request,
    decode_payload,
    encode_frame,
)

REQUEST = TeeRequest(
    id="req-1",
    method="sign_price",
    params={"symbol": "BTC", "nested": [1, 2.5, None, {"ü": "ñ"}]},
    timestamp=1_700_000_000_000,
)


def _chunks(data: bytes, size: int) -> list[bytes]:
    return [data[i : i + size] for i in range(0, len(data), size)]


class TestEncodeFrame:
    """Tests for encode_frame()."""

    def test_header_is_big_endian_payload_length(self):
        frame = encode_frame({"a": 1})
        (length,) = HEADER.unpack(frame[:4])
        assert length == len(frame) - 4
        assert json.loads(frame[4:]) == {"a": 1}

    def test_length_counts_utf8_bytes_not_characters(self):
        frame = encode_frame({"k": "€€"})
        (length,) = HEADER.unpack(frame[:4])
        assert length == len('{"k":"€€"}'.encode())

    def test_accepts_envelopes(self):
        frame = encode_frame(REQUEST)
        assert json.loads(frame[4:]) == REQUEST.to_dict()

    def test_rejects_oversized_payload(self):
        with pytest.raises(FrameTooLargeError) as exc_info:
            encode_frame({"blob": "x" * 100}, max_frame_size=32)
        assert exc_info.value.limit == 32
        assert exc_info.value.length > 32


class TestFrameDecoder:
    """Tests for FrameDecoder.feed()."""

    @pytest.mark.parametrize("size", [1, 3, 7, 64])
    def test_fixed_chunk_sizes(self, size: int):
        frame = encode_frame(REQUEST)
        decoder = FrameDecoder()

        frames: list[bytes] = []
        for chunk in _chunks(frame, size):
            frames.extend(decoder.feed(chunk))

        assert len(frames) == 1
        assert TeeRequest.from_dict(decode_payload(frames[0])) == REQUEST
        assert decoder.at_boundary

    def test_random_chunking_of_many_frames(self):
        rng = random.Random(1234)
        requests = [build_request("m", {"i": i, "pad": "z" * i}) for i in range(50)]
        stream = b"".join(encode_frame(r) for r in requests)

        decoder = FrameDecoder()
        frames: list[bytes] = []
        offset = 0
        while offset < len(stream):
            size = rng.randint(1, 40)
            frames.extend(decoder.feed(stream[offset : offset + size]))
            offset += size

        decoded = [TeeRequest.from_dict(decode_payload(f)) for f in frames]
        assert decoded == requests
        assert decoder.buffered == 0

    def test_header_split_then_payload_in_pieces(self):
        frame = encode_frame({"id": "x", "success": True, "data": "abcdefghij"})
        decoder = FrameDecoder()

        assert decoder.feed(frame[:2]) == []
        assert decoder.feed(frame[2:4]) == []
        payload = frame[4:]
        for piece in _chunks(payload[:-1], 5):
            assert decoder.feed(piece) == []
            assert not decoder.at_boundary

        frames = decoder.feed(payload[-1:])
        assert frames == [payload]

    def test_multiple_frames_in_one_chunk(self):
        stream = encode_frame({"n": 1}) + encode_frame({"n": 2}) + encode_frame({"n": 3})[:5]
        decoder = FrameDecoder()

        frames = decoder.feed(stream)

        assert [json.loads(f) for f in frames] == [{"n": 1}, {"n": 2}]
        assert decoder.buffered == 1

    def test_zero_length_frame(self):
        decoder = FrameDecoder()
        assert decoder.feed(HEADER.pack(0)) == [b""]

    def test_empty_feed_is_noop(self):
        decoder = FrameDecoder()
        assert decoder.feed(b"") == []
        assert decoder.at_boundary

    def test_rejects_announced_length_over_limit(self):
        decoder = FrameDecoder(max_frame_size=10)
        with pytest.raises(FrameTooLargeError) as exc_info:
            decoder.feed(HEADER.pack(11))
        assert exc_info.value.length == 11


class TestDecodePayload:
    """Tests for decode_payload()."""

    def test_invalid_json_raises_parse_error(self):
        with pytest.raises(TransportParseError, match="JSON parse failed"):
            decode_payload(b"{not json")

    def test_invalid_utf8_raises_parse_error(self):
        with pytest.raises(TransportParseError):
            decode_payload(b"\xff\xfe")


class TestEnvelopes:
    """Tests for request/response envelopes."""

    def test_build_request_sets_id_and_timestamp(self):
        request = build_request("ping")
        assert request.method == "ping"
        assert request.params == {}
        assert request.id
        assert request.timestamp > 0
        assert build_request("ping").id != request.id

    def test_build_request_explicit_id(self):
        assert build_request("ping", [1], request_id="abc").id == "abc"

    def test_response_omits_absent_optional_fields(self):
        response = TeeResponse(id="1", success=False, error="boom")
        assert response.to_dict() == {"id": "1", "success": False, "error": "boom"}

    def test_response_from_dict(self):
        response = TeeResponse.from_dict(
            {"id": "1", "success": True, "data": {"x": 1}, "signature": "ab"}
        )
        assert response == TeeResponse(
            id="1", success=True, data={"x": 1}, signature="ab"
        )

    def test_response_from_non_object_raises_parse_error(self):
        with pytest.raises(TransportParseError, match="not a JSON object"):
            TeeResponse.from_dict([1, 2])
