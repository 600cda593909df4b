"""Tests for the render protocol wire format."""

import json
import struct

import numpy as np
import pytest

from src.domain.time import FrameClock
from src.infrastructure.protocol import (
    ImageHeader,
    ImageType,
    decode_image_frame,
    decode_message,
    encode_image_frame,
    encode_message,
)
from src.infrastructure.protocol.messages import (
    RENDERER_COMMIT,
    clock_to_wire,
)
from src.shared.exceptions import MessageFormatError


def _header(**overrides):
    fields = dict(channel=0, image_type=ImageType.RGBA, x=0, y=0, width=3, height=2)
    fields.update(overrides)
    return ImageHeader(**fields)


def _pixels(height=2, width=3):
    return np.arange(height * width * 4, dtype=np.float32).reshape(height, width, 4)


class TestTextMessages:
    """Test JSON control messages."""

    def test_encode_is_compact_json(self):
        text = encode_message(RENDERER_COMMIT, clock=[1, 0.25])
        assert text == '{"type":"renderer.commit","clock":[1,0.25]}'

    def test_encode_unserializable_field(self):
        with pytest.raises(MessageFormatError) as exc_info:
            encode_message("entity.create_or_update", payload=object())
        assert exc_info.value.message_type == "entity.create_or_update"

    def test_decode(self):
        message = decode_message('{"type": "log", "level": 30000, "message": "hi"}')
        assert message == {"type": "log", "level": 30000, "message": "hi"}

    @pytest.mark.parametrize(
        "text",
        [
            "not json",
            "[1, 2]",
            '{"level": 1}',
            '{"type": 5}',
        ],
    )
    def test_decode_rejects_malformed(self, text):
        with pytest.raises(MessageFormatError):
            decode_message(text)

    def test_clock_wire_format(self):
        assert clock_to_wire(FrameClock(3, 0.5)) == [3, 0.5]


class TestImageFrames:
    """Test binary image frames."""

    def test_layout(self):
        data = encode_image_frame(_header(bucket=True, x=4, y=5), _pixels())

        (header_len,) = struct.unpack(">I", data[:4])
        header = json.loads(data[4:4 + header_len])
        assert header["image_type"] == "rgba"
        assert header["bucket"] is True
        assert (header["x"], header["y"]) == (4, 5)
        assert len(data) == 4 + header_len + 2 * 3 * 4 * 4

    def test_decode(self):
        pixels = _pixels()
        frame = decode_image_frame(encode_image_frame(_header(ready=True), pixels))

        assert frame.header == _header(ready=True)
        assert frame.pixels.dtype == np.float32
        np.testing.assert_array_equal(frame.pixels, pixels)

    def test_decoded_pixels_are_writable(self):
        frame = decode_image_frame(encode_image_frame(_header(), _pixels()))
        frame.pixels[0, 0, 0] = 42.0
        assert frame.pixels[0, 0, 0] == 42.0

    def test_shape_mismatch_on_encode(self):
        with pytest.raises(MessageFormatError):
            encode_image_frame(_header(width=4), _pixels())

    def test_header_defaults(self):
        header = json.dumps({"channel": 2, "width": 1, "height": 1}).encode()
        data = struct.pack(">I", len(header)) + header + np.zeros(4, dtype="<f4").tobytes()

        frame = decode_image_frame(data)

        assert frame.header.channel == 2
        assert frame.header.image_type is ImageType.RGBA
        assert not frame.header.bucket

    @pytest.mark.parametrize(
        "data",
        [
            b"\x00\x00",
            struct.pack(">I", 100) + b"{}",
            struct.pack(">I", 2) + b"{}",
            struct.pack(">I", 9) + b"not json!",
        ],
    )
    def test_malformed_frames(self, data):
        with pytest.raises(MessageFormatError):
            decode_image_frame(data)

    def test_wrong_payload_size(self):
        data = encode_image_frame(_header(), _pixels())
        with pytest.raises(MessageFormatError):
            decode_image_frame(data[:-4])

    def test_zero_size_rejected(self):
        header = json.dumps({"channel": 0, "width": 0, "height": 1}).encode()
        with pytest.raises(MessageFormatError):
            decode_image_frame(struct.pack(">I", len(header)) + header)

    def test_image_type_channels(self):
        assert [t.channels for t in ImageType] == [4, 3, 1]
