"""Wire format of the render protocol.

Two kinds of WebSocket frames travel between the exporter and the renderer:

- Text frames: JSON objects with a ``type`` field naming the message
  (``entity.create_or_update``, ``renderer.commit``, ``log``, ``state``...).
- Binary frames: rendered images. A 4-byte big-endian header length, a JSON
  header, then raw little-endian float32 RGBA pixels, row-major.

Binary layout
-------------
    ┌──────────────┬─────────────────────────┬──────────────────────────────┐
    │ header_len   │ header (JSON, utf-8)    │ pixels (<f4, h * w * 4)      │
    │ >I (4 bytes) │ header_len bytes        │                              │
    └──────────────┴─────────────────────────┴──────────────────────────────┘

The renderer always ships four float channels; RGB and BW images keep only
the first three and the first channel on the receiving side.
"""

from __future__ import annotations

import json
import logging
import struct
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

import numpy as np

from src.domain.time import FrameClock
from src.shared.exceptions import MessageFormatError


logger = logging.getLogger(__name__)


# Outbound: scene entities
ENTITY_CREATE_OR_UPDATE = "entity.create_or_update"
ENTITY_REMOVE = "entity.remove"
ENTITY_REPLACE = "entity.replace"

# Outbound: renderer control
RENDERER_INIT = "renderer.init"
RENDERER_COMMIT = "renderer.commit"
RENDERER_SET_CURRENT_FRAME = "renderer.set_current_frame"
RENDERER_SET_CAMERA = "renderer.set_camera"
RENDERER_RESIZE = "renderer.resize"
RENDERER_SET_REGION = "renderer.set_region"
RENDERER_GET_IMAGE = "renderer.get_image"
RENDERER_START = "renderer.start"
RENDERER_STOP = "renderer.stop"
RENDERER_RESET = "renderer.reset"
RENDERER_FREE = "renderer.free"
RENDERER_CLEAR_FRAME_DATA = "renderer.clear_frame_data"
RENDERER_SYNC = "renderer.sync"

# Inbound
MESSAGE_LOG = "log"
MESSAGE_STATE = "state"
MESSAGE_ACK = "ack"

_HEADER_LENGTH = struct.Struct(">I")
_PIXEL_DTYPE = np.dtype("<f4")
WIRE_CHANNELS = 4


class RendererState(Enum):
    """Renderer state notifications."""

    PROGRESS = "progress"  # value: float in [0, 1]
    PROGRESS_MESSAGE = "progress_message"  # value: str
    ABORT = "abort"
    CONTINUE = "continue"  # value: last rendered frame


class ImageType(Enum):
    """Pixel layout kept by the receiving side."""

    RGBA = "rgba"
    RGB = "rgb"
    BW = "bw"

    @property
    def channels(self) -> int:
        return {"rgba": 4, "rgb": 3, "bw": 1}[self.value]


@dataclass(frozen=True)
class ImageHeader:
    """Metadata of a binary image frame.

    Attributes
    ----------
    channel : int
        Render channel id (0 = beauty)
    image_type : ImageType
        Channels kept on the receiving side
    x, y : int
        Top-left corner of the region (buckets only)
    width, height : int
        Size of the pixel block
    bucket : bool
        Whether the block is a partial region merged into the full image
    ready : bool
        Whether the renderer finished the image
    """

    channel: int
    image_type: ImageType
    x: int
    y: int
    width: int
    height: int
    bucket: bool = False
    ready: bool = False

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["image_type"] = self.image_type.value
        return data


@dataclass
class ImageFrame:
    """Decoded binary image frame; ``pixels`` is ``(height, width, 4)`` float32."""

    header: ImageHeader
    pixels: np.ndarray


def encode_message(message_type: str, **fields: Any) -> str:
    """Serialize a control message to a JSON text frame.

    Raises
    ------
    MessageFormatError
        If a field is not JSON serializable
    """
    try:
        return json.dumps({"type": message_type, **fields}, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise MessageFormatError(f"Cannot encode message: {e}", message_type) from e


def decode_message(text: str | bytes) -> dict[str, Any]:
    """Parse a JSON text frame into a dict with a string ``type``.

    Raises
    ------
    MessageFormatError
        If the frame is not a JSON object with a ``type``
    """
    try:
        message = json.loads(text)
    except (TypeError, ValueError) as e:
        raise MessageFormatError(f"Invalid JSON: {e}") from e

    if not isinstance(message, dict):
        raise MessageFormatError(f"Expected a JSON object, got {type(message).__name__}")
    message_type = message.get("type")
    if not isinstance(message_type, str):
        raise MessageFormatError("Message has no 'type' field")
    return message


def clock_to_wire(clock: FrameClock) -> list[float]:
    """``[frame, fraction]`` pair carried by commit messages."""
    frame, fraction = clock.as_tuple()
    return [frame, fraction]


def encode_image_frame(header: ImageHeader, pixels: np.ndarray) -> bytes:
    """Serialize an image block to a binary frame.

    Parameters
    ----------
    header : ImageHeader
        Image metadata; width and height must match ``pixels``
    pixels : np.ndarray
        ``(height, width, 4)`` array, converted to little-endian float32

    Returns
    -------
    bytes
        Binary frame payload
    """
    expected = (header.height, header.width, WIRE_CHANNELS)
    if pixels.shape != expected:
        raise MessageFormatError(
            f"Pixel block shape {pixels.shape} does not match header {expected}", "image"
        )

    header_bytes = json.dumps(header.to_dict(), separators=(",", ":")).encode("utf-8")
    body = np.ascontiguousarray(pixels, dtype=_PIXEL_DTYPE).tobytes()
    return _HEADER_LENGTH.pack(len(header_bytes)) + header_bytes + body


def decode_image_frame(data: bytes) -> ImageFrame:
    """Parse a binary image frame.

    Raises
    ------
    MessageFormatError
        If the header is malformed or the pixel payload has the wrong size
    """
    if len(data) < _HEADER_LENGTH.size:
        raise MessageFormatError("Image frame shorter than its length prefix", "image")

    (header_len,) = _HEADER_LENGTH.unpack_from(data)
    header_end = _HEADER_LENGTH.size + header_len
    if header_end > len(data):
        raise MessageFormatError(
            f"Image header length {header_len} exceeds frame size {len(data)}", "image"
        )

    try:
        raw = json.loads(data[_HEADER_LENGTH.size:header_end].decode("utf-8"))
        header = ImageHeader(
            channel=int(raw["channel"]),
            image_type=ImageType(raw.get("image_type", ImageType.RGBA.value)),
            x=int(raw.get("x", 0)),
            y=int(raw.get("y", 0)),
            width=int(raw["width"]),
            height=int(raw["height"]),
            bucket=bool(raw.get("bucket", False)),
            ready=bool(raw.get("ready", False)),
        )
    except (KeyError, TypeError, ValueError, UnicodeDecodeError) as e:
        raise MessageFormatError(f"Invalid image header: {e}", "image") from e

    if header.width <= 0 or header.height <= 0:
        raise MessageFormatError(
            f"Invalid image size {header.width}x{header.height}", "image"
        )

    body = data[header_end:]
    expected_size = header.width * header.height * WIRE_CHANNELS * _PIXEL_DTYPE.itemsize
    if len(body) != expected_size:
        raise MessageFormatError(
            f"Pixel payload is {len(body)} bytes, expected {expected_size}", "image"
        )

    pixels = np.frombuffer(body, dtype=_PIXEL_DTYPE).reshape(
        header.height, header.width, WIRE_CHANNELS
    )
    return ImageFrame(header=header, pixels=pixels.astype(np.float32))


__all__ = [
    "ENTITY_CREATE_OR_UPDATE",
    "ENTITY_REMOVE",
    "ENTITY_REPLACE",
    "MESSAGE_ACK",
    "MESSAGE_LOG",
    "MESSAGE_STATE",
    "RENDERER_CLEAR_FRAME_DATA",
    "RENDERER_COMMIT",
    "RENDERER_FREE",
    "RENDERER_GET_IMAGE",
    "RENDERER_INIT",
    "RENDERER_RESET",
    "RENDERER_RESIZE",
    "RENDERER_SET_CAMERA",
    "RENDERER_SET_CURRENT_FRAME",
    "RENDERER_SET_REGION",
    "RENDERER_START",
    "RENDERER_STOP",
    "RENDERER_SYNC",
    "WIRE_CHANNELS",
    "ImageFrame",
    "ImageHeader",
    "ImageType",
    "RendererState",
    "clock_to_wire",
    "decode_image_frame",
    "decode_message",
    "encode_image_frame",
    "encode_message",
]
