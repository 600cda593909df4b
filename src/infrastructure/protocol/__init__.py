"""Render protocol wire codec and received-image storage."""

from src.infrastructure.protocol.image_store import RenderImage, RenderImageStore
from src.infrastructure.protocol.messages import (
    ImageFrame,
    ImageHeader,
    ImageType,
    RendererState,
    decode_image_frame,
    decode_message,
    encode_image_frame,
    encode_message,
)


__all__ = [
    "ImageFrame",
    "ImageHeader",
    "ImageType",
    "RenderImage",
    "RenderImageStore",
    "RendererState",
    "decode_image_frame",
    "decode_message",
    "encode_image_frame",
    "encode_message",
]
