"""Thread-safe storage for images received from the renderer.

Images arrive on the protocol client's receive thread and are read by the
host (UI redraw, final frame write-out) on other threads. One lock guards
every channel; readers always get a deep copy.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

import numpy as np

from src.infrastructure.protocol.messages import ImageFrame, ImageType


logger = logging.getLogger(__name__)


@dataclass
class RenderImage:
    """Pixels of one render channel.

    Attributes
    ----------
    width, height : int
        Image size in pixels
    channels : int
        1 (BW), 3 (RGB) or 4 (RGBA)
    pixels : np.ndarray
        ``(height, width, channels)`` float32 array
    updated : bool
        Set when pixels changed since the last read
    """

    width: int
    height: int
    channels: int
    pixels: np.ndarray
    updated: bool = True

    def copy(self) -> RenderImage:
        """Deep copy, detached from the store's buffer."""
        return RenderImage(
            width=self.width,
            height=self.height,
            channels=self.channels,
            pixels=self.pixels.copy(),
            updated=self.updated,
        )

    def grow(self, width: int, height: int) -> bool:
        """Enlarge to at least ``width`` x ``height``, keeping pixels at the origin."""
        width, height = max(width, self.width), max(height, self.height)
        if width == self.width and height == self.height:
            return False
        pixels = np.zeros((height, width, self.channels), dtype=self.pixels.dtype)
        pixels[: self.height, : self.width] = self.pixels
        self.pixels, self.width, self.height = pixels, width, height
        return True

    def update_region(self, source: np.ndarray, x: int, y: int) -> None:
        """Merge a ``(h, w, channels)`` block at ``(x, y)``, clipped to the image."""
        if x >= self.width or y >= self.height:
            return
        x0, y0 = max(x, 0), max(y, 0)
        x1 = min(x + source.shape[1], self.width)
        y1 = min(y + source.shape[0], self.height)
        if x1 <= x0 or y1 <= y0:
            return
        self.pixels[y0:y1, x0:x1] = source[y0 - y:y1 - y, x0 - x:x1 - x, : self.channels]
        self.updated = True

    def flip(self) -> None:
        """Flip vertically (renderer rows are top-down, host rows bottom-up)."""
        self.pixels = np.ascontiguousarray(self.pixels[::-1])

    def reset_alpha(self) -> None:
        """Make the image fully opaque."""
        if self.channels == 4:
            self.pixels[..., 3] = 1.0

    def clamp(self, max_value: float = 1.0, max_alpha: float = 1.0) -> None:
        """Clamp color channels to ``max_value`` and alpha to ``max_alpha``."""
        if self.channels == 4:
            np.minimum(self.pixels[..., :3], max_value, out=self.pixels[..., :3])
            np.minimum(self.pixels[..., 3], max_alpha, out=self.pixels[..., 3])
        else:
            np.minimum(self.pixels, max_value, out=self.pixels)


class RenderImageStore:
    """Per-channel image buffers shared between the receive thread and readers.

    Bucket blocks are merged into a full-resolution RGBA buffer that is
    allocated on the first bucket, using the last render size announced to
    the renderer. Without an announced size the buffer grows to the union
    of the bucket extents. Full images replace the channel's buffer.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._images: dict[int, RenderImage] = {}
        self._render_size: tuple[int, int] = (0, 0)

    @property
    def render_size(self) -> tuple[int, int]:
        with self._lock:
            return self._render_size

    def set_render_size(self, width: int, height: int) -> bool:
        """Remember the output resolution used for bucket buffers.

        Returns
        -------
        bool
            True if the size changed (existing buffers are dropped)
        """
        with self._lock:
            if (width, height) == self._render_size:
                return False
            self._render_size = (width, height)
            self._images.clear()
            return True

    def update(self, frame: ImageFrame, fix_image: bool = False) -> None:
        """Store an image block received from the renderer.

        Parameters
        ----------
        frame : ImageFrame
            Decoded image frame
        fix_image : bool
            Flip, reset alpha and clamp full images (final renders)
        """
        header = frame.header
        if header.bucket and header.image_type is ImageType.RGBA:
            self._merge_bucket(frame)
            return

        channels = header.image_type.channels
        image = RenderImage(
            width=header.width,
            height=header.height,
            channels=channels,
            pixels=np.array(frame.pixels[..., :channels], dtype=np.float32, copy=True),
        )
        if fix_image:
            image.flip()
            image.reset_alpha()
            image.clamp(1.0, 1.0)

        with self._lock:
            self._images[header.channel] = image

    def _merge_bucket(self, frame: ImageFrame) -> None:
        header = frame.header
        image = self._images.get(header.channel)
        if image is None or image.channels != 4:
            with self._lock:
                image = self._images.get(header.channel)
                if image is None or image.channels != 4:
                    width, height = self._render_size
                    if width <= 0 or height <= 0:
                        # No announced size: sized to the buckets seen so far
                        width = header.x + header.width
                        height = header.y + header.height
                    image = RenderImage(
                        width=width,
                        height=height,
                        channels=4,
                        pixels=np.zeros((height, width, 4), dtype=np.float32),
                    )
                    self._images[header.channel] = image
                    logger.debug(
                        "[ImageStore] Allocated %dx%d bucket buffer for channel %d",
                        width,
                        height,
                        header.channel,
                    )

        with self._lock:
            width, height = self._render_size
            if (width <= 0 or height <= 0) and image.grow(
                header.x + header.width, header.y + header.height
            ):
                logger.debug(
                    "[ImageStore] Grew bucket buffer for channel %d to %dx%d",
                    header.channel,
                    image.width,
                    image.height,
                )
            image.update_region(frame.pixels, header.x, header.y)

    def get_render_channel(self, channel: int = 0) -> RenderImage | None:
        """Deep copy of a channel's image, or None if nothing arrived yet."""
        with self._lock:
            image = self._images.get(channel)
            if image is None:
                return None
            result = image.copy()
            image.updated = False
        return result

    def channels(self) -> tuple[int, ...]:
        """Channels that currently hold an image."""
        with self._lock:
            return tuple(sorted(self._images))

    def clear(self) -> None:
        """Drop every buffer."""
        with self._lock:
            self._images.clear()


__all__ = ["RenderImage", "RenderImageStore"]
