"""Motion blur sampling for geometry export.

A motion-blurred render frame needs the scene at several instants inside the
shutter interval so the renderer can interpolate per-object motion.
"""

from __future__ import annotations

from dataclasses import dataclass

from src.domain.time import FrameClock
from src.shared.exceptions import ConfigurationError


@dataclass(frozen=True)
class MotionBlurInterval:
    """Shutter interval relative to a render frame's nominal time.

    Attributes
    ----------
    start_offset : float
        Offset in frames from the render frame to the first sample
    duration : float
        Length of the interval in frames (>= 0)
    sample_count : int
        Number of geometry samples (>= 1)
    """

    start_offset: float = 0.0
    duration: float = 0.0
    sample_count: int = 1

    def __post_init__(self) -> None:
        if self.sample_count < 1:
            raise ConfigurationError(
                f"sample_count must be >= 1, got {self.sample_count}",
                field_name="sample_count",
            )
        if self.duration < 0:
            raise ConfigurationError(
                f"duration must be >= 0, got {self.duration}",
                field_name="duration",
            )

    @property
    def sample_step(self) -> float:
        """Distance between two consecutive samples."""
        if self.sample_count <= 1:
            return 0.0
        return self.duration / (self.sample_count - 1)

    @classmethod
    def disabled(cls) -> MotionBlurInterval:
        """Single sample at the render frame itself."""
        return cls(start_offset=0.0, duration=0.0, sample_count=1)

    @classmethod
    def from_center(
        cls,
        center_offset: float,
        duration: float,
        sample_count: int,
    ) -> MotionBlurInterval:
        """Build an interval centered at ``frame + center_offset``.

        Host settings describe the shutter by its center and length; the
        interval starts half a duration before the center.
        """
        return cls(
            start_offset=center_offset - duration * 0.5,
            duration=duration,
            sample_count=sample_count,
        )


class MotionBlurSampler:
    """Computes the ordered sample instants for a render frame."""

    @staticmethod
    def sample_instants(
        render_frame: float,
        interval: MotionBlurInterval,
    ) -> tuple[FrameClock, ...]:
        """Sample clocks for ``render_frame``.

        Parameters
        ----------
        render_frame : float
            Nominal render frame
        interval : MotionBlurInterval
            Shutter interval

        Returns
        -------
        tuple[FrameClock, ...]
            Exactly ``interval.sample_count`` non-decreasing clocks. The first
            is ``render_frame + start_offset``; with more than one sample the
            last is ``render_frame + start_offset + duration``.
        """
        first = render_frame + interval.start_offset
        if interval.sample_count == 1:
            return (FrameClock.from_float(first),)

        last_index = interval.sample_count - 1
        instants = [first + interval.duration * i / last_index for i in range(last_index)]
        instants.append(first + interval.duration)
        return tuple(FrameClock.from_float(t) for t in instants)


__all__ = ["MotionBlurInterval", "MotionBlurSampler"]
