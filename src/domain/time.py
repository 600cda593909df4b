"""Frame clock abstraction for sub-frame accurate scene time.

Host applications address scene time as an integer frame plus a fractional
sub-frame. ``FrameClock`` keeps that split explicit so exported instants can
be compared deterministically even after float arithmetic drift.

Example
-------
>>> clock = FrameClock.from_float(1.25)
>>> clock.frame, clock.fraction
(1, 0.25)
>>> FrameClock.from_float(-0.25)
FrameClock(frame=-1, fraction=0.75)
>>> FrameClock(2, 0.5) == FrameClock(2, 0.50004)
True
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from functools import total_ordering


# Two fractions closer than this are the same instant
FRAME_EPSILON = 1e-4
_CARRY_TOLERANCE = 1e-9


@total_ordering
@dataclass(frozen=True)
class FrameClock:
    """A point in scene time as ``(frame, fraction)``.

    Attributes
    ----------
    frame : int
        Integer frame number
    fraction : float
        Sub-frame offset in [0, 1)
    """

    frame: int
    fraction: float = 0.0

    def __post_init__(self) -> None:
        # Normalize so the fraction always lies in [0, 1)
        if not 0.0 <= self.fraction < 1.0:
            whole = math.floor(self.fraction)
            object.__setattr__(self, "frame", int(self.frame + whole))
            object.__setattr__(self, "fraction", self.fraction - whole)

    @classmethod
    def from_float(cls, value: float) -> FrameClock:
        """Split a floating-point scene time into frame and fraction.

        Parameters
        ----------
        value : float
            Scene time in frames

        Returns
        -------
        FrameClock
            Clock with ``frame = floor(value)``
        """
        frame = math.floor(value)
        fraction = float(value - frame)
        if 1.0 - fraction < _CARRY_TOLERANCE:
            # Float drift just below a frame boundary belongs to the next frame
            return cls(int(frame) + 1, 0.0)
        return cls(int(frame), fraction)

    def to_float(self) -> float:
        """Scene time as a single float."""
        return self.frame + self.fraction

    def compare(self, other: FrameClock) -> int:
        """Three-way comparison with the epsilon tolerant rule.

        Returns
        -------
        int
            -1 if self is earlier, 0 if equal, 1 if later
        """
        if self.frame != other.frame:
            return -1 if self.frame < other.frame else 1
        if abs(self.fraction - other.fraction) < FRAME_EPSILON:
            return 0
        return -1 if self.fraction < other.fraction else 1

    def offset(self, frames: float) -> FrameClock:
        """Return a new clock shifted by ``frames``."""
        return FrameClock.from_float(self.to_float() + frames)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FrameClock):
            return NotImplemented
        return self.compare(other) == 0

    def __lt__(self, other: FrameClock) -> bool:
        if not isinstance(other, FrameClock):
            return NotImplemented
        return self.compare(other) < 0

    def __hash__(self) -> int:
        # Quantized to the epsilon grid; equal clocks near a grid boundary may still differ
        return hash((self.frame, round(self.fraction / FRAME_EPSILON)))

    def __str__(self) -> str:
        return f"{self.to_float():.4f}"

    def as_tuple(self) -> tuple[int, float]:
        """``(frame, fraction)`` pair, as sent on the wire."""
        return (self.frame, self.fraction)


__all__ = ["FRAME_EPSILON", "FrameClock"]
