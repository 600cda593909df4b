"""Index of scene objects that are exported on their own sub-frame schedule.

Objects normally follow the global per-frame schedule. An object with a
sub-frame division ``d > 0`` is instead resampled at a fixed fractional
offset inside each render frame and exported separately from the rest of
the scene.

Divisions are listed in descending order. Division 1 lands on the render
frame itself; for divisions of 2 and above, finer divisions land earlier
inside the frame.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Hashable, Iterable

from src.domain.time import FrameClock


logger = logging.getLogger(__name__)


def subframe_instant(render_frame: float, division: int) -> FrameClock:
    """Instant at which objects of ``division`` are exported for a render frame.

    The offset is ``(1 / division) mod 1``: division 1 coincides with the
    frame itself, finer divisions land earlier inside the frame.

    Parameters
    ----------
    render_frame : float
        Nominal render frame
    division : int
        Sub-frame division (> 0)

    Returns
    -------
    FrameClock
        Clock of the sub-frame sample
    """
    if division <= 0:
        raise ValueError(f"division must be positive, got {division}")
    return FrameClock.from_float(render_frame + (1.0 / division) % 1.0)


class SubframeIndex:
    """Ordered mapping from sub-frame division to the objects registered there.

    Buckets preserve the order in which objects were scanned, and each object
    lives in at most one bucket.

    Example
    -------
    >>> index = SubframeIndex()
    >>> index.rebuild(["a", "b", "c"], {"a": 2, "b": 0, "c": 4}.get)
    >>> index.all_divisions()
    (4, 2)
    >>> index.objects_at_division(2)
    ('a',)
    """

    def __init__(self) -> None:
        self._buckets: dict[int, dict[Hashable, None]] = {}
        self._division_by_object: dict[Hashable, int] = {}
        self._divisions: tuple[int, ...] = ()

    def rebuild(
        self,
        objects: Iterable[Hashable],
        division_of: Callable[[Hashable], int],
    ) -> None:
        """Replace the index contents by scanning ``objects``.

        Parameters
        ----------
        objects : Iterable[Hashable]
            Full object set from the scene traversal
        division_of : Callable[[Hashable], int]
            External query returning an object's sub-frame division
        """
        self.clear()
        for obj in objects:
            division = int(division_of(obj) or 0)
            if division <= 0:
                continue
            previous = self._division_by_object.get(obj)
            if previous is not None:
                # Same object reported twice: the latest division wins
                del self._buckets[previous][obj]
                if not self._buckets[previous]:
                    del self._buckets[previous]
            self._buckets.setdefault(division, {})[obj] = None
            self._division_by_object[obj] = division

        self._divisions = tuple(sorted(self._buckets, reverse=True))
        logger.debug(
            "[SubframeIndex] Rebuilt: %d objects in divisions %s",
            len(self._division_by_object),
            self._divisions,
        )

    def clear(self) -> None:
        """Drop every bucket."""
        self._buckets.clear()
        self._division_by_object.clear()
        self._divisions = ()

    def objects_at_division(self, division: int) -> tuple[Hashable, ...]:
        """Objects registered at ``division`` (empty if none)."""
        bucket = self._buckets.get(division)
        if not bucket:
            return ()
        return tuple(bucket)

    def all_divisions(self) -> tuple[int, ...]:
        """Distinct divisions in descending order."""
        return self._divisions

    def division_of(self, obj: Hashable) -> int:
        """Division of ``obj``, or 0 when it follows the global schedule."""
        return self._division_by_object.get(obj, 0)

    @property
    def is_empty(self) -> bool:
        return not self._division_by_object

    def __contains__(self, obj: object) -> bool:
        return obj in self._division_by_object

    def __len__(self) -> int:
        return len(self._division_by_object)


__all__ = ["SubframeIndex", "subframe_instant"]
