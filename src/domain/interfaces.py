"""Domain interfaces (protocols) for dependency inversion.

This module defines the collaborator protocols the exporter depends on:
- SceneTraversal: Host scene-graph access (objects, sub-frames, loop cameras)
- EntityExporter: Per-object serialization into renderer entities
- RenderClientInterface: Outbound half of the render protocol client

The host integration implements the first two; the third is implemented by
``src.render_export.streaming.client.RenderProtocolClient`` and by test doubles.
"""

from __future__ import annotations

from collections.abc import Hashable, Iterable, Mapping
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable


if TYPE_CHECKING:
    from src.domain.time import FrameClock


# Host objects and cameras are opaque to the exporter
ObjectRef = Hashable
CameraRef = Hashable


# ============================================================================
# Scene Traversal Protocol
# ============================================================================


@runtime_checkable
class SceneTraversal(Protocol):
    """Read-only access to the host scene.

    Implementations wrap the host application's scene graph. The exporter
    never mutates the scene; time is passed explicitly as a FrameClock to
    the entity exporter instead of moving a global time cursor.
    """

    def for_each_object(self) -> Iterable[ObjectRef]:
        """All objects of the scene, in a stable order."""
        ...

    def subframe_division(self, obj: ObjectRef) -> int:
        """Sub-frame division of ``obj`` (0 = follow the global schedule)."""
        ...

    def is_renderable(self, obj: ObjectRef) -> bool:
        """Whether ``obj`` contributes to the rendered image."""
        ...

    def loop_cameras(self) -> Iterable[CameraRef]:
        """Cameras flagged for camera-loop rendering, in loop order."""
        ...


# ============================================================================
# Entity Export Protocol
# ============================================================================


@runtime_checkable
class EntityExporter(Protocol):
    """Translates host objects into renderer entity payloads.

    Geometry, material and light formats live behind this protocol.
    """

    def export_object(
        self,
        obj: ObjectRef,
        clock: FrameClock,
    ) -> Iterable[tuple[str, Mapping[str, Any]]]:
        """Entities describing ``obj`` at ``clock``.

        Parameters
        ----------
        obj : ObjectRef
            Object to export
        clock : FrameClock
            Scene time to sample the object at

        Returns
        -------
        Iterable[tuple[str, Mapping[str, Any]]]
            ``(entity_id, payload)`` pairs
        """
        ...

    def camera_name(self, camera: CameraRef) -> str:
        """Renderer entity name of a loop camera."""
        ...


# ============================================================================
# Render Client Protocol
# ============================================================================


@runtime_checkable
class RenderClientInterface(Protocol):
    """Outbound operations of the render protocol client."""

    @property
    def is_aborted(self) -> bool:
        """Whether the renderer reported an abort."""
        ...

    def create_or_update(self, entity_id: str, payload: Mapping[str, Any]) -> None:
        """Create an entity or update it in place (idempotent)."""
        ...

    def remove(self, entity_id: str) -> None:
        """Remove an entity from the renderer scene."""
        ...

    def commit(self, clock: FrameClock) -> bool:
        """Mark everything sent so far as one coherent time sample.

        Returns False when nothing changed since the previous commit.
        """
        ...

    def set_current_frame(self, frame: float) -> None:
        """Tell the renderer which scene time subsequent updates belong to."""
        ...

    def set_camera(self, camera_name: str) -> None:
        """Select the active render camera."""
        ...


__all__ = [
    "CameraRef",
    "EntityExporter",
    "ObjectRef",
    "RenderClientInterface",
    "SceneTraversal",
]
