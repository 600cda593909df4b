"""Pytest configuration and shared fixtures."""

import shutil
import tempfile
from pathlib import Path

import pytest

from src.domain.time import FrameClock
from src.render_export.config.settings import (
    AnimationSettings,
    ExportSettings,
    MotionBlurSettings,
)
from src.render_export.interaction.events import EventBus


class FakeScene:
    """In-memory scene traversal."""

    def __init__(self, objects=(), divisions=None, hidden=(), cameras=()):
        self.objects = list(objects)
        self.divisions = dict(divisions or {})
        self.hidden = set(hidden)
        self.cameras = list(cameras)
        self.traversals = 0

    def for_each_object(self):
        self.traversals += 1
        return list(self.objects)

    def subframe_division(self, obj):
        return self.divisions.get(obj, 0)

    def is_renderable(self, obj):
        return obj not in self.hidden

    def loop_cameras(self):
        return list(self.cameras)


class FakeEntityExporter:
    """Exports one entity per object; optionally fails on one object."""

    def __init__(self, fail_on=None):
        self.fail_on = fail_on
        self.calls = []

    def export_object(self, obj, clock):
        self.calls.append((obj, clock))
        if obj == self.fail_on:
            raise ValueError(f"cannot export {obj}")
        return [(f"Node@{obj}", {"time": clock.to_float()})]

    def camera_name(self, camera):
        return f"Camera@{camera}"


class RecordingClient:
    """Render client double that records every call in order."""

    def __init__(self, abort_after_commits=None):
        self.calls = []
        self.aborted = False
        self.abort_after_commits = abort_after_commits
        self._dirty = True

    @property
    def is_aborted(self):
        return self.aborted

    def create_or_update(self, entity_id, payload):
        self.calls.append(("create_or_update", entity_id, dict(payload)))
        self._dirty = True

    def remove(self, entity_id):
        self.calls.append(("remove", entity_id))
        self._dirty = True

    def commit(self, clock):
        if not self._dirty:
            return False
        self.calls.append(("commit", clock))
        self._dirty = False
        if self.abort_after_commits is not None and len(self.commits) >= self.abort_after_commits:
            self.aborted = True
        return True

    def set_current_frame(self, frame):
        self.calls.append(("set_current_frame", frame))

    def set_camera(self, camera_name):
        self.calls.append(("set_camera", camera_name))
        self._dirty = True

    @property
    def commits(self):
        return [call[1] for call in self.calls if call[0] == "commit"]

    def names(self):
        return [call[0] for call in self.calls]


class RecordingCallback:
    """Export callback recording ``(clock, objects)``; returns ``result``."""

    def __init__(self, result=True):
        self.result = result
        self.calls = []

    def __call__(self, clock, objects):
        self.calls.append((clock, objects))
        return self.result

    @property
    def clocks(self):
        return [clock.to_float() for clock, _ in self.calls]


def make_settings(
    mode="animation",
    start=1,
    end=3,
    step=1,
    blur=None,
):
    """ExportSettings for a frame range; ``blur`` is ``(center, duration, samples)``."""
    motion_blur = MotionBlurSettings()
    if blur is not None:
        center, duration, samples = blur
        motion_blur = MotionBlurSettings(
            enabled=True,
            duration=duration,
            interval_center=center,
            geom_samples=samples,
        )
    return ExportSettings(
        animation=AnimationSettings(mode=mode, frame_start=start, frame_end=end, frame_step=step),
        motion_blur=motion_blur,
    )


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def scene():
    """Three renderable objects on the global schedule."""
    return FakeScene(objects=["a", "b", "c"])


@pytest.fixture
def entity_exporter():
    return FakeEntityExporter()


@pytest.fixture
def recording_client():
    return RecordingClient()


@pytest.fixture
def event_bus():
    return EventBus("test")


@pytest.fixture
def clock():
    return FrameClock(1, 0.25)
