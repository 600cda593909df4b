"""
Frame export scheduler.

Decides which scene instants are exported to the renderer, in which order,
and which objects each export covers. One render step produces:

- the motion-blur samples of the nominal render frame (regular objects),
- one sample per sub-frame division (only the objects of that division),

merged, sorted by time and filtered against the last exported instant so an
instant shared by two overlapping steps is never exported twice.

The scheduler is synchronous and owns no I/O: every export goes through the
caller's callback, which usually forwards entities to a render client.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Hashable
from dataclasses import dataclass, field, replace
from enum import Enum, auto

from src.domain.interfaces import CameraRef, ObjectRef, SceneTraversal
from src.domain.motion_blur import MotionBlurInterval, MotionBlurSampler
from src.domain.subframes import SubframeIndex, subframe_instant
from src.domain.time import FrameClock
from src.render_export.config.settings import AnimationMode, ExportSettings
from src.shared.exceptions import (
    ConfigurationError,
    InvalidStateTransitionError,
    SchedulerStateError,
)


logger = logging.getLogger(__name__)


# Callback receives the instant and the objects to export at it.
# Returning False aborts the session.
ExportCallback = Callable[[FrameClock, tuple[ObjectRef, ...]], bool | None]
CancelCheck = Callable[[], bool]


class SchedulerState(Enum):
    """Scheduler session states."""

    IDLE = auto()
    RUNNING = auto()
    EXPORTING = auto()  # Inside the export callback
    ABORTED = auto()


# Valid state transitions (reset() returns to IDLE from anywhere but EXPORTING)
_VALID_TRANSITIONS: dict[SchedulerState, set[SchedulerState]] = {
    SchedulerState.IDLE: {SchedulerState.RUNNING},
    SchedulerState.RUNNING: {
        SchedulerState.EXPORTING,
        SchedulerState.IDLE,
        SchedulerState.ABORTED,
    },
    SchedulerState.EXPORTING: {SchedulerState.RUNNING, SchedulerState.ABORTED},
    SchedulerState.ABORTED: set(),  # Terminal until reset()
}


@dataclass
class ScheduleState:
    """Planning state of the current session.

    Attributes
    ----------
    mode : AnimationMode
        Which instants the session renders
    animation_start, animation_end, step : float
        Frame range and step (ANIMATION mode)
    current_render_frame : float
        Nominal frame of the current or last step
    last_exported_clock : FrameClock | None
        Latest instant handed to the callback
    camera_loop_cameras : tuple[CameraRef, ...]
        Loop cameras in order (CAMERA_LOOP mode)
    camera_loop_index : int
        Index of the current loop camera
    saved_frame, saved_subframe : int, float
        Host time cursor at configure time, for the caller to restore
    motion_blur : MotionBlurInterval
        Shutter interval sampled at every step
    step_index : int
        Number of completed steps
    """

    mode: AnimationMode
    animation_start: float
    animation_end: float
    step: float
    current_render_frame: float
    last_exported_clock: FrameClock | None = None
    camera_loop_cameras: tuple[CameraRef, ...] = ()
    camera_loop_index: int = 0
    saved_frame: int = 0
    saved_subframe: float = 0.0
    motion_blur: MotionBlurInterval = field(default_factory=MotionBlurInterval.disabled)
    step_index: int = 0


@dataclass(frozen=True)
class ExportOutcome:
    """Result of :meth:`FrameExportScheduler.for_each_export_frame`."""

    completed: bool
    aborted: bool
    steps_completed: int
    last_exported_clock: FrameClock | None
    error: Exception | None = None


@dataclass(frozen=True)
class _Emission:
    clock: FrameClock
    objects: tuple[Hashable, ...]
    division: int = 0


class FrameExportScheduler:
    """Plans and drives the export of a time-varying scene.

    Example
    -------
    >>> scheduler = FrameExportScheduler(scene)
    >>> scheduler.configure(settings, current_time=1.0)
    >>> outcome = scheduler.for_each_export_frame(export_and_commit)
    >>> outcome.completed
    True
    """

    def __init__(
        self,
        scene: SceneTraversal,
        settings: ExportSettings | None = None,
        current_time: float = 0.0,
    ):
        """
        Initialize the scheduler.

        Parameters
        ----------
        scene : SceneTraversal
            Host scene access
        settings : ExportSettings | None
            If given, ``configure`` is called right away
        current_time : float
            Host time cursor, used with ``settings``
        """
        self.scene = scene
        self._schedule: ScheduleState | None = None
        self._state = SchedulerState.IDLE

        self._subframes = SubframeIndex()
        self._regular_objects: tuple[ObjectRef, ...] = ()
        self._indexed_frame: int | None = None
        self._topology_dirty = True

        self._pre_step_clocks: list[FrameClock | None] = []
        self._active_camera: CameraRef | None = None
        self._current_division = 0
        self._last_error: Exception | None = None

        if settings is not None:
            self.configure(settings, current_time)

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def state(self) -> SchedulerState:
        """Current session state."""
        return self._state

    @property
    def is_configured(self) -> bool:
        return self._schedule is not None

    @property
    def schedule(self) -> ScheduleState:
        """Copy of the planning state."""
        return replace(self._require_schedule())

    @property
    def mode(self) -> AnimationMode:
        return self._require_schedule().mode

    @property
    def render_frame(self) -> float:
        """Nominal frame of the current (or last) step."""
        return self._require_schedule().current_render_frame

    @property
    def step_index(self) -> int:
        """Number of completed steps."""
        return self._require_schedule().step_index

    @property
    def remaining_steps(self) -> int:
        return max(self.get_render_frame_count() - self.step_index, 0)

    @property
    def current_division(self) -> int:
        """Sub-frame division being exported (0 for the global schedule)."""
        return self._current_division

    @property
    def is_current_subframe(self) -> bool:
        return self._current_division > 0

    @property
    def active_camera(self) -> CameraRef | None:
        """Loop camera of the current step (CAMERA_LOOP mode only)."""
        return self._active_camera

    @property
    def last_exported_clock(self) -> FrameClock | None:
        return self._require_schedule().last_exported_clock

    @property
    def last_error(self) -> Exception | None:
        """Exception raised by the callback that aborted the session."""
        return self._last_error

    @property
    def saved_frame(self) -> int:
        return self._require_schedule().saved_frame

    @property
    def saved_subframe(self) -> float:
        return self._require_schedule().saved_subframe

    @property
    def subframe_index(self) -> SubframeIndex:
        return self._subframes

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def configure(self, settings: ExportSettings, current_time: float = 0.0) -> None:
        """Plan a new session.

        Parameters
        ----------
        settings : ExportSettings
            Frame range, animation mode and motion blur
        current_time : float
            Host time cursor; the single frame of NONE mode and the value
            reported back through ``saved_frame`` / ``saved_subframe``

        Raises
        ------
        ConfigurationError
            If the settings are invalid; the previous plan is kept
        SchedulerStateError
            If a session is running
        """
        if self._state in (SchedulerState.RUNNING, SchedulerState.EXPORTING):
            raise SchedulerStateError("Cannot configure while a session is running", self._state)

        animation = settings.animation
        mode = animation.animation_mode
        start = float(animation.frame_start)
        end = float(animation.frame_end)
        step = float(animation.frame_step)

        if step <= 0:
            raise ConfigurationError(
                f"frame_step must be > 0, got {animation.frame_step}",
                field_name="animation.frame_step",
            )
        if mode is AnimationMode.ANIMATION and end < start:
            raise ConfigurationError(
                f"frame_end ({animation.frame_end}) is before frame_start ({animation.frame_start})",
                field_name="animation.frame_end",
            )

        cameras: tuple[CameraRef, ...] = ()
        if mode is AnimationMode.CAMERA_LOOP:
            cameras = tuple(self.scene.loop_cameras())
            if not cameras:
                raise ConfigurationError(
                    "Camera loop needs at least one loop camera",
                    field_name="animation.mode",
                )

        interval = settings.motion_blur.to_interval()

        saved_frame = math.floor(current_time)
        if mode is AnimationMode.NONE:
            first_frame = current_time
        elif mode is AnimationMode.CAMERA_LOOP:
            first_frame = 0.0
        else:
            first_frame = start

        self._schedule = ScheduleState(
            mode=mode,
            animation_start=start,
            animation_end=end,
            step=step,
            current_render_frame=first_frame,
            camera_loop_cameras=cameras,
            saved_frame=int(saved_frame),
            saved_subframe=current_time - saved_frame,
            motion_blur=interval,
        )
        self._topology_dirty = True
        self.reset()

        logger.info(
            "[Scheduler] Configured %s export: %d step(s), motion blur %s",
            mode.value,
            self.get_render_frame_count(),
            f"{interval.sample_count} samples over {interval.duration}"
            if interval.sample_count > 1
            else "off",
        )

    def get_render_frame_count(self) -> int:
        """Number of render steps in the session."""
        schedule = self._require_schedule()
        if schedule.mode is AnimationMode.CAMERA_LOOP:
            return len(schedule.camera_loop_cameras)
        if schedule.mode is AnimationMode.NONE:
            return 1
        return math.floor((schedule.animation_end - schedule.animation_start) / schedule.step) + 1

    def mark_topology_changed(self) -> None:
        """Force a sub-frame index rebuild on the next step."""
        self._topology_dirty = True

    # ------------------------------------------------------------------
    # Session control
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Rewind the session to its first step and clear abort status."""
        if self._state is SchedulerState.EXPORTING:
            raise SchedulerStateError("Cannot reset from inside an export callback", self._state)

        schedule = self._require_schedule()
        schedule.step_index = 0
        schedule.camera_loop_index = 0
        schedule.last_exported_clock = None
        schedule.current_render_frame = self._render_frame_for(0)

        self._pre_step_clocks.clear()
        self._active_camera = None
        self._current_division = 0
        self._last_error = None
        self._indexed_frame = None

        if self._state is not SchedulerState.IDLE:
            logger.debug("[Scheduler] Reset: %s -> IDLE", self._state.name)
        self._state = SchedulerState.IDLE

    def rewind(self) -> None:
        """Step back once so the next ``advance`` re-exports the same frame.

        Used by continuous (viewport) export, where the same nominal frame is
        reissued until the host moves its time cursor.
        """
        schedule = self._require_schedule()
        if self._state in (SchedulerState.EXPORTING, SchedulerState.ABORTED):
            raise SchedulerStateError("Cannot rewind in this state", self._state)
        if schedule.step_index == 0:
            return

        schedule.step_index -= 1
        schedule.last_exported_clock = self._pre_step_clocks.pop()
        schedule.current_render_frame = self._render_frame_for(schedule.step_index)
        logger.debug(
            "[Scheduler] Rewound to step %d (frame %s)",
            schedule.step_index,
            schedule.current_render_frame,
        )

    def advance(self, callback: ExportCallback, is_cancelled: CancelCheck | None = None) -> bool:
        """Run one render step.

        Parameters
        ----------
        callback : ExportCallback
            Called once per exported instant with ``(clock, objects)``;
            returning False aborts the session
        is_cancelled : CancelCheck | None
            Polled before every export; True aborts the session

        Returns
        -------
        bool
            True if the step completed, False if the session aborted or
            no steps were left

        Raises
        ------
        SchedulerStateError
            If the session is aborted, unconfigured, or the call is nested
            inside a callback
        """
        schedule = self._require_schedule()
        if self._state is SchedulerState.ABORTED:
            raise SchedulerStateError("Session was aborted; call reset() first", self._state)
        if self._state is SchedulerState.EXPORTING:
            raise SchedulerStateError("advance() called from inside an export callback", self._state)

        total = self.get_render_frame_count()
        if schedule.step_index >= total:
            return False

        if self._state is SchedulerState.IDLE:
            self._transition_to(SchedulerState.RUNNING)

        render_frame = self._render_frame_for(schedule.step_index)
        schedule.current_render_frame = render_frame
        if schedule.mode is AnimationMode.CAMERA_LOOP:
            schedule.camera_loop_index = schedule.step_index
            self._active_camera = schedule.camera_loop_cameras[schedule.step_index]

        self._refresh_subframe_index(render_frame)
        del self._pre_step_clocks[schedule.step_index:]
        self._pre_step_clocks.append(schedule.last_exported_clock)

        for emission in self._plan_step(render_frame):
            if is_cancelled is not None and is_cancelled():
                logger.info("[Scheduler] Export cancelled before %s", emission.clock)
                self._transition_to(SchedulerState.ABORTED)
                return False

            if not self._emit(emission, callback):
                return False

        schedule.step_index += 1
        if schedule.step_index >= total:
            self._transition_to(SchedulerState.IDLE)
        return True

    def for_each_export_frame(
        self,
        callback: ExportCallback,
        is_cancelled: CancelCheck | None = None,
        progress_callback: Callable[[int, int], None] | None = None,
    ) -> ExportOutcome:
        """Run every remaining step.

        Parameters
        ----------
        callback : ExportCallback
            Called once per exported instant
        is_cancelled : CancelCheck | None
            Polled before every export
        progress_callback : Callable[[int, int], None] | None
            Called after each completed step: callback(completed_steps, total_steps)

        Returns
        -------
        ExportOutcome
            Completion status and progress of the session
        """
        steps = 0
        while self.remaining_steps > 0:
            if not self.advance(callback, is_cancelled):
                break
            steps += 1
            if progress_callback:
                progress_callback(self.step_index, self.get_render_frame_count())

        aborted = self._state is SchedulerState.ABORTED
        return ExportOutcome(
            completed=not aborted and self.remaining_steps == 0,
            aborted=aborted,
            steps_completed=steps,
            last_exported_clock=self.last_exported_clock,
            error=self._last_error,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_schedule(self) -> ScheduleState:
        if self._schedule is None:
            raise SchedulerStateError("Scheduler is not configured", self._state)
        return self._schedule

    def _transition_to(self, new_state: SchedulerState) -> None:
        valid_targets = _VALID_TRANSITIONS.get(self._state, set())
        if new_state not in valid_targets:
            raise InvalidStateTransitionError(self._state, new_state)

        old_state = self._state
        self._state = new_state
        if new_state is not SchedulerState.EXPORTING and old_state is not SchedulerState.EXPORTING:
            logger.debug("[Scheduler] State transition: %s -> %s", old_state.name, new_state.name)

    def _render_frame_for(self, step_index: int) -> float:
        schedule = self._require_schedule()
        if schedule.mode is AnimationMode.CAMERA_LOOP:
            return float(step_index)
        if schedule.mode is AnimationMode.NONE:
            return schedule.saved_frame + schedule.saved_subframe
        return schedule.animation_start + step_index * schedule.step

    def _refresh_subframe_index(self, render_frame: float) -> None:
        frame = math.floor(render_frame)
        if not self._topology_dirty and frame == self._indexed_frame:
            return

        objects = [obj for obj in self.scene.for_each_object() if self.scene.is_renderable(obj)]
        self._subframes.rebuild(objects, self.scene.subframe_division)
        self._regular_objects = tuple(obj for obj in objects if obj not in self._subframes)
        self._indexed_frame = frame
        self._topology_dirty = False

    def _plan_step(self, render_frame: float) -> list[_Emission]:
        """Instants of one step in increasing order, merged on equal clocks.

        Motion-blur samples at or before ``last_exported_clock`` were already
        exported by the previous step and are dropped before any sub-frame
        bucket is merged, so a bucket always gets exported at its instant.
        """
        schedule = self._require_schedule()
        last = schedule.last_exported_clock
        emissions: list[_Emission] = []

        for clock in MotionBlurSampler.sample_instants(render_frame, schedule.motion_blur):
            if last is not None and clock <= last:
                logger.debug("[Scheduler] Skipping %s (already exported %s)", clock, last)
                continue
            # Zero-length shutters collapse onto one instant
            if emissions and emissions[-1].clock == clock:
                continue
            emissions.append(_Emission(clock, self._regular_objects))

        for division in self._subframes.all_divisions():
            clock = subframe_instant(render_frame, division)
            bucket = self._subframes.objects_at_division(division)
            for i, emission in enumerate(emissions):
                if emission.clock == clock:
                    # Sub-frame instant is authoritative for the merged export
                    emissions[i] = _Emission(clock, emission.objects + bucket, division)
                    break
            else:
                emissions.append(_Emission(clock, bucket, division))

        emissions.sort(key=lambda e: e.clock.to_float())
        return emissions

    def _emit(self, emission: _Emission, callback: ExportCallback) -> bool:
        schedule = self._require_schedule()
        self._transition_to(SchedulerState.EXPORTING)
        self._current_division = emission.division
        logger.debug(
            "[Scheduler] Exporting %s: %d object(s)%s",
            emission.clock,
            len(emission.objects),
            f" (sub-frame division {emission.division})" if emission.division else "",
        )

        try:
            result = callback(emission.clock, emission.objects)
        except Exception as e:
            logger.exception("[Scheduler] Export callback failed at %s", emission.clock)
            self._last_error = e
            self._transition_to(SchedulerState.ABORTED)
            return False
        finally:
            self._current_division = 0

        # Bucket-only emissions may sit at or before a clock already exported
        if schedule.last_exported_clock is None or emission.clock > schedule.last_exported_clock:
            schedule.last_exported_clock = emission.clock
        if result is False:
            logger.warning("[Scheduler] Export aborted at %s", emission.clock)
            self._transition_to(SchedulerState.ABORTED)
            return False

        self._transition_to(SchedulerState.RUNNING)
        return True


__all__ = [
    "ExportCallback",
    "ExportOutcome",
    "FrameExportScheduler",
    "ScheduleState",
    "SchedulerState",
]
