"""
Export session: drives the scheduler and ships each instant to the renderer.

This component is responsible for:
- Configuring the scheduler from export settings
- Exporting the objects of every scheduled instant through the entity exporter
- Committing each instant as one coherent time sample
- Progress tracking (tqdm + events) and cancellation
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable
from contextlib import contextmanager
from dataclasses import dataclass

from tqdm import tqdm

from src.domain.interfaces import EntityExporter, ObjectRef, RenderClientInterface, SceneTraversal
from src.domain.time import FrameClock
from src.render_export.config.settings import ExportSettings
from src.render_export.core.frame_scheduler import (
    ExportOutcome,
    FrameExportScheduler,
    SchedulerState,
)
from src.render_export.interaction.events import EventBus, EventType
from src.shared.perf import ExportStepTiming, ExportThroughputTracker, PerfMonitor


logger = logging.getLogger(__name__)


@contextmanager
def suppress_excessive_logging():
    """
    Context manager to temporarily suppress excessive logging during export.

    Reduces log level for per-message loggers (scheduler, client, websockets)
    to WARNING during export to keep console output clean with tqdm progress bar.
    """
    # Loggers to suppress during export
    noisy_loggers = [
        "websockets",
        "src.domain.subframes",
        "src.infrastructure.protocol.image_store",
        "src.render_export.core.frame_scheduler",
        "src.render_export.streaming.client",
    ]

    # Store original log levels
    original_levels = {}
    for logger_name in noisy_loggers:
        log = logging.getLogger(logger_name)
        original_levels[logger_name] = log.level
        log.setLevel(max(log.getEffectiveLevel(), logging.WARNING))

    try:
        yield
    finally:
        # Restore original log levels (NOTSET falls back to the parent's level)
        for logger_name, original_level in original_levels.items():
            logging.getLogger(logger_name).setLevel(original_level)


@dataclass(frozen=True)
class SessionReport:
    """Summary of one export run.

    Attributes
    ----------
    outcome : ExportOutcome
        Scheduler result
    saved_frame, saved_subframe : int, float
        Host time cursor before the export, to be restored by the caller
    last_committed_clock : FrameClock | None
        Latest instant committed to the renderer
    commits : int
        Number of commits sent
    entities_sent : int
        Number of entity updates sent
    """

    outcome: ExportOutcome
    saved_frame: int
    saved_subframe: float
    last_committed_clock: FrameClock | None
    commits: int
    entities_sent: int

    @property
    def completed(self) -> bool:
        return self.outcome.completed

    @property
    def aborted(self) -> bool:
        return self.outcome.aborted


class SceneExportSession:
    """
    Exports a scene to a remote renderer, one scheduled instant at a time.

    Every instant becomes: current frame, loop camera (camera-loop mode),
    one ``create_or_update`` per entity, then a single ``commit``. Any failure
    while exporting (entity serialization, protocol) aborts the session the
    same way a cancellation does.
    """

    def __init__(
        self,
        scene: SceneTraversal,
        entity_exporter: EntityExporter,
        client: RenderClientInterface,
        settings: ExportSettings,
        event_bus: EventBus | None = None,
    ):
        """
        Initialize export session.

        Parameters
        ----------
        scene : SceneTraversal
            Host scene access
        entity_exporter : EntityExporter
            Serializes objects into renderer entities
        client : RenderClientInterface
            Render protocol client
        settings : ExportSettings
            Frame range, animation mode and motion blur
        event_bus : EventBus | None
            Event bus for emitting export events
        """
        self.scene = scene
        self.entity_exporter = entity_exporter
        self.client = client
        self.settings = settings
        self.event_bus = event_bus
        self.scheduler = FrameExportScheduler(scene)
        self.throughput = ExportThroughputTracker(logger=logger)

        self._commits = 0
        self._entities_sent = 0
        self._last_committed_clock: FrameClock | None = None
        self._interactive_time: float | None = None

    def export_animation(
        self,
        current_time: float = 0.0,
        is_cancelled: Callable[[], bool] | None = None,
    ) -> SessionReport:
        """
        Export every scheduled instant of the configured range.

        Parameters
        ----------
        current_time : float
            Host time cursor (the frame exported in single-frame mode)
        is_cancelled : Callable[[], bool] | None
            Polled before every instant; True stops the export

        Returns
        -------
        SessionReport
            Outcome and bookkeeping of the run

        Raises
        ------
        ConfigurationError
            If the settings are invalid (nothing is sent)
        """
        self.scheduler.configure(self.settings, current_time)
        self._reset_counters()
        self._interactive_time = None

        total = self.scheduler.get_render_frame_count()
        mode = self.scheduler.mode
        logger.info("Exporting %d render step(s) in '%s' mode", total, mode.value)
        self._emit(EventType.EXPORT_STARTED, total=total, mode=mode.value)

        # Suppress excessive logging during export to keep console clean
        use_tqdm = sys.stderr.isatty()
        with (
            suppress_excessive_logging(),
            tqdm(
                total=total,
                desc="Exporting frames",
                unit="frame",
                file=sys.stderr,
                disable=not use_tqdm,
                dynamic_ncols=True,
                miniters=1,
                mininterval=0.1,
            ) as pbar,
        ):

            def on_step(current: int, step_total: int) -> None:
                pbar.update(1)
                self._emit(
                    EventType.EXPORT_PROGRESS,
                    current=current,
                    total=step_total,
                    clock=self.scheduler.last_exported_clock,
                )

            outcome = self.scheduler.for_each_export_frame(
                self._export_instant,
                is_cancelled=is_cancelled,
                progress_callback=on_step,
            )

        report = self._build_report(outcome)
        if outcome.aborted:
            logger.warning(
                "Export stopped after %d/%d step(s), last committed: %s",
                outcome.steps_completed,
                total,
                report.last_committed_clock,
            )
            self._emit(
                EventType.EXPORT_CANCELLED,
                last_clock=report.last_committed_clock,
                error=outcome.error,
            )
        else:
            logger.info(
                "Export completed: %d step(s), %d commit(s), %d entities",
                outcome.steps_completed,
                report.commits,
                report.entities_sent,
            )
            self._emit(
                EventType.EXPORT_COMPLETED,
                steps=outcome.steps_completed,
                commits=report.commits,
            )
        return report

    def export_interactive(self, current_time: float = 0.0) -> SessionReport:
        """
        Export the current frame for a continuously updated (viewport) render.

        The scheduler is stepped once and rewound, so the next call reissues
        the same nominal frame with the scene's latest state. Moving the host
        time cursor reconfigures the session.
        """
        if self._interactive_time is None or self._interactive_time != current_time:
            interactive_settings = ExportSettings(
                motion_blur=self.settings.motion_blur,
                interactive=True,
                fix_final_image=self.settings.fix_final_image,
            )
            self.scheduler.configure(interactive_settings, current_time)
            self._interactive_time = current_time
        elif self.scheduler.state is SchedulerState.ABORTED:
            self.scheduler.reset()

        self._reset_counters()
        completed = self.scheduler.advance(self._export_instant)
        if completed:
            self.scheduler.rewind()

        aborted = self.scheduler.state is SchedulerState.ABORTED
        outcome = ExportOutcome(
            completed=completed,
            aborted=aborted,
            steps_completed=1 if completed else 0,
            last_exported_clock=self.scheduler.last_exported_clock,
            error=self.scheduler.last_error,
        )
        return self._build_report(outcome)

    def mark_topology_changed(self) -> None:
        """Objects were added, removed or changed sub-frame settings."""
        self.scheduler.mark_topology_changed()

    def _export_instant(self, clock: FrameClock, objects: tuple[ObjectRef, ...]) -> bool:
        if self.client.is_aborted:
            logger.warning("Renderer aborted, stopping export at %s", clock)
            return False

        perf = PerfMonitor(str(clock))
        with perf.track("export"):
            # Serialize the whole instant first so an exporter failure sends nothing
            batch = [
                entity
                for obj in objects
                for entity in self.entity_exporter.export_object(obj, clock)
            ]

            self.client.set_current_frame(clock.to_float())

            camera = self.scheduler.active_camera
            if camera is not None:
                self.client.set_camera(self.entity_exporter.camera_name(camera))

            for entity_id, payload in batch:
                self.client.create_or_update(entity_id, payload)
            self._entities_sent += len(batch)

        with perf.track("commit"):
            if self.client.commit(clock):
                self._commits += 1
                self._last_committed_clock = clock

        timings, total_ms = perf.stop()
        logger.debug(
            "[Export] %s: %d object(s) in %.1fms (export=%.1fms, commit=%.1fms)",
            clock,
            len(objects),
            total_ms,
            timings.get("export", 0.0),
            timings.get("commit", 0.0),
        )
        self.throughput.on_step_exported(
            ExportStepTiming(
                step_index=self.scheduler.step_index,
                clock=str(clock),
                total_ms=total_ms,
                stage_timings=timings,
            )
        )

        return not self.client.is_aborted

    def _reset_counters(self) -> None:
        self._commits = 0
        self._entities_sent = 0
        self._last_committed_clock = None

    def _build_report(self, outcome: ExportOutcome) -> SessionReport:
        return SessionReport(
            outcome=outcome,
            saved_frame=self.scheduler.saved_frame,
            saved_subframe=self.scheduler.saved_subframe,
            last_committed_clock=self._last_committed_clock,
            commits=self._commits,
            entities_sent=self._entities_sent,
        )

    def _emit(self, event_type: EventType, **data) -> None:
        if self.event_bus:
            self.event_bus.emit(event_type, source="export_session", **data)


__all__ = [
    "SceneExportSession",
    "SessionReport",
    "suppress_excessive_logging",
]
