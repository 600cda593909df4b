"""Tests for SceneExportSession."""

import logging

import pytest
from conftest import FakeEntityExporter, FakeScene, RecordingClient, make_settings

from src.domain.time import FrameClock
from src.render_export.core.export_session import (
    SceneExportSession,
    suppress_excessive_logging,
)
from src.render_export.interaction.events import EventType
from src.shared.exceptions import ConfigurationError


@pytest.fixture
def make_session(scene, entity_exporter, recording_client, event_bus):
    def _make(settings=None, **kwargs):
        return SceneExportSession(
            kwargs.get("scene", scene),
            kwargs.get("entity_exporter", entity_exporter),
            kwargs.get("client", recording_client),
            settings or make_settings(start=1, end=2),
            event_bus,
        )

    return _make


class TestExportAnimation:
    """Test full-range exports."""

    def test_each_instant_is_exported_then_committed(self, make_session, recording_client):
        report = make_session().export_animation()

        assert recording_client.names() == [
            "set_current_frame",
            "create_or_update",
            "create_or_update",
            "create_or_update",
            "commit",
        ] * 2
        assert recording_client.calls[1] == ("create_or_update", "Node@a", {"time": 1.0})
        assert recording_client.commits == [FrameClock(1), FrameClock(2)]

        assert report.completed and not report.aborted
        assert report.commits == 2
        assert report.entities_sent == 6
        assert report.last_committed_clock == FrameClock(2)

    def test_motion_blur_commits_every_sample(self, make_session, recording_client):
        session = make_session(make_settings(start=1, end=2, blur=(0.0, 1.0, 3)))

        report = session.export_animation()

        floats = [clock.to_float() for clock in recording_client.commits]
        assert floats == pytest.approx([0.5, 1.0, 1.5, 2.0, 2.5])
        assert report.commits == 5

    def test_subframe_objects_get_their_own_commit(self, entity_exporter, make_session, recording_client):
        scene = FakeScene(objects=["a", "b"], divisions={"b": 2})
        session = make_session(make_settings(start=1, end=1), scene=scene)

        session.export_animation()

        exported = [(obj, clock.to_float()) for obj, clock in entity_exporter.calls]
        assert exported == [("a", 1.0), ("b", 1.5)]
        assert recording_client.commits == [FrameClock(1), FrameClock(1, 0.5)]

    def test_events(self, make_session, event_bus):
        make_session().export_animation()

        started = event_bus.get_history(EventType.EXPORT_STARTED)
        assert started[0].data == {"total": 2, "mode": "animation"}
        assert started[0].source == "export_session"

        progress = event_bus.get_history(EventType.EXPORT_PROGRESS)
        assert [(e.data["current"], e.data["total"]) for e in progress] == [(1, 2), (2, 2)]
        assert progress[-1].data["clock"] == FrameClock(2)

        completed = event_bus.get_history(EventType.EXPORT_COMPLETED)
        assert completed[0].data == {"steps": 2, "commits": 2}
        assert not event_bus.get_history(EventType.EXPORT_CANCELLED)

    def test_camera_loop_sets_camera_before_entities(self, make_session, recording_client):
        scene = FakeScene(objects=["a"], cameras=["front", "side"])
        session = make_session(make_settings(mode="camera_loop"), scene=scene)

        report = session.export_animation()

        assert recording_client.calls[:4] == [
            ("set_current_frame", 0.0),
            ("set_camera", "Camera@front"),
            ("create_or_update", "Node@a", {"time": 0.0}),
            ("commit", FrameClock(0)),
        ]
        assert ("set_camera", "Camera@side") in recording_client.calls
        assert report.commits == 2

    def test_saved_time_cursor(self, make_session):
        report = make_session().export_animation(current_time=7.25)
        assert report.saved_frame == 7
        assert report.saved_subframe == pytest.approx(0.25)

    def test_invalid_settings_send_nothing(self, make_session, recording_client):
        session = make_session(make_settings(step=0))
        with pytest.raises(ConfigurationError):
            session.export_animation()
        assert recording_client.calls == []

    def test_summary_log_messages(self, make_session, caplog):
        with caplog.at_level(logging.INFO, logger="src.render_export.core.export_session"):
            make_session().export_animation()

        records = [r for r in caplog.records if r.name == "src.render_export.core.export_session"]
        assert [r.getMessage() for r in records] == [
            "Exporting 2 render step(s) in 'animation' mode",
            "Export completed: 2 step(s), 2 commit(s), 6 entities",
        ]
        assert all(r.args for r in records)

    def test_throughput_history_has_one_entry_per_instant(self, make_session):
        session = make_session()
        session.export_animation()

        history = session.throughput.history
        assert [timing.clock for timing in history] == ["1.0000", "2.0000"]
        assert set(history[0].stage_timings) == {"export", "commit"}


class TestExportAbort:
    """Test the ways an export stops early."""

    def test_renderer_abort_stops_after_commit(self, make_session, event_bus):
        client = RecordingClient(abort_after_commits=1)
        session = make_session(make_settings(start=1, end=3), client=client)

        report = session.export_animation()

        assert report.aborted and not report.completed
        assert client.commits == [FrameClock(1)]
        cancelled = event_bus.get_history(EventType.EXPORT_CANCELLED)
        assert cancelled[0].data == {"last_clock": FrameClock(1), "error": None}

    def test_already_aborted_client_sends_nothing(self, make_session):
        client = RecordingClient()
        client.aborted = True

        report = make_session(client=client).export_animation()

        assert report.aborted
        assert client.calls == []

    def test_exporter_failure_aborts_without_commit(self, make_session, recording_client, event_bus):
        session = make_session(entity_exporter=FakeEntityExporter(fail_on="b"))

        report = session.export_animation()

        assert report.aborted
        assert isinstance(report.outcome.error, ValueError)
        assert recording_client.calls == []
        assert "create_or_update" not in recording_client.names()
        assert report.entities_sent == 0
        assert report.last_committed_clock is None
        cancelled = event_bus.get_history(EventType.EXPORT_CANCELLED)
        assert cancelled[0].data["error"] is report.outcome.error

    def test_cancellation(self, make_session, recording_client):
        session = make_session(make_settings(start=1, end=5))

        report = session.export_animation(is_cancelled=lambda: len(recording_client.commits) >= 2)

        assert report.aborted
        assert report.commits == 2
        assert report.outcome.steps_completed == 2

    def test_export_can_run_again_after_abort(self, make_session):
        client = RecordingClient(abort_after_commits=1)
        session = make_session(client=client)
        assert session.export_animation().aborted

        client.aborted = False
        client.abort_after_commits = None
        report = session.export_animation()

        assert report.completed
        assert report.commits == 2


class TestExportInteractive:
    """Test viewport (continuous) exports."""

    def test_same_frame_is_reissued(self, make_session, recording_client):
        session = make_session()

        first = session.export_interactive(current_time=2.0)
        second = session.export_interactive(current_time=2.0)

        assert first.completed and second.completed
        assert first.commits == second.commits == 1
        assert recording_client.commits == [FrameClock(2), FrameClock(2)]

    def test_time_change_reconfigures(self, make_session, recording_client):
        session = make_session()

        session.export_interactive(current_time=2.0)
        report = session.export_interactive(current_time=3.5)

        assert recording_client.commits == [FrameClock(2), FrameClock(3, 0.5)]
        assert report.saved_frame == 3
        assert report.saved_subframe == pytest.approx(0.5)

    def test_topology_change_picks_up_new_objects(self, entity_exporter, make_session):
        scene = FakeScene(objects=["a"])
        session = make_session(scene=scene)

        session.export_interactive(current_time=1.0)
        scene.objects.append("d")
        session.export_interactive(current_time=1.0)
        assert [obj for obj, _ in entity_exporter.calls] == ["a", "a"]

        session.mark_topology_changed()
        session.export_interactive(current_time=1.0)
        assert [obj for obj, _ in entity_exporter.calls][-2:] == ["a", "d"]

    def test_recovers_after_renderer_abort(self, make_session, recording_client):
        session = make_session()
        recording_client.aborted = True

        report = session.export_interactive(current_time=1.0)
        assert report.aborted and not report.completed

        recording_client.aborted = False
        report = session.export_interactive(current_time=1.0)
        assert report.completed
        assert recording_client.commits == [FrameClock(1)]

    def test_motion_blur_applies_to_interactive_export(self, make_session, recording_client):
        session = make_session(make_settings(start=1, end=5, blur=(0.0, 0.5, 2)))

        session.export_interactive(current_time=1.0)

        floats = [clock.to_float() for clock in recording_client.commits]
        assert floats == pytest.approx([0.75, 1.25])


class TestSuppressExcessiveLogging:
    """Test temporary log level changes during export."""

    def test_levels_raised_and_restored(self):
        scheduler_logger = logging.getLogger("src.render_export.core.frame_scheduler")
        client_logger = logging.getLogger("src.render_export.streaming.client")
        scheduler_logger.setLevel(logging.DEBUG)
        client_logger.setLevel(logging.NOTSET)
        try:
            with suppress_excessive_logging():
                assert scheduler_logger.level == logging.WARNING
                assert client_logger.getEffectiveLevel() >= logging.WARNING

            assert scheduler_logger.level == logging.DEBUG
            assert client_logger.level == logging.NOTSET
        finally:
            scheduler_logger.setLevel(logging.NOTSET)

    def test_higher_levels_are_kept(self):
        ws_logger = logging.getLogger("websockets")
        ws_logger.setLevel(logging.ERROR)
        try:
            with suppress_excessive_logging():
                assert ws_logger.level == logging.ERROR
            assert ws_logger.level == logging.ERROR
        finally:
            ws_logger.setLevel(logging.NOTSET)
