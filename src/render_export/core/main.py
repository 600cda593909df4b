"""
Render export entry points.

Wires a configuration, a host scene and an entity exporter to a connected
render protocol client. There is no command line surface: the host
application calls these functions from its own render hooks.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

from src.domain.interfaces import EntityExporter, SceneTraversal
from src.render_export.config.io import import_config
from src.render_export.config.settings import ExportConfig
from src.render_export.core.export_session import SceneExportSession, SessionReport
from src.render_export.interaction.events import EventBus
from src.render_export.streaming.client import RenderProtocolClient


logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    """
    Setup logging configuration.

    Parameters
    ----------
    level : str
        Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@contextmanager
def open_export_session(
    config: ExportConfig,
    scene: SceneTraversal,
    entity_exporter: EntityExporter,
    event_bus: EventBus | None = None,
) -> Iterator[SceneExportSession]:
    """
    Connect to the renderer and yield a ready export session.

    The renderer is initialized with the session's renderer type. On exit
    the client waits for the renderer to drain its queue (unless it aborted)
    and closes the connection.

    Raises
    ------
    ProtocolConnectionError
        If the renderer cannot be reached
    """
    event_bus = event_bus or EventBus("render_export")
    export_settings = config.export
    client = RenderProtocolClient(
        config.protocol,
        event_bus=event_bus,
        fix_final_image=export_settings.fix_final_image,
    )

    client.connect()
    try:
        client.init(export_settings.renderer_type)
        yield SceneExportSession(scene, entity_exporter, client, export_settings, event_bus)
        if client.is_connected and not client.is_aborted:
            client.wait_for_server()
    finally:
        client.close()


def run_export(
    config: ExportConfig | str | Path,
    scene: SceneTraversal,
    entity_exporter: EntityExporter,
    *,
    current_time: float = 0.0,
    event_bus: EventBus | None = None,
    is_cancelled: Callable[[], bool] | None = None,
) -> SessionReport:
    """
    Export the configured animation (or single frame) to the renderer.

    Parameters
    ----------
    config : ExportConfig | str | Path
        Configuration, or path to a YAML configuration file
    scene : SceneTraversal
        Host scene access
    entity_exporter : EntityExporter
        Serializes objects into renderer entities
    current_time : float
        Host time cursor
    event_bus : EventBus | None
        Bus receiving export and renderer events
    is_cancelled : Callable[[], bool] | None
        Polled before every exported instant

    Returns
    -------
    SessionReport
        Outcome of the export; ``saved_frame``/``saved_subframe`` hold the
        time cursor to restore
    """
    if not isinstance(config, ExportConfig):
        config = import_config(config)

    logger.info("=== Render Export ===")
    logger.info(f"Renderer: {config.protocol.url}")
    logger.info(f"Mode: {config.export.animation.mode}")

    with open_export_session(config, scene, entity_exporter, event_bus) as session:
        return session.export_animation(current_time=current_time, is_cancelled=is_cancelled)


__all__ = ["open_export_session", "run_export", "setup_logging"]
