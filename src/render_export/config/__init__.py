"""Configuration module for the render exporter."""

from src.render_export.config.io import config_from_dict, export_config, import_config
from src.render_export.config.settings import (
    AnimationMode,
    AnimationSettings,
    ExportConfig,
    ExportSettings,
    MotionBlurSettings,
    ProtocolSettings,
    RendererType,
)


__all__ = [
    "AnimationMode",
    "AnimationSettings",
    "ExportConfig",
    "ExportSettings",
    "MotionBlurSettings",
    "ProtocolSettings",
    "RendererType",
    "config_from_dict",
    "export_config",
    "import_config",
]
