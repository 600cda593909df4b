"""
Configuration dataclasses for the render exporter.

This module provides type-safe configuration using Python 3.10+ dataclasses.
Invalid values raise ConfigurationError at construction time.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from enum import Enum

from src.domain.motion_blur import MotionBlurInterval
from src.shared.exceptions import ConfigurationError


logger = logging.getLogger(__name__)


__all__ = [
    "AnimationMode",
    "AnimationSettings",
    "ExportConfig",
    "ExportSettings",
    "MotionBlurSettings",
    "ProtocolSettings",
    "RendererType",
]


class AnimationMode(Enum):
    """Which instants a session renders."""

    NONE = "none"  # Single frame at the host's current time
    ANIMATION = "animation"  # Frame range with a step
    CAMERA_LOOP = "camera_loop"  # One pseudo-frame per loop camera


class RendererType(Enum):
    """Renderer session flavour announced on init."""

    SINGLE_FRAME = "single_frame"
    ANIMATION = "animation"
    INTERACTIVE = "interactive"
    PREVIEW = "preview"


@dataclass
class MotionBlurSettings:
    """Camera shutter settings as exposed by the host.

    Attributes
    ----------
    enabled : bool
        Whether motion blur is rendered
    duration : float
        Shutter length in frames
    interval_center : float
        Offset of the shutter center from the render frame
    geom_samples : int
        Geometry samples exported per render frame
    """

    enabled: bool = False
    duration: float = 1.0
    interval_center: float = 0.0
    geom_samples: int = 2

    def __post_init__(self):
        """Validate settings after initialization."""
        if self.geom_samples < 1:
            raise ConfigurationError(
                f"geom_samples must be >= 1, got {self.geom_samples}",
                field_name="motion_blur.geom_samples",
            )
        if self.duration < 0:
            raise ConfigurationError(
                f"duration must be >= 0, got {self.duration}",
                field_name="motion_blur.duration",
            )

    def to_interval(self) -> MotionBlurInterval:
        """Shutter interval used by the scheduler.

        With blur disabled every render frame is exported once at its
        nominal time.
        """
        if not self.enabled:
            return MotionBlurInterval.disabled()
        return MotionBlurInterval.from_center(
            self.interval_center,
            self.duration,
            self.geom_samples,
        )

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary for easy serialization."""
        return asdict(self)


@dataclass
class AnimationSettings:
    """Frame range and animation mode."""

    mode: str = "none"  # "none", "animation", "camera_loop"
    frame_start: int = 1
    frame_end: int = 1
    frame_step: int = 1

    def __post_init__(self):
        """Validate settings after initialization."""
        try:
            AnimationMode(self.mode)
        except ValueError:
            valid = ", ".join(m.value for m in AnimationMode)
            raise ConfigurationError(
                f"Unknown animation mode '{self.mode}' (expected one of: {valid})",
                field_name="animation.mode",
            ) from None

    @property
    def animation_mode(self) -> AnimationMode:
        return AnimationMode(self.mode)

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary for easy serialization."""
        return asdict(self)


@dataclass
class ExportSettings:
    """Everything the scheduler needs to plan a session."""

    animation: AnimationSettings = field(default_factory=AnimationSettings)
    motion_blur: MotionBlurSettings = field(default_factory=MotionBlurSettings)

    # Host-side viewport export renders one frame at a time and rewinds
    interactive: bool = False

    # Vertical flip, alpha reset and clamp of final images
    fix_final_image: bool = True

    @property
    def renderer_type(self) -> RendererType:
        if self.interactive:
            return RendererType.INTERACTIVE
        if self.animation.animation_mode is AnimationMode.NONE:
            return RendererType.SINGLE_FRAME
        return RendererType.ANIMATION

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary for easy serialization."""
        return {
            "animation": self.animation.to_dict(),
            "motion_blur": self.motion_blur.to_dict(),
            "interactive": self.interactive,
            "fix_final_image": self.fix_final_image,
        }


@dataclass
class ProtocolSettings:
    """Connection settings for the remote renderer."""

    host: str = "127.0.0.1"
    port: int = 5555
    path: str = "/"
    connect_timeout: float = 10.0
    ack_timeout: float = 30.0
    connect_attempts: int = 3
    max_message_size: int = 64 * 1024 * 1024

    def __post_init__(self):
        """Validate settings after initialization."""
        if not 0 < self.port < 65536:
            raise ConfigurationError(
                f"port must be in 1..65535, got {self.port}",
                field_name="protocol.port",
            )
        if self.connect_attempts < 1:
            raise ConfigurationError(
                f"connect_attempts must be >= 1, got {self.connect_attempts}",
                field_name="protocol.connect_attempts",
            )

    @property
    def url(self) -> str:
        """WebSocket URL of the renderer."""
        path = self.path if self.path.startswith("/") else f"/{self.path}"
        return f"ws://{self.host}:{self.port}{path}"

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary for easy serialization."""
        return asdict(self)


@dataclass
class ExportConfig:
    """Main exporter configuration."""

    export: ExportSettings = field(default_factory=ExportSettings)
    protocol: ProtocolSettings = field(default_factory=ProtocolSettings)
    log_level: str = "INFO"

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary for serialization."""
        return {
            "export": self.export.to_dict(),
            "protocol": self.protocol.to_dict(),
            "log_level": self.log_level,
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> ExportConfig:
        """Create ExportConfig from a plain dictionary.

        Raises
        ------
        ConfigurationError
            If a section has unknown or mistyped fields
        """
        data = dict(data)
        try:
            # Sections may already be dataclass instances (defaults filled in by the validator)
            if isinstance(data.get("export"), dict):
                export_data = dict(data["export"])
                if isinstance(export_data.get("animation"), dict):
                    export_data["animation"] = AnimationSettings(**export_data["animation"])
                if isinstance(export_data.get("motion_blur"), dict):
                    export_data["motion_blur"] = MotionBlurSettings(**export_data["motion_blur"])
                data["export"] = ExportSettings(**export_data)
            if isinstance(data.get("protocol"), dict):
                data["protocol"] = ProtocolSettings(**data["protocol"])
            return cls(**data)
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e
