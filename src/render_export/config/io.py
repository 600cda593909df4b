"""
Configuration import/export for exporter settings.

Exports and imports the exporter configuration (animation range, motion
blur, renderer connection) to/from YAML files.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from src.infrastructure.validation.config_validator import ConfigValidator
from src.render_export.config.settings import ExportConfig
from src.shared.exceptions import ConfigurationError


logger = logging.getLogger(__name__)


def export_config(config: ExportConfig, output_path: str | Path) -> Path:
    """
    Write the configuration to a YAML file.

    Parameters
    ----------
    config : ExportConfig
        Configuration to save
    output_path : str | Path
        Destination file; parent directories are created

    Returns
    -------
    Path
        Path of the written file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, "w", encoding="utf-8") as f:
        yaml.safe_dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)

    logger.info(f"Exported exporter config to {output_path}")
    return output_path


def import_config(input_path: str | Path) -> ExportConfig:
    """
    Load the configuration from a YAML file.

    Unknown keys are reported as warnings and ignored; missing keys keep
    their defaults.

    Parameters
    ----------
    input_path : str | Path
        YAML file to read

    Returns
    -------
    ExportConfig
        Loaded configuration

    Raises
    ------
    ConfigurationError
        If the file is missing, unreadable or holds invalid values
    """
    input_path = Path(input_path)
    if not input_path.exists():
        raise ConfigurationError("Config file not found", config_path=str(input_path))

    try:
        with open(input_path, encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Config file is not valid YAML: {e}", config_path=str(input_path)
        ) from e

    if raw is None:
        logger.warning(f"Empty config file: {input_path}, using defaults")
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigurationError(
            f"Config root must be a mapping, got {type(raw).__name__}",
            config_path=str(input_path),
        )

    config = config_from_dict(raw, source=str(input_path))
    logger.info(f"Imported exporter config from {input_path}")
    return config


def config_from_dict(data: dict[str, Any], source: str | None = None) -> ExportConfig:
    """Validate and coerce a plain dictionary into an ExportConfig.

    Parameters
    ----------
    data : dict[str, Any]
        Raw configuration values
    source : str | None
        Origin of the data for error messages

    Returns
    -------
    ExportConfig
        Validated configuration
    """
    result = ConfigValidator.validate(data, ExportConfig)
    for warning in result.warnings:
        logger.warning("[config] %s%s", warning, f" ({source})" if source else "")

    if not result.valid:
        raise ConfigurationError(result.error_message, config_path=source)

    try:
        return ExportConfig.from_dict(result.coerced_config or {})
    except ConfigurationError as e:
        if source and e.config_path is None:
            raise ConfigurationError(str(e), config_path=source) from e
        raise


__all__ = ["config_from_dict", "export_config", "import_config"]
