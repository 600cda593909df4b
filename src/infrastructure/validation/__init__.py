"""Validation infrastructure for exporter configuration."""

from src.infrastructure.validation.config_validator import (
    ConfigValidator,
    ValidationResult,
)

__all__ = ["ConfigValidator", "ValidationResult"]
