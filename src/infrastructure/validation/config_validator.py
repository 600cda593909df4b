"""Configuration validation for exporter settings.

Validates configuration dictionaries (usually parsed from YAML) against
dataclass schemas, providing detailed error messages for invalid
configurations.
"""

from __future__ import annotations

import logging
import types
from dataclasses import MISSING, dataclass, field, fields, is_dataclass
from typing import Any, Union, get_args, get_origin, get_type_hints

from src.shared.exceptions import ConfigurationError


logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Result of configuration validation."""

    valid: bool
    errors: list[str]
    warnings: list[str] = field(default_factory=list)
    coerced_config: dict[str, Any] | None = None

    @property
    def error_message(self) -> str:
        """Get combined error message."""
        return "; ".join(self.errors)


class ConfigValidator:
    """Validates configuration dictionaries against dataclass schemas.

    Features:
    - Type checking with coercion (str -> int/float/bool, int -> float)
    - Required field validation
    - Default value handling
    - Nested dataclass validation (nested sections stay dictionaries)

    Example
    -------
    >>> @dataclass
    ... class ProtocolSection:
    ...     host: str
    ...     port: int = 5555
    ...
    >>> result = ConfigValidator.validate({"host": "render01", "port": "6000"}, ProtocolSection)
    >>> result.coerced_config
    {'host': 'render01', 'port': 6000}
    """

    @classmethod
    def validate(
        cls,
        config: dict[str, Any],
        schema: type,
        *,
        strict: bool = False,
        prefix: str = "",
    ) -> ValidationResult:
        """Validate config dict against a dataclass schema.

        Parameters
        ----------
        config : dict[str, Any]
            Configuration dictionary to validate
        schema : type
            Dataclass type to validate against
        strict : bool
            If True, unknown fields are errors; if False, warnings
        prefix : str
            Dotted path of the section, used in messages

        Returns
        -------
        ValidationResult
            Validation result with errors, warnings, and coerced config
        """
        if not is_dataclass(schema):
            return ValidationResult(
                valid=False,
                errors=[f"Schema {schema} is not a dataclass"],
                warnings=[],
            )

        errors: list[str] = []
        warnings: list[str] = []
        coerced: dict[str, Any] = {}

        try:
            type_hints = get_type_hints(schema)
        except Exception as e:
            return ValidationResult(
                valid=False,
                errors=[f"Failed to get type hints for schema: {e}"],
                warnings=[],
            )

        schema_fields = {f.name: f for f in fields(schema) if f.init}
        required_fields = {
            name
            for name, f in schema_fields.items()
            if f.default is MISSING and f.default_factory is MISSING
        }

        for key in sorted(set(config) - set(schema_fields), key=str):
            msg = f"Unknown configuration field: '{prefix}{key}'"
            if strict:
                errors.append(msg)
            else:
                warnings.append(msg)

        for field_name, field_info in schema_fields.items():
            expected_type = type_hints.get(field_name, Any)
            qualified = f"{prefix}{field_name}"

            if field_name in config:
                validated, error, nested_warnings = cls._validate_type(
                    config[field_name], expected_type, qualified, strict
                )
                warnings.extend(nested_warnings)
                if error:
                    errors.append(error)
                else:
                    coerced[field_name] = validated
            elif field_name in required_fields:
                errors.append(f"Missing required field: '{qualified}'")
            elif field_info.default is not MISSING:
                coerced[field_name] = field_info.default
            elif field_info.default_factory is not MISSING:
                coerced[field_name] = field_info.default_factory()

        return ValidationResult(
            valid=len(errors) == 0,
            errors=errors,
            warnings=warnings,
            coerced_config=coerced if len(errors) == 0 else None,
        )

    @classmethod
    def validate_or_raise(
        cls,
        config: dict[str, Any],
        schema: type,
        *,
        config_path: str | None = None,
    ) -> dict[str, Any]:
        """Validate config and raise ConfigurationError if invalid.

        Returns
        -------
        dict[str, Any]
            Validated and coerced config dictionary

        Raises
        ------
        ConfigurationError
            If validation fails
        """
        result = cls.validate(config, schema)

        if not result.valid:
            raise ConfigurationError(result.error_message, config_path=config_path)

        for warning in result.warnings:
            logger.warning("[%s] Config warning: %s", schema.__name__, warning)

        return result.coerced_config  # type: ignore

    @classmethod
    def _validate_type(
        cls,
        value: Any,
        expected_type: Any,
        field_name: str,
        strict: bool = False,
    ) -> tuple[Any, str | None, list[str]]:
        """Validate and coerce a single value.

        Returns
        -------
        tuple[Any, str | None, list[str]]
            (coerced_value, error_message or None, warnings)
        """
        origin = get_origin(expected_type)
        args = get_args(expected_type)

        # Optional[T] / T | None
        if origin is Union or origin is types.UnionType:
            if value is None and type(None) in args:
                return None, None, []
            for t in (t for t in args if t is not type(None)):
                coerced, error, nested_warnings = cls._validate_type(value, t, field_name, strict)
                if error is None:
                    return coerced, None, nested_warnings
            return (
                None,
                f"Field '{field_name}': expected {expected_type}, got {type(value).__name__}",
                [],
            )

        if origin is list:
            if not isinstance(value, list):
                return None, f"Field '{field_name}': expected list, got {type(value).__name__}", []
            if not args:
                return value, None, []
            coerced_list = []
            for i, item in enumerate(value):
                coerced_item, error, _ = cls._validate_type(item, args[0], f"{field_name}[{i}]")
                if error:
                    return None, error, []
                coerced_list.append(coerced_item)
            return coerced_list, None, []

        if origin is dict:
            if not isinstance(value, dict):
                return None, f"Field '{field_name}': expected dict, got {type(value).__name__}", []
            return value, None, []

        # bool must be checked before int since bool is a subclass of int
        if expected_type is bool:
            if isinstance(value, bool):
                return value, None, []
            if isinstance(value, str):
                if value.lower() in ("true", "1", "yes", "on"):
                    return True, None, []
                if value.lower() in ("false", "0", "no", "off"):
                    return False, None, []
            return None, f"Field '{field_name}': expected bool, got {type(value).__name__}", []

        if expected_type is int:
            if isinstance(value, int) and not isinstance(value, bool):
                return value, None, []
            if isinstance(value, float) and value.is_integer():
                return int(value), None, []
            if isinstance(value, str):
                try:
                    return int(value), None, []
                except ValueError:
                    pass
            return None, f"Field '{field_name}': expected int, got {type(value).__name__}", []

        if expected_type is float:
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return float(value), None, []
            if isinstance(value, str):
                try:
                    return float(value), None, []
                except ValueError:
                    pass
            return None, f"Field '{field_name}': expected float, got {type(value).__name__}", []

        if expected_type is str:
            if isinstance(value, str):
                return value, None, []
            return None, f"Field '{field_name}': expected str, got {type(value).__name__}", []

        if is_dataclass(expected_type):
            if isinstance(value, dict):
                result = cls.validate(value, expected_type, strict=strict, prefix=f"{field_name}.")
                if not result.valid:
                    return None, result.error_message, result.warnings
                return result.coerced_config, None, result.warnings
            if isinstance(value, expected_type):
                return value, None, []
            return (
                None,
                f"Field '{field_name}': expected {expected_type.__name__} mapping, "
                f"got {type(value).__name__}",
                [],
            )

        if expected_type is Any:
            return value, None, []

        if isinstance(expected_type, type) and isinstance(value, expected_type):
            return value, None, []

        return (
            None,
            f"Field '{field_name}': expected {expected_type}, got {type(value).__name__}",
            [],
        )


__all__ = ["ConfigValidator", "ValidationResult"]
