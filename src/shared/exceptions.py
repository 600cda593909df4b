"""
Custom exceptions for the render exporter.

This module provides domain-specific exceptions for better error handling
and clearer error messages throughout the exporter.

Clean Architecture Note:
- This file belongs to the Shared layer (cross-cutting concerns)
- Can be imported by any layer (domain, infrastructure, render_export)

Cancellation is deliberately absent: a cancelled export is a terminal
scheduler state, not an error.
"""


class RenderExportError(Exception):
    """Base exception for all exporter-related errors."""

    pass


class ConfigurationError(RenderExportError):
    """Raised when export configuration is invalid or missing."""

    def __init__(
        self,
        message: str,
        field_name: str | None = None,
        config_path: str | None = None,
    ):
        """
        Initialize ConfigurationError.

        Parameters
        ----------
        message : str
            Error message
        field_name : str | None
            Name of the invalid/missing config field
        config_path : str | None
            Path to the config file
        """
        self.field_name = field_name
        self.config_path = config_path

        full_message = message
        if field_name:
            full_message = f"{full_message} (field: {field_name})"
        if config_path:
            full_message = f"{full_message} (config: {config_path})"

        super().__init__(full_message)


class SchedulerStateError(RenderExportError):
    """Raised when a scheduler operation is not valid in the current state."""

    def __init__(self, message: str, current_state: object | None = None):
        """
        Initialize SchedulerStateError.

        Parameters
        ----------
        message : str
            Error message
        current_state : object | None
            State of the scheduler when the error was raised
        """
        self.current_state = current_state

        full_message = message
        if current_state is not None:
            name = getattr(current_state, "name", current_state)
            full_message = f"{message} (current state: {name})"

        super().__init__(full_message)


class InvalidStateTransitionError(SchedulerStateError):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_state: object, to_state: object, message: str | None = None):
        self.from_state = from_state
        self.to_state = to_state
        from_name = getattr(from_state, "name", from_state)
        to_name = getattr(to_state, "name", to_state)
        default_message = f"Invalid state transition: {from_name} -> {to_name}"
        super().__init__(message or default_message, from_state)


# ============================================================================
# Render Protocol Exceptions
# ============================================================================


class ProtocolError(RenderExportError):
    """Raised when communication with the remote renderer fails."""

    def __init__(
        self,
        message: str,
        url: str | None = None,
        *,
        cause: Exception | None = None,
    ):
        """
        Initialize ProtocolError.

        Parameters
        ----------
        message : str
            Error message
        url : str | None
            Renderer endpoint URL
        cause : Exception | None
            Original exception that caused this error
        """
        self.url = url
        self.cause = cause

        full_message = message
        if url:
            full_message = f"{full_message} (url: {url})"
        if cause:
            full_message = f"{full_message} (caused by: {cause})"

        super().__init__(full_message)


class ProtocolConnectionError(ProtocolError):
    """Raised when the renderer cannot be reached or the connection drops."""

    pass


class ProtocolTimeoutError(ProtocolError):
    """Raised when the renderer does not acknowledge in time."""

    def __init__(
        self,
        message: str,
        url: str | None = None,
        timeout_seconds: float | None = None,
        operation: str | None = None,
    ):
        self.timeout_seconds = timeout_seconds
        self.operation = operation

        full_message = message
        if operation:
            full_message = f"{full_message} (operation: {operation})"
        if timeout_seconds is not None:
            full_message = f"{full_message} (timeout: {timeout_seconds}s)"

        super().__init__(full_message, url)


class MessageFormatError(ProtocolError):
    """Raised when a renderer message cannot be encoded or decoded."""

    def __init__(
        self,
        message: str,
        message_type: str | None = None,
    ):
        self.message_type = message_type

        full_message = message
        if message_type:
            full_message = f"{full_message} (message: {message_type})"

        super().__init__(full_message)
