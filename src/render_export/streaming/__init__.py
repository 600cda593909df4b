"""Streaming module for the remote render engine connection.

Uses WebSocket for ordered, push-based delivery of scene updates and
asynchronous reception of renderer logs, state and images.
"""

from .client import RenderProtocolClient, first_line, renderer_log_level


__all__ = [
    "RenderProtocolClient",
    "first_line",
    "renderer_log_level",
]
