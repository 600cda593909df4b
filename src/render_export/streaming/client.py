"""WebSocket client for the remote render engine.

Ships scene entities to the renderer and receives its log lines, state
changes and images asynchronously.

Architecture
------------
    ┌─────────────────────────────────────────────────────────────────┐
    │                  Export loop (caller thread)                    │
    │  - create_or_update / remove / commit / renderer actions        │
    │  - never blocks on the network (except wait_for_server)         │
    └─────────────────────────────────────────────────────────────────┘
                                    │ asyncio.Queue (FIFO)
                                    ▼
    ┌─────────────────────────────────────────────────────────────────┐
    │              RenderProtocolClient (daemon thread)               │
    │  - one sender task: submission order == delivery order          │
    │  - receive loop: log / state / ack / image frames               │
    │  - RenderImageStore + EventBus notifications                    │
    └─────────────────────────────────────────────────────────────────┘
                                    │ WebSocket
                                    ▼
    ┌─────────────────────────────────────────────────────────────────┐
    │                        Render engine                            │
    └─────────────────────────────────────────────────────────────────┘

Usage
-----
    from src.render_export.streaming.client import RenderProtocolClient

    client = RenderProtocolClient(ProtocolSettings(port=5555), event_bus=bus)
    client.connect()
    client.init(RendererType.ANIMATION)
    client.create_or_update("Mesh@Cube", {"vertices": [...]})
    client.commit(FrameClock(1))
    client.wait_for_server()
    client.close()
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
import time
from collections.abc import Mapping
from contextlib import suppress
from typing import Any

import websockets
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import InvalidHandshake

from src.domain.time import FrameClock
from src.infrastructure.protocol import messages
from src.infrastructure.protocol.image_store import RenderImage, RenderImageStore
from src.infrastructure.protocol.messages import (
    ImageFrame,
    RendererState,
    clock_to_wire,
    decode_image_frame,
    decode_message,
    encode_message,
)
from src.infrastructure.resilience.retry import RetryConfig, retry_async
from src.render_export.config.settings import ProtocolSettings, RendererType
from src.render_export.interaction.events import EventBus, EventType
from src.shared.exceptions import (
    MessageFormatError,
    ProtocolConnectionError,
    ProtocolTimeoutError,
)


logger = logging.getLogger(__name__)
renderer_logger = logging.getLogger(f"{__name__}.renderer")

# Renderer log levels are open-ended integers, bucketed like this
RENDERER_LOG_ERROR = 9999
RENDERER_LOG_WARNING = 19999
RENDERER_LOG_INFO = 29999

_CLOSE = object()


def renderer_log_level(level: int) -> int:
    """Map a renderer log level to a ``logging`` level."""
    if level <= RENDERER_LOG_ERROR:
        return logging.ERROR
    if level <= RENDERER_LOG_WARNING:
        return logging.WARNING
    if level <= RENDERER_LOG_INFO:
        return logging.INFO
    return logging.DEBUG


def first_line(text: str) -> str:
    """Text up to the first line break."""
    for i, char in enumerate(text):
        if char in "\r\n":
            return text[:i]
    return text


class RenderProtocolClient:
    """Asynchronous message client for one remote renderer.

    All outbound calls are non-blocking and thread-safe with respect to the
    receive thread. Settings that the renderer keeps between commits (current
    frame, camera, render size) are only sent when they change, and a commit
    is only sent when entities changed since the previous one.
    """

    def __init__(
        self,
        settings: ProtocolSettings | None = None,
        event_bus: EventBus | None = None,
        image_store: RenderImageStore | None = None,
        *,
        fix_final_image: bool = True,
    ):
        """Initialize the client (does not connect).

        Parameters
        ----------
        settings : ProtocolSettings | None
            Connection settings. Defaults to ``ProtocolSettings()``.
        event_bus : EventBus | None
            Bus receiving renderer events. A private one is created if None.
        image_store : RenderImageStore | None
            Store for received images. A new one is created if None.
        fix_final_image : bool
            Flip, reset alpha and clamp full images outside interactive mode
        """
        self.settings = settings or ProtocolSettings()
        self.event_bus = event_bus or EventBus("renderer")
        self.image_store = image_store or RenderImageStore()
        self.fix_final_image = fix_final_image

        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._queue: asyncio.Queue | None = None
        self._connection: ClientConnection | None = None
        self._started_event = threading.Event()
        self._connect_error: Exception | None = None
        self._connected = False
        self._closing = False

        # Renderer state, written by the receive thread
        self._state_lock = threading.Lock()
        self._aborted = False
        self._progress = 0.0
        self._progress_message = ""
        self._last_rendered_frame: float | None = None

        # wait_for_server handshake
        self._ack_condition = threading.Condition()
        self._acked_seq = 0
        self._seq = itertools.count(1)

        # Caller-side caches
        self._renderer_type: RendererType | None = None
        self._current_frame: float | None = None
        self._camera: str | None = None
        self._render_size: tuple[int, int] | None = None
        self._dirty = True
        self._started = False
        self._exported_count = 0
        self._last_committed_clock: FrameClock | None = None

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    @property
    def url(self) -> str:
        return self.settings.url

    @property
    def is_connected(self) -> bool:
        return self._connected

    def connect(self) -> None:
        """Connect to the renderer, retrying with exponential backoff.

        Raises
        ------
        ProtocolConnectionError
            If every attempt failed
        ProtocolTimeoutError
            If the connection thread did not report back in time
        """
        if self._connected:
            return

        self._closing = False
        self._connect_error = None
        self._started_event.clear()
        self._thread = threading.Thread(
            target=self._run_event_loop,
            name="render-protocol-client",
            daemon=True,
        )
        self._thread.start()

        retry_config = self._retry_config()
        wait_timeout = self.settings.connect_attempts * (
            self.settings.connect_timeout + retry_config.max_delay
        )
        if not self._started_event.wait(timeout=wait_timeout):
            raise ProtocolTimeoutError(
                "Renderer connection did not complete",
                self.url,
                timeout_seconds=wait_timeout,
                operation="connect",
            )

        if self._connect_error is not None:
            error = self._connect_error
            self._thread.join(timeout=5.0)
            self._thread = None
            raise ProtocolConnectionError(
                "Cannot connect to renderer", self.url, cause=error
            ) from error

        logger.info(f"Connected to renderer at {self.url}")

    def close(self) -> None:
        """Flush pending messages, close the connection and stop the thread."""
        if self._thread is None:
            return

        self._closing = True
        loop, queue = self._loop, self._queue
        if loop is not None and queue is not None:
            # Queued behind every pending message, so nothing is dropped
            with suppress(RuntimeError):
                loop.call_soon_threadsafe(queue.put_nowait, _CLOSE)

        self._thread.join(timeout=5.0)
        if self._thread.is_alive():
            logger.warning("[RenderClient] Receive thread did not stop within timeout")
        self._thread = None
        logger.info("Renderer connection closed")

    def __enter__(self) -> RenderProtocolClient:
        self.connect()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_attempts=self.settings.connect_attempts,
            base_delay=0.2,
            max_delay=2.0,
            retryable_exceptions=(OSError, asyncio.TimeoutError, InvalidHandshake),
        )

    def _run_event_loop(self) -> None:
        """Run the connection in a dedicated thread."""
        try:
            self._loop = asyncio.new_event_loop()
            asyncio.set_event_loop(self._loop)
            self._loop.run_until_complete(self._session())
        except Exception as e:
            logger.error(f"Renderer client error: {e}")
            if self._connect_error is None and not self._started_event.is_set():
                self._connect_error = e
            self._started_event.set()
        finally:
            self._connected = False
            loop, self._loop = self._loop, None
            self._queue = None
            if loop:
                loop.close()

    async def _open_connection(self) -> ClientConnection:
        return await connect(
            self.url,
            open_timeout=self.settings.connect_timeout,
            max_size=self.settings.max_message_size,
        )

    async def _session(self) -> None:
        self._queue = asyncio.Queue()
        open_connection = retry_async(self._retry_config())(self._open_connection)

        try:
            connection = await open_connection()
        except Exception as e:
            self._connect_error = e
            self._started_event.set()
            return

        self._connection = connection
        self._connected = True
        self._started_event.set()
        self.event_bus.emit(EventType.CONNECTED, source="renderer", url=self.url)

        sender = asyncio.create_task(self._send_loop(connection))
        try:
            await self._receive_loop(connection)
        finally:
            self._connected = False
            if not sender.done():
                sender.cancel()
                with suppress(asyncio.CancelledError):
                    await sender
            await connection.close()
            self._connection = None

            if not self._closing:
                logger.warning(f"Lost connection to renderer at {self.url}")
                with self._state_lock:
                    self._aborted = True

            with self._ack_condition:
                self._ack_condition.notify_all()
            self.event_bus.emit(EventType.DISCONNECTED, source="renderer", url=self.url)

    async def _send_loop(self, connection: ClientConnection) -> None:
        """Drain the outbound queue in submission order."""
        while True:
            item = await self._queue.get()
            if item is _CLOSE:
                break
            try:
                await connection.send(item)
            except websockets.ConnectionClosed as e:
                logger.warning(f"[RenderClient] Send failed, connection closed: {e}")
                return
        await connection.close()

    async def _receive_loop(self, connection: ClientConnection) -> None:
        try:
            async for message in connection:
                self._dispatch(message)
        except websockets.ConnectionClosed as e:
            if not self._closing:
                logger.debug(f"[RenderClient] Connection closed: {e}")

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def _dispatch(self, message: str | bytes) -> None:
        try:
            if isinstance(message, bytes):
                self._handle_image(decode_image_frame(message))
            else:
                self._handle_message(decode_message(message))
        except MessageFormatError as e:
            logger.warning(f"[RenderClient] Dropping malformed message: {e}")

    def _handle_message(self, message: dict[str, Any]) -> None:
        message_type = message["type"]
        if message_type == messages.MESSAGE_LOG:
            self._handle_log(message)
        elif message_type == messages.MESSAGE_STATE:
            self._handle_state(message)
        elif message_type == messages.MESSAGE_ACK:
            self._handle_ack(message)
        else:
            logger.debug(f"[RenderClient] Ignoring message type '{message_type}'")

    def _handle_log(self, message: dict[str, Any]) -> None:
        try:
            raw_level = int(message.get("level", RENDERER_LOG_INFO))
        except (TypeError, ValueError) as e:
            raise MessageFormatError(f"Invalid log level: {e}", messages.MESSAGE_LOG) from e

        text = first_line(str(message.get("message", "")))
        level = renderer_log_level(raw_level)
        renderer_logger.log(level, "%s", text)
        self.event_bus.emit(
            EventType.RENDERER_LOG,
            source="renderer",
            level=level,
            renderer_level=raw_level,
            message=text,
        )

    def _handle_state(self, message: dict[str, Any]) -> None:
        try:
            state = RendererState(message.get("state"))
        except ValueError:
            raise MessageFormatError(
                f"Unknown renderer state {message.get('state')!r}", messages.MESSAGE_STATE
            ) from None

        value = message.get("value")
        try:
            with self._state_lock:
                # Any state other than abort clears a previous abort
                self._aborted = state is RendererState.ABORT
                if state is RendererState.PROGRESS:
                    self._progress = float(value)
                elif state is RendererState.PROGRESS_MESSAGE:
                    self._progress_message = str(value or "")
                elif state is RendererState.CONTINUE:
                    self._last_rendered_frame = float(value)
                progress = self._progress
                progress_message = self._progress_message
        except (TypeError, ValueError) as e:
            raise MessageFormatError(
                f"Invalid value for state '{state.value}': {value!r}", messages.MESSAGE_STATE
            ) from e

        if state is RendererState.ABORT:
            logger.warning("[RenderClient] Renderer aborted")
            self.event_bus.emit(EventType.RENDERER_ABORTED, source="renderer")
        elif state is RendererState.CONTINUE:
            self.event_bus.emit(
                EventType.FRAME_RENDERED, source="renderer", frame=self._last_rendered_frame
            )
        else:
            self.event_bus.emit(
                EventType.RENDER_PROGRESS,
                source="renderer",
                progress=progress,
                message=progress_message or None,
            )

    def _handle_ack(self, message: dict[str, Any]) -> None:
        try:
            seq = int(message.get("seq"))
        except (TypeError, ValueError) as e:
            raise MessageFormatError(f"Invalid ack: {e}", messages.MESSAGE_ACK) from e
        with self._ack_condition:
            self._acked_seq = max(self._acked_seq, seq)
            self._ack_condition.notify_all()

    def _handle_image(self, frame: ImageFrame) -> None:
        header = frame.header
        self.image_store.update(frame, fix_image=self.fix_final_image and not self.interactive)
        self.event_bus.emit(
            EventType.IMAGE_UPDATED,
            source="renderer",
            channel=header.channel,
            bucket=header.bucket,
            region=(header.x, header.y, header.width, header.height),
        )
        if header.ready:
            self.event_bus.emit(EventType.IMAGE_READY, source="renderer", channel=header.channel)

    # ------------------------------------------------------------------
    # Renderer state (read from any thread)
    # ------------------------------------------------------------------

    @property
    def is_aborted(self) -> bool:
        with self._state_lock:
            return self._aborted

    @property
    def progress(self) -> float:
        with self._state_lock:
            return self._progress

    @property
    def progress_message(self) -> str:
        with self._state_lock:
            return self._progress_message

    @property
    def last_rendered_frame(self) -> float | None:
        with self._state_lock:
            return self._last_rendered_frame

    @property
    def interactive(self) -> bool:
        return self._renderer_type in (RendererType.INTERACTIVE, RendererType.PREVIEW)

    @property
    def is_dirty(self) -> bool:
        """Whether entities changed since the last commit."""
        return self._dirty

    @property
    def last_committed_clock(self) -> FrameClock | None:
        return self._last_committed_clock

    @property
    def exported_count(self) -> int:
        """Entity updates sent since the last ``reset_exported_count``."""
        return self._exported_count

    def reset_exported_count(self) -> None:
        self._exported_count = 0

    def get_render_channel(self, channel: int = 0) -> RenderImage | None:
        """Deep copy of the latest image of ``channel``."""
        return self.image_store.get_render_channel(channel)

    def get_image(self) -> RenderImage | None:
        """Deep copy of the latest beauty image."""
        return self.get_render_channel(0)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def _send(self, message_type: str, **fields: Any) -> None:
        text = encode_message(message_type, **fields)
        loop, queue = self._loop, self._queue
        if not self._connected or loop is None or queue is None:
            raise ProtocolConnectionError("Not connected to renderer", self.url)
        try:
            loop.call_soon_threadsafe(queue.put_nowait, text)
        except RuntimeError as e:
            raise ProtocolConnectionError("Renderer connection is closed", self.url, cause=e) from e
        logger.debug(f"[RenderClient] -> {message_type}")

    def init(self, renderer_type: RendererType, image_channels: tuple[int, ...] = (0,)) -> None:
        """Start a renderer session and subscribe to image channels.

        Caches are cleared so the next frame, camera and size are always sent.
        """
        self._renderer_type = renderer_type
        self._current_frame = None
        self._camera = None
        self._render_size = None
        self._dirty = True
        self.image_store.clear()

        self._send(messages.RENDERER_INIT, renderer_type=renderer_type.value)
        for channel in image_channels:
            self.request_image(channel)

    def create_or_update(self, entity_id: str, payload: Mapping[str, Any]) -> None:
        self._send(messages.ENTITY_CREATE_OR_UPDATE, id=entity_id, payload=dict(payload))
        self._dirty = True
        self._exported_count += 1

    def remove(self, entity_id: str) -> None:
        self._send(messages.ENTITY_REMOVE, id=entity_id)
        self._dirty = True

    def replace(self, old_id: str, new_id: str) -> None:
        """Swap an entity for another one, rewiring references to it."""
        self._send(messages.ENTITY_REPLACE, old=old_id, new=new_id)
        self._dirty = True

    def commit(self, clock: FrameClock) -> bool:
        """Mark the entities sent since the last commit as the state at ``clock``.

        Returns
        -------
        bool
            False if nothing changed and no commit was sent
        """
        if not self._dirty:
            logger.debug(f"[RenderClient] Nothing to commit at {clock}")
            return False
        self._send(messages.RENDERER_COMMIT, clock=clock_to_wire(clock))
        self._dirty = False
        self._last_committed_clock = clock
        return True

    def set_current_frame(self, frame: float) -> None:
        if frame != self._current_frame:
            self._current_frame = frame
            self._send(messages.RENDERER_SET_CURRENT_FRAME, frame=frame)

    def set_camera(self, camera_name: str) -> None:
        if camera_name != self._camera:
            self._camera = camera_name
            self._dirty = True
            self._send(messages.RENDERER_SET_CAMERA, name=camera_name)

    def set_render_size(self, width: int, height: int) -> None:
        if (width, height) != self._render_size:
            self._render_size = (width, height)
            self.image_store.set_render_size(width, height)
            self._send(messages.RENDERER_RESIZE, width=width, height=height)

    def set_render_region(self, x: int, y: int, width: int, height: int, crop: bool = False) -> None:
        """Restrict rendering to a region; ``crop`` also shrinks the output."""
        self._send(messages.RENDERER_SET_REGION, x=x, y=y, width=width, height=height, crop=crop)

    def request_image(self, channel: int = 0) -> None:
        self._send(messages.RENDERER_GET_IMAGE, channel=channel)

    def start(self) -> None:
        self._started = True
        self._send(messages.RENDERER_START)

    def stop(self) -> None:
        self._started = False
        self._send(messages.RENDERER_STOP)

    def reset(self) -> None:
        """Reset the renderer scene and forget every cached setting."""
        self._send(messages.RENDERER_RESET)
        self._current_frame = None
        self._camera = None
        self._render_size = None
        self._dirty = True

    def free(self) -> None:
        self._send(messages.RENDERER_FREE)

    def clear_frame_data(self, up_to: float) -> None:
        """Drop animated values the renderer keeps for frames before ``up_to``."""
        self._send(messages.RENDERER_CLEAR_FRAME_DATA, up_to=up_to)

    def wait_for_server(self, timeout: float | None = None) -> None:
        """Block until the renderer processed everything sent so far.

        Raises
        ------
        ProtocolTimeoutError
            If no acknowledgement arrived within ``timeout`` seconds
        ProtocolConnectionError
            If the connection dropped while waiting
        """
        timeout = self.settings.ack_timeout if timeout is None else timeout
        seq = next(self._seq)
        self._send(messages.RENDERER_SYNC, seq=seq)

        deadline = time.monotonic() + timeout
        with self._ack_condition:
            while self._acked_seq < seq:
                if not self._connected:
                    raise ProtocolConnectionError(
                        "Renderer disconnected while waiting for acknowledgement", self.url
                    )
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise ProtocolTimeoutError(
                        "Renderer did not acknowledge",
                        self.url,
                        timeout_seconds=timeout,
                        operation="wait_for_server",
                    )
                self._ack_condition.wait(remaining)


__all__ = [
    "RenderProtocolClient",
    "first_line",
    "renderer_log_level",
]
