"""Realtime voice session over the Gemini Live API.

One ``RealtimeSessionManager`` owns at most one live conversation at a time:
it captures microphone frames and streams them upstream as PCM16, schedules
the streamed audio replies back-to-back on the output timeline, and drops
whatever is still queued for playback when the server reports that the user
barged in.

State transitions:
- IDLE → CONNECTING (user start)
- CONNECTING → ACTIVE (connection open)
- CONNECTING → IDLE (device or connection failure)
- ACTIVE → CLOSING → IDLE (user stop, remote close, transport error)
"""

from __future__ import annotations

import asyncio
import base64
import logging
from contextlib import AsyncExitStack
from enum import Enum
from typing import Any, Callable, Protocol

import numpy as np
from google.genai import types
from websockets.exceptions import ConnectionClosedOK

from audio_utils import duration_seconds, float_to_pcm16, mean_abs_level, pcm16_to_float
from errors import ConnectionFailed, TransportError, TrevelinError
from gemini_client import (
    INPUT_MIME_TYPE,
    INPUT_SAMPLE_RATE,
    LIVE_MODEL,
    OUTPUT_SAMPLE_RATE,
    build_live_config,
)


logger = logging.getLogger(__name__)

FRAME_SIZE = 4096

STATUS_READY = "Ready to connect"
STATUS_INITIALIZING = "Initializing..."
STATUS_CONNECTED = "Connected"
STATUS_DISCONNECTED = "Disconnected"
TRANSPORT_ERROR_TEXT = "Connection error occurred."


class SessionState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    ACTIVE = "active"
    CLOSING = "closing"


VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.IDLE: {SessionState.CONNECTING},
    SessionState.CONNECTING: {SessionState.ACTIVE, SessionState.IDLE},
    SessionState.ACTIVE: {SessionState.CLOSING},
    SessionState.CLOSING: {SessionState.IDLE},
}


class PlaybackSegment(Protocol):
    start_at: float
    duration: float

    def stop(self) -> None: ...


class AudioInput(Protocol):
    def start(self, on_frame: Callable[[np.ndarray], None]) -> None: ...

    def close(self) -> None: ...


class AudioOutput(Protocol):
    sample_rate: int

    def now(self) -> float: ...

    def schedule(
        self,
        samples: np.ndarray,
        start_at: float,
        on_ended: Callable[[Any], None],
    ) -> PlaybackSegment: ...

    def close(self) -> None: ...


class AudioDevices(Protocol):
    """Opens the microphone and the playback timeline for one session.

    ``open_input`` raises PermissionDenied or DeviceUnavailable.
    """

    def open_input(self, sample_rate: int, frame_size: int) -> AudioInput: ...

    def open_output(self, sample_rate: int) -> AudioOutput: ...


StatusCallback = Callable[[str, "str | None"], None]


class RealtimeSessionManager:
    def __init__(
        self,
        client: Any,
        devices: AudioDevices,
        *,
        model: str = LIVE_MODEL,
        config: types.LiveConnectConfig | None = None,
        on_status: StatusCallback | None = None,
        on_level: Callable[[float], None] | None = None,
    ) -> None:
        self._client = client
        self._devices = devices
        self._model = model
        self._config = config or build_live_config()
        self._on_status = on_status
        self._on_level = on_level

        self.state = SessionState.IDLE
        self.status = STATUS_READY
        self.error: str | None = None
        self.last_exception: TrevelinError | None = None
        self.level = 0.0
        self.next_start_time = 0.0

        self._stack: AsyncExitStack | None = None
        self._stream: Any = None
        self._capture: AudioInput | None = None
        self._output: AudioOutput | None = None
        self._segments: set[PlaybackSegment] = set()
        self._frames: asyncio.Queue[np.ndarray] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._tasks: list[asyncio.Task[None]] = []
        self._stop_requested = False
        self._idle: asyncio.Event | None = None

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.ACTIVE

    @property
    def active_segments(self) -> frozenset[PlaybackSegment]:
        return frozenset(self._segments)

    def _transition(self, new_state: SessionState) -> None:
        if new_state not in VALID_TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid session transition {self.state.value} -> {new_state.value}")
        logger.debug("[LIVE] %s -> %s", self.state.value, new_state.value)
        self.state = new_state

    def _set_status(self, status: str) -> None:
        self.status = status
        if self._on_status is not None:
            self._on_status(status, self.error)

    def _report_error(self, exc: TrevelinError, message: str | None = None) -> None:
        self.last_exception = exc
        self.error = message or str(exc) or "Failed to start session"
        logger.error("[LIVE] %s: %s", type(exc).__name__, exc)

    async def start(self) -> bool:
        """Open the microphone, the playback timeline and the Live connection.

        Returns False (with ``error`` set) when any of them cannot be acquired;
        the manager is back in IDLE in that case.
        """
        if self.state is not SessionState.IDLE:
            logger.warning("[LIVE] start ignored; session is %s", self.state.value)
            return False

        self.error = None
        self.last_exception = None
        self._stop_requested = False
        self._transition(SessionState.CONNECTING)
        self._set_status(STATUS_INITIALIZING)

        stack = AsyncExitStack()
        try:
            self._output = self._devices.open_output(OUTPUT_SAMPLE_RATE)
            stack.callback(self._release_output, self._output)
            self._capture = self._devices.open_input(INPUT_SAMPLE_RATE, FRAME_SIZE)
            stack.callback(self._release_capture, self._capture)
            try:
                self._stream = await stack.enter_async_context(
                    self._client.aio.live.connect(model=self._model, config=self._config)
                )
            except Exception as exc:
                raise ConnectionFailed(str(exc) or "Could not open realtime session") from exc
        except TrevelinError as exc:
            await self._close_stack(stack)
            self._clear_handles()
            self._transition(SessionState.IDLE)
            self._report_error(exc)
            self._set_status(STATUS_READY)
            return False
        except BaseException:
            # Cancelled while connecting: release what was opened, then propagate.
            await self._close_stack(stack)
            self._clear_handles()
            self._transition(SessionState.IDLE)
            self._set_status(STATUS_READY)
            raise

        self._stack = stack
        self._loop = asyncio.get_running_loop()
        self._frames = asyncio.Queue()
        self._idle = asyncio.Event()
        self.next_start_time = self._output.now()
        self._transition(SessionState.ACTIVE)
        logger.info("[LIVE] connected model=%s", self._model)
        self._set_status(STATUS_CONNECTED)

        self._tasks = [
            asyncio.create_task(self._send_loop()),
            asyncio.create_task(self._receive_loop()),
        ]

        if self._stop_requested:
            await self.stop()
            return False

        try:
            self._capture.start(self._on_captured_frame)
        except TrevelinError as exc:
            await self._shutdown(STATUS_READY, error=exc)
            return False
        return True

    async def stop(self) -> None:
        """User-initiated stop. Safe to call in any state."""
        if self.state is SessionState.CONNECTING:
            self._stop_requested = True
            return
        await self._shutdown(STATUS_READY)

    async def wait_closed(self) -> None:
        if self._idle is not None and self.state is not SessionState.IDLE:
            await self._idle.wait()

    def _on_captured_frame(self, samples: np.ndarray) -> None:
        # Runs on the audio thread; hand the frame to the event loop.
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._enqueue_frame, samples)

    def _enqueue_frame(self, samples: np.ndarray) -> None:
        if self.state is not SessionState.ACTIVE or self._frames is None:
            return
        self._frames.put_nowait(samples)

    async def _send_loop(self) -> None:
        frames = self._frames
        if frames is None:
            return
        while True:
            samples = await frames.get()
            if self.state is not SessionState.ACTIVE:
                continue

            self.level = mean_abs_level(samples)
            if self._on_level is not None:
                self._on_level(self.level)

            blob = types.Blob(data=float_to_pcm16(samples), mime_type=INPUT_MIME_TYPE)
            try:
                await self._stream.send_realtime_input(audio=blob)
            except Exception as exc:
                await self._shutdown(STATUS_READY, error=TransportError(str(exc)))
                return

    async def _receive_loop(self) -> None:
        try:
            while self.state is SessionState.ACTIVE:
                received = 0
                # receive() ends after each completed model turn.
                async for message in self._stream.receive():
                    received += 1
                    self.handle_message(message)
                if not received:
                    break
        except ConnectionClosedOK:
            pass
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            await self._shutdown(STATUS_READY, error=TransportError(str(exc)))
            return

        if self.state is SessionState.ACTIVE:
            logger.info("[LIVE] remote closed the session")
            await self._shutdown(STATUS_DISCONNECTED)

    def handle_message(self, message: Any) -> None:
        """Process one LiveServerMessage in arrival order."""
        server_content = getattr(message, "server_content", None)
        if server_content is None:
            return

        model_turn = getattr(server_content, "model_turn", None)
        for part in getattr(model_turn, "parts", None) or []:
            inline = getattr(part, "inline_data", None)
            data = getattr(inline, "data", None) if inline is not None else None
            if data:
                if isinstance(data, str):
                    data = base64.b64decode(data)
                self.schedule_chunk(bytes(data))

        if getattr(server_content, "interrupted", None) is True:
            self.interrupt()

        if getattr(server_content, "turn_complete", None) is True:
            logger.debug("[LIVE] turn complete")

    def schedule_chunk(self, pcm: bytes) -> PlaybackSegment | None:
        """Schedule one PCM16 chunk right after the previously scheduled one.

        A chunk that arrives late is clamped to the output clock's now.
        """
        output = self._output
        if self.state is not SessionState.ACTIVE or output is None:
            return None

        samples = pcm16_to_float(pcm)
        if not len(samples):
            return None

        start_at = max(self.next_start_time, output.now())
        segment = output.schedule(samples, start_at, self._segment_ended)
        self.next_start_time = segment.start_at + duration_seconds(samples, output.sample_rate)
        self._segments.add(segment)
        return segment

    def _segment_ended(self, segment: PlaybackSegment) -> None:
        self._segments.discard(segment)

    def interrupt(self) -> None:
        """Barge-in: silence every scheduled segment and restart the timeline at now."""
        for segment in list(self._segments):
            segment.stop()
        self._segments.clear()
        if self._output is not None:
            self.next_start_time = self._output.now()
        logger.info("[LIVE] interrupted by server")

    async def _shutdown(self, status: str, *, error: TrevelinError | None = None) -> None:
        if self.state is not SessionState.ACTIVE:
            return
        self._transition(SessionState.CLOSING)

        current = asyncio.current_task()
        pending = [t for t in self._tasks if t is not current and not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks = []

        for segment in list(self._segments):
            segment.stop()
        self._segments.clear()

        stack, self._stack = self._stack, None
        if stack is not None:
            await self._close_stack(stack)
        self._clear_handles()

        self._transition(SessionState.IDLE)
        if error is not None:
            message = TRANSPORT_ERROR_TEXT if isinstance(error, TransportError) else None
            self._report_error(error, message)
        logger.info("[LIVE] session closed (%s)", status)
        self._set_status(status)
        if self._idle is not None:
            self._idle.set()

    async def _close_stack(self, stack: AsyncExitStack) -> None:
        try:
            await stack.aclose()
        except Exception as exc:
            logger.warning("[LIVE] error while releasing session resources: %s", exc)

    def _clear_handles(self) -> None:
        self._stream = None
        self._capture = None
        self._output = None
        self._frames = None
        self._loop = None
        self.next_start_time = 0.0
        self.level = 0.0

    @staticmethod
    def _release_capture(capture: AudioInput) -> None:
        capture.close()

    @staticmethod
    def _release_output(output: AudioOutput) -> None:
        output.close()
