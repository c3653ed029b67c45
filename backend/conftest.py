from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any, Callable

import numpy as np
import pytest
from google.genai import types


# --- generate_content fakes -------------------------------------------------


def text_response(text: str) -> types.GenerateContentResponse:
    return types.GenerateContentResponse(
        candidates=[
            types.Candidate(content=types.Content(role="model", parts=[types.Part.from_text(text=text)]))
        ]
    )


def inline_response(data: bytes, mime_type: str) -> types.GenerateContentResponse:
    return types.GenerateContentResponse(
        candidates=[
            types.Candidate(
                content=types.Content(
                    role="model",
                    parts=[types.Part(inline_data=types.Blob(data=data, mime_type=mime_type))],
                )
            )
        ]
    )


def empty_response() -> types.GenerateContentResponse:
    return types.GenerateContentResponse(candidates=[])


class FakeModels:
    def __init__(self) -> None:
        self.responses: list[Any] = []
        self.error: Exception | None = None
        self.calls: list[dict[str, Any]] = []
        self.video_calls: list[dict[str, Any]] = []
        self.video_operation: Any = None

    def generate_content(self, *, model: str, contents: Any, config: Any = None) -> Any:
        self.calls.append({"model": model, "contents": contents, "config": config})
        if self.error is not None:
            raise self.error
        return self.responses.pop(0)

    def generate_videos(self, *, model: str, prompt: str, image: Any = None, config: Any = None) -> Any:
        self.video_calls.append({"model": model, "prompt": prompt, "image": image, "config": config})
        if self.error is not None:
            raise self.error
        return self.video_operation


class FakeOperations:
    def __init__(self) -> None:
        self.queue: list[Any] = []
        self.polled: list[Any] = []

    def get(self, operation: Any) -> Any:
        self.polled.append(operation)
        return self.queue.pop(0)


class FakeFiles:
    def __init__(self) -> None:
        self.data = b""
        self.downloaded: list[Any] = []

    def download(self, *, file: Any) -> bytes:
        self.downloaded.append(file)
        return self.data


# --- Live API fakes ---------------------------------------------------------

REMOTE_CLOSE = object()


class FakeLiveStream:
    """Mimics AsyncSession: receive() ends after each completed turn."""

    def __init__(self) -> None:
        self.inbox: asyncio.Queue[Any] = asyncio.Queue()
        self.sent: list[types.Blob] = []
        self.send_error: Exception | None = None

    async def send_realtime_input(self, *, audio: types.Blob) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(audio)

    async def receive(self):
        while True:
            item = await self.inbox.get()
            if item is REMOTE_CLOSE:
                return
            if isinstance(item, Exception):
                raise item
            yield item
            server_content = getattr(item, "server_content", None)
            if server_content is not None and server_content.turn_complete:
                return


class FakeLiveConnection:
    def __init__(self, live: FakeLive) -> None:
        self._live = live

    async def __aenter__(self) -> FakeLiveStream:
        if self._live.connect_gate is not None:
            await self._live.connect_gate.wait()
        if self._live.connect_error is not None:
            raise self._live.connect_error
        self._live.stream = FakeLiveStream()
        return self._live.stream

    async def __aexit__(self, *exc_info: Any) -> None:
        self._live.exit_count += 1


class FakeLive:
    def __init__(self) -> None:
        self.connect_error: Exception | None = None
        self.connect_gate: asyncio.Event | None = None
        self.connects: list[dict[str, Any]] = []
        self.stream: FakeLiveStream | None = None
        self.exit_count = 0

    def connect(self, *, model: str, config: Any) -> FakeLiveConnection:
        self.connects.append({"model": model, "config": config})
        return FakeLiveConnection(self)


class FakeClient:
    def __init__(self) -> None:
        self.models = FakeModels()
        self.operations = FakeOperations()
        self.files = FakeFiles()
        self.live = FakeLive()
        self.aio = SimpleNamespace(live=self.live)


# --- audio device fakes -----------------------------------------------------


class FakeSegment:
    def __init__(self, samples: np.ndarray, start_at: float, duration: float, on_ended: Callable[[Any], None]) -> None:
        self.samples = samples
        self.start_at = start_at
        self.duration = duration
        self.on_ended = on_ended
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True


class FakeOutput:
    def __init__(self, sample_rate: int) -> None:
        self.sample_rate = sample_rate
        self.clock = 0.0
        self.scheduled: list[FakeSegment] = []
        self.close_count = 0

    def now(self) -> float:
        return self.clock

    def schedule(self, samples: np.ndarray, start_at: float, on_ended: Callable[[Any], None]) -> FakeSegment:
        segment = FakeSegment(samples, start_at, len(samples) / self.sample_rate, on_ended)
        self.scheduled.append(segment)
        return segment

    def finish(self, segment: FakeSegment) -> None:
        segment.on_ended(segment)

    def close(self) -> None:
        self.close_count += 1


class FakeCapture:
    def __init__(self) -> None:
        self.on_frame: Callable[[np.ndarray], None] | None = None
        self.close_count = 0

    def start(self, on_frame: Callable[[np.ndarray], None]) -> None:
        self.on_frame = on_frame

    def emit(self, samples: np.ndarray) -> None:
        assert self.on_frame is not None
        self.on_frame(samples)

    def close(self) -> None:
        self.close_count += 1


class FakeDevices:
    def __init__(self, *, input_error: Exception | None = None, start_clock: float = 0.0) -> None:
        self.input_error = input_error
        self.start_clock = start_clock
        self.capture: FakeCapture | None = None
        self.output: FakeOutput | None = None

    def open_input(self, sample_rate: int, frame_size: int) -> FakeCapture:
        if self.input_error is not None:
            raise self.input_error
        self.capture = FakeCapture()
        return self.capture

    def open_output(self, sample_rate: int) -> FakeOutput:
        self.output = FakeOutput(sample_rate)
        self.output.clock = self.start_clock
        return self.output


@pytest.fixture
def fake_client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def no_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("GEMINI_API_KEY", "GOOGLE_API_KEY", "API_KEY"):
        monkeypatch.delenv(name, raising=False)
