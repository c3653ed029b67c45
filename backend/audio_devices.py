"""Local microphone capture and scheduled playback on top of sounddevice."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Callable

import numpy as np
import sounddevice as sd

from audio_utils import pcm16_to_float
from errors import DeviceUnavailable, PermissionDenied


logger = logging.getLogger(__name__)

_PERMISSION_MARKERS = ("permission", "denied", "not authorized", "not permitted")


def _device_error(exc: Exception, what: str) -> Exception:
    message = str(exc) or type(exc).__name__
    if any(marker in message.lower() for marker in _PERMISSION_MARKERS):
        return PermissionDenied(f"{what} access was refused: {message}")
    return DeviceUnavailable(f"{what} unavailable: {message}")


class MicrophoneCapture:
    """Mono float32 input stream delivering fixed-size frames to a callback."""

    def __init__(self, sample_rate: int, frame_size: int, device: Any = None) -> None:
        self._on_frame: Callable[[np.ndarray], None] | None = None
        self.closed = False
        try:
            self._stream = sd.InputStream(
                samplerate=sample_rate,
                blocksize=frame_size,
                channels=1,
                dtype="float32",
                device=device,
                callback=self._callback,
            )
        except (sd.PortAudioError, ValueError) as exc:
            raise _device_error(exc, "Microphone") from exc

    def _callback(self, indata: np.ndarray, frames: int, time_info: Any, status: sd.CallbackFlags) -> None:
        if status:
            logger.debug("[MIC] %s", status)
        on_frame = self._on_frame
        if on_frame is not None:
            on_frame(indata[:, 0].copy())

    def start(self, on_frame: Callable[[np.ndarray], None]) -> None:
        self._on_frame = on_frame
        try:
            self._stream.start()
        except sd.PortAudioError as exc:
            raise _device_error(exc, "Microphone") from exc

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._on_frame = None
        try:
            self._stream.stop()
        finally:
            self._stream.close()


class _Segment:
    def __init__(
        self,
        timeline: PlaybackTimeline,
        samples: np.ndarray,
        start_frame: int,
        on_ended: Callable[[Any], None],
    ) -> None:
        self._timeline = timeline
        self.samples = samples
        self.start_frame = start_frame
        self.on_ended = on_ended
        self.start_at = start_frame / timeline.sample_rate
        self.duration = len(samples) / timeline.sample_rate

    @property
    def end_frame(self) -> int:
        return self.start_frame + len(self.samples)

    def stop(self) -> None:
        self._timeline._discard(self)


class PlaybackTimeline:
    """Output stream whose clock is the number of frames handed to the device.

    Segments are mixed into the stream starting at their scheduled frame, so
    back-to-back segments play without gaps.
    """

    def __init__(self, sample_rate: int, device: Any = None) -> None:
        self.sample_rate = sample_rate
        self._loop = asyncio.get_running_loop()
        self._lock = threading.Lock()
        self._frame = 0
        self._segments: list[_Segment] = []
        self.closed = False
        try:
            self._stream = sd.OutputStream(
                samplerate=sample_rate,
                channels=1,
                dtype="float32",
                device=device,
                callback=self._callback,
            )
            self._stream.start()
        except (sd.PortAudioError, ValueError) as exc:
            raise _device_error(exc, "Audio output") from exc

    def now(self) -> float:
        with self._lock:
            return self._frame / self.sample_rate

    def schedule(self, samples: np.ndarray, start_at: float, on_ended: Callable[[Any], None]) -> _Segment:
        with self._lock:
            # A block may have been rendered since the caller read now().
            start_frame = max(round(start_at * self.sample_rate), self._frame)
            segment = _Segment(self, samples, start_frame, on_ended)
            self._segments.append(segment)
        return segment

    def _discard(self, segment: _Segment) -> None:
        with self._lock:
            if segment in self._segments:
                self._segments.remove(segment)

    def _callback(self, outdata: np.ndarray, frames: int, time_info: Any, status: sd.CallbackFlags) -> None:
        if status:
            logger.debug("[PLAYBACK] %s", status)
        outdata.fill(0)
        finished: list[_Segment] = []
        with self._lock:
            block_start = self._frame
            block_end = block_start + frames
            for segment in self._segments:
                lo = max(block_start, segment.start_frame)
                hi = min(block_end, segment.end_frame)
                if hi > lo:
                    src = segment.samples[lo - segment.start_frame : hi - segment.start_frame]
                    outdata[lo - block_start : hi - block_start] += src
                if segment.end_frame <= block_end:
                    finished.append(segment)
            for segment in finished:
                self._segments.remove(segment)
            self._frame = block_end
        np.clip(outdata, -1.0, 1.0, out=outdata)

        if finished and not self._loop.is_closed():
            for segment in finished:
                self._loop.call_soon_threadsafe(segment.on_ended, segment)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        with self._lock:
            self._segments.clear()
        try:
            self._stream.stop()
        finally:
            self._stream.close()


class SoundDeviceAudio:
    """Default devices of this machine, for RealtimeSessionManager."""

    def __init__(self, input_device: Any = None, output_device: Any = None) -> None:
        self.input_device = input_device
        self.output_device = output_device

    def open_input(self, sample_rate: int, frame_size: int) -> MicrophoneCapture:
        return MicrophoneCapture(sample_rate, frame_size, device=self.input_device)

    def open_output(self, sample_rate: int) -> PlaybackTimeline:
        return PlaybackTimeline(sample_rate, device=self.output_device)


def play_pcm(pcm: bytes, sample_rate: int, device: Any = None) -> None:
    """Play a complete PCM16 mono clip and block until it finishes."""
    samples = pcm16_to_float(pcm)
    try:
        sd.play(samples, samplerate=sample_rate, device=device)
        sd.wait()
    except sd.PortAudioError as exc:
        raise _device_error(exc, "Audio output") from exc
