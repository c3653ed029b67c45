from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Literal


class AppView(str, Enum):
    DASHBOARD = "DASHBOARD"  # Chat, Search, Maps, Thinking
    LIVE = "LIVE"  # Realtime voice
    STUDIO = "STUDIO"  # Image gen, edit, Veo video
    AUDIO_LAB = "AUDIO_LAB"  # TTS, transcription
    ANALYSIS = "ANALYSIS"  # Video understanding


class ModelType(str, Enum):
    PRO = "gemini-3-pro-preview"
    FLASH = "gemini-3-flash-preview"
    FLASH_LITE = "gemini-2.5-flash-lite"
    MAPS_MODEL = "gemini-2.5-flash"
    IMAGE_GEN = "gemini-3-pro-image-preview"
    IMAGE_EDIT = "gemini-2.5-flash-image"
    VIDEO_FAST = "veo-3.1-fast-generate-preview"
    TTS = "gemini-2.5-flash-preview-tts"
    AUDIO_REALTIME = "gemini-2.5-flash-native-audio-preview-12-2025"


CHAT_MODELS = (ModelType.PRO, ModelType.FLASH, ModelType.FLASH_LITE)

Role = Literal["user", "model", "system"]

IMAGE_SIZES = ("1K", "2K", "4K")
IMAGE_ASPECT_RATIOS = ("1:1", "3:4", "4:3", "9:16", "16:9")
VIDEO_RESOLUTIONS = ("720p", "1080p")
VIDEO_ASPECT_RATIOS = ("16:9", "9:16")


def _new_message_id() -> str:
    return str(time.time_ns())


@dataclass
class GroundingLink:
    uri: str
    title: str


@dataclass
class Grounding:
    search: list[GroundingLink] = field(default_factory=list)
    maps: list[GroundingLink] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.search and not self.maps


@dataclass
class Message:
    role: Role
    text: str | None = None
    id: str = field(default_factory=_new_message_id)
    grounding: Grounding | None = None
    is_thinking: bool = False
    is_error: bool = False


@dataclass(frozen=True)
class MediaInput:
    """Raw bytes of an uploaded file plus its MIME type."""

    data: bytes
    mime_type: str


@dataclass(frozen=True)
class ImageConfig:
    size: str = "1K"
    aspect_ratio: str = "1:1"

    def __post_init__(self) -> None:
        if self.size not in IMAGE_SIZES:
            raise ValueError(f"Unsupported image size: {self.size}")
        if self.aspect_ratio not in IMAGE_ASPECT_RATIOS:
            raise ValueError(f"Unsupported image aspect ratio: {self.aspect_ratio}")


@dataclass(frozen=True)
class VideoConfig:
    resolution: str = "720p"
    aspect_ratio: str = "16:9"

    def __post_init__(self) -> None:
        if self.resolution not in VIDEO_RESOLUTIONS:
            raise ValueError(f"Unsupported video resolution: {self.resolution}")
        if self.aspect_ratio not in VIDEO_ASPECT_RATIOS:
            raise ValueError(f"Unsupported video aspect ratio: {self.aspect_ratio}")
