from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Callable

from google import genai
from google.genai import types

from errors import RemoteRequestFailed
from gemini_client import first_inline_data, remote_call
from schemas import ImageConfig, MediaInput, ModelType, VideoConfig


logger = logging.getLogger(__name__)

VIDEO_POLL_SECONDS = float(os.getenv("TREVELIN_VIDEO_POLL_SECONDS", "5"))
DEFAULT_ANIMATION_PROMPT = "Animate this image"
KEY_ACCESS_HINT = (
    "Requested entity was not found. Check that your API key has access to the video model."
)

ProgressCallback = Callable[[str], None]


@dataclass(frozen=True)
class GeneratedMedia:
    data: bytes
    mime_type: str


class MediaStudio:
    """Image generation/editing and Veo video jobs."""

    def __init__(
        self,
        client: genai.Client,
        *,
        poll_interval: float = VIDEO_POLL_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock

    @remote_call
    def _generate_content(self, model: ModelType, parts: list[types.Part], config: types.GenerateContentConfig | None = None) -> Any:
        return self.client.models.generate_content(
            model=model.value,
            contents=types.Content(role="user", parts=parts),
            config=config,
        )

    def generate_image(self, prompt: str, config: ImageConfig | None = None) -> GeneratedMedia:
        config = config or ImageConfig()
        logger.info("[STUDIO] generate image size=%s aspect=%s", config.size, config.aspect_ratio)
        response = self._generate_content(
            ModelType.IMAGE_GEN,
            [types.Part.from_text(text=prompt)],
            types.GenerateContentConfig(
                image_config=types.ImageConfig(aspect_ratio=config.aspect_ratio, image_size=config.size),
            ),
        )
        return self._image_result(response, "No image generated. Check prompt.")

    def edit_image(self, image: MediaInput, prompt: str) -> GeneratedMedia:
        logger.info("[STUDIO] edit image mime=%s bytes=%d", image.mime_type, len(image.data))
        response = self._generate_content(
            ModelType.IMAGE_EDIT,
            [
                types.Part.from_bytes(data=image.data, mime_type=image.mime_type),
                types.Part.from_text(text=prompt),
            ],
        )
        return self._image_result(response, "No image returned.")

    @staticmethod
    def _image_result(response: Any, empty_message: str) -> GeneratedMedia:
        inline = first_inline_data(response)
        if inline is None:
            raise RemoteRequestFailed(empty_message)
        return GeneratedMedia(data=bytes(inline.data), mime_type=inline.mime_type or "image/png")

    def generate_video(
        self,
        prompt: str,
        *,
        image: MediaInput | None = None,
        config: VideoConfig | None = None,
        on_progress: ProgressCallback | None = None,
        timeout: float | None = None,
    ) -> GeneratedMedia:
        """Submit a Veo job, poll it until it finishes and download the video.

        With ``image`` the job animates that image. There is no client-side
        deadline unless ``timeout`` is given.
        """
        config = config or VideoConfig()
        report = on_progress or (lambda _status: None)
        if image is not None:
            prompt = prompt.strip() or DEFAULT_ANIMATION_PROMPT
            report("Animating (this takes minutes)...")
        else:
            report("Generating Video (this takes minutes)...")

        try:
            operation = self._submit_video(prompt, image, config)
            started = self._clock()
            while not operation.done:
                if timeout is not None and self._clock() - started > timeout:
                    raise RemoteRequestFailed(f"Video generation did not finish within {timeout:.0f}s.")
                self._sleep(self.poll_interval)
                operation = self._poll(operation)
                state = (getattr(operation, "metadata", None) or {}).get("state") or "processing"
                report(f"Rendering... {state}")
        except RemoteRequestFailed as exc:
            if "Requested entity was not found" in str(exc):
                raise RemoteRequestFailed(KEY_ACCESS_HINT) from exc
            raise

        error = getattr(operation, "error", None)
        if error:
            raise RemoteRequestFailed(str(error.get("message") if isinstance(error, dict) else error))

        response = getattr(operation, "response", None) or getattr(operation, "result", None)
        generated = getattr(response, "generated_videos", None) or []
        video = getattr(generated[0], "video", None) if generated else None
        if video is None:
            raise RemoteRequestFailed("Failed to generate video.")

        data = self._download(video)
        report("Complete")
        return GeneratedMedia(data=data, mime_type=getattr(video, "mime_type", None) or "video/mp4")

    @remote_call
    def _submit_video(self, prompt: str, image: MediaInput | None, config: VideoConfig) -> Any:
        logger.info("[STUDIO] submit video job animate=%s resolution=%s", image is not None, config.resolution)
        return self.client.models.generate_videos(
            model=ModelType.VIDEO_FAST.value,
            prompt=prompt,
            image=(
                types.Image(image_bytes=image.data, mime_type=image.mime_type)
                if image is not None
                else None
            ),
            config=types.GenerateVideosConfig(
                number_of_videos=1,
                resolution=config.resolution,
                aspect_ratio=config.aspect_ratio,
            ),
        )

    @remote_call
    def _poll(self, operation: Any) -> Any:
        return self.client.operations.get(operation)

    @remote_call
    def _download(self, video: Any) -> bytes:
        if getattr(video, "video_bytes", None):
            return bytes(video.video_bytes)
        return self.client.files.download(file=video)
