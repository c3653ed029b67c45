from __future__ import annotations

import logging

from google import genai
from google.genai import types

from errors import RemoteRequestFailed
from gemini_client import remote_call, response_text
from schemas import MediaInput, ModelType


logger = logging.getLogger(__name__)

ANALYSIS_PROMPT = (
    "Analyze this video in detail. Describe the key events, visual style, and any text present."
)


class VideoAnalyzer:
    def __init__(self, client: genai.Client, *, prompt: str = ANALYSIS_PROMPT) -> None:
        self.client = client
        self.prompt = prompt

    @remote_call
    def analyze(self, video: MediaInput) -> str:
        logger.info("[ANALYSIS] mime=%s bytes=%d", video.mime_type, len(video.data))
        response = self.client.models.generate_content(
            model=ModelType.PRO.value,
            contents=types.Content(
                role="user",
                parts=[
                    types.Part.from_bytes(data=video.data, mime_type=video.mime_type),
                    types.Part.from_text(text=self.prompt),
                ],
            ),
        )
        text = response_text(response).strip()
        if not text:
            raise RemoteRequestFailed("No analysis generated.")
        return text
