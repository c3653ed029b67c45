from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from google import genai
from google.genai import types

from audio_utils import pcm_s16le_to_wav
from errors import RemoteRequestFailed
from gemini_client import OUTPUT_SAMPLE_RATE, TTS_VOICE, first_inline_data, remote_call, response_text, speech_config
from schemas import MediaInput, ModelType


logger = logging.getLogger(__name__)

TRANSCRIBE_PROMPT = "Transcribe this audio exactly."


@dataclass(frozen=True)
class Speech:
    pcm: bytes
    sample_rate: int = OUTPUT_SAMPLE_RATE

    def to_wav(self) -> bytes:
        return pcm_s16le_to_wav(self.pcm, sample_rate=self.sample_rate, channels=1)


class AudioLab:
    def __init__(self, client: genai.Client, *, voice_name: str = TTS_VOICE) -> None:
        self.client = client
        self.voice_name = voice_name

    @remote_call
    def _generate(self, model: ModelType, parts: list[types.Part], config: types.GenerateContentConfig | None = None) -> Any:
        return self.client.models.generate_content(
            model=model.value,
            contents=types.Content(role="user", parts=parts),
            config=config,
        )

    def speak(self, text: str) -> Speech:
        """Synthesize ``text`` as 24kHz mono PCM16."""
        text = text.strip()
        if not text:
            raise ValueError("Nothing to speak")
        logger.info("[SPEAK] voice=%s chars=%d", self.voice_name, len(text))
        response = self._generate(
            ModelType.TTS,
            [types.Part.from_text(text=f"Say cheerfully: {text}")],
            types.GenerateContentConfig(
                response_modalities=[types.Modality.AUDIO],
                speech_config=speech_config(self.voice_name),
            ),
        )
        inline = first_inline_data(response)
        if inline is None:
            raise RemoteRequestFailed("No audio generated.")
        return Speech(pcm=bytes(inline.data))

    def transcribe(self, audio: MediaInput) -> str:
        logger.info("[TRANSCRIBE] mime=%s bytes=%d", audio.mime_type, len(audio.data))
        response = self._generate(
            ModelType.FLASH,
            [
                types.Part.from_bytes(data=audio.data, mime_type=audio.mime_type),
                types.Part.from_text(text=TRANSCRIBE_PROMPT),
            ],
        )
        text = response_text(response).strip()
        if not text:
            raise RemoteRequestFailed("No transcription.")
        return text
