from __future__ import annotations

import functools
import logging
import os
import random
import time
from typing import Any, Callable, TypeVar

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from errors import AuthenticationMissing, RemoteRequestFailed, TrevelinError
from schemas import ModelType


logger = logging.getLogger(__name__)

T = TypeVar("T")

API_KEY_ENV_VARS = ("GEMINI_API_KEY", "GOOGLE_API_KEY", "API_KEY")

LIVE_MODEL = os.getenv("TREVELIN_LIVE_MODEL", ModelType.AUDIO_REALTIME.value)
LIVE_VOICE = os.getenv("TREVELIN_LIVE_VOICE", "Zephyr")
TTS_VOICE = os.getenv("TREVELIN_TTS_VOICE", "Kore")

SYSTEM_INSTRUCTION = os.getenv(
    "TREVELIN_SYSTEM_INSTRUCTION",
    "You are Trevelin, a helpful and futuristic AI assistant. Keep responses concise and engaging.",
).strip()

# Wire formats of the Live API: PCM16 mono in both directions.
INPUT_SAMPLE_RATE = 16000
OUTPUT_SAMPLE_RATE = 24000
INPUT_MIME_TYPE = f"audio/pcm;rate={INPUT_SAMPLE_RATE}"

RETRYABLE_STATUS_CODES = {429, 500, 503, 504}


def get_api_key() -> str | None:
    for name in API_KEY_ENV_VARS:
        val = (os.getenv(name) or "").strip()
        if val:
            return val
    return None


def require_api_key() -> str:
    api_key = get_api_key()
    if not api_key:
        raise AuthenticationMissing(
            "Missing API key. Set GEMINI_API_KEY (or GOOGLE_API_KEY / API_KEY) and restart."
        )
    return api_key


def make_client(api_key: str | None = None) -> genai.Client:
    return genai.Client(api_key=api_key or require_api_key())


def speech_config(voice_name: str) -> types.SpeechConfig:
    return types.SpeechConfig(
        voice_config=types.VoiceConfig(
            prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=voice_name)
        ),
    )


def build_live_config(
    *,
    voice_name: str = LIVE_VOICE,
    system_instruction: str = SYSTEM_INSTRUCTION,
) -> types.LiveConnectConfig:
    """One-time session configuration sent when the Live connection opens."""
    return types.LiveConnectConfig(
        response_modalities=[types.Modality.AUDIO],
        speech_config=speech_config(voice_name),
        system_instruction=system_instruction,
    )


def response_parts(response: Any) -> list[types.Part]:
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return []
    content = getattr(candidates[0], "content", None)
    return list(getattr(content, "parts", None) or [])


def first_inline_data(response: Any) -> types.Blob | None:
    for part in response_parts(response):
        inline = getattr(part, "inline_data", None)
        if inline is not None and getattr(inline, "data", None):
            return inline
    return None


def response_text(response: Any) -> str:
    text = getattr(response, "text", None)
    if text:
        return str(text)
    return "".join(p.text for p in response_parts(response) if getattr(p, "text", None))


def _is_retryable(exc: genai_errors.APIError) -> bool:
    if getattr(exc, "code", None) in RETRYABLE_STATUS_CODES:
        return True
    status = str(getattr(exc, "status", "") or "")
    return status in {"RESOURCE_EXHAUSTED", "UNAVAILABLE", "DEADLINE_EXCEEDED"}


def remote_call(
    func: Callable[..., T] | None = None,
    *,
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 16.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    sleep: Callable[[float], None] = time.sleep,
) -> Any:
    """Retry transient API errors with exponential backoff, then surface the
    failure as RemoteRequestFailed.

    Handles 429 RESOURCE_EXHAUSTED and 5xx responses; anything else, including
    network errors, fails on the first attempt.
    """

    def decorate(fn: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            retries = 0
            delay = initial_delay
            while True:
                try:
                    return fn(*args, **kwargs)
                except genai_errors.APIError as exc:
                    if not _is_retryable(exc) or retries >= max_retries:
                        if retries:
                            logger.warning("[RETRY] %s giving up after %d retries", fn.__name__, retries)
                        raise RemoteRequestFailed(getattr(exc, "message", None) or str(exc)) from exc

                    wait_time = min(delay, max_delay)
                    if jitter:
                        wait_time = wait_time * (0.5 + random.random())

                    retries += 1
                    logger.warning(
                        "[RETRY] %s attempt %d/%d failed with %s; retrying in %.1fs",
                        fn.__name__,
                        retries,
                        max_retries,
                        getattr(exc, "code", type(exc).__name__),
                        wait_time,
                    )
                    sleep(wait_time)
                    delay *= exponential_base
                except TrevelinError:
                    raise
                except Exception as exc:
                    # Transport failures below the API layer (httpx, google.auth).
                    logger.error("[RETRY] %s failed: %s: %s", fn.__name__, type(exc).__name__, exc)
                    raise RemoteRequestFailed(str(exc) or type(exc).__name__) from exc

        return wrapper

    if func is not None:
        return decorate(func)
    return decorate
