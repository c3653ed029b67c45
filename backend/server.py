from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from typing import Any, Literal

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from google import genai
from pydantic import BaseModel, Field

from audio_lab import AudioLab
from chat import ChatOptions, ChatService
from errors import AuthenticationMissing, RemoteRequestFailed
from gemini_client import make_client
from media_studio import MediaStudio
from schemas import (
    CHAT_MODELS,
    AppView,
    ImageConfig,
    MediaInput,
    Message,
    ModelType,
    VideoConfig,
)
from video_analysis import VideoAnalyzer


logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4000
# Inline request payloads are capped at 20MB by the API.
MAX_UPLOAD_BYTES = 20 * 1024 * 1024

VIEW_LABELS = {
    AppView.DASHBOARD: "Chat Intelligence",
    AppView.LIVE: "Live Voice",
    AppView.STUDIO: "Media Studio",
    AppView.AUDIO_LAB: "Audio Lab",
    AppView.ANALYSIS: "Video Vision",
}


@dataclass
class Services:
    chat: ChatService
    studio: MediaStudio
    audio: AudioLab
    analysis: VideoAnalyzer

    @classmethod
    def from_client(cls, client: genai.Client) -> Services:
        return cls(
            chat=ChatService(client),
            studio=MediaStudio(client),
            audio=AudioLab(client),
            analysis=VideoAnalyzer(client),
        )


class MediaPayload(BaseModel):
    mime_type: str = Field(min_length=1)
    data_b64: str = Field(min_length=1)


class MediaResponse(BaseModel):
    mime_type: str
    data_b64: str


class TextResponse(BaseModel):
    text: str


class ChatTurn(BaseModel):
    role: Literal["user", "model"]
    text: str = Field(max_length=MAX_MESSAGE_LENGTH * 4)


class ChatRequest(BaseModel):
    messages: list[ChatTurn] = Field(min_length=1)
    model: ModelType = ModelType.PRO
    thinking: bool = False
    search: bool = False
    maps: bool = False
    latitude: float | None = None
    longitude: float | None = None


class ImageRequest(BaseModel):
    prompt: str = Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)
    size: Literal["1K", "2K", "4K"] = "1K"
    aspect_ratio: Literal["1:1", "3:4", "4:3", "9:16", "16:9"] = "1:1"


class EditRequest(BaseModel):
    prompt: str = Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)
    image: MediaPayload


class VideoRequest(BaseModel):
    prompt: str = Field(default="", max_length=MAX_MESSAGE_LENGTH)
    image: MediaPayload | None = None
    resolution: Literal["720p", "1080p"] = "720p"
    aspect_ratio: Literal["16:9", "9:16"] = "16:9"


class SpeakRequest(BaseModel):
    text: str = Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)


def _decode_media(payload: MediaPayload, kind: str) -> MediaInput:
    mime_type = payload.mime_type.strip().lower()
    if not mime_type.startswith(f"{kind}/"):
        raise HTTPException(status_code=400, detail=f"invalid {kind} mime_type")
    if len(payload.data_b64) > MAX_UPLOAD_BYTES * 2:
        raise HTTPException(status_code=413, detail=f"{kind} too large")
    try:
        data = base64.b64decode(payload.data_b64, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="invalid base64")
    if len(data) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail=f"{kind} too large")
    return MediaInput(data=data, mime_type=mime_type)


def _media_response(data: bytes, mime_type: str) -> MediaResponse:
    return MediaResponse(mime_type=mime_type, data_b64=base64.b64encode(data).decode("ascii"))


def _message_json(message: Message) -> dict[str, Any]:
    return asdict(message)


async def _run(func: Any, *args: Any, **kwargs: Any) -> Any:
    # SDK calls are blocking; keep the event loop responsive.
    try:
        return await asyncio.to_thread(func, *args, **kwargs)
    except RemoteRequestFailed as exc:
        logger.error("[API] %s failed: %s", getattr(func, "__name__", func), exc)
        raise HTTPException(status_code=502, detail=str(exc))


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        detail = getattr(request.app.state, "startup_error", None) or "Service not configured"
        raise HTTPException(status_code=503, detail=detail)
    return services


def create_app(services: Services | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.services is None:
            try:
                app.state.services = Services.from_client(make_client())
            except AuthenticationMissing as exc:
                app.state.startup_error = str(exc)
                logger.error("[STARTUP] %s", exc)
        yield

    app = FastAPI(title="Trevelin API", lifespan=lifespan)
    app.state.services = services
    app.state.startup_error = None

    # CORS: allow a browser front-end served from another origin to call the API.
    cors_env = (os.getenv("TREVELIN_CORS_ORIGINS") or "").strip()
    if cors_env:
        cors_origins = [o.strip() for o in cors_env.split(",") if o.strip()]
    else:
        cors_origins = ["http://127.0.0.1:5173", "http://localhost:5173"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health(request: Request) -> dict[str, Any]:
        configured = request.app.state.services is not None
        return {
            "status": "ok" if configured else "missing_credentials",
            "detail": request.app.state.startup_error,
        }

    @app.get("/views")
    async def views() -> list[dict[str, str]]:
        return [{"view": view.value, "label": label} for view, label in VIEW_LABELS.items()]

    @app.post("/chat")
    async def post_chat(payload: ChatRequest, services: Services = Depends(get_services)) -> dict[str, Any]:
        if payload.messages[-1].role != "user" or not payload.messages[-1].text.strip():
            raise HTTPException(status_code=400, detail="last message must be a non-empty user turn")
        if payload.model not in CHAT_MODELS:
            raise HTTPException(status_code=400, detail=f"unsupported chat model {payload.model.value}")

        history = [Message(role=turn.role, text=turn.text) for turn in payload.messages]
        options = ChatOptions(
            model=payload.model,
            thinking=payload.thinking,
            search=payload.search,
            maps=payload.maps,
            latitude=payload.latitude,
            longitude=payload.longitude,
        )
        reply = await asyncio.to_thread(services.chat.reply, history, options)
        return {"message": _message_json(reply)}

    @app.post("/studio/image", response_model=MediaResponse)
    async def post_image(payload: ImageRequest, services: Services = Depends(get_services)) -> MediaResponse:
        config = ImageConfig(size=payload.size, aspect_ratio=payload.aspect_ratio)
        result = await _run(services.studio.generate_image, payload.prompt, config)
        return _media_response(result.data, result.mime_type)

    @app.post("/studio/edit", response_model=MediaResponse)
    async def post_edit(payload: EditRequest, services: Services = Depends(get_services)) -> MediaResponse:
        image = _decode_media(payload.image, "image")
        result = await _run(services.studio.edit_image, image, payload.prompt)
        return _media_response(result.data, result.mime_type)

    @app.post("/studio/video")
    async def post_video(payload: VideoRequest, services: Services = Depends(get_services)) -> Response:
        image = _decode_media(payload.image, "image") if payload.image is not None else None
        if image is None and not payload.prompt.strip():
            raise HTTPException(status_code=400, detail="prompt is required without an image")
        config = VideoConfig(resolution=payload.resolution, aspect_ratio=payload.aspect_ratio)
        result = await _run(
            services.studio.generate_video,
            payload.prompt,
            image=image,
            config=config,
            on_progress=lambda status: logger.info("[STUDIO] %s", status),
        )
        return Response(content=result.data, media_type=result.mime_type)

    @app.post("/audio/speak")
    async def post_speak(payload: SpeakRequest, services: Services = Depends(get_services)) -> Response:
        if not payload.text.strip():
            raise HTTPException(status_code=400, detail="Empty text")
        speech = await _run(services.audio.speak, payload.text)
        return Response(content=speech.to_wav(), media_type="audio/wav")

    @app.post("/audio/transcribe", response_model=TextResponse)
    async def post_transcribe(payload: MediaPayload, services: Services = Depends(get_services)) -> TextResponse:
        audio = _decode_media(payload, "audio")
        return TextResponse(text=await _run(services.audio.transcribe, audio))

    @app.post("/analysis/video", response_model=TextResponse)
    async def post_analysis(payload: MediaPayload, services: Services = Depends(get_services)) -> TextResponse:
        video = _decode_media(payload, "video")
        return TextResponse(text=await _run(services.analysis.analyze, video))

    return app


app = create_app()
