from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from google import genai
from google.genai import types

from errors import TrevelinError, status_text
from gemini_client import remote_call, response_text
from schemas import CHAT_MODELS, Grounding, GroundingLink, Message, ModelType


logger = logging.getLogger(__name__)

THINKING_BUDGET = 32768
EMPTY_REPLY_TEXT = "I couldn't generate a text response."


@dataclass(frozen=True)
class ChatOptions:
    """Tool switches of one chat turn. At most one of them is honoured,
    in the order thinking, search, maps."""

    model: ModelType = ModelType.PRO
    thinking: bool = False
    search: bool = False
    maps: bool = False
    latitude: float | None = None
    longitude: float | None = None

    def __post_init__(self) -> None:
        if self.model not in CHAT_MODELS:
            raise ValueError(f"Unsupported chat model: {self.model.value}")


def resolve_request(options: ChatOptions) -> tuple[ModelType, types.GenerateContentConfig]:
    model = options.model
    tools: list[types.Tool] = []
    config_kwargs: dict[str, Any] = {}

    if options.thinking:
        model = ModelType.PRO
        config_kwargs["thinking_config"] = types.ThinkingConfig(thinking_budget=THINKING_BUDGET)
    elif options.search:
        model = ModelType.FLASH
        tools.append(types.Tool(google_search=types.GoogleSearch()))
    elif options.maps:
        model = ModelType.MAPS_MODEL
        tools.append(types.Tool(google_maps=types.GoogleMaps()))
        # Proceed without retrieval config when no location is known.
        if options.latitude is not None and options.longitude is not None:
            config_kwargs["tool_config"] = types.ToolConfig(
                retrieval_config=types.RetrievalConfig(
                    lat_lng=types.LatLng(latitude=options.latitude, longitude=options.longitude)
                )
            )

    if tools:
        config_kwargs["tools"] = tools
    return model, types.GenerateContentConfig(**config_kwargs)


def to_contents(history: list[Message]) -> list[types.Content]:
    contents: list[types.Content] = []
    for message in history:
        if message.is_error or message.role == "system":
            continue
        contents.append(
            types.Content(role=message.role, parts=[types.Part.from_text(text=message.text or "")])
        )
    return contents


def extract_grounding(response: Any) -> Grounding:
    grounding = Grounding()
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return grounding
    metadata = getattr(candidates[0], "grounding_metadata", None)
    for chunk in getattr(metadata, "grounding_chunks", None) or []:
        web = getattr(chunk, "web", None)
        if web is not None:
            grounding.search.append(GroundingLink(uri=web.uri or "", title=web.title or ""))
        maps = getattr(chunk, "maps", None)
        if maps is not None:
            grounding.maps.append(GroundingLink(uri=maps.uri or "", title=maps.title or ""))
    return grounding


class ChatService:
    def __init__(self, client: genai.Client) -> None:
        self.client = client

    @remote_call
    def _generate(self, model: ModelType, contents: list[types.Content], config: types.GenerateContentConfig) -> Any:
        return self.client.models.generate_content(model=model.value, contents=contents, config=config)

    def reply(self, history: list[Message], options: ChatOptions) -> Message:
        """Generate the model's reply to a conversation ending in a user turn.

        Failures come back as an error message rather than an exception.
        """
        model, config = resolve_request(options)
        logger.info("[CHAT] model=%s turns=%d", model.value, len(history))
        try:
            response = self._generate(model, to_contents(history), config)
        except TrevelinError as exc:
            logger.error("[CHAT] %s", exc)
            return Message(role="model", text=status_text(exc), is_error=True)

        grounding = extract_grounding(response)
        return Message(
            role="model",
            text=response_text(response) or EMPTY_REPLY_TEXT,
            grounding=None if grounding.is_empty() else grounding,
            is_thinking=options.thinking,
        )


@dataclass
class ChatSession:
    """Conversation history of one chat view."""

    service: ChatService
    messages: list[Message] = field(default_factory=list)

    def send(self, text: str, options: ChatOptions | None = None) -> Message | None:
        if not text.strip():
            return None
        self.messages.append(Message(role="user", text=text))
        reply = self.service.reply(list(self.messages), options or ChatOptions())
        self.messages.append(reply)
        return reply
