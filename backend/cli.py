"""Command-line entry point: one subcommand per view."""

from __future__ import annotations

import argparse
import asyncio
import logging
import mimetypes
import sys
from pathlib import Path
from typing import Any, Callable

from audio_lab import AudioLab
from chat import ChatOptions, ChatService, ChatSession
from errors import AuthenticationMissing, TrevelinError, status_text
from gemini_client import LIVE_VOICE, SYSTEM_INSTRUCTION, TTS_VOICE, build_live_config, make_client
from media_studio import MediaStudio
from schemas import AppView, ImageConfig, MediaInput, Message, ModelType, VideoConfig
from video_analysis import VideoAnalyzer


logger = logging.getLogger(__name__)

CHAT_MODEL_CHOICES = {
    "pro": ModelType.PRO,
    "flash": ModelType.FLASH,
    "flash-lite": ModelType.FLASH_LITE,
}

VIEW_COMMANDS: dict[str, AppView] = {
    "chat": AppView.DASHBOARD,
    "live": AppView.LIVE,
    "image": AppView.STUDIO,
    "edit": AppView.STUDIO,
    "video": AppView.STUDIO,
    "animate": AppView.STUDIO,
    "speak": AppView.AUDIO_LAB,
    "transcribe": AppView.AUDIO_LAB,
    "analyze": AppView.ANALYSIS,
}


def read_media(path: str, kind: str) -> MediaInput:
    file_path = Path(path)
    mime_type, _ = mimetypes.guess_type(file_path.name)
    if not mime_type or not mime_type.startswith(f"{kind}/"):
        raise ValueError(f"{file_path.name}: unsupported file type, want {kind}/*")
    return MediaInput(data=file_path.read_bytes(), mime_type=mime_type)


def _write_output(path: str, data: bytes) -> None:
    Path(path).write_bytes(data)
    print(f"Saved {len(data)} bytes to {path}")


def format_message(message: Message) -> str:
    lines = []
    if message.is_thinking:
        lines.append("[thought deeply]")
    lines.append(message.text or "")
    if message.grounding is not None:
        for link in message.grounding.search:
            lines.append(f"  source: {link.title} <{link.uri}>")
        for link in message.grounding.maps:
            lines.append(f"  place: {link.title} <{link.uri}>")
    return "\n".join(lines)


def _chat_options(args: argparse.Namespace) -> ChatOptions:
    return ChatOptions(
        model=CHAT_MODEL_CHOICES[args.model],
        thinking=args.thinking,
        search=args.search,
        maps=args.maps,
        latitude=args.lat,
        longitude=args.lng,
    )


def cmd_chat(client: Any, args: argparse.Namespace, read_line: Callable[[str], str] = input) -> int:
    session = ChatSession(ChatService(client))
    options = _chat_options(args)
    print("Message Trevelin... (type 'exit' to quit)")
    while True:
        try:
            line = read_line("> ")
        except EOFError:
            break
        if line.strip().lower() in {"quit", "exit"}:
            break
        reply = session.send(line, options)
        if reply is not None:
            print(format_message(reply))
    return 0


async def _run_live(client: Any, args: argparse.Namespace) -> int:
    from audio_devices import SoundDeviceAudio
    from live_session import RealtimeSessionManager

    def on_status(status: str, error: str | None) -> None:
        print(f"STATUS: {status.upper()}")
        if error:
            print(f"Error: {error}")

    manager = RealtimeSessionManager(
        client,
        SoundDeviceAudio(input_device=args.input_device, output_device=args.output_device),
        config=build_live_config(voice_name=args.voice, system_instruction=args.instruction),
        on_status=on_status,
    )
    if not await manager.start():
        return 1
    print("Speak now. Press Ctrl+C to disconnect.")
    try:
        await manager.wait_closed()
    finally:
        await manager.stop()
    return 1 if manager.error else 0


def cmd_live(client: Any, args: argparse.Namespace) -> int:
    try:
        return asyncio.run(_run_live(client, args))
    except KeyboardInterrupt:
        return 0


def cmd_image(client: Any, args: argparse.Namespace) -> int:
    print("Generating Image...")
    result = MediaStudio(client).generate_image(
        args.prompt, ImageConfig(size=args.size, aspect_ratio=args.aspect_ratio)
    )
    _write_output(args.output, result.data)
    return 0


def cmd_edit(client: Any, args: argparse.Namespace) -> int:
    print("Editing Image...")
    result = MediaStudio(client).edit_image(read_media(args.image, "image"), args.prompt)
    _write_output(args.output, result.data)
    return 0


def cmd_video(client: Any, args: argparse.Namespace) -> int:
    image = read_media(args.image, "image") if getattr(args, "image", None) else None
    result = MediaStudio(client).generate_video(
        args.prompt or "",
        image=image,
        config=VideoConfig(resolution=args.resolution, aspect_ratio=args.aspect_ratio),
        on_progress=print,
        timeout=args.timeout,
    )
    _write_output(args.output, result.data)
    return 0


def cmd_speak(client: Any, args: argparse.Namespace) -> int:
    print("Generating Speech...")
    speech = AudioLab(client, voice_name=args.voice).speak(args.text)
    if args.output:
        _write_output(args.output, speech.to_wav())
        return 0

    from audio_devices import play_pcm

    print("Playing audio...")
    play_pcm(speech.pcm, speech.sample_rate)
    return 0


def cmd_transcribe(client: Any, args: argparse.Namespace) -> int:
    print("Transcribing...")
    print(AudioLab(client).transcribe(read_media(args.file, "audio")))
    return 0


def cmd_analyze(client: Any, args: argparse.Namespace) -> int:
    print("ANALYZING...")
    print(VideoAnalyzer(client).analyze(read_media(args.file, "video")))
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("server:app", host=args.host, port=args.port, log_level="info")
    return 0


COMMANDS: dict[str, Callable[..., int]] = {
    "chat": cmd_chat,
    "live": cmd_live,
    "image": cmd_image,
    "edit": cmd_edit,
    "video": cmd_video,
    "animate": cmd_video,
    "speak": cmd_speak,
    "transcribe": cmd_transcribe,
    "analyze": cmd_analyze,
}


def _device(value: str) -> int | str:
    # sounddevice takes either an index or a name substring
    return int(value) if value.isdigit() else value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="trevelin", description="Gemini chat, voice, media and analysis")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    chat = sub.add_parser("chat", help="interactive chat")
    chat.add_argument("--model", choices=sorted(CHAT_MODEL_CHOICES), default="pro")
    mode = chat.add_mutually_exclusive_group()
    mode.add_argument("--thinking", action="store_true", help="extended reasoning (Pro)")
    mode.add_argument("--search", action="store_true", help="ground answers in web search")
    mode.add_argument("--maps", action="store_true", help="ground answers in maps")
    chat.add_argument("--lat", type=float, default=None)
    chat.add_argument("--lng", type=float, default=None)

    live = sub.add_parser("live", help="realtime voice conversation")
    live.add_argument("--voice", default=LIVE_VOICE)
    live.add_argument("--instruction", default=SYSTEM_INSTRUCTION)
    live.add_argument("--input-device", type=_device, default=None, help="name or index")
    live.add_argument("--output-device", type=_device, default=None, help="name or index")

    image = sub.add_parser("image", help="generate an image")
    image.add_argument("prompt")
    image.add_argument("--size", choices=["1K", "2K", "4K"], default="1K")
    image.add_argument("--aspect-ratio", choices=["1:1", "3:4", "4:3", "9:16", "16:9"], default="1:1")
    image.add_argument("-o", "--output", default="image.png")

    edit = sub.add_parser("edit", help="edit an image with a prompt")
    edit.add_argument("image")
    edit.add_argument("prompt")
    edit.add_argument("-o", "--output", default="edited.png")

    for name, help_text in (("video", "generate a video"), ("animate", "animate an image")):
        video = sub.add_parser(name, help=help_text)
        if name == "animate":
            video.add_argument("image")
            video.add_argument("prompt", nargs="?", default="")
        else:
            video.add_argument("prompt")
        video.add_argument("--resolution", choices=["720p", "1080p"], default="720p")
        video.add_argument("--aspect-ratio", choices=["16:9", "9:16"], default="16:9")
        video.add_argument("--timeout", type=float, default=None, help="give up after N seconds")
        video.add_argument("-o", "--output", default="video.mp4")

    speak = sub.add_parser("speak", help="text to speech")
    speak.add_argument("text")
    speak.add_argument("--voice", default=TTS_VOICE)
    speak.add_argument("-o", "--output", default=None, help="write WAV instead of playing")

    transcribe = sub.add_parser("transcribe", help="transcribe an audio file")
    transcribe.add_argument("file")

    analyze = sub.add_parser("analyze", help="analyze a video file")
    analyze.add_argument("file")

    serve = sub.add_parser("serve", help="run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8080)

    return parser


def main(argv: list[str] | None = None, *, client: Any = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    if args.command == "serve":
        return cmd_serve(args)

    try:
        client = client or make_client()
    except AuthenticationMissing as exc:
        print(status_text(exc), file=sys.stderr)
        return 2

    logger.debug("[CLI] view=%s command=%s", VIEW_COMMANDS[args.command].value, args.command)
    try:
        return COMMANDS[args.command](client, args)
    except (TrevelinError, ValueError, OSError) as exc:
        print(status_text(exc), file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
