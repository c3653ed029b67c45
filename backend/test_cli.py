from __future__ import annotations

from pathlib import Path

import httpx
import pytest

import cli
from conftest import FakeClient, inline_response, text_response
from schemas import Grounding, GroundingLink, Message, ModelType


def test_image_command_writes_output(tmp_path: Path, fake_client: FakeClient) -> None:
    fake_client.models.responses = [inline_response(b"png-bytes", "image/png")]
    output = tmp_path / "fox.png"

    code = cli.main(["image", "a fox", "--aspect-ratio", "16:9", "-o", str(output)], client=fake_client)

    assert code == 0
    assert output.read_bytes() == b"png-bytes"


def test_missing_key_exits_with_status_two(no_api_key: None, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["speak", "hello"]) == 2
    assert capsys.readouterr().err.startswith("Error: Missing API key")


def test_wrong_file_type_is_reported(tmp_path: Path, fake_client: FakeClient, capsys: pytest.CaptureFixture[str]) -> None:
    notes = tmp_path / "notes.txt"
    notes.write_text("not audio")

    assert cli.main(["transcribe", str(notes)], client=fake_client) == 1
    assert "notes.txt: unsupported file type, want audio/*" in capsys.readouterr().err
    assert fake_client.models.calls == []


def test_network_failure_is_reported_not_raised(
    tmp_path: Path, fake_client: FakeClient, capsys: pytest.CaptureFixture[str]
) -> None:
    clip = tmp_path / "clip.wav"
    clip.write_bytes(b"RIFF")
    fake_client.models.error = httpx.ConnectError("network unreachable")

    assert cli.main(["transcribe", str(clip)], client=fake_client) == 1
    assert capsys.readouterr().err.strip() == "Error: network unreachable"


def test_transcribe_prints_text(tmp_path: Path, fake_client: FakeClient, capsys: pytest.CaptureFixture[str]) -> None:
    clip = tmp_path / "clip.wav"
    clip.write_bytes(b"RIFF")
    fake_client.models.responses = [text_response("hi there")]

    assert cli.main(["transcribe", str(clip)], client=fake_client) == 0
    assert "hi there" in capsys.readouterr().out
    mime_type = fake_client.models.calls[0]["contents"].parts[0].inline_data.mime_type
    assert mime_type in {"audio/wav", "audio/x-wav"}


def test_chat_loop_sends_lines_until_exit(fake_client: FakeClient, capsys: pytest.CaptureFixture[str]) -> None:
    fake_client.models.responses = [text_response("Hello!"), text_response("Bye!")]
    lines = iter(["hi", "   ", "see you", "exit"])
    args = cli.build_parser().parse_args(["chat", "--model", "flash"])

    assert cli.cmd_chat(fake_client, args, read_line=lambda _prompt: next(lines)) == 0

    out = capsys.readouterr().out
    assert "Hello!" in out and "Bye!" in out
    assert len(fake_client.models.calls) == 2
    assert fake_client.models.calls[0]["model"] == ModelType.FLASH.value
    # the second request carries the whole conversation
    assert len(fake_client.models.calls[1]["contents"]) == 3


def test_chat_modes_are_mutually_exclusive() -> None:
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["chat", "--search", "--maps"])


def test_device_arguments_accept_indexes() -> None:
    args = cli.build_parser().parse_args(["live", "--input-device", "3", "--output-device", "USB"])
    assert args.input_device == 3
    assert args.output_device == "USB"


def test_format_message_lists_sources() -> None:
    message = Message(
        role="model",
        text="Try the bakery.",
        grounding=Grounding(
            search=[GroundingLink(uri="https://example.com", title="Example")],
            maps=[GroundingLink(uri="https://maps.example/b", title="Bakery")],
        ),
        is_thinking=True,
    )
    assert cli.format_message(message).splitlines() == [
        "[thought deeply]",
        "Try the bakery.",
        "  source: Example <https://example.com>",
        "  place: Bakery <https://maps.example/b>",
    ]
