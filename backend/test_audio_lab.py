from __future__ import annotations

import pytest

from audio_lab import TRANSCRIBE_PROMPT, AudioLab
from conftest import FakeClient, empty_response, inline_response, text_response
from errors import RemoteRequestFailed
from schemas import MediaInput, ModelType
from video_analysis import ANALYSIS_PROMPT, VideoAnalyzer


def test_speak_requests_audio_in_the_configured_voice(fake_client: FakeClient) -> None:
    fake_client.models.responses = [inline_response(b"\x01\x00\x02\x00", "audio/L16;rate=24000")]

    speech = AudioLab(fake_client).speak("good morning")

    assert speech.pcm == b"\x01\x00\x02\x00"
    assert speech.sample_rate == 24000
    call = fake_client.models.calls[0]
    assert call["model"] == ModelType.TTS.value
    assert call["contents"].parts[0].text == "Say cheerfully: good morning"
    assert call["config"].speech_config.voice_config.prebuilt_voice_config.voice_name == "Kore"


def test_speech_renders_as_wav(fake_client: FakeClient) -> None:
    fake_client.models.responses = [inline_response(b"\x00\x00" * 10, "audio/L16;rate=24000")]
    wav = AudioLab(fake_client).speak("hi").to_wav()
    assert wav[:4] == b"RIFF"
    assert len(wav) == 44 + 20


def test_speak_without_audio_fails(fake_client: FakeClient) -> None:
    fake_client.models.responses = [text_response("no voice today")]
    with pytest.raises(RemoteRequestFailed, match="No audio generated."):
        AudioLab(fake_client).speak("hello")


def test_speak_rejects_blank_text(fake_client: FakeClient) -> None:
    with pytest.raises(ValueError):
        AudioLab(fake_client).speak("  ")
    assert fake_client.models.calls == []


def test_transcribe_sends_audio_with_instruction(fake_client: FakeClient) -> None:
    fake_client.models.responses = [text_response("  hello world \n")]

    text = AudioLab(fake_client).transcribe(MediaInput(b"RIFF....", "audio/wav"))

    assert text == "hello world"
    call = fake_client.models.calls[0]
    assert call["model"] == ModelType.FLASH.value
    parts = call["contents"].parts
    assert parts[0].inline_data.mime_type == "audio/wav"
    assert parts[1].text == TRANSCRIBE_PROMPT


def test_empty_transcription_fails(fake_client: FakeClient) -> None:
    fake_client.models.responses = [empty_response()]
    with pytest.raises(RemoteRequestFailed, match="No transcription."):
        AudioLab(fake_client).transcribe(MediaInput(b"x", "audio/mpeg"))


def test_video_analysis_uses_pro_model(fake_client: FakeClient) -> None:
    fake_client.models.responses = [text_response("A cat jumps over a fence.")]

    text = VideoAnalyzer(fake_client).analyze(MediaInput(b"mp4", "video/mp4"))

    assert text == "A cat jumps over a fence."
    call = fake_client.models.calls[0]
    assert call["model"] == ModelType.PRO.value
    assert call["contents"].parts[1].text == ANALYSIS_PROMPT


def test_empty_analysis_fails(fake_client: FakeClient) -> None:
    fake_client.models.responses = [empty_response()]
    with pytest.raises(RemoteRequestFailed, match="No analysis generated."):
        VideoAnalyzer(fake_client).analyze(MediaInput(b"mp4", "video/mp4"))
