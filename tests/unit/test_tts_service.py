"""Unit tests for TTSService voice selection and audio handling."""

import base64
import io
import wave
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from models.project import DialogueLine, TTSVoice
from services.tts_service import TTSService, assign_speaker_voices


def _audio_response(data: bytes | None, mime_type: str = "audio/L16;codec=pcm;rate=24000"):
    parts = []
    if data is not None:
        parts.append(SimpleNamespace(inline_data=SimpleNamespace(data=data, mime_type=mime_type)))
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=parts))])


def _service(response=None, error: Exception | None = None) -> TTSService:
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock(return_value=response, side_effect=error)
    return TTSService(api_key="test-key", client=client)


def _decode_data_url(url: str) -> bytes:
    return base64.b64decode(url.split(",", 1)[1])


@pytest.mark.unit
def test_assign_speaker_voices_by_first_appearance():
    dialogue = [
        DialogueLine("Ava", "Hi"),
        DialogueLine("Ben", "Hello"),
        DialogueLine("Ava", "Coffee?"),
        DialogueLine("Cy", "Yes"),
    ]
    assert assign_speaker_voices(dialogue) == {"Ava": "Puck", "Ben": "Charon", "Cy": "Kore"}


@pytest.mark.unit
def test_single_voice_request_uses_preference():
    service = TTSService(api_key="test-key", client=MagicMock())

    prompt, config = service.build_request("Wake up.", TTSVoice.FENRIR)

    assert prompt == "Wake up."
    assert config.voice_config.prebuilt_voice_config.voice_name == "Fenrir"
    assert config.multi_speaker_voice_config is None


@pytest.mark.unit
def test_default_voice_is_kore():
    service = TTSService(api_key="test-key", client=MagicMock())
    _, config = service.build_request("Wake up.", None, [DialogueLine("Narrator", "Wake up.")])
    assert config.voice_config.prebuilt_voice_config.voice_name == "Kore"


@pytest.mark.unit
def test_multi_speaker_request():
    service = TTSService(api_key="test-key", client=MagicMock())
    dialogue = [DialogueLine("Ava", "Hi"), DialogueLine("Ben", "Hello")]

    prompt, config = service.build_request("ignored", TTSVoice.AOEDE, dialogue)

    assert prompt == "Ava: Hi\nBen: Hello"
    speakers = config.multi_speaker_voice_config.speaker_voice_configs
    assert [(s.speaker, s.voice_config.prebuilt_voice_config.voice_name) for s in speakers] == [
        ("Ava", "Puck"),
        ("Ben", "Charon"),
    ]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_pcm_is_wrapped_as_wav():
    pcm = b"\x00\x00" * 2400
    service = _service(_audio_response(pcm))

    result = await service.generate_voiceover("Wake up.", TTSVoice.PUCK)

    assert result.url.startswith("data:audio/wav;base64,")
    with wave.open(io.BytesIO(_decode_data_url(result.url)), "rb") as wav_file:
        assert wav_file.getframerate() == 24000
        assert wav_file.getnchannels() == 1
        assert wav_file.getnframes() == 2400
    config = service.client.aio.models.generate_content.call_args.kwargs["config"]
    assert config.response_modalities == ["AUDIO"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_encoded_audio_passes_through():
    service = _service(_audio_response(b"ID3mp3", "audio/mpeg"))

    result = await service.generate_voiceover("Wake up.")

    assert result.url == "data:audio/mpeg;base64," + base64.b64encode(b"ID3mp3").decode()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_empty_audio():
    service = _service(_audio_response(None))

    result = await service.generate_voiceover("Wake up.")

    assert result.url is None
    assert result.diagnostics[0].code == "GEMINI_TTS_EMPTY_AUDIO"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_empty_script_skips_request():
    service = _service(_audio_response(b"\x00\x00"))

    result = await service.generate_voiceover("   ")

    assert result.url is None
    assert result.diagnostics[0].code == "GEMINI_TTS_EMPTY_INPUT"
    service.client.aio.models.generate_content.assert_not_awaited()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_request_failure():
    service = _service(error=RuntimeError("voice unavailable"))

    result = await service.generate_voiceover("Wake up.")

    assert result.url is None
    assert result.diagnostics[0].code == "GEMINI_TTS_REQUEST_FAILED"
    assert result.diagnostics[0].error.message == "voice unavailable"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_missing_api_key():
    result = await TTSService(api_key="").generate_voiceover("Wake up.")
    assert result.diagnostics[0].code == "GEMINI_TTS_MISSING_API_KEY"
