"""TTS service - project voiceover via Gemini speech generation.

Gemini returns raw 16-bit PCM (``audio/L16;codec=pcm;rate=24000``), which is
wrapped into a WAV container before being handed back as a data URL.
"""

import logging
from typing import Optional

from google.genai import Client, types

from models.diagnostics import (
    DiagnosticLevel,
    GeneratedAssetResult,
    ProviderDiagnostic,
    ProviderName,
    ProviderOperation,
    diagnostic,
)
from models.project import DialogueLine, TTSVoice
from utils.audio import parse_pcm_mime_type, pcm_to_wav
from utils.config import DEFAULT_TTS_MODEL, get_gemini_api_key
from utils.media import inline_data_bytes, to_data_url

logger = logging.getLogger(__name__)

# Voice rotation for multi-speaker scripts, assigned by order of first appearance
VOICE_POOL = [voice.value for voice in TTSVoice]

DEFAULT_VOICE = TTSVoice.KORE


def assign_speaker_voices(dialogue: list[DialogueLine]) -> dict[str, str]:
    """Map each distinct speaker, in order of first appearance, to a pool voice."""
    speakers: list[str] = []
    for line in dialogue:
        if line.speaker not in speakers:
            speakers.append(line.speaker)
    return {speaker: VOICE_POOL[index % len(VOICE_POOL)] for index, speaker in enumerate(speakers)}


def _voice_config(voice_name: str) -> types.VoiceConfig:
    return types.VoiceConfig(prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=voice_name))


class TTSService:
    """Generates voiceover audio with a Gemini TTS model."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: str = DEFAULT_TTS_MODEL,
        client: Optional[Client] = None,
    ):
        self.api_key = api_key if api_key is not None else get_gemini_api_key()
        self.model_name = model_name
        self.client = client or (Client(api_key=self.api_key) if self.api_key else None)

    def is_configured(self) -> bool:
        return self.client is not None

    async def check_health(self) -> dict:
        return {
            "configured": self.is_configured(),
            "available": self.is_configured(),
            "error": None if self.is_configured() else "GEMINI_API_KEY not configured",
            "model": self.model_name,
            "voices": VOICE_POOL,
        }

    def _result(self, url: Optional[str], diagnostics: list[ProviderDiagnostic]) -> GeneratedAssetResult:
        return GeneratedAssetResult(
            provider=ProviderName.GEMINI,
            operation=ProviderOperation.VOICEOVER,
            url=url,
            diagnostics=diagnostics,
        )

    def build_request(
        self,
        text: str,
        voice: Optional[TTSVoice],
        dialogue: Optional[list[DialogueLine]] = None,
    ) -> tuple[str, types.SpeechConfig]:
        """Choose single- or multi-speaker synthesis.

        Returns:
            (prompt text, speech config)
        """
        if dialogue:
            voices = assign_speaker_voices(dialogue)
            if len(voices) > 1:
                speech_config = types.SpeechConfig(
                    multi_speaker_voice_config=types.MultiSpeakerVoiceConfig(
                        speaker_voice_configs=[
                            types.SpeakerVoiceConfig(speaker=speaker, voice_config=_voice_config(name))
                            for speaker, name in voices.items()
                        ]
                    )
                )
                prompt = "\n".join(f"{line.speaker}: {line.text}" for line in dialogue)
                return prompt, speech_config

        voice_name = (voice or DEFAULT_VOICE).value
        return text, types.SpeechConfig(voice_config=_voice_config(voice_name))

    async def generate_voiceover(
        self,
        text: str,
        voice: Optional[TTSVoice] = None,
        dialogue: Optional[list[DialogueLine]] = None,
    ) -> GeneratedAssetResult:
        """Generate voiceover audio for the ad script.

        Args:
            text: Full script text (used for single-voice synthesis).
            voice: Preferred voice; None picks the default.
            dialogue: Optional speaker turns. More than one distinct speaker
                switches to multi-speaker synthesis.

        Returns:
            Result with a WAV (or provider-typed) data URL, or a null url plus diagnostics.
        """
        diagnostics: list[ProviderDiagnostic] = []
        if not self.is_configured():
            logger.error("[Gemini][TTS] Missing API key.")
            diagnostics.append(
                diagnostic(
                    DiagnosticLevel.ERROR,
                    "GEMINI_TTS_MISSING_API_KEY",
                    "Missing Gemini API key. Set GEMINI_API_KEY before generating voiceover.",
                )
            )
            return self._result(None, diagnostics)

        if not (text and text.strip()) and not dialogue:
            diagnostics.append(
                diagnostic(
                    DiagnosticLevel.WARN,
                    "GEMINI_TTS_EMPTY_INPUT",
                    "No script content provided for voiceover generation.",
                )
            )
            return self._result(None, diagnostics)

        try:
            prompt, speech_config = self.build_request(text, voice, dialogue)
            multi_speaker = speech_config.multi_speaker_voice_config is not None
            logger.info(
                f"[Gemini][TTS] Generating voiceover with {self.model_name} "
                f"({len(prompt)} chars, multi_speaker={multi_speaker})"
            )
            response = await self.client.aio.models.generate_content(
                model=self.model_name,
                contents=prompt,
                config=types.GenerateContentConfig(
                    response_modalities=["AUDIO"],
                    speech_config=speech_config,
                ),
            )

            inline = None
            candidates = response.candidates or []
            if candidates and candidates[0].content:
                for part in candidates[0].content.parts or []:
                    if getattr(part, "inline_data", None) and part.inline_data.data:
                        inline = part.inline_data
                        break

            if inline is None:
                logger.warning("[Gemini][TTS] No inline audio payload returned.")
                diagnostics.append(
                    diagnostic(
                        DiagnosticLevel.WARN,
                        "GEMINI_TTS_EMPTY_AUDIO",
                        "Gemini TTS responded without inline audio data.",
                    )
                )
                return self._result(None, diagnostics)

            raw_audio = inline_data_bytes(inline.data)
            pcm_format = parse_pcm_mime_type(inline.mime_type)
            if pcm_format:
                wav_bytes = pcm_to_wav(raw_audio, pcm_format.sample_rate, pcm_format.channels)
                logger.info(
                    f"[Gemini][TTS] Voiceover generated (PCM->WAV, {pcm_format.sample_rate}Hz, "
                    f"{pcm_format.channels}ch, {len(wav_bytes)} bytes)"
                )
                return self._result(to_data_url(wav_bytes, "audio/wav"), diagnostics)

            mime_type = inline.mime_type or "audio/wav"
            logger.info(f"[Gemini][TTS] Voiceover generated ({mime_type}, {len(raw_audio)} bytes)")
            return self._result(to_data_url(raw_audio, mime_type), diagnostics)
        except Exception as e:
            logger.error(f"[Gemini][TTS] Voiceover generation failed: {e}")
            diagnostics.append(
                diagnostic(
                    DiagnosticLevel.ERROR,
                    "GEMINI_TTS_REQUEST_FAILED",
                    "Voiceover generation request failed.",
                    error=e,
                )
            )
            return self._result(None, diagnostics)
