"""PCM helpers for provider audio payloads."""

import io
import re
import wave
from dataclasses import dataclass

DEFAULT_PCM_SAMPLE_RATE = 24000
DEFAULT_PCM_CHANNELS = 1
PCM_SAMPLE_WIDTH = 2  # 16-bit little-endian

_RATE_PATTERN = re.compile(r"rate=(\d+)")
_CHANNELS_PATTERN = re.compile(r"channels=(\d+)")


@dataclass(frozen=True)
class PcmFormat:
    sample_rate: int = DEFAULT_PCM_SAMPLE_RATE
    channels: int = DEFAULT_PCM_CHANNELS


def parse_pcm_mime_type(mime_type: str | None) -> PcmFormat | None:
    """Read sample rate and channel count from a raw PCM mime type.

    ``audio/L16;codec=pcm;rate=24000`` style values are recognized by an
    ``l16`` or ``pcm`` token. Returns None for any other encoding.
    """
    if not mime_type:
        return None
    lower_mime = mime_type.lower()
    if "l16" not in lower_mime and "pcm" not in lower_mime:
        return None

    rate_match = _RATE_PATTERN.search(lower_mime)
    channel_match = _CHANNELS_PATTERN.search(lower_mime)
    return PcmFormat(
        sample_rate=int(rate_match.group(1)) if rate_match else DEFAULT_PCM_SAMPLE_RATE,
        channels=int(channel_match.group(1)) if channel_match else DEFAULT_PCM_CHANNELS,
    )


def pcm_to_wav(pcm_data: bytes, sample_rate: int, channels: int) -> bytes:
    """Wrap 16-bit little-endian PCM samples in a WAV container."""
    output = io.BytesIO()
    with wave.open(output, "wb") as wav_file:
        wav_file.setnchannels(channels)
        wav_file.setsampwidth(PCM_SAMPLE_WIDTH)
        wav_file.setframerate(sample_rate)
        wav_file.writeframes(pcm_data)
    return output.getvalue()
