"""Music service - background score via the Lyria realtime websocket API.

A generation is one websocket session driven through an explicit state
machine::

    CONNECTING -> AWAITING_SETUP -> STREAMING -> STOPPING -> SETTLED

Several things race to finish a session: the socket closing, a socket error,
the stop timer and the safety timer. ``LyriaMusicSession._settle`` is the only
place a result is published, so the first of them wins and every timer is
cancelled at that point. Whenever real generation is not possible the session
settles with a stock track picked from the mood text instead of failing.
"""

import asyncio
import base64
import binascii
import contextlib
import json
import logging
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, AsyncContextManager, Callable, Optional

import aiohttp

from models.diagnostics import (
    DiagnosticLevel,
    GeneratedAssetResult,
    ProviderDiagnostic,
    ProviderName,
    ProviderOperation,
    diagnostic,
)
from models.project import DEFAULT_MUSIC_DURATION_SECONDS
from utils.audio import pcm_to_wav
from utils.config import DEFAULT_MUSIC_MODEL, get_gemini_api_key
from utils.media import to_data_url

logger = logging.getLogger(__name__)

LYRIA_WS_URL = (
    "wss://generativelanguage.googleapis.com/ws/"
    "google.ai.generativelanguage.v1alpha.GenerativeService.BidiGenerateMusic"
)

# Lyria streams 16-bit PCM at 48kHz stereo
LYRIA_SAMPLE_RATE = 48000
LYRIA_CHANNELS = 2

DEFAULT_GRACE_SECONDS = 15.0

MOOD_TRACKS = {
    "upbeat": "https://cdn.pixabay.com/download/audio/2024/05/20/audio_34b92569de.mp3?filename=uplifting-background-music-for-videos-corporates-presentations-205562.mp3",
    "cinematic": "https://cdn.pixabay.com/download/audio/2022/10/25/audio_5119a9705a.mp3?filename=cinematic-atmosphere-score-2-21142.mp3",
    "emotional": "https://cdn.pixabay.com/download/audio/2022/05/05/audio_13b5646142.mp3?filename=emotional-piano-110266.mp3",
    "corporate": "https://cdn.pixabay.com/download/audio/2024/02/07/audio_4f0b2a7585.mp3?filename=corporate-music-189688.mp3",
    "jazz": "https://cdn.pixabay.com/download/audio/2022/03/10/audio_5245842187.mp3?filename=smooth-jazz-110757.mp3",
}

# Checked in order; the first keyword found in the mood wins.
MOOD_KEYWORDS = [
    (("happy", "upbeat"), "upbeat"),
    (("business", "tech"), "corporate"),
    (("sad", "emotional"), "emotional"),
    (("jazz",), "jazz"),
]

WsConnect = Callable[[str], AsyncContextManager[Any]]


def get_fallback_track(mood: str) -> str:
    """Pick a stock track for a mood description (case-insensitive keyword match)."""
    lower_mood = (mood or "").lower()
    for keywords, track in MOOD_KEYWORDS:
        if any(keyword in lower_mood for keyword in keywords):
            return MOOD_TRACKS[track]
    return MOOD_TRACKS["cinematic"]


@asynccontextmanager
async def aiohttp_ws_connect(url: str):
    """Open a websocket with a short-lived aiohttp session."""
    async with aiohttp.ClientSession() as session:
        async with session.ws_connect(url, heartbeat=30.0) as ws:
            yield ws


class MusicSessionState(str, Enum):
    CONNECTING = "connecting"
    AWAITING_SETUP = "awaiting_setup"
    STREAMING = "streaming"
    STOPPING = "stopping"
    SETTLED = "settled"


class LyriaMusicSession:
    """One Lyria generation from socket open to a settled result."""

    def __init__(
        self,
        api_key: str,
        mood: str,
        duration_seconds: float,
        model: str = DEFAULT_MUSIC_MODEL,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
        ws_connect: Optional[WsConnect] = None,
    ):
        self.api_key = api_key
        self.mood = mood
        self.duration_seconds = duration_seconds
        self.model = model
        self.grace_seconds = grace_seconds
        self.ws_connect = ws_connect or aiohttp_ws_connect

        self.state = MusicSessionState.CONNECTING
        self.diagnostics: list[ProviderDiagnostic] = []
        self.chunks: list[bytes] = []
        self.received_bytes = 0

        self._ws = None
        self._future: Optional[asyncio.Future] = None
        self._driver: Optional[asyncio.Task] = None
        self._stop_task: Optional[asyncio.Task] = None
        self._safety_handle: Optional[asyncio.TimerHandle] = None

    @property
    def settled(self) -> bool:
        return self.state == MusicSessionState.SETTLED

    async def run(self) -> GeneratedAssetResult:
        """Drive the session until exactly one result is settled."""
        loop = asyncio.get_running_loop()
        self._future = loop.create_future()
        self._safety_handle = loop.call_later(
            self.duration_seconds + self.grace_seconds, self._on_safety_timeout
        )
        self._stop_task = asyncio.create_task(self._stop_after(self.duration_seconds))
        self._driver = asyncio.create_task(self._drive())
        try:
            return await self._future
        finally:
            self._cancel_timers()
            if not self._driver.done():
                self._driver.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._driver

    def _add(self, level: DiagnosticLevel, code: str, message: str, context: Optional[dict] = None, error=None):
        self.diagnostics.append(diagnostic(level, code, message, context, error))

    def _cancel_timers(self) -> None:
        if self._safety_handle is not None:
            self._safety_handle.cancel()
            self._safety_handle = None
        if self._stop_task is not None and self._stop_task is not asyncio.current_task():
            self._stop_task.cancel()
        self._stop_task = None

    def _settle(self, result: GeneratedAssetResult) -> bool:
        """Publish ``result`` unless the session already settled."""
        if self.settled:
            return False
        self.state = MusicSessionState.SETTLED
        self._cancel_timers()
        if self._future is not None and not self._future.done():
            self._future.set_result(result)
        return True

    def _settle_fallback(
        self,
        reason: str,
        code: str,
        level: DiagnosticLevel = DiagnosticLevel.WARN,
        error: Any = None,
    ) -> None:
        if self.settled:
            return
        self.diagnostics.append(
            fallback_diagnostic(self.mood, self.duration_seconds, reason, code, level, error)
        )
        self._settle(fallback_result(self.mood, list(self.diagnostics)))

    def _on_safety_timeout(self) -> None:
        self._safety_handle = None
        logger.error(f"[Lyria] Session did not finish within {self.duration_seconds + self.grace_seconds:.0f}s")
        self._settle_fallback("Lyria timeout", "LYRIA_TIMEOUT", DiagnosticLevel.ERROR)

    async def _stop_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        ws = self._ws
        if ws is None or ws.closed or self.state not in (
            MusicSessionState.AWAITING_SETUP,
            MusicSessionState.STREAMING,
        ):
            return
        self.state = MusicSessionState.STOPPING
        logger.info("[Lyria] Requested duration reached, stopping playback.")
        try:
            await ws.send_json({"playbackControl": "STOP"})
            await ws.close()
        except (aiohttp.ClientError, ConnectionError) as e:
            # The driver sees the broken socket and settles from there.
            logger.warning(f"[Lyria] Could not stop playback cleanly: {e}")

    async def _drive(self) -> None:
        mood_preview = self.mood[:100]
        logger.info(f"[Lyria] Opening realtime music socket ({self.duration_seconds}s, mood: {mood_preview!r})")
        self._add(
            DiagnosticLevel.INFO,
            "LYRIA_SOCKET_OPENING",
            "Opening Lyria realtime music socket.",
            {"duration_seconds": self.duration_seconds, "mood_preview": mood_preview},
        )
        try:
            async with self.ws_connect(f"{LYRIA_WS_URL}?key={self.api_key}") as ws:
                self._ws = ws
                await ws.send_json({"setup": {"model": self.model}})
                if self.state == MusicSessionState.CONNECTING:
                    self.state = MusicSessionState.AWAITING_SETUP
                logger.info("[Lyria] Socket open, setup sent.")
                self._add(DiagnosticLevel.INFO, "LYRIA_SOCKET_OPEN", "Lyria socket opened successfully.")

                async for message in ws:
                    if message.type == aiohttp.WSMsgType.ERROR:
                        logger.error(f"[Lyria] WebSocket error: {ws.exception()}")
                        self._settle_fallback(
                            "WebSocket error", "LYRIA_SOCKET_ERROR", DiagnosticLevel.ERROR, ws.exception()
                        )
                        return
                    if message.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                        await self._handle_message(ws, message.data)
                close_code = ws.close_code
            self._on_closed(close_code)
        except asyncio.CancelledError:
            raise
        except aiohttp.ClientError as e:
            logger.error(f"[Lyria] WebSocket error: {e}")
            self._settle_fallback("WebSocket error", "LYRIA_SOCKET_ERROR", DiagnosticLevel.ERROR, e)
        except Exception as e:
            logger.error(f"[Lyria] Unexpected session failure: {e}")
            self._settle_fallback(f"Exception: {e}", "LYRIA_EXCEPTION", DiagnosticLevel.ERROR, e)

    async def _handle_message(self, ws, data: str | bytes) -> None:
        try:
            payload = json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"[Lyria] Failed to parse websocket message: {e}")
            self._add(
                DiagnosticLevel.WARN,
                "LYRIA_MESSAGE_PARSE_FAILED",
                "Failed to parse Lyria websocket message.",
                error=e,
            )
            return
        if not isinstance(payload, dict):
            return

        server_content = payload.get("serverContent") or {}
        if "setupComplete" in payload:
            await ws.send_json({"musicGenerationConfig": {"musicGenerationMode": "QUALITY"}})
            await ws.send_json({"clientContent": {"weightedPrompts": [{"text": self.mood, "weight": 1.0}]}})
            await ws.send_json({"playbackControl": "PLAY"})
            if self.state == MusicSessionState.AWAITING_SETUP:
                self.state = MusicSessionState.STREAMING
            logger.info("[Lyria] Setup complete, config/prompts/play sent.")
            self._add(DiagnosticLevel.INFO, "LYRIA_PLAYBACK_STARTED", "Lyria setup complete and playback started.")
        elif server_content.get("audioChunks"):
            for chunk in server_content["audioChunks"]:
                try:
                    pcm = base64.b64decode(chunk["data"], validate=True)
                except (binascii.Error, KeyError, TypeError, ValueError) as e:
                    logger.warning(f"[Lyria] Failed to decode audio chunk: {e}")
                    self._add(
                        DiagnosticLevel.WARN,
                        "LYRIA_CHUNK_DECODE_FAILED",
                        "Failed to decode a Lyria audio chunk.",
                        error=e,
                    )
                    continue
                self.chunks.append(pcm)
                self.received_bytes += len(pcm)
        elif "warning" in payload:
            logger.warning(f"[Lyria] Warning: {payload['warning']}")
            self._add(
                DiagnosticLevel.WARN,
                "LYRIA_SERVER_WARNING",
                "Lyria server returned a warning.",
                {"warning": payload["warning"]},
            )

    def _on_closed(self, close_code: Optional[int]) -> None:
        if self.settled:
            return
        logger.info(
            f"[Lyria] Socket closed (code={close_code}, chunks={len(self.chunks)}, bytes={self.received_bytes})"
        )
        if not self.chunks:
            self._settle_fallback("No data received from Lyria", "LYRIA_NO_DATA")
            return

        wav_bytes = pcm_to_wav(b"".join(self.chunks), LYRIA_SAMPLE_RATE, LYRIA_CHANNELS)
        logger.info(f"[Lyria] Music generated ({len(wav_bytes)} bytes from {len(self.chunks)} chunks)")
        self._add(
            DiagnosticLevel.INFO,
            "LYRIA_GENERATION_COMPLETE",
            "Lyria music generation completed successfully.",
            {"chunk_count": len(self.chunks), "received_bytes": self.received_bytes, "size_bytes": len(wav_bytes)},
        )
        self._settle(
            GeneratedAssetResult(
                provider=ProviderName.LYRIA,
                operation=ProviderOperation.MUSIC,
                url=to_data_url(wav_bytes, "audio/wav"),
                diagnostics=list(self.diagnostics),
            )
        )


def fallback_diagnostic(
    mood: str,
    duration_seconds: float,
    reason: str,
    code: str,
    level: DiagnosticLevel = DiagnosticLevel.WARN,
    error: Any = None,
) -> ProviderDiagnostic:
    logger.warning(f"[Lyria] Falling back to stock music. Reason: {reason}")
    return diagnostic(
        level,
        code,
        f"Falling back to stock music: {reason}.",
        {"duration_seconds": duration_seconds, "mood_preview": mood[:120]},
        error,
    )


def fallback_result(mood: str, diagnostics: list[ProviderDiagnostic]) -> GeneratedAssetResult:
    return GeneratedAssetResult(
        provider=ProviderName.LYRIA,
        operation=ProviderOperation.MUSIC,
        url=get_fallback_track(mood),
        fallback_used=True,
        diagnostics=diagnostics,
    )


class MusicService:
    """Generates background music with Lyria, falling back to stock tracks."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: str = DEFAULT_MUSIC_MODEL,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
        ws_connect: Optional[WsConnect] = None,
    ):
        """Initialize Music service.

        Args:
            api_key: Gemini API key. Defaults to GEMINI_API_KEY from the environment.
            model_name: Lyria model sent in the session setup.
            grace_seconds: Extra time past the requested duration before the
                safety timer gives up on the session.
            ws_connect: Websocket factory (tests inject a fake socket here).
        """
        self.api_key = api_key if api_key is not None else get_gemini_api_key()
        self.model_name = model_name
        self.grace_seconds = grace_seconds
        self.ws_connect = ws_connect

    def is_configured(self) -> bool:
        """Check if the service is configured."""
        return bool(self.api_key)

    async def check_health(self) -> dict:
        return {
            "configured": self.is_configured(),
            "available": self.is_configured(),
            "error": None if self.is_configured() else "GEMINI_API_KEY not configured",
            "model": self.model_name,
        }

    async def generate_music(
        self,
        mood: str,
        duration_seconds: float = DEFAULT_MUSIC_DURATION_SECONDS,
    ) -> GeneratedAssetResult:
        """Generate a music bed for the given mood.

        Args:
            mood: Mood/style description used as the weighted prompt.
            duration_seconds: How long to stream before stopping playback.

        Returns:
            A WAV data URL on success, otherwise a stock track with
            ``fallback_used`` set and a diagnostic naming the reason.
        """
        mood = mood or ""
        if not self.is_configured():
            return fallback_result(
                mood,
                [
                    fallback_diagnostic(
                        mood, duration_seconds, "Missing API key", "LYRIA_MISSING_API_KEY", DiagnosticLevel.ERROR
                    )
                ],
            )

        session = LyriaMusicSession(
            api_key=self.api_key,
            mood=mood,
            duration_seconds=duration_seconds,
            model=self.model_name,
            grace_seconds=self.grace_seconds,
            ws_connect=self.ws_connect,
        )
        try:
            return await session.run()
        except Exception as e:
            session.diagnostics.append(
                fallback_diagnostic(
                    mood, duration_seconds, f"Exception: {e}", "LYRIA_EXCEPTION", DiagnosticLevel.ERROR, e
                )
            )
            return fallback_result(mood, list(session.diagnostics))
