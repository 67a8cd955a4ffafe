"""Video generation service - Veo clips per scene with a text-to-video fallback."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

import httpx
from google.genai import Client, types

from models.diagnostics import (
    DiagnosticLevel,
    GeneratedAssetResult,
    ProviderDiagnostic,
    ProviderName,
    ProviderOperation,
    diagnostic,
)
from models.project import AspectRatio, Scene
from utils.config import DEFAULT_VIDEO_MODEL, get_gemini_api_key
from utils.media import InlineMedia, parse_data_url, to_data_url

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 5.0
DEFAULT_MAX_WAIT_SECONDS = 450.0
VIDEO_RESOLUTION = "720p"


@dataclass
class VideoAttempt:
    """Outcome of one Veo generation attempt."""

    url: Optional[str] = None
    diagnostics: list[ProviderDiagnostic] = field(default_factory=list)


def build_veo_prompt(scene: Scene) -> str:
    """Motion-focused prompt used alongside the storyboard image."""
    action = scene.action_notes or scene.visual_summary_prompt or (
        "Subject performs action in a cinematic commercial style."
    )
    return (
        "Cinematic video.\n"
        f"{action}\n"
        f"Camera: {scene.camera.movement or 'smooth tracking'}.\n"
        f"Lighting: {scene.environment.lighting or 'high-contrast cinematic'}.\n"
    )


def build_text_to_video_prompt(scene: Scene) -> str:
    """Self-contained prompt for the text-only fallback attempt."""
    return f"{scene.visual_summary_prompt or build_veo_prompt(scene)} (Cinematic, Photorealistic)"


class VideoGenService:
    """Generates scene clips with Veo via the GenAI long-running operations API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: str = DEFAULT_VIDEO_MODEL,
        client: Optional[Client] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_wait_seconds: float = DEFAULT_MAX_WAIT_SECONDS,
    ) -> None:
        self.api_key = api_key if api_key is not None else get_gemini_api_key()
        self.model_name = model_name
        self.client = client or (Client(api_key=self.api_key) if self.api_key else None)
        # Long timeout - finished clips can be tens of megabytes
        self.http_client = http_client or httpx.AsyncClient(timeout=300.0, follow_redirects=True)
        self.poll_interval = poll_interval
        self.max_wait_seconds = max_wait_seconds

    def is_configured(self) -> bool:
        return self.client is not None

    async def check_health(self) -> dict:
        return {
            "configured": self.is_configured(),
            "available": self.is_configured(),
            "error": None if self.is_configured() else "GEMINI_API_KEY not configured",
            "model": self.model_name,
            "max_wait_seconds": self.max_wait_seconds,
        }

    async def close(self) -> None:
        await self.http_client.aclose()

    async def generate_video_clip(
        self,
        scene: Scene,
        aspect_ratio: AspectRatio,
        source_image: Optional[str] = None,
    ) -> GeneratedAssetResult:
        """Generate a clip for a scene.

        Tries image-to-video from the storyboard first when one is supplied and
        parses, then falls back to text-to-video from the scene's visual summary.

        Args:
            scene: Scene to animate.
            aspect_ratio: Target aspect ratio.
            source_image: Optional storyboard data URL.

        Returns:
            Result with an ``video/mp4`` data URL, or a null url plus
            diagnostics. ``fallback_used`` is set whenever the text-to-video
            attempt ran after a source image was supplied.
        """
        diagnostics: list[ProviderDiagnostic] = []
        if not self.is_configured():
            logger.error("[Veo] Missing API key.")
            diagnostics.append(
                diagnostic(
                    DiagnosticLevel.ERROR,
                    "VEO_MISSING_API_KEY",
                    "Missing Gemini API key. Set GEMINI_API_KEY before generating video.",
                    {"scene_id": scene.id},
                )
            )
            return self._result(None, diagnostics, False)

        used_fallback = False
        if source_image:
            parsed = parse_data_url(source_image)
            if parsed:
                attempt = await self._run_attempt(
                    build_veo_prompt(scene),
                    aspect_ratio,
                    f"scene-{scene.id}-image2video",
                    image=parsed,
                )
                diagnostics.extend(attempt.diagnostics)
                if attempt.url:
                    return self._result(attempt.url, diagnostics, False)
                logger.warning(f"[Veo] Image-to-video failed for scene {scene.id}, falling back to text-to-video")
                diagnostics.append(
                    diagnostic(
                        DiagnosticLevel.WARN,
                        "VEO_IMAGE_TO_VIDEO_FAILED",
                        "Image-to-video attempt failed. Falling back to text-to-video.",
                        {"scene_id": scene.id},
                    )
                )
            else:
                logger.warning(f"[Veo] Storyboard for scene {scene.id} could not be parsed, using text-to-video")
                diagnostics.append(
                    diagnostic(
                        DiagnosticLevel.WARN,
                        "VEO_SOURCE_IMAGE_PARSE_FAILED",
                        "Storyboard image could not be parsed. Falling back to text-to-video.",
                        {"scene_id": scene.id},
                    )
                )
            used_fallback = True

        attempt = await self._run_attempt(
            build_text_to_video_prompt(scene),
            aspect_ratio,
            f"scene-{scene.id}-text2video",
        )
        diagnostics.extend(attempt.diagnostics)
        return self._result(attempt.url, diagnostics, used_fallback)

    def _result(
        self,
        url: Optional[str],
        diagnostics: list[ProviderDiagnostic],
        fallback_used: bool,
    ) -> GeneratedAssetResult:
        return GeneratedAssetResult(
            provider=ProviderName.VEO,
            operation=ProviderOperation.VIDEO,
            url=url,
            fallback_used=fallback_used,
            diagnostics=diagnostics,
        )

    async def _run_attempt(
        self,
        prompt: str,
        aspect_ratio: AspectRatio,
        attempt_label: str,
        image: Optional[InlineMedia] = None,
    ) -> VideoAttempt:
        """Submit one Veo operation, poll it to completion and download the clip."""
        attempt = VideoAttempt()
        try:
            logger.info(f"[Veo] Starting {attempt_label} with {self.model_name} ({aspect_ratio.value})")
            request: dict = {
                "model": self.model_name,
                "prompt": prompt,
                "config": types.GenerateVideosConfig(
                    number_of_videos=1,
                    resolution=VIDEO_RESOLUTION,
                    aspect_ratio=aspect_ratio.value,
                ),
            }
            if image is not None:
                request["image"] = types.Image(image_bytes=image.data, mime_type=image.mime_type)

            operation = await self.client.aio.models.generate_videos(**request)

            started = time.monotonic()
            polls = 0
            while not operation.done:
                elapsed = time.monotonic() - started
                if elapsed >= self.max_wait_seconds:
                    logger.warning(f"[Veo] {attempt_label} timed out after {elapsed:.0f}s ({polls} polls)")
                    attempt.diagnostics.append(
                        diagnostic(
                            DiagnosticLevel.WARN,
                            "VEO_POLL_TIMEOUT",
                            "Video generation timed out while polling the Veo operation.",
                            {
                                "attempt_label": attempt_label,
                                "polls": polls,
                                "elapsed_seconds": round(elapsed, 1),
                                "max_wait_seconds": self.max_wait_seconds,
                            },
                        )
                    )
                    return attempt
                await asyncio.sleep(self.poll_interval)
                polls += 1
                operation = await self.client.aio.operations.get(operation)

            operation_error = getattr(operation, "error", None)
            if operation_error:
                logger.error(f"[Veo] {attempt_label} operation failed: {operation_error}")
                context = {"attempt_label": attempt_label}
                if isinstance(operation_error, dict) and operation_error.get("code") is not None:
                    context["error_code"] = operation_error["code"]
                attempt.diagnostics.append(
                    diagnostic(
                        DiagnosticLevel.ERROR,
                        "VEO_OPERATION_FAILED",
                        "Veo reported an error for the video operation.",
                        context,
                        operation_error,
                    )
                )
                return attempt

            video_uri = self._video_uri(operation)
            if not video_uri:
                logger.warning(f"[Veo] {attempt_label} completed without a video URI")
                attempt.diagnostics.append(
                    diagnostic(
                        DiagnosticLevel.WARN,
                        "VEO_EMPTY_VIDEO_URI",
                        "Veo operation completed without returning a downloadable video URL.",
                        {"attempt_label": attempt_label},
                    )
                )
                return attempt

            try:
                video_bytes, mime_type = await self._download_video(video_uri)
            except httpx.HTTPStatusError as e:
                logger.error(f"[Veo] Download failed for {attempt_label}: HTTP {e.response.status_code}")
                attempt.diagnostics.append(
                    diagnostic(
                        DiagnosticLevel.ERROR,
                        "VEO_DOWNLOAD_FAILED",
                        "Veo generated a video URI, but downloading the asset failed.",
                        {
                            "attempt_label": attempt_label,
                            "status": e.response.status_code,
                            "status_text": e.response.reason_phrase,
                        },
                    )
                )
                return attempt

            logger.info(f"[Veo] {attempt_label} succeeded ({len(video_bytes)} bytes)")
            attempt.url = to_data_url(video_bytes, mime_type)
            return attempt
        except Exception as e:
            logger.error(f"[Veo] {attempt_label} failed: {e}")
            attempt.diagnostics.append(
                diagnostic(
                    DiagnosticLevel.ERROR,
                    "VEO_REQUEST_FAILED",
                    "Video generation attempt failed.",
                    {"attempt_label": attempt_label},
                    e,
                )
            )
            return attempt

    @staticmethod
    def _video_uri(operation) -> Optional[str]:
        response = getattr(operation, "response", None)
        videos = getattr(response, "generated_videos", None) or []
        if not videos or videos[0].video is None:
            return None
        return videos[0].video.uri

    async def _download_video(self, uri: str) -> tuple[bytes, str]:
        """Fetch a finished clip. Raises httpx.HTTPStatusError on non-2xx."""
        response = await self.http_client.get(uri, headers={"x-goog-api-key": self.api_key})
        response.raise_for_status()
        content_type = response.headers.get("content-type", "").split(";")[0].strip()
        if not content_type.startswith("video/"):
            content_type = "video/mp4"
        return response.content, content_type
