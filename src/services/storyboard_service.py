"""Storyboard service - one keyframe image per scene via Gemini image generation."""

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
from models.project import AspectRatio, Scene
from utils.config import DEFAULT_STORYBOARD_MODEL, get_gemini_api_key
from utils.media import inline_data_bytes, parse_data_url, to_data_url

logger = logging.getLogger(__name__)

STORYBOARD_IMAGE_SIZE = "1K"

ANCHOR_INSTRUCTION = "REFERENCE IMAGE: Use the subject from this image. Keep their face and body consistent."


def build_storyboard_prompt(scene: Scene) -> str:
    """Assemble the shot description from the scene's creative breakdown."""
    camera = scene.camera
    environment = scene.environment
    character = scene.character
    action = scene.action_notes or "Static shot"

    return f"""Create a photorealistic cinematic shot.

[CAMERA]: {camera.framing or 'Cinematic framing'}, {camera.movement or 'Static'}. {camera.notes}

[LIGHTING & ATMOSPHERE]: {environment.lighting or 'Natural light'}, {environment.look or 'Realistic'}.

[LOCATION]: {environment.location or 'Unknown'}.

[SUBJECT]: {character.description or 'A person'}.
- Hair: {character.hair or 'Natural'}
- Wardrobe: {character.wardrobe or 'Casual'}
- Face: {character.face or 'Neutral'}

[ACTION]: {action}

[STYLE]: High-end commercial, 8k resolution, highly detailed.
"""


class StoryboardService:
    """Generates storyboard keyframes with a Gemini image model."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: str = DEFAULT_STORYBOARD_MODEL,
        client: Optional[Client] = None,
    ):
        """Initialize the storyboard service.

        Args:
            api_key: Gemini API key. Defaults to GEMINI_API_KEY from the environment.
            model_name: Gemini image model.
            client: Pre-built GenAI client (tests inject a mock here).
        """
        self.api_key = api_key if api_key is not None else get_gemini_api_key()
        self.model_name = model_name
        self.client = client or (Client(api_key=self.api_key) if self.api_key else None)

    def is_configured(self) -> bool:
        return self.client is not None

    def _result(self, url: Optional[str], diagnostics: list[ProviderDiagnostic]) -> GeneratedAssetResult:
        return GeneratedAssetResult(
            provider=ProviderName.GEMINI,
            operation=ProviderOperation.STORYBOARD,
            url=url,
            diagnostics=diagnostics,
        )

    async def generate_storyboard_image(
        self,
        scene: Scene,
        aspect_ratio: AspectRatio,
        visual_anchor: Optional[str] = None,
    ) -> GeneratedAssetResult:
        """Generate at most one storyboard image for a scene.

        Args:
            scene: Scene whose breakdown drives the prompt.
            aspect_ratio: Target aspect ratio.
            visual_anchor: Optional data URL of a reference subject image.

        Returns:
            Result with a data URL, or a null url plus diagnostics. Never raises
            for provider failures.
        """
        diagnostics: list[ProviderDiagnostic] = []
        if not self.is_configured():
            logger.error("[Gemini][Storyboard] Missing API key.")
            diagnostics.append(
                diagnostic(
                    DiagnosticLevel.ERROR,
                    "GEMINI_STORYBOARD_MISSING_API_KEY",
                    "Missing Gemini API key. Set GEMINI_API_KEY before generating storyboards.",
                    {"scene_id": scene.id},
                )
            )
            return self._result(None, diagnostics)

        parts: list[types.Part] = []
        if visual_anchor:
            anchor = parse_data_url(visual_anchor)
            if anchor:
                parts.append(types.Part.from_bytes(data=anchor.data, mime_type=anchor.mime_type))
                parts.append(types.Part.from_text(text=ANCHOR_INSTRUCTION))
            else:
                diagnostics.append(
                    diagnostic(
                        DiagnosticLevel.WARN,
                        "GEMINI_STORYBOARD_ANCHOR_PARSE_FAILED",
                        "Visual anchor could not be parsed. Continuing without reference image.",
                        {"scene_id": scene.id},
                    )
                )
        parts.append(types.Part.from_text(text=build_storyboard_prompt(scene)))

        logger.info(
            f"[Gemini][Storyboard] Generating image for scene {scene.id} (order {scene.order}, "
            f"{aspect_ratio.value}, anchor={bool(visual_anchor)})"
        )

        try:
            response = await self.client.aio.models.generate_content(
                model=self.model_name,
                contents=[types.Content(role="user", parts=parts)],
                config=types.GenerateContentConfig(
                    image_config=types.ImageConfig(
                        aspect_ratio=aspect_ratio.value,
                        image_size=STORYBOARD_IMAGE_SIZE,
                    ),
                ),
            )

            candidates = response.candidates or []
            content_parts = (candidates[0].content.parts or []) if candidates and candidates[0].content else []
            for part in content_parts:
                inline = getattr(part, "inline_data", None)
                if inline and inline.data:
                    logger.info(f"[Gemini][Storyboard] Image generated for scene {scene.id} ({inline.mime_type})")
                    return self._result(
                        to_data_url(inline_data_bytes(inline.data), inline.mime_type or "image/png"),
                        diagnostics,
                    )
        except Exception as e:
            logger.error(f"[Gemini][Storyboard] Generation failed for scene {scene.id}: {e}")
            diagnostics.append(
                diagnostic(
                    DiagnosticLevel.ERROR,
                    "GEMINI_STORYBOARD_REQUEST_FAILED",
                    "Storyboard generation request failed.",
                    {"scene_id": scene.id, "model": self.model_name},
                    e,
                )
            )
            return self._result(None, diagnostics)

        logger.warning(f"[Gemini][Storyboard] No image returned for scene {scene.id}")
        diagnostics.append(
            diagnostic(
                DiagnosticLevel.WARN,
                "GEMINI_STORYBOARD_EMPTY_RESPONSE",
                "Gemini returned no storyboard image for this scene.",
                {"scene_id": scene.id, "model": self.model_name},
            )
        )
        return self._result(None, diagnostics)
