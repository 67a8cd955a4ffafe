"""Ad plan service - the creative director step, backed by Gemini.

Turns a free-text prompt, project settings and reference material into a
structured ``AdPlan``. Unlike the asset services this one raises: without a
plan there is nothing for the rest of the pipeline to do.
"""

import base64
import binascii
import json
import logging
from typing import Optional

from google.genai import Client, types

from models.project import AdPlan, ProjectSettings, ReferenceFile, ReferenceFileType
from utils.config import DEFAULT_PLAN_MODEL, get_gemini_api_key
from utils.media import strip_data_url_prefix

logger = logging.getLogger(__name__)

# Text reference files are only previewed in the prompt.
TEXT_REFERENCE_PREVIEW_CHARS = 500

DIRECTOR_SYSTEM_INSTRUCTION = (
    "You are an elite Film Director. You break down scenes into granular technical "
    "components (Lighting, Wardrobe, Camera, Blocking) to ensure perfect production consistency."
)

_STRING = {"type": "STRING"}

AD_PLAN_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "title": _STRING,
        "concept": _STRING,
        "musicMood": _STRING,
        "characterProfile": {
            "type": "STRING",
            "description": "Detailed physical description of the main character to be used as a fallback.",
        },
        "visualStyleProfile": {"type": "STRING", "description": "Detailed world description."},
        "fullScript": _STRING,
        "script": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {"speaker": _STRING, "text": _STRING},
            },
        },
        "scenes": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "id": _STRING,
                    "order": {"type": "INTEGER"},
                    "duration": {"type": "INTEGER"},
                    "character": {
                        "type": "OBJECT",
                        "properties": {
                            "name": _STRING,
                            "description": _STRING,
                            "hair": _STRING,
                            "face": _STRING,
                            "wardrobe": _STRING,
                        },
                        "required": ["description", "wardrobe"],
                    },
                    "environment": {
                        "type": "OBJECT",
                        "properties": {
                            "location": _STRING,
                            "look": _STRING,
                            "lighting": _STRING,
                            "background_motion": _STRING,
                        },
                        "required": ["location", "look", "lighting"],
                    },
                    "camera": {
                        "type": "OBJECT",
                        "properties": {"framing": _STRING, "movement": _STRING, "notes": _STRING},
                        "required": ["framing", "movement"],
                    },
                    "action_blocking": {
                        "type": "ARRAY",
                        "items": {
                            "type": "OBJECT",
                            "properties": {"time_window": _STRING, "notes": _STRING},
                        },
                    },
                    "visual_summary_prompt": _STRING,
                    "textOverlay": _STRING,
                    "overlayConfig": {
                        "type": "OBJECT",
                        "properties": {
                            "position": {
                                "type": "STRING",
                                "enum": [
                                    "center",
                                    "top",
                                    "bottom",
                                    "top-left",
                                    "top-right",
                                    "bottom-left",
                                    "bottom-right",
                                ],
                            },
                            "size": {"type": "STRING", "enum": ["small", "medium", "large", "xl"]},
                        },
                        "required": ["position", "size"],
                    },
                },
                "required": [
                    "id",
                    "order",
                    "duration",
                    "character",
                    "environment",
                    "camera",
                    "visual_summary_prompt",
                    "action_blocking",
                ],
            },
        },
        "ffmpegCommand": _STRING,
    },
    "required": ["title", "concept", "scenes", "musicMood", "fullScript"],
}


class AdPlanServiceError(Exception):
    """Raised when an ad plan cannot be produced."""


def strip_markdown_code_blocks(text: str) -> str:
    """Strip markdown code fences some responses wrap JSON in."""
    text = text.strip()
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


class AdPlanService:
    """Generates the director's scene plan with Gemini."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: str = DEFAULT_PLAN_MODEL,
        client: Optional[Client] = None,
    ):
        """Initialize the plan service.

        Args:
            api_key: Gemini API key. Defaults to GEMINI_API_KEY from the environment.
            model_name: Gemini model used for planning.
            client: Pre-built GenAI client (tests inject a mock here).
        """
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
        }

    def build_contents(
        self,
        prompt: str,
        settings: ProjectSettings,
        files: list[ReferenceFile],
    ) -> tuple[list[types.Part], bool]:
        """Build request parts for the planning call.

        Returns:
            (parts, has_links) where has_links enables search grounding.
        """
        parts: list[types.Part] = []
        text_context = "REFERENCE MATERIALS:\n"
        has_links = False

        for file in files:
            if file.type in (ReferenceFileType.IMAGE, ReferenceFileType.PDF):
                default_mime = "image/png" if file.type == ReferenceFileType.IMAGE else "application/pdf"
                try:
                    data = base64.b64decode(strip_data_url_prefix(file.content))
                except (binascii.Error, ValueError):
                    logger.warning(f"[Gemini][Planning] Skipping undecodable reference file {file.name}")
                    continue
                parts.append(types.Part.from_bytes(data=data, mime_type=file.mime_type or default_mime))
            elif file.type == ReferenceFileType.LINK:
                has_links = True
                text_context += f"- YouTube/Web Link: {file.content}\n"
            else:
                text_context += f"- File: {file.name}: {file.content[:TEXT_REFERENCE_PREVIEW_CHARS]}...\n"

        settings_context = (
            "SETTINGS:\n"
            f"- Mode: {settings.mode.value}\n"
            f"- Aspect Ratio: {settings.aspect_ratio.value}\n"
            f"- Text Overlays: {settings.use_text_overlays.value}\n"
            f"- Custom Script: {settings.custom_script or ''}\n"
            f"- Music Theme: {settings.music_theme or ''}\n"
        )

        request_text = f"""{text_context}
{settings_context}
USER REQUEST: "{prompt}"

TASK: Generate a 30-second Video Ad Plan using the "Director's JSON" structure.

INSTRUCTIONS:
1. **Detailed Breakdowns**: For EVERY scene, you must generate specific details for Camera (Framing/Movement), Character (Wardrobe/Hair), and Environment (Lighting/Look).
2. **Consistency**: The 'character.description' and 'environment.look' should be somewhat consistent across scenes unless the location changes.
3. **Action Blocking**: Use the 'action_blocking' array to describe exactly what happens in the 4-6 second clip.
4. **Visual Summary**: Also provide a 'visual_summary_prompt' which is a single cohesive paragraph summarizing the scene for a text-to-video model.

CONSTRAINTS:
- Duration: Exactly 30s.
- Scenes: 4s or 6s each.
- Script: 60-70 words.
"""
        parts.append(types.Part.from_text(text=request_text))
        return parts, has_links

    async def generate_ad_plan(
        self,
        prompt: str,
        settings: ProjectSettings,
        files: Optional[list[ReferenceFile]] = None,
    ) -> AdPlan:
        """Generate a structured ad plan.

        Args:
            prompt: The user's free-text request.
            settings: Project settings (mode, aspect ratio, overlays, music theme).
            files: Reference images, PDFs, text files and links.

        Returns:
            The parsed AdPlan.

        Raises:
            AdPlanServiceError: On missing credentials, request failure or malformed output.
        """
        if not self.is_configured():
            raise AdPlanServiceError("Missing API key. Set GEMINI_API_KEY in .env and restart.")

        files = files or []
        parts, has_links = self.build_contents(prompt, settings, files)

        config_kwargs = {
            "system_instruction": DIRECTOR_SYSTEM_INSTRUCTION,
            "response_mime_type": "application/json",
            "response_schema": AD_PLAN_SCHEMA,
        }
        if has_links:
            config_kwargs["tools"] = [types.Tool(google_search=types.GoogleSearch())]

        logger.info(
            f"[Gemini][Planning] Generating ad plan with {self.model_name} "
            f"({len(files)} reference files, links={has_links}, mode={settings.mode.value}, "
            f"aspect={settings.aspect_ratio.value})"
        )

        try:
            response = await self.client.aio.models.generate_content(
                model=self.model_name,
                contents=[types.Content(role="user", parts=parts)],
                config=types.GenerateContentConfig(**config_kwargs),
            )
        except Exception as e:
            logger.error(f"[Gemini][Planning] Ad plan generation failed for '{prompt[:160]}': {e}")
            raise AdPlanServiceError(f"Ad plan request failed: {e}") from e

        try:
            payload = json.loads(strip_markdown_code_blocks(response.text or "{}"))
            plan = AdPlan.from_response(payload)
        except (json.JSONDecodeError, ValueError) as e:
            logger.error(f"[Gemini][Planning] Could not parse ad plan: {e}")
            raise AdPlanServiceError(f"Malformed ad plan response: {e}") from e

        logger.info(
            f"[Gemini][Planning] Ad plan generated: '{plan.title}' "
            f"with {len(plan.scenes)} scenes (mood: {plan.music_mood or 'none'})"
        )
        return plan
