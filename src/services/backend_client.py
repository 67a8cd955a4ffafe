"""Backend client - best-effort persistence of projects and media over REST.

The studio backend is optional. Every public method returns None when the
backend is unreachable or a call fails, so a missing backend never changes
what the generation pipeline does.
"""

import base64
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import httpx

from models.project import AdProject, PipelinePhase, ProjectSettings, Scene
from utils.config import DEFAULT_BACKEND_API_URL, DEFAULT_BACKEND_STORAGE_URL
from utils.media import parse_data_url
from utils.project_persistence import is_ephemeral_media_url

logger = logging.getLogger(__name__)


class BackendClientError(Exception):
    """Raised by low-level backend requests; public methods turn it into None."""


class MediaKind(str, Enum):
    """Kinds of media the backend stores, by owner."""

    STORYBOARD = "storyboard"  # scene-owned
    VIDEO = "video"  # scene-owned
    VOICEOVER = "voiceover"  # project-owned
    MUSIC = "music"  # project-owned


SCENE_MEDIA_KINDS = {MediaKind.STORYBOARD, MediaKind.VIDEO}


@dataclass
class BackendAvailability:
    """Result of the backend health probe, cached after the first check.

    ``available`` stays None until probed; ``reset()`` forces a new probe.
    """

    available: Optional[bool] = None

    @property
    def checked(self) -> bool:
        return self.available is not None

    def reset(self) -> None:
        self.available = None


def project_to_payload(project: AdProject, settings: Optional[ProjectSettings] = None) -> dict:
    """Map a project to the backend's create-project body."""
    return {
        "title": project.title,
        "concept": project.concept,
        "music_mood": project.music_mood,
        "full_script": project.full_script,
        "character_profile": project.character_profile,
        "visual_style_profile": project.visual_style_profile,
        "mode": project.mode.value if project.mode else None,
        "settings": settings.to_dict() if settings else None,
        "scenes": [
            {
                "order": scene.order,
                "duration": scene.duration,
                "character": scene.character.to_dict(),
                "environment": scene.environment.to_dict(),
                "camera": scene.camera.to_dict(),
                "action_blocking": [block.to_dict() for block in scene.action_blocking],
                "visual_summary_prompt": scene.visual_summary_prompt,
                "textOverlay": scene.text_overlay,
                "overlayConfig": scene.overlay_config.to_dict() if scene.overlay_config else None,
                "status": scene.status.value,
            }
            for scene in project.scenes
        ],
    }


def project_from_row(row: dict, storage_url: str) -> AdProject:
    """Map a backend project row (with scenes) back to an AdProject."""

    def storage(path: Optional[str]) -> Optional[str]:
        return f"{storage_url}/{path}" if path else None

    scenes = []
    for index, scene_row in enumerate(row.get("scenes") or [], start=1):
        scene = Scene.from_dict(
            {
                "id": scene_row.get("id"),
                "duration": scene_row.get("duration"),
                "character": scene_row.get("character"),
                "environment": scene_row.get("environment"),
                "camera": scene_row.get("camera"),
                "action_blocking": scene_row.get("action_blocking"),
                "visual_summary_prompt": scene_row.get("visual_summary_prompt"),
                "text_overlay": scene_row.get("text_overlay"),
                "overlay_config": scene_row.get("overlay_config"),
                "status": scene_row.get("status"),
            },
            order=int(scene_row.get("scene_order") or index),
        )
        scene.storyboard_url = storage(scene_row.get("storyboard_path"))
        scene.video_url = storage(scene_row.get("video_path"))
        scenes.append(scene)

    project = AdProject.from_dict(
        {
            "title": row.get("title"),
            "concept": row.get("concept"),
            "music_mood": row.get("music_mood"),
            "full_script": row.get("full_script"),
            "character_profile": row.get("character_profile"),
            "visual_style_profile": row.get("visual_style_profile"),
            "mode": row.get("mode"),
            "current_phase": row.get("current_phase") or PipelinePhase.READY.value,
            "is_generating": bool(row.get("is_generating")),
        }
    )
    project.scenes = scenes
    project.voiceover_url = storage(row.get("voiceover_path"))
    project.music_url = storage(row.get("music_path"))
    if row.get("id") is not None:
        project.project_id = str(row["id"])
    return project


class BackendClient:
    """Thin async client for the studio backend API."""

    def __init__(
        self,
        api_url: str = DEFAULT_BACKEND_API_URL,
        storage_url: str = DEFAULT_BACKEND_STORAGE_URL,
        http_client: Optional[httpx.AsyncClient] = None,
        availability: Optional[BackendAvailability] = None,
        health_timeout: float = 2.0,
    ):
        self.api_url = api_url.rstrip("/")
        self.storage_url = storage_url.rstrip("/")
        self.client = http_client or httpx.AsyncClient(timeout=60.0)
        self.availability = availability or BackendAvailability()
        self.health_timeout = health_timeout

    @property
    def server_url(self) -> str:
        """Backend origin; upload responses carry paths relative to it."""
        return self.storage_url.removesuffix("/storage")

    async def close(self) -> None:
        await self.client.aclose()

    async def check_available(self) -> bool:
        """Probe ``/health`` once and cache the answer on ``self.availability``."""
        if self.availability.checked:
            return bool(self.availability.available)

        try:
            response = await self.client.get(f"{self.api_url}/health", timeout=self.health_timeout)
            self.availability.available = response.json().get("status") == "ok"
            if self.availability.available:
                logger.info(f"Backend connected at {self.api_url}")
            else:
                logger.warning(f"Backend at {self.api_url} reported unhealthy")
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            self.availability.available = False
            logger.info(f"Backend not available ({e}), persistence disabled")
        return self.availability.available

    async def check_health(self) -> dict:
        available = await self.check_available()
        return {
            "configured": bool(self.api_url),
            "available": available,
            "error": None if available else f"Backend unreachable at {self.api_url}",
        }

    async def _request_json(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self.client.request(method, f"{self.api_url}{path}", **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            body_preview = e.response.text[:300]
            request_id = e.response.headers.get("x-request-id")
            raise BackendClientError(
                f"{method} {path} failed: HTTP {e.response.status_code} "
                f"(request_id={request_id}) {body_preview}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise BackendClientError(f"{method} {path} failed: {e}") from e

    async def list_projects(self) -> list[dict]:
        return await self._request_json("GET", "/projects")

    async def get_project(self, project_id: str) -> dict:
        return await self._request_json("GET", f"/projects/{project_id}")

    async def save_project(
        self,
        project: AdProject,
        settings: Optional[ProjectSettings] = None,
    ) -> Optional[str]:
        """Save a project snapshot. Returns the backend id, or None."""
        if not await self.check_available():
            return None
        try:
            result = await self._request_json("POST", "/projects", json=project_to_payload(project, settings))
        except BackendClientError as e:
            logger.error(f"Failed to save project to database: {e}")
            return None
        if not isinstance(result, dict) or result.get("error") or result.get("id") is None:
            logger.error(f"Failed to save project to database: {result}")
            return None
        logger.info(f"Project saved to database: {result['id']}")
        return str(result["id"])

    async def load_latest_project(self) -> Optional[AdProject]:
        """Load the most recently saved project, or None."""
        if not await self.check_available():
            return None
        try:
            projects = await self.list_projects()
            if not projects:
                return None
            latest = await self.get_project(projects[0]["id"])
            return project_from_row(latest, self.storage_url)
        except (BackendClientError, KeyError, TypeError, ValueError) as e:
            logger.error(f"Failed to load project from database: {e}")
            return None

    async def upload_media(self, owner_id: str, media: str, kind: MediaKind) -> Optional[str]:
        """Upload a media asset and return its public URL, or None.

        Args:
            owner_id: Scene id for storyboards and videos, backend project id
                for voiceover and music.
            media: A data URL, or an http(s) URL to fetch first.
            kind: What the media is.
        """
        if not await self.check_available():
            return None
        kind = MediaKind(kind)

        try:
            base64_data, mime_type = await self._media_payload(media)
            if kind in SCENE_MEDIA_KINDS:
                result = await self._request_json(
                    "POST",
                    f"/scenes/{owner_id}/upload-base64",
                    json={"data": base64_data, "type": kind.value, "mimeType": mime_type},
                )
                path = result.get(f"{kind.value}_url")
            else:
                result = await self._request_json(
                    "POST",
                    "/assets/upload-base64",
                    json={
                        "project_id": owner_id,
                        "asset_type": kind.value,
                        "data": base64_data,
                        "mimeType": mime_type,
                    },
                )
                path = result.get("file_url")
        except (BackendClientError, AttributeError) as e:
            logger.error(f"Failed to upload {kind.value} for {owner_id}: {e}")
            return None

        return f"{self.server_url}{path}" if path else None

    async def upload_project_media(self, project_id: str, project: AdProject) -> int:
        """Upload the in-memory media of a saved project. Returns how many assets were stored.

        Scene media goes to the backend scene with the same order. Media that
        already lives at a durable URL is left alone.
        """
        if not await self.check_available():
            return 0
        try:
            saved = await self.get_project(project_id)
            scene_ids = {
                row.get("scene_order"): str(row["id"])
                for row in saved.get("scenes") or []
                if row.get("id") is not None
            }
        except (BackendClientError, AttributeError, KeyError) as e:
            logger.error(f"Failed to look up scenes for project {project_id}: {e}")
            return 0

        uploads: list[tuple[str, str, MediaKind]] = []
        for scene in project.scenes:
            scene_id = scene_ids.get(scene.order)
            if scene_id is None:
                continue
            for kind, url in ((MediaKind.STORYBOARD, scene.storyboard_url), (MediaKind.VIDEO, scene.video_url)):
                if is_ephemeral_media_url(url):
                    uploads.append((scene_id, url, kind))
        for kind, url in ((MediaKind.VOICEOVER, project.voiceover_url), (MediaKind.MUSIC, project.music_url)):
            if is_ephemeral_media_url(url):
                uploads.append((project_id, url, kind))

        stored = 0
        for owner_id, media, kind in uploads:
            if await self.upload_media(owner_id, media, kind):
                stored += 1
        logger.info(f"Uploaded {stored}/{len(uploads)} media assets for project {project_id}")
        return stored

    async def _media_payload(self, media: str) -> tuple[str, str]:
        inline = parse_data_url(media)
        if inline:
            return inline.base64_data, inline.mime_type
        try:
            response = await self.client.get(media)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise BackendClientError(f"Could not fetch media {media[:80]}: {e}") from e
        mime_type = response.headers.get("content-type", "application/octet-stream").split(";")[0]
        return base64.b64encode(response.content).decode("ascii"), mime_type
