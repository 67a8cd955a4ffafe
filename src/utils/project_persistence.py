"""Rules for reloading saved projects without dangling in-memory media."""

import copy
from dataclasses import dataclass
from typing import Optional

from models.project import AdProject, PipelinePhase

EPHEMERAL_URL_PREFIXES = ("blob:", "data:")


@dataclass
class SanitizedProject:
    project: AdProject
    cleared_count: int
    retained_count: int


def is_ephemeral_media_url(url: Optional[str]) -> bool:
    """True for media URLs that only live in the current process (blob: or data:)."""
    return bool(url) and url.startswith(EPHEMERAL_URL_PREFIXES)


def sanitize_project_media_for_reload(project: AdProject) -> SanitizedProject:
    """Return a copy of ``project`` with every ephemeral media URL cleared."""
    sanitized = copy.deepcopy(project)
    counts = {"cleared": 0, "retained": 0}

    def keep_persistent_url(url: Optional[str]) -> Optional[str]:
        if not url:
            return None
        if is_ephemeral_media_url(url):
            counts["cleared"] += 1
            return None
        counts["retained"] += 1
        return url

    for scene in sanitized.scenes:
        scene.video_url = keep_persistent_url(scene.video_url)
        scene.storyboard_url = keep_persistent_url(scene.storyboard_url)
    sanitized.voiceover_url = keep_persistent_url(sanitized.voiceover_url)
    sanitized.music_url = keep_persistent_url(sanitized.music_url)

    return SanitizedProject(
        project=sanitized,
        cleared_count=counts["cleared"],
        retained_count=counts["retained"],
    )


def _is_persistent(url: Optional[str]) -> bool:
    return bool(url) and not is_ephemeral_media_url(url)


def has_persistent_media(project: Optional[AdProject]) -> bool:
    """True when any project or scene media points somewhere durable."""
    if project is None:
        return False
    if _is_persistent(project.voiceover_url) or _is_persistent(project.music_url):
        return True
    return any(
        _is_persistent(scene.storyboard_url) or _is_persistent(scene.video_url)
        for scene in project.scenes
    )


def has_director_content(project: Optional[AdProject]) -> bool:
    """True when the project carries a script or any scene breakdown."""
    if project is None:
        return False
    if project.full_script and project.full_script.strip():
        return True
    return any(
        scene.visual_summary_prompt
        or scene.text_overlay
        or any(scene.character.to_dict().values())
        or any(scene.environment.to_dict().values())
        or any(scene.camera.to_dict().values())
        for scene in project.scenes
    )


def should_replace_with_backend_snapshot(current: AdProject, loaded: AdProject) -> bool:
    """Decide whether a snapshot loaded from the backend should win over local state."""
    if has_persistent_media(loaded) and not has_persistent_media(current):
        return True
    if has_director_content(loaded) and not has_director_content(current):
        return True
    return loaded.current_phase == PipelinePhase.READY and current.current_phase != PipelinePhase.READY
