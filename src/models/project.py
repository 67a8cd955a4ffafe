"""Models for ad projects, scenes and the director's plan."""

import copy
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

# Scene clips are generated at one of two fixed lengths (seconds).
SCENE_DURATIONS = (4, 6)

DEFAULT_MUSIC_DURATION_SECONDS = 30


class PipelinePhase(str, Enum):
    """Lifecycle phase of a project, in the only order it may advance."""

    PLANNING = "planning"
    STORYBOARDING = "storyboarding"
    VIDEO_PRODUCTION = "video_production"
    VOICEOVER = "voiceover"
    SCORING = "scoring"
    MIXING = "mixing"  # reserved for the export step
    READY = "ready"

    @property
    def rank(self) -> int:
        return _PHASE_ORDER.index(self)


_PHASE_ORDER = list(PipelinePhase)


class SceneStatus(str, Enum):
    """Status of a single scene's video generation."""

    PENDING = "pending"
    GENERATING = "generating"
    COMPLETE = "complete"
    FAILED = "failed"


class AspectRatio(str, Enum):
    """Supported output aspect ratios."""

    SIXTEEN_NINE = "16:9"
    NINE_SIXTEEN = "9:16"


class TTSVoice(str, Enum):
    """Prebuilt Gemini TTS voices, in rotation order for multi-speaker scripts."""

    PUCK = "Puck"
    CHARON = "Charon"
    KORE = "Kore"
    FENRIR = "Fenrir"
    ZEPHYR = "Zephyr"
    AOEDE = "Aoede"


class ProjectMode(str, Enum):
    """Creative mode of the ad."""

    COMMERCIAL = "Commercial"
    MUSIC_VIDEO = "Music Video"
    TRIPPY = "Trippy"
    CINEMATIC = "Cinematic"


class TextOverlayPolicy(str, Enum):
    """Whether the director should add on-screen text."""

    YES = "yes"
    NO = "no"
    AUTO = "auto"


class ReferenceFileType(str, Enum):
    """Kind of reference material attached to a prompt."""

    IMAGE = "image"
    PDF = "pdf"
    TEXT = "text"
    LINK = "link"


def snap_duration(value: Any) -> int:
    """Snap a planned scene duration to the nearest supported clip length."""
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return SCENE_DURATIONS[0]
    return SCENE_DURATIONS[0] if seconds < 5 else SCENE_DURATIONS[1]


def _text(data: dict, *keys: str) -> str:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return str(value)
    return ""


@dataclass
class ReferenceFile:
    """A reference file or link supplied alongside the prompt.

    ``content`` holds base64 (or a data URL) for images and PDFs, raw text
    for text files and the URL itself for links.
    """

    name: str
    type: ReferenceFileType
    content: str
    mime_type: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "mime_type": self.mime_type,
        }


@dataclass
class ProjectSettings:
    """User-facing generation settings."""

    aspect_ratio: AspectRatio = AspectRatio.SIXTEEN_NINE
    mode: ProjectMode = ProjectMode.COMMERCIAL
    custom_script: str = ""
    music_theme: str = ""
    use_text_overlays: TextOverlayPolicy = TextOverlayPolicy.AUTO
    text_overlay_font: Optional[str] = None
    preferred_voice: Optional[TTSVoice] = None  # None means "auto"

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "aspect_ratio": self.aspect_ratio.value,
            "mode": self.mode.value,
            "custom_script": self.custom_script,
            "music_theme": self.music_theme,
            "use_text_overlays": self.use_text_overlays.value,
            "text_overlay_font": self.text_overlay_font,
            "preferred_voice": self.preferred_voice.value if self.preferred_voice else "auto",
        }


@dataclass
class DialogueLine:
    """One spoken line of the ad script."""

    speaker: str
    text: str

    def to_dict(self) -> dict:
        return {"speaker": self.speaker, "text": self.text}

    @classmethod
    def from_dict(cls, data: dict) -> "DialogueLine":
        return cls(speaker=_text(data, "speaker"), text=_text(data, "text"))


@dataclass
class CharacterDetails:
    """Who is on screen and how they look."""

    name: str = ""
    description: str = ""
    hair: str = ""
    face: str = ""
    wardrobe: str = ""

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "hair": self.hair,
            "face": self.face,
            "wardrobe": self.wardrobe,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "CharacterDetails":
        data = data or {}
        return cls(
            name=_text(data, "name"),
            description=_text(data, "description"),
            hair=_text(data, "hair"),
            face=_text(data, "face"),
            wardrobe=_text(data, "wardrobe"),
        )


@dataclass
class EnvironmentDetails:
    """Where the scene happens and how it is lit."""

    location: str = ""
    look: str = ""
    lighting: str = ""
    background_motion: str = ""

    def to_dict(self) -> dict:
        return {
            "location": self.location,
            "look": self.look,
            "lighting": self.lighting,
            "background_motion": self.background_motion,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "EnvironmentDetails":
        data = data or {}
        return cls(
            location=_text(data, "location"),
            look=_text(data, "look"),
            lighting=_text(data, "lighting"),
            background_motion=_text(data, "background_motion", "backgroundMotion"),
        )


@dataclass
class CameraDetails:
    """Shot framing and camera movement."""

    framing: str = ""
    movement: str = ""
    notes: str = ""

    def to_dict(self) -> dict:
        return {"framing": self.framing, "movement": self.movement, "notes": self.notes}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "CameraDetails":
        data = data or {}
        return cls(
            framing=_text(data, "framing"),
            movement=_text(data, "movement"),
            notes=_text(data, "notes"),
        )


@dataclass
class ActionBlock:
    """What happens during one time window of a clip."""

    time_window: str = ""
    notes: str = ""

    def to_dict(self) -> dict:
        return {"time_window": self.time_window, "notes": self.notes}

    @classmethod
    def from_dict(cls, data: dict) -> "ActionBlock":
        return cls(
            time_window=_text(data, "time_window", "timeWindow"),
            notes=_text(data, "notes"),
        )


@dataclass
class OverlayConfig:
    """Placement of a scene's text overlay."""

    position: str = "center"  # center, top, bottom, top-left, top-right, bottom-left, bottom-right
    size: str = "medium"  # small, medium, large, xl

    def to_dict(self) -> dict:
        return {"position": self.position, "size": self.size}

    @classmethod
    def from_dict(cls, data: dict) -> "OverlayConfig":
        return cls(position=_text(data, "position") or "center", size=_text(data, "size") or "medium")


@dataclass
class Scene:
    """A single shot of the ad with its creative breakdown and media."""

    id: str
    order: int
    duration: int = SCENE_DURATIONS[0]
    character: CharacterDetails = field(default_factory=CharacterDetails)
    environment: EnvironmentDetails = field(default_factory=EnvironmentDetails)
    camera: CameraDetails = field(default_factory=CameraDetails)
    action_blocking: list[ActionBlock] = field(default_factory=list)
    visual_summary_prompt: str = ""
    text_overlay: str = ""
    overlay_config: Optional[OverlayConfig] = None
    status: SceneStatus = SceneStatus.PENDING
    storyboard_url: Optional[str] = None
    video_url: Optional[str] = None

    @property
    def action_notes(self) -> str:
        """Action blocking notes joined into one sentence run."""
        return ". ".join(block.notes for block in self.action_blocking if block.notes)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "order": self.order,
            "duration": self.duration,
            "character": self.character.to_dict(),
            "environment": self.environment.to_dict(),
            "camera": self.camera.to_dict(),
            "action_blocking": [block.to_dict() for block in self.action_blocking],
            "visual_summary_prompt": self.visual_summary_prompt,
            "text_overlay": self.text_overlay,
            "overlay_config": self.overlay_config.to_dict() if self.overlay_config else None,
            "status": self.status.value,
            "storyboard_url": self.storyboard_url,
            "video_url": self.video_url,
        }

    @classmethod
    def from_dict(cls, data: dict, order: Optional[int] = None) -> "Scene":
        """Build a scene from a plan or snapshot dict (snake_case or camelCase keys)."""
        scene_order = order if order is not None else int(data.get("order") or 1)
        overlay = data.get("overlay_config", data.get("overlayConfig"))
        blocking = data.get("action_blocking") or []
        status = data.get("status") or SceneStatus.PENDING.value
        return cls(
            id=_text(data, "id") or f"scene_{scene_order:02d}",
            order=scene_order,
            duration=snap_duration(data.get("duration")),
            character=CharacterDetails.from_dict(data.get("character")),
            environment=EnvironmentDetails.from_dict(data.get("environment")),
            camera=CameraDetails.from_dict(data.get("camera")),
            action_blocking=[ActionBlock.from_dict(b) for b in blocking if isinstance(b, dict)],
            visual_summary_prompt=_text(data, "visual_summary_prompt", "visualSummaryPrompt"),
            text_overlay=_text(data, "text_overlay", "textOverlay"),
            overlay_config=OverlayConfig.from_dict(overlay) if isinstance(overlay, dict) else None,
            status=SceneStatus(status),
            storyboard_url=data.get("storyboard_url", data.get("storyboardUrl")),
            video_url=data.get("video_url", data.get("videoUrl")),
        )


@dataclass
class AdPlan:
    """The director's structured plan returned by the planning model."""

    title: str
    concept: str
    music_mood: str
    full_script: str
    scenes: list[Scene]
    script: list[DialogueLine] = field(default_factory=list)
    character_profile: Optional[str] = None
    visual_style_profile: Optional[str] = None
    ffmpeg_command: Optional[str] = None

    REQUIRED_FIELDS = ("title", "concept", "scenes", "musicMood", "fullScript")

    @property
    def total_duration(self) -> int:
        return sum(scene.duration for scene in self.scenes)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "title": self.title,
            "concept": self.concept,
            "music_mood": self.music_mood,
            "full_script": self.full_script,
            "script": [line.to_dict() for line in self.script],
            "character_profile": self.character_profile,
            "visual_style_profile": self.visual_style_profile,
            "ffmpeg_command": self.ffmpeg_command,
            "scenes": [scene.to_dict() for scene in self.scenes],
        }

    @classmethod
    def from_response(cls, data: Any) -> "AdPlan":
        """Build a plan from the model's JSON payload.

        Scenes are renumbered 1..N in list order.

        Raises:
            ValueError: If the payload is not an object or lacks required fields.
        """
        if not isinstance(data, dict):
            raise ValueError("Ad plan response must be a JSON object")

        snake = {"musicMood": "music_mood", "fullScript": "full_script"}
        missing = [
            name
            for name in cls.REQUIRED_FIELDS
            if data.get(name) is None and data.get(snake.get(name, name)) is None
        ]
        if missing:
            raise ValueError(f"Ad plan response missing required fields: {', '.join(missing)}")

        raw_scenes = data.get("scenes")
        if not isinstance(raw_scenes, list):
            raise ValueError("Ad plan 'scenes' must be a list")

        scenes = [
            Scene.from_dict(raw, order=index)
            for index, raw in enumerate((s for s in raw_scenes if isinstance(s, dict)), start=1)
        ]
        script = [DialogueLine.from_dict(line) for line in data.get("script") or [] if isinstance(line, dict)]

        return cls(
            title=_text(data, "title"),
            concept=_text(data, "concept"),
            music_mood=_text(data, "musicMood", "music_mood"),
            full_script=_text(data, "fullScript", "full_script"),
            scenes=scenes,
            script=script,
            character_profile=data.get("characterProfile", data.get("character_profile")),
            visual_style_profile=data.get("visualStyleProfile", data.get("visual_style_profile")),
            ffmpeg_command=data.get("ffmpegCommand", data.get("ffmpeg_command")),
        )


@dataclass
class AdProject:
    """Top-level unit of work: a plan plus its generated media and phase."""

    title: str
    concept: str
    music_mood: str
    full_script: str
    scenes: list[Scene] = field(default_factory=list)
    script: list[DialogueLine] = field(default_factory=list)
    character_profile: Optional[str] = None
    visual_style_profile: Optional[str] = None
    mode: Optional[ProjectMode] = None
    voiceover_url: Optional[str] = None
    music_url: Optional[str] = None
    visual_anchor: Optional[str] = None
    ffmpeg_command: Optional[str] = None
    current_phase: PipelinePhase = PipelinePhase.PLANNING
    is_generating: bool = False
    project_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @classmethod
    def from_plan(
        cls,
        plan: AdPlan,
        mode: Optional[ProjectMode] = None,
        visual_anchor: Optional[str] = None,
    ) -> "AdProject":
        """Create the in-memory project for a freshly accepted plan."""
        scenes = [copy.deepcopy(scene) for scene in plan.scenes]
        for scene in scenes:
            scene.status = SceneStatus.PENDING
        return cls(
            title=plan.title,
            concept=plan.concept,
            music_mood=plan.music_mood,
            full_script=plan.full_script,
            scenes=scenes,
            script=list(plan.script),
            character_profile=plan.character_profile,
            visual_style_profile=plan.visual_style_profile,
            mode=mode,
            visual_anchor=visual_anchor,
            ffmpeg_command=plan.ffmpeg_command,
            current_phase=PipelinePhase.STORYBOARDING,
            is_generating=True,
        )

    def snapshot(self) -> "AdProject":
        """Return an independent copy safe to hand to observers."""
        return copy.deepcopy(self)

    def replace_scene(self, scene: Scene) -> None:
        """Swap in an updated scene by id."""
        self.scenes = [scene if s.id == scene.id else s for s in self.scenes]

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "project_id": self.project_id,
            "title": self.title,
            "concept": self.concept,
            "music_mood": self.music_mood,
            "full_script": self.full_script,
            "script": [line.to_dict() for line in self.script],
            "character_profile": self.character_profile,
            "visual_style_profile": self.visual_style_profile,
            "mode": self.mode.value if self.mode else None,
            "scenes": [scene.to_dict() for scene in self.scenes],
            "voiceover_url": self.voiceover_url,
            "music_url": self.music_url,
            "visual_anchor": self.visual_anchor,
            "ffmpeg_command": self.ffmpeg_command,
            "current_phase": self.current_phase.value,
            "is_generating": self.is_generating,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AdProject":
        """Rebuild a project from a snapshot dict."""
        mode = data.get("mode")
        scenes = [Scene.from_dict(s) for s in data.get("scenes") or [] if isinstance(s, dict)]
        project = cls(
            title=_text(data, "title"),
            concept=_text(data, "concept"),
            music_mood=_text(data, "music_mood", "musicMood"),
            full_script=_text(data, "full_script", "fullScript"),
            scenes=scenes,
            script=[DialogueLine.from_dict(line) for line in data.get("script") or [] if isinstance(line, dict)],
            character_profile=data.get("character_profile"),
            visual_style_profile=data.get("visual_style_profile"),
            mode=ProjectMode(mode) if mode else None,
            voiceover_url=data.get("voiceover_url"),
            music_url=data.get("music_url"),
            visual_anchor=data.get("visual_anchor"),
            ffmpeg_command=data.get("ffmpeg_command"),
            current_phase=PipelinePhase(data.get("current_phase") or PipelinePhase.PLANNING.value),
            is_generating=bool(data.get("is_generating", False)),
        )
        if data.get("project_id"):
            project.project_id = str(data["project_id"])
        return project
