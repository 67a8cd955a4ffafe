"""Models for pipeline runs: log entries, issues and the run result."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from .diagnostics import DiagnosticLevel, SerializedError
from .project import AdPlan, AdProject, PipelinePhase, Scene


@dataclass(frozen=True)
class PipelineLogEntry:
    """Append-only trace event tagged with the phase active at emission time."""

    id: str
    stage: PipelinePhase
    level: DiagnosticLevel
    message: str
    context: Optional[dict] = None
    error: Optional[SerializedError] = None
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "stage": self.stage.value,
            "level": self.level.value,
            "message": self.message,
            "context": self.context,
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass(frozen=True)
class PipelineIssue:
    """A user-relevant problem surfaced by a run.

    ``recoverable`` issues are ones the pipeline continued past.
    """

    stage: PipelinePhase
    message: str
    recoverable: bool = True
    scene_id: Optional[str] = None
    error: Optional[SerializedError] = None

    def to_dict(self) -> dict:
        return {
            "stage": self.stage.value,
            "message": self.message,
            "scene_id": self.scene_id,
            "recoverable": self.recoverable,
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass
class PipelineRunResult:
    """Everything a finished run produced."""

    plan: AdPlan
    project: AdProject
    scenes: list[Scene]
    voiceover_url: Optional[str] = None
    music_url: Optional[str] = None
    logs: list[PipelineLogEntry] = field(default_factory=list)
    issues: list[PipelineIssue] = field(default_factory=list)
    persisted_id: Optional[str] = None

    @property
    def completed_scene_count(self) -> int:
        return sum(1 for scene in self.scenes if scene.video_url)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON output."""
        return {
            "plan": self.plan.to_dict(),
            "project": self.project.to_dict(),
            "voiceover_url": self.voiceover_url,
            "music_url": self.music_url,
            "persisted_id": self.persisted_id,
            "logs": [entry.to_dict() for entry in self.logs],
            "issues": [issue.to_dict() for issue in self.issues],
        }
