"""Generation pipeline - drives a project from prompt to a ready snapshot.

Phases only move forward::

    planning -> storyboarding -> video_production -> voiceover -> scoring -> ready

Only the planning step may abort a run. Every later adapter call is wrapped
so its failures become recoverable issues, and the run always finishes with
the project in ``ready`` unless the cancellation predicate trips first.
"""

import asyncio
import copy
import inspect
import logging
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Optional

from models.diagnostics import (
    DiagnosticLevel,
    ProviderDiagnostic,
    SerializedError,
    normalize_asset_result,
    select_primary_diagnostic,
    serialize_error,
)
from models.pipeline import PipelineIssue, PipelineLogEntry, PipelineRunResult
from models.project import (
    DEFAULT_MUSIC_DURATION_SECONDS,
    AdPlan,
    AdProject,
    PipelinePhase,
    ProjectSettings,
    ReferenceFile,
    Scene,
    SceneStatus,
    TTSVoice,
)
from pipeline.bridges import LogCallback, PersistenceBridge, ProjectCallback
from services.ad_plan_service import AdPlanService
from services.music_service import MusicService
from services.storyboard_service import StoryboardService
from services.tts_service import TTSService
from services.video_gen_service import VideoGenService
from utils.config import load_config
from utils.logging import get_logger, run_context, set_phase_context

logger = logging.getLogger(__name__)

Adapter = Callable[..., Any]


class PipelineError(Exception):
    """Base class for errors raised by the generation pipeline itself."""


class PipelineCancelledError(PipelineError):
    """The cancellation predicate tripped; the run stopped without finalizing."""

    def __init__(self, message: str = "Generation cancelled by user."):
        super().__init__(message)


class PipelineStateError(PipelineError):
    """An internal pipeline invariant was violated."""


@dataclass
class GenerationDependencies:
    """The five provider capabilities the pipeline calls.

    Each may be a coroutine function or a plain function; tests substitute
    any of them with stand-ins.
    """

    generate_ad_plan: Adapter
    generate_storyboard_image: Adapter
    generate_video_clip: Adapter
    generate_voiceover: Adapter
    generate_music: Adapter
    resources: list = field(default_factory=list)

    @classmethod
    def from_config(cls, config: Optional[dict] = None) -> "GenerationDependencies":
        """Wire the real Gemini, Veo and Lyria services."""
        if config is None:
            config = load_config()
        api_key = config.get("gemini_api_key") or ""

        planner = AdPlanService(api_key=api_key, model_name=config.get("plan_model", "gemini-3-pro-preview"))
        storyboard = StoryboardService(
            api_key=api_key,
            model_name=config.get("storyboard_model", "gemini-3-pro-image-preview"),
        )
        video = VideoGenService(
            api_key=api_key,
            model_name=config.get("video_model", "veo-3.1-fast-generate-preview"),
            poll_interval=config.get("video_poll_interval_seconds", 5.0),
            max_wait_seconds=config.get("video_max_wait_seconds", 450.0),
        )
        tts = TTSService(api_key=api_key, model_name=config.get("tts_model", "gemini-2.5-flash-preview-tts"))
        music = MusicService(
            api_key=api_key,
            model_name=config.get("music_model", "models/lyria-realtime-exp"),
            grace_seconds=config.get("music_grace_seconds", 15.0),
        )
        return cls(
            generate_ad_plan=planner.generate_ad_plan,
            generate_storyboard_image=storyboard.generate_storyboard_image,
            generate_video_clip=video.generate_video_clip,
            generate_voiceover=tts.generate_voiceover,
            generate_music=music.generate_music,
            resources=[video],
        )

    def with_overrides(self, **overrides: Adapter) -> "GenerationDependencies":
        """Return a copy with some adapters replaced."""
        return replace(self, **overrides)

    async def aclose(self) -> None:
        for resource in self.resources:
            close = getattr(resource, "close", None)
            if close is not None:
                await close()


@dataclass
class GenerationOptions:
    """Inputs and observers for one pipeline run."""

    prompt: str
    settings: ProjectSettings = field(default_factory=ProjectSettings)
    files: list[ReferenceFile] = field(default_factory=list)
    visual_anchor: Optional[str] = None
    preferred_voice: Optional[TTSVoice] = None
    should_cancel: Optional[Callable[[], bool]] = None
    on_project_initialized: Optional[ProjectCallback] = None
    on_project_update: Optional[ProjectCallback] = None
    on_log: Optional[LogCallback] = None


async def _call_adapter(adapter: Adapter, *args: Any) -> Any:
    result = adapter(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class PipelineRun:
    """State of a single run. Never shared between runs."""

    def __init__(
        self,
        options: GenerationOptions,
        dependencies: GenerationDependencies,
        persistence: Optional[PersistenceBridge] = None,
    ):
        self.options = options
        self.deps = dependencies
        self.persistence = persistence
        self.run_id = uuid.uuid4().hex[:8]

        self.project: Optional[AdProject] = None
        self.logs: list[PipelineLogEntry] = []
        self.issues: list[PipelineIssue] = []

        self._log_seq = 0
        self._background: set[asyncio.Future] = set()
        self._events = get_logger("pipeline").bind(run_id=self.run_id)

    async def execute(self) -> PipelineRunResult:
        with run_context(self.run_id):
            return await self._execute()

    async def _execute(self) -> PipelineRunResult:
        options = self.options
        settings = options.settings
        deps = self.deps

        # Planning
        set_phase_context(PipelinePhase.PLANNING.value)
        self._log(DiagnosticLevel.INFO, PipelinePhase.PLANNING, "Pipeline started.")
        self._check_cancelled(PipelinePhase.PLANNING)
        try:
            plan = await _call_adapter(deps.generate_ad_plan, options.prompt, settings, options.files)
            if not isinstance(plan, AdPlan):
                plan = AdPlan.from_response(plan)
        except Exception as e:
            self._log(DiagnosticLevel.ERROR, PipelinePhase.PLANNING, "Failed to generate ad plan.", error=e)
            raise

        self.project = AdProject.from_plan(plan, mode=settings.mode, visual_anchor=options.visual_anchor)
        set_phase_context(self.project.current_phase.value)
        self._notify(options.on_project_initialized, self.project.snapshot())
        self._log(
            DiagnosticLevel.INFO,
            PipelinePhase.STORYBOARDING,
            "Ad plan generated.",
            {"title": self.project.title, "scene_count": len(self.project.scenes)},
        )

        # Storyboarding
        for scene in self.project.scenes:
            self._check_cancelled(PipelinePhase.STORYBOARDING)
            await self._storyboard_scene(scene)
            self._broadcast()

        # Video production
        self._check_cancelled(PipelinePhase.VIDEO_PRODUCTION)
        self._advance(PipelinePhase.VIDEO_PRODUCTION)
        self._broadcast()
        for scene in self.project.scenes:
            self._check_cancelled(PipelinePhase.VIDEO_PRODUCTION)
            self._set_scene_status(scene, SceneStatus.GENERATING)
            self._broadcast()
            await self._produce_video(scene)
            self._broadcast()

        # Voiceover
        self._check_cancelled(PipelinePhase.VOICEOVER)
        self._advance(PipelinePhase.VOICEOVER)
        self._broadcast()
        voiceover_url = await self._generate_voiceover(plan)

        # Scoring
        self._check_cancelled(PipelinePhase.SCORING)
        self._advance(PipelinePhase.SCORING)
        self.project.voiceover_url = voiceover_url
        self._broadcast()
        music_url = await self._generate_music(plan)

        # Finalization
        if self.project is None:
            raise PipelineStateError("Pipeline state error: project was not initialized.")
        self._advance(PipelinePhase.READY)
        self.project.is_generating = False
        self.project.music_url = music_url
        self._broadcast()
        self._log(
            DiagnosticLevel.INFO,
            PipelinePhase.READY,
            "Pipeline completed.",
            {"issue_count": len(self.issues)},
        )

        persisted_id = await self._persist()
        final_project = self.project.snapshot()
        return PipelineRunResult(
            plan=plan,
            project=final_project,
            scenes=final_project.scenes,
            voiceover_url=voiceover_url,
            music_url=music_url,
            logs=list(self.logs),
            issues=list(self.issues),
            persisted_id=persisted_id,
        )

    async def _storyboard_scene(self, scene: Scene) -> None:
        stage = PipelinePhase.STORYBOARDING
        self._log(DiagnosticLevel.INFO, stage, "Generating storyboard.", {"scene_id": scene.id, "order": scene.order})
        try:
            result = normalize_asset_result(
                await _call_adapter(
                    self.deps.generate_storyboard_image,
                    copy.deepcopy(scene),
                    self.options.settings.aspect_ratio,
                    self.options.visual_anchor,
                )
            )
        except Exception as e:
            scene.storyboard_url = None
            self._add_issue(
                stage,
                "Storyboard generation failed. Continuing without storyboard.",
                scene_id=scene.id,
                error=serialize_error(e),
            )
            return

        self._emit_diagnostics(stage, result.diagnostics, {"scene_id": scene.id})
        scene.storyboard_url = result.url
        if result.url:
            self._log(DiagnosticLevel.INFO, stage, "Storyboard generated.", {"scene_id": scene.id})
            return

        self._add_failure_issue(
            stage,
            "Storyboard generation returned no image.",
            result.diagnostics,
            scene_id=scene.id,
            default_suffix="Continuing with fallback flow.",
        )

    async def _produce_video(self, scene: Scene) -> None:
        stage = PipelinePhase.VIDEO_PRODUCTION
        self._log(
            DiagnosticLevel.INFO,
            stage,
            "Generating video clip.",
            {"scene_id": scene.id, "has_storyboard": bool(scene.storyboard_url)},
        )
        try:
            result = normalize_asset_result(
                await _call_adapter(
                    self.deps.generate_video_clip,
                    copy.deepcopy(scene),
                    self.options.settings.aspect_ratio,
                    scene.storyboard_url,
                )
            )
        except Exception as e:
            self._set_scene_status(scene, SceneStatus.FAILED)
            self._add_issue(stage, "Video generation failed.", scene_id=scene.id, error=serialize_error(e))
            return

        self._emit_diagnostics(stage, result.diagnostics, {"scene_id": scene.id})
        scene.video_url = result.url
        if not result.url:
            self._set_scene_status(scene, SceneStatus.FAILED)
            self._add_failure_issue(
                stage, "Video generation returned no output.", result.diagnostics, scene_id=scene.id
            )
            return

        self._set_scene_status(scene, SceneStatus.COMPLETE)
        if result.fallback_used:
            self._log(DiagnosticLevel.WARN, stage, "Video generation used a fallback mode.", {"scene_id": scene.id})
        self._log(DiagnosticLevel.INFO, stage, "Video clip generated.", {"scene_id": scene.id})

    async def _generate_voiceover(self, plan: AdPlan) -> Optional[str]:
        stage = PipelinePhase.VOICEOVER
        voice = self.options.preferred_voice or self.options.settings.preferred_voice
        try:
            result = normalize_asset_result(
                await _call_adapter(self.deps.generate_voiceover, plan.full_script, voice, plan.script or None)
            )
        except Exception as e:
            self._add_issue(stage, "Voiceover generation failed.", error=serialize_error(e))
            return None

        self._emit_diagnostics(stage, result.diagnostics)
        if not result.url:
            self._add_failure_issue(stage, "Voiceover generation returned no audio.", result.diagnostics)
            return None
        self._log(DiagnosticLevel.INFO, stage, "Voiceover generated.")
        return result.url

    async def _generate_music(self, plan: AdPlan) -> Optional[str]:
        stage = PipelinePhase.SCORING
        mood = plan.music_mood or self.options.settings.music_theme
        duration = plan.total_duration or DEFAULT_MUSIC_DURATION_SECONDS
        try:
            result = normalize_asset_result(await _call_adapter(self.deps.generate_music, mood, duration))
        except Exception as e:
            self._add_issue(stage, "Music generation failed.", error=serialize_error(e))
            return None

        self._emit_diagnostics(stage, result.diagnostics)
        if not result.url:
            self._add_failure_issue(stage, "Music generation returned no audio.", result.diagnostics)
            return None
        if result.fallback_used:
            self._add_failure_issue(stage, "Music generation used fallback track.", result.diagnostics)
        else:
            self._log(DiagnosticLevel.INFO, stage, "Music generated.")
        return result.url

    async def _persist(self) -> Optional[str]:
        if self.persistence is None:
            return None
        try:
            persisted_id = await self.persistence.save_project(self.project.snapshot(), self.options.settings)
        except Exception as e:
            self._log(DiagnosticLevel.WARN, PipelinePhase.READY, "Saving project failed.", error=e)
            return None
        if persisted_id:
            self._log(DiagnosticLevel.INFO, PipelinePhase.READY, "Project saved.", {"persisted_id": persisted_id})
        else:
            self._log(DiagnosticLevel.WARN, PipelinePhase.READY, "Project was not saved.")
        return persisted_id

    def _check_cancelled(self, stage: PipelinePhase) -> None:
        if self.options.should_cancel is not None and self.options.should_cancel():
            self._log(DiagnosticLevel.WARN, stage, "Generation cancelled.")
            raise PipelineCancelledError()

    def _advance(self, phase: PipelinePhase) -> None:
        current = self.project.current_phase
        if phase.rank < current.rank:
            raise PipelineStateError(f"Phase cannot move back from {current.value} to {phase.value}")
        self.project.current_phase = phase
        set_phase_context(phase.value)

    @staticmethod
    def _set_scene_status(scene: Scene, status: SceneStatus) -> None:
        if scene.status in (SceneStatus.COMPLETE, SceneStatus.FAILED):
            raise PipelineStateError(f"Scene {scene.id} is already {scene.status.value}")
        scene.status = status

    def _broadcast(self) -> None:
        self._notify(self.options.on_project_update, self.project.snapshot())

    def _notify(self, callback: Optional[Callable[[Any], Any]], payload: Any) -> None:
        """Fire an observer callback without waiting on it."""
        if callback is None:
            return
        try:
            result = callback(payload)
        except Exception as e:
            logger.warning(f"Pipeline observer callback failed: {e}")
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._background.add(task)
            task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Future) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Pipeline observer callback failed: {task.exception()}")

    def _log(
        self,
        level: DiagnosticLevel,
        stage: PipelinePhase,
        message: str,
        context: Optional[dict] = None,
        error: Any = None,
    ) -> PipelineLogEntry:
        self._log_seq += 1
        entry = PipelineLogEntry(
            id=f"pipeline-log-{self.run_id}-{self._log_seq}",
            stage=stage,
            level=level,
            message=message,
            context=dict(context) if context else None,
            error=serialize_error(error) if error is not None else None,
        )
        self.logs.append(entry)
        self._notify(self.options.on_log, entry)

        fields = {"stage": stage.value}
        if entry.context:
            fields["context"] = entry.context
        if entry.error:
            fields["error"] = entry.error.message
        if level == DiagnosticLevel.ERROR:
            self._events.error(message, **fields)
        elif level == DiagnosticLevel.WARN:
            self._events.warning(message, **fields)
        else:
            self._events.info(message, **fields)
        return entry

    def _add_issue(
        self,
        stage: PipelinePhase,
        message: str,
        scene_id: Optional[str] = None,
        error: Optional[SerializedError] = None,
        recoverable: bool = True,
    ) -> None:
        self.issues.append(
            PipelineIssue(stage=stage, message=message, recoverable=recoverable, scene_id=scene_id, error=error)
        )
        self._log(
            DiagnosticLevel.WARN if recoverable else DiagnosticLevel.ERROR,
            stage,
            message,
            {"scene_id": scene_id} if scene_id else None,
            error,
        )

    def _add_failure_issue(
        self,
        stage: PipelinePhase,
        generic_message: str,
        diagnostics: list[ProviderDiagnostic],
        scene_id: Optional[str] = None,
        default_suffix: Optional[str] = None,
    ) -> None:
        """Record an issue explained by the most relevant diagnostic, if any."""
        primary = select_primary_diagnostic(diagnostics)
        if primary is not None:
            message = f"{generic_message} {primary.message}"
        elif default_suffix:
            message = f"{generic_message} {default_suffix}"
        else:
            message = generic_message
        self._add_issue(stage, message, scene_id=scene_id, error=primary.error if primary else None)

    def _emit_diagnostics(
        self,
        stage: PipelinePhase,
        diagnostics: list[ProviderDiagnostic],
        base_context: Optional[dict] = None,
    ) -> None:
        for entry in diagnostics:
            context = {**(base_context or {}), **entry.context}
            message = f"[{entry.code}] {entry.message}" if entry.code else entry.message
            self._log(entry.level, stage, message, context or None, entry.error)


class GenerationPipeline:
    """Runs generation pipelines against a fixed set of provider adapters."""

    def __init__(
        self,
        dependencies: Optional[GenerationDependencies] = None,
        persistence: Optional[PersistenceBridge] = None,
        config: Optional[dict] = None,
    ):
        """Initialize the pipeline.

        Args:
            dependencies: Provider adapters. Built from config when omitted.
            persistence: Optional bridge that receives the final snapshot.
            config: Configuration used to build default adapters.
        """
        self.dependencies = dependencies or GenerationDependencies.from_config(config)
        self.persistence = persistence

    async def run(self, options: GenerationOptions) -> PipelineRunResult:
        """Run one generation.

        Raises:
            PipelineCancelledError: The cancellation predicate tripped.
            Exception: Whatever the plan adapter raised.
        """
        run = PipelineRun(options, self.dependencies, self.persistence)
        logger.info(f"Starting generation run {run.run_id}")
        return await run.execute()

    async def close(self) -> None:
        await self.dependencies.aclose()


async def run_generation_pipeline(
    options: GenerationOptions,
    dependencies: Optional[GenerationDependencies] = None,
    persistence: Optional[PersistenceBridge] = None,
) -> PipelineRunResult:
    """Run a single pipeline with its own isolated state."""
    pipeline = GenerationPipeline(dependencies=dependencies, persistence=persistence)
    try:
        return await pipeline.run(options)
    finally:
        if dependencies is None:
            await pipeline.close()

