"""Main application entry point for adstudio."""

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from tqdm import tqdm

from models.project import (
    AdProject,
    AspectRatio,
    PipelinePhase,
    ProjectMode,
    ProjectSettings,
    SceneStatus,
    TextOverlayPolicy,
    TTSVoice,
)
from models.pipeline import PipelineLogEntry, PipelineRunResult
from pipeline.orchestrator import (
    GenerationDependencies,
    GenerationOptions,
    GenerationPipeline,
    PipelineCancelledError,
)
from services.backend_client import BackendAvailability, BackendClient
from utils.config import load_config, validate_config
from utils.logging import setup_logging
from utils.media import load_reference_file, reference_link
from utils.project_persistence import sanitize_project_media_for_reload

logger = logging.getLogger(__name__)

EXIT_PLAN_FAILED = 1
EXIT_CANCELLED = 130
EXIT_NOTHING_TO_RESUME = 3


class ProgressBarCallback:
    """Progress bar fed by project snapshots."""

    def __init__(self):
        self.bar: Optional[tqdm] = None

    def __call__(self, project: AdProject):
        if self.bar is None:
            self.bar = tqdm(total=len(project.scenes), desc="Planning", unit="scene", leave=True)

        finished = sum(1 for scene in project.scenes if scene.status in (SceneStatus.COMPLETE, SceneStatus.FAILED))
        self.bar.total = len(project.scenes)
        self.bar.n = finished
        self.bar.set_description(project.current_phase.value.replace("_", " ").title())
        if project.current_phase == PipelinePhase.READY:
            self.bar.set_description("Ready ✓")
        self.bar.refresh()

    def close(self):
        if self.bar:
            self.bar.close()


class AdStudioApp:
    """Runs one generation from the command line."""

    def __init__(self, args: argparse.Namespace, config: Optional[dict] = None):
        self.args = args
        self.config = config or load_config()
        self.console = Console()
        self.cancel_requested = False

    def should_cancel(self) -> bool:
        return self.cancel_requested

    def _signal_handler(self, signum, _):
        """Ask the running pipeline to stop at its next checkpoint."""
        logger.info(f"Received signal {signum}, cancelling after the current step...")
        self.cancel_requested = True

    def _on_log(self, entry: PipelineLogEntry) -> None:
        if self.args.verbose:
            self.console.print(f"[dim]{entry.stage.value}[/dim] {entry.level.value.upper()} {entry.message}")

    def build_settings(self) -> ProjectSettings:
        return ProjectSettings(
            aspect_ratio=AspectRatio(self.args.aspect_ratio),
            mode=ProjectMode(self.args.mode),
            custom_script=self.args.script,
            music_theme=self.args.music_theme,
            use_text_overlays=TextOverlayPolicy(self.args.text_overlays),
            preferred_voice=TTSVoice(self.args.voice) if self.args.voice else None,
        )

    def build_files(self) -> list:
        files = [load_reference_file(Path(path)) for path in self.args.reference or []]
        files.extend(reference_link(url) for url in self.args.link or [])
        return files

    def build_persistence(self) -> Optional[BackendClient]:
        if not (self.args.persist or self.config.get("persist_results")):
            return None
        return self.build_backend_client()

    def build_backend_client(self) -> BackendClient:
        return BackendClient(
            api_url=self.config["backend_api_url"],
            storage_url=self.config["backend_storage_url"],
            availability=BackendAvailability(),
            health_timeout=self.config.get("backend_health_timeout", 2.0),
        )

    async def run(self) -> int:
        errors = validate_config(self.config)
        if errors:
            for error in errors:
                self.console.print(f"[red]Configuration error:[/red] {error}")
            return EXIT_PLAN_FAILED

        self.console.print(Panel(self.args.prompt, title="adstudio", border_style="blue"))

        visual_anchor = None
        if self.args.visual_anchor:
            anchor = load_reference_file(Path(self.args.visual_anchor))
            visual_anchor = f"data:{anchor.mime_type};base64,{anchor.content}"

        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        dependencies = GenerationDependencies.from_config(self.config)
        persistence = self.build_persistence()
        pipeline = GenerationPipeline(dependencies=dependencies, persistence=persistence)
        progress = ProgressBarCallback()

        options = GenerationOptions(
            prompt=self.args.prompt,
            settings=self.build_settings(),
            files=self.build_files(),
            visual_anchor=visual_anchor,
            should_cancel=self.should_cancel,
            on_project_initialized=progress,
            on_project_update=progress,
            on_log=self._on_log,
        )

        uploaded = 0
        try:
            result = await pipeline.run(options)
            if persistence is not None and result.persisted_id:
                uploaded = await persistence.upload_project_media(result.persisted_id, result.project)
        except PipelineCancelledError as e:
            self.console.print(f"[yellow]{e}[/yellow]")
            return EXIT_CANCELLED
        except Exception as e:
            logger.error(f"Generation failed: {e}")
            self.console.print(f"[red]Generation failed:[/red] {e}")
            return EXIT_PLAN_FAILED
        finally:
            progress.close()
            await pipeline.close()
            if persistence is not None:
                await persistence.close()

        self.display_result(result)
        if uploaded:
            self.console.print(f"Uploaded {uploaded} media assets to the backend")
        self.write_output(result.to_dict())
        return 0

    async def resume(self) -> int:
        """Show the most recently saved project from the backend."""
        client = self.build_backend_client()
        try:
            project = await client.load_latest_project()
        finally:
            await client.close()

        if project is None:
            self.console.print("[yellow]No saved project found on the backend.[/yellow]")
            return EXIT_NOTHING_TO_RESUME

        sanitized = sanitize_project_media_for_reload(project)
        self.console.print(self.scene_table(sanitized.project.title, sanitized.project.scenes))
        self.console.print(
            f"Phase: {sanitized.project.current_phase.value}  "
            f"Voiceover: {'yes' if sanitized.project.voiceover_url else 'missing'}  "
            f"Music: {'yes' if sanitized.project.music_url else 'missing'}"
        )
        if sanitized.cleared_count:
            self.console.print(f"[yellow]{sanitized.cleared_count} in-memory media links were dropped[/yellow]")
        self.write_output(sanitized.project.to_dict())
        return 0

    def write_output(self, payload: dict) -> None:
        if not self.args.output:
            return
        output_path = Path(self.args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(json.dumps(payload, indent=2))
        self.console.print(f"Wrote {output_path}")

    def scene_table(self, title: str, scenes: list) -> Table:
        table = Table(title=title)
        table.add_column("Scene", style="cyan")
        table.add_column("Duration")
        table.add_column("Storyboard")
        table.add_column("Video")
        table.add_column("Status")
        for scene in scenes:
            status_style = "green" if scene.status == SceneStatus.COMPLETE else "red"
            table.add_row(
                scene.id,
                f"{scene.duration}s",
                "yes" if scene.storyboard_url else "-",
                "yes" if scene.video_url else "-",
                f"[{status_style}]{scene.status.value}[/{status_style}]",
            )
        return table

    def display_result(self, result: PipelineRunResult) -> None:
        self.console.print(self.scene_table(result.plan.title, result.scenes))
        self.console.print(
            f"Voiceover: {'yes' if result.voiceover_url else 'missing'}  "
            f"Music: {'yes' if result.music_url else 'missing'}  "
            f"Scenes: {result.completed_scene_count}/{len(result.scenes)}"
        )
        for issue in result.issues:
            where = f" ({issue.scene_id})" if issue.scene_id else ""
            self.console.print(f"[yellow]![/yellow] {issue.stage.value}{where}: {issue.message}")
        if result.persisted_id:
            self.console.print(f"Saved to backend as project {result.persisted_id}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate an ad: plan, storyboards, video clips, voiceover and music",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  adstudio "30 second spot for a cold brew coffee brand"
  adstudio "Sneaker launch" --aspect-ratio 9:16 --mode "Music Video" -o run.json
  adstudio "Bank ad" --reference brief.pdf --link https://example.com/brand
  adstudio --resume -o latest.json
        """,
    )
    parser.add_argument("prompt", nargs="?", help="Creative brief for the ad")
    parser.add_argument(
        "--aspect-ratio",
        choices=[ratio.value for ratio in AspectRatio],
        default=AspectRatio.SIXTEEN_NINE.value,
    )
    parser.add_argument("--mode", choices=[mode.value for mode in ProjectMode], default=ProjectMode.COMMERCIAL.value)
    parser.add_argument("--voice", choices=[voice.value for voice in TTSVoice], help="Preferred narrator voice")
    parser.add_argument("--music-theme", default="", help="Fallback music mood when the plan has none")
    parser.add_argument("--script", default="", help="Custom script the plan must follow")
    parser.add_argument(
        "--text-overlays",
        choices=[policy.value for policy in TextOverlayPolicy],
        default=TextOverlayPolicy.AUTO.value,
    )
    parser.add_argument("--reference", action="append", help="Reference file (image, PDF or text)")
    parser.add_argument("--link", action="append", help="Reference link to research")
    parser.add_argument("--visual-anchor", help="Image that every storyboard should match")
    parser.add_argument("--persist", action="store_true", help="Save the finished project to the backend")
    parser.add_argument("--resume", action="store_true", help="Show the latest saved project instead of generating")
    parser.add_argument("-o", "--output", help="Write the run result as JSON")
    parser.add_argument("-v", "--verbose", action="store_true", help="Print every pipeline log entry")
    parser.add_argument("--log-level", help="Override LOG_LEVEL")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")
    parser.add_argument("--backend-url", help="Studio backend API URL (implies --persist)")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.prompt and not args.resume:
        parser.error("a prompt is required unless --resume is given")
    config = load_config()
    if args.log_level:
        config["log_level"] = args.log_level
    if args.json_logs:
        config["json_logs"] = True
    if args.backend_url:
        config["backend_api_url"] = args.backend_url.rstrip("/")
        config["backend_storage_url"] = config["backend_api_url"].removesuffix("/api") + "/storage"
        config["persist_results"] = True
    setup_logging(
        config.get("log_level", "INFO"),
        json_output=config.get("json_logs", False),
        log_file=config.get("log_file"),
    )

    app = AdStudioApp(args, config)
    try:
        return asyncio.run(app.resume() if args.resume else app.run())
    except KeyboardInterrupt:
        logger.info("Application interrupted by user")
        return EXIT_CANCELLED


if __name__ == "__main__":
    sys.exit(main())
