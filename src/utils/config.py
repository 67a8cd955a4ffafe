"""Configuration loading and validation for adstudio."""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

# Get the project root directory (parent of src)
PROJECT_ROOT = Path(__file__).parent.parent.parent

# Load environment variables from .env file in project root
load_dotenv(PROJECT_ROOT / ".env")

DEFAULT_PLAN_MODEL = "gemini-3-pro-preview"
DEFAULT_STORYBOARD_MODEL = "gemini-3-pro-image-preview"
DEFAULT_VIDEO_MODEL = "veo-3.1-fast-generate-preview"
DEFAULT_TTS_MODEL = "gemini-2.5-flash-preview-tts"
DEFAULT_MUSIC_MODEL = "models/lyria-realtime-exp"
DEFAULT_BACKEND_API_URL = "http://localhost:3001/api"
DEFAULT_BACKEND_STORAGE_URL = "http://localhost:3001/storage"


def get_gemini_api_key() -> str:
    """Return the Gemini API key, accepting the legacy API_KEY name."""
    return os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY", "")


def load_config() -> dict:
    """Load configuration from environment variables."""

    # Helper function to resolve paths relative to project root
    def resolve_path(path: str | None, default_relative: str) -> str:
        if not path:
            return str(PROJECT_ROOT / default_relative)
        if Path(path).is_absolute():
            return path
        return str(PROJECT_ROOT / path)

    config = {
        # Required API key (Gemini, Veo and Lyria share it)
        "gemini_api_key": get_gemini_api_key(),
        # Model configurations
        "plan_model": os.getenv("PLAN_MODEL", DEFAULT_PLAN_MODEL),
        "storyboard_model": os.getenv("STORYBOARD_MODEL", DEFAULT_STORYBOARD_MODEL),
        "video_model": os.getenv("VIDEO_MODEL", DEFAULT_VIDEO_MODEL),
        "tts_model": os.getenv("TTS_MODEL", DEFAULT_TTS_MODEL),
        "music_model": os.getenv("MUSIC_MODEL", DEFAULT_MUSIC_MODEL),
        # Provider timing
        "video_poll_interval_seconds": float(os.getenv("VIDEO_POLL_INTERVAL_SECONDS", "5")),
        "video_max_wait_seconds": float(os.getenv("VIDEO_MAX_WAIT_SECONDS", "450")),
        "music_grace_seconds": float(os.getenv("MUSIC_GRACE_SECONDS", "15")),
        # Persistence backend (optional)
        "backend_api_url": os.getenv("BACKEND_API_URL", DEFAULT_BACKEND_API_URL),
        "backend_storage_url": os.getenv("BACKEND_STORAGE_URL", DEFAULT_BACKEND_STORAGE_URL),
        "backend_health_timeout": float(os.getenv("BACKEND_HEALTH_TIMEOUT", "2")),
        "persist_results": os.getenv("PERSIST_RESULTS", "false").lower() == "true",
        # Logging
        "log_level": os.getenv("LOG_LEVEL", "INFO"),
        "json_logs": os.getenv("JSON_LOGS", "false").lower() == "true",
        "log_file": os.getenv("LOG_FILE"),
        # Output
        "output_dir": resolve_path(os.getenv("OUTPUT_DIR"), "output"),
    }

    return config


def validate_config(config: dict) -> list[str]:
    """Validate configuration and return list of errors."""
    errors = []

    # Check required API key
    if not config.get("gemini_api_key"):
        errors.append("GEMINI_API_KEY is required")

    for key in ("video_poll_interval_seconds", "video_max_wait_seconds", "music_grace_seconds"):
        value = config.get(key)
        if value is None or value <= 0:
            errors.append(f"{key} must be a positive number")

    if config.get("log_level", "INFO").upper() not in logging.getLevelNamesMapping():
        errors.append(f"Unknown LOG_LEVEL: {config.get('log_level')}")

    if config.get("output_dir"):
        try:
            Path(config["output_dir"]).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            errors.append(f"Cannot create output folder: {e}")

    return errors

