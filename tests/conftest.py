"""Shared pytest fixtures for adstudio tests."""

import sys
import tempfile
from pathlib import Path
from typing import Dict, Generator

import pytest

# Add src directory to path for imports
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_config(temp_dir) -> Dict:
    """Sample configuration for testing."""
    return {
        "gemini_api_key": "test_gemini_key",
        "plan_model": "gemini-3-pro-preview",
        "storyboard_model": "gemini-3-pro-image-preview",
        "video_model": "veo-3.1-fast-generate-preview",
        "tts_model": "gemini-2.5-flash-preview-tts",
        "music_model": "models/lyria-realtime-exp",
        "video_poll_interval_seconds": 5.0,
        "video_max_wait_seconds": 450.0,
        "music_grace_seconds": 15.0,
        "backend_api_url": "http://backend.test/api",
        "backend_storage_url": "http://backend.test/storage",
        "backend_health_timeout": 2.0,
        "persist_results": False,
        "log_level": "INFO",
        "json_logs": False,
        "log_file": None,
        "output_dir": str(temp_dir / "output"),
    }


@pytest.fixture
def sample_plan_payload() -> Dict:
    """Director plan JSON as the planning model returns it."""
    return {
        "title": "Morning Ritual",
        "concept": "A sleepy city wakes up to cold brew.",
        "musicMood": "upbeat acoustic",
        "fullScript": "Wake up. Slow down. Cold brew.",
        "characterProfile": "Maya, late 20s, curly black hair, denim jacket",
        "visualStyleProfile": "Warm 35mm film look",
        "script": [
            {"speaker": "Narrator", "text": "Wake up."},
            {"speaker": "Narrator", "text": "Slow down."},
        ],
        "scenes": [
            {
                "id": "s1",
                "duration": 4,
                "character": {"name": "Maya", "description": "barista", "hair": "curly", "face": "freckles", "wardrobe": "denim"},
                "environment": {"location": "rooftop", "look": "golden", "lighting": "sunrise", "backgroundMotion": "birds"},
                "camera": {"framing": "wide", "movement": "slow push", "notes": "35mm"},
                "action_blocking": [
                    {"timeWindow": "0-2s", "notes": "Maya stretches"},
                    {"timeWindow": "2-4s", "notes": "She pours coffee"},
                ],
                "visual_summary_prompt": "Woman on a rooftop at sunrise pouring cold brew",
                "textOverlay": "WAKE UP",
                "overlayConfig": {"position": "bottom", "size": "large"},
            },
            {
                "id": "s2",
                "duration": 6,
                "character": {"name": "Maya"},
                "environment": {"location": "street"},
                "camera": {"framing": "close-up"},
                "action_blocking": [{"timeWindow": "0-6s", "notes": "Maya sips and smiles"}],
                "visual_summary_prompt": "Close-up of a smile over a coffee cup",
            },
        ],
    }


@pytest.fixture
def sample_plan(sample_plan_payload):
    """Parsed AdPlan with two scenes (4s and 6s)."""
    from models.project import AdPlan

    return AdPlan.from_response(sample_plan_payload)


@pytest.fixture
def sample_scene(sample_plan):
    """First scene of the sample plan."""
    return sample_plan.scenes[0]


@pytest.fixture
def png_data_url() -> str:
    """Tiny inline PNG data URL."""
    return "data:image/png;base64,iVBORw0KGgo="
