"""Unit tests for AdPlanService."""

import base64
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from models.project import ProjectMode, ProjectSettings, ReferenceFile, ReferenceFileType
from services.ad_plan_service import (
    AD_PLAN_SCHEMA,
    AdPlanService,
    AdPlanServiceError,
    strip_markdown_code_blocks,
)


def _service(response_text: str | None = None, error: Exception | None = None) -> AdPlanService:
    client = MagicMock()
    if error is not None:
        client.aio.models.generate_content = AsyncMock(side_effect=error)
    else:
        client.aio.models.generate_content = AsyncMock(return_value=SimpleNamespace(text=response_text))
    return AdPlanService(api_key="test-key", client=client)


@pytest.mark.unit
def test_strip_markdown_code_blocks():
    assert strip_markdown_code_blocks('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_markdown_code_blocks('```\n{"a": 1}```') == '{"a": 1}'
    assert strip_markdown_code_blocks('  {"a": 1} ') == '{"a": 1}'


@pytest.mark.unit
def test_schema_requires_plan_fields():
    assert AD_PLAN_SCHEMA["required"] == ["title", "concept", "scenes", "musicMood", "fullScript"]


@pytest.mark.unit
def test_build_contents_routes_reference_files():
    service = AdPlanService(api_key="test-key", client=MagicMock())
    files = [
        ReferenceFile(
            name="logo.png",
            type=ReferenceFileType.IMAGE,
            content="data:image/png;base64," + base64.b64encode(b"png").decode(),
            mime_type="image/png",
        ),
        ReferenceFile(name="brief.pdf", type=ReferenceFileType.PDF, content=base64.b64encode(b"%PDF").decode()),
        ReferenceFile(name="notes.txt", type=ReferenceFileType.TEXT, content="x" * 800),
        ReferenceFile(name="ref", type=ReferenceFileType.LINK, content="https://youtube.com/watch?v=abc"),
    ]
    settings = ProjectSettings(mode=ProjectMode.MUSIC_VIDEO, music_theme="synthwave")

    parts, has_links = service.build_contents("Sneaker launch", settings, files)

    assert has_links is True
    assert len(parts) == 3
    assert parts[0].inline_data.data == b"png"
    assert parts[1].inline_data.mime_type == "application/pdf"
    request_text = parts[2].text
    assert "- YouTube/Web Link: https://youtube.com/watch?v=abc" in request_text
    assert "- File: notes.txt: " + "x" * 500 + "..." in request_text
    assert "- Mode: Music Video" in request_text
    assert "- Music Theme: synthwave" in request_text
    assert 'USER REQUEST: "Sneaker launch"' in request_text


@pytest.mark.unit
def test_build_contents_leaves_unset_settings_blank():
    service = AdPlanService(api_key="test-key", client=MagicMock())
    settings = ProjectSettings(custom_script=None, music_theme=None)

    parts, _ = service.build_contents("Sneaker launch", settings, [])

    request_text = parts[-1].text
    assert "None" not in request_text
    assert "- Custom Script: \n" in request_text
    assert "- Music Theme: \n" in request_text


@pytest.mark.unit
@pytest.mark.asyncio
async def test_generate_ad_plan_parses_response(sample_plan_payload):
    service = _service("```json\n" + json.dumps(sample_plan_payload) + "\n```")

    plan = await service.generate_ad_plan("Cold brew spot", ProjectSettings())

    assert plan.title == "Morning Ritual"
    assert len(plan.scenes) == 2
    call = service.client.aio.models.generate_content.call_args
    assert call.kwargs["model"] == service.model_name
    config = call.kwargs["config"]
    assert config.response_mime_type == "application/json"
    assert not config.tools


@pytest.mark.unit
@pytest.mark.asyncio
async def test_links_enable_search_grounding(sample_plan_payload):
    service = _service(json.dumps(sample_plan_payload))
    link = ReferenceFile(name="site", type=ReferenceFileType.LINK, content="https://brand.test")

    await service.generate_ad_plan("Bank ad", ProjectSettings(), [link])

    config = service.client.aio.models.generate_content.call_args.kwargs["config"]
    assert config.tools and config.tools[0].google_search is not None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_missing_api_key_raises():
    service = AdPlanService(api_key="")
    assert service.is_configured() is False
    with pytest.raises(AdPlanServiceError, match="Missing API key"):
        await service.generate_ad_plan("Anything", ProjectSettings())


@pytest.mark.unit
@pytest.mark.asyncio
async def test_request_failure_raises():
    service = _service(error=RuntimeError("quota exceeded"))
    with pytest.raises(AdPlanServiceError, match="quota exceeded") as exc_info:
        await service.generate_ad_plan("Anything", ProjectSettings())
    assert isinstance(exc_info.value.__cause__, RuntimeError)


@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["not json", '{"title": "Only a title"}', "[]"])
async def test_malformed_plan_raises(text):
    service = _service(text)
    with pytest.raises(AdPlanServiceError, match="Malformed ad plan"):
        await service.generate_ad_plan("Anything", ProjectSettings())
