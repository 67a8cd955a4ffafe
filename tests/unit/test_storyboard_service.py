"""Unit tests for StoryboardService."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from models.diagnostics import DiagnosticLevel, ProviderOperation
from models.project import AspectRatio
from services.storyboard_service import StoryboardService, build_storyboard_prompt


def _image_response(data: bytes | None, mime_type: str = "image/png"):
    parts = [SimpleNamespace(text="Here is your shot", inline_data=None)]
    if data is not None:
        parts.append(SimpleNamespace(text=None, inline_data=SimpleNamespace(data=data, mime_type=mime_type)))
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=parts))])


def _service(response=None, error: Exception | None = None) -> StoryboardService:
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock(return_value=response, side_effect=error)
    return StoryboardService(api_key="test-key", client=client)


@pytest.mark.unit
def test_prompt_uses_scene_breakdown(sample_scene):
    prompt = build_storyboard_prompt(sample_scene)

    assert "[CAMERA]: wide, slow push. 35mm" in prompt
    assert "[LOCATION]: rooftop." in prompt
    assert "- Wardrobe: denim" in prompt
    assert "[ACTION]: Maya stretches. She pours coffee" in prompt


@pytest.mark.unit
def test_prompt_defaults_for_sparse_scene(sample_plan):
    prompt = build_storyboard_prompt(sample_plan.scenes[1])
    assert "[LIGHTING & ATMOSPHERE]: Natural light, Realistic." in prompt
    assert "- Hair: Natural" in prompt


@pytest.mark.unit
@pytest.mark.asyncio
async def test_returns_data_url(sample_scene):
    service = _service(_image_response(b"jpegbytes", "image/jpeg"))

    result = await service.generate_storyboard_image(sample_scene, AspectRatio.NINE_SIXTEEN)

    assert result.operation == ProviderOperation.STORYBOARD
    assert result.url == "data:image/jpeg;base64,anBlZ2J5dGVz"
    assert result.diagnostics == []
    config = service.client.aio.models.generate_content.call_args.kwargs["config"]
    assert config.image_config.aspect_ratio == "9:16"
    assert config.image_config.image_size == "1K"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_visual_anchor_is_sent_first(sample_scene, png_data_url):
    service = _service(_image_response(b"img"))

    await service.generate_storyboard_image(sample_scene, AspectRatio.SIXTEEN_NINE, png_data_url)

    contents = service.client.aio.models.generate_content.call_args.kwargs["contents"]
    parts = contents[0].parts
    assert parts[0].inline_data.mime_type == "image/png"
    assert parts[1].text.startswith("REFERENCE IMAGE")
    assert "[CAMERA]" in parts[2].text


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unparseable_anchor_warns_and_continues(sample_scene):
    service = _service(_image_response(b"img"))

    result = await service.generate_storyboard_image(sample_scene, AspectRatio.SIXTEEN_NINE, "not-a-data-url")

    assert result.url is not None
    assert [d.code for d in result.diagnostics] == ["GEMINI_STORYBOARD_ANCHOR_PARSE_FAILED"]
    assert result.diagnostics[0].level == DiagnosticLevel.WARN


@pytest.mark.unit
@pytest.mark.asyncio
async def test_empty_response(sample_scene):
    service = _service(_image_response(None))

    result = await service.generate_storyboard_image(sample_scene, AspectRatio.SIXTEEN_NINE)

    assert result.url is None
    assert result.diagnostics[0].code == "GEMINI_STORYBOARD_EMPTY_RESPONSE"
    assert result.diagnostics[0].context["scene_id"] == "s1"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_request_failure_is_a_diagnostic(sample_scene):
    service = _service(error=RuntimeError("safety block"))

    result = await service.generate_storyboard_image(sample_scene, AspectRatio.SIXTEEN_NINE)

    assert result.url is None
    entry = result.diagnostics[0]
    assert entry.code == "GEMINI_STORYBOARD_REQUEST_FAILED"
    assert entry.level == DiagnosticLevel.ERROR
    assert entry.error.message == "safety block"
    assert entry.error.name == "RuntimeError"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_missing_api_key(sample_scene):
    service = StoryboardService(api_key="")

    result = await service.generate_storyboard_image(sample_scene, AspectRatio.SIXTEEN_NINE)

    assert result.url is None
    assert result.diagnostics[0].code == "GEMINI_STORYBOARD_MISSING_API_KEY"
