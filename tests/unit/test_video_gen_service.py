"""Unit tests for VideoGenService attempts, polling and fallback."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from models.diagnostics import DiagnosticLevel
from models.project import AspectRatio
from services.video_gen_service import VideoGenService, build_text_to_video_prompt, build_veo_prompt

VIDEO_URI = "https://veo.test/files/clip-1:download"


def _operation(done: bool = True, uri: str | None = VIDEO_URI):
    videos = [SimpleNamespace(video=SimpleNamespace(uri=uri))] if uri else []
    return SimpleNamespace(done=done, response=SimpleNamespace(generated_videos=videos) if done else None)


def _http_client(status_code: int = 200, content_type: str = "video/mp4") -> httpx.AsyncClient:
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status_code, content=b"mp4-bytes", headers={"content-type": content_type})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client.seen_requests = requests
    return client


def _service(operations=None, error: Exception | None = None, http_client=None, **kwargs) -> VideoGenService:
    client = MagicMock()
    if error is not None:
        client.aio.models.generate_videos = AsyncMock(side_effect=error)
    else:
        client.aio.models.generate_videos = AsyncMock(side_effect=operations or [_operation()])
    client.aio.operations.get = AsyncMock()
    kwargs.setdefault("poll_interval", 0)
    return VideoGenService(
        api_key="test-key",
        client=client,
        http_client=http_client or _http_client(),
        **kwargs,
    )


@pytest.mark.unit
def test_prompts(sample_scene):
    veo_prompt = build_veo_prompt(sample_scene)
    assert veo_prompt.startswith("Cinematic video.\nMaya stretches. She pours coffee\n")
    assert "Camera: slow push." in veo_prompt
    assert "Lighting: sunrise." in veo_prompt

    assert build_text_to_video_prompt(sample_scene) == (
        "Woman on a rooftop at sunrise pouring cold brew (Cinematic, Photorealistic)"
    )


@pytest.mark.unit
@pytest.mark.asyncio
async def test_image_to_video_success(sample_scene, png_data_url):
    service = _service()

    result = await service.generate_video_clip(sample_scene, AspectRatio.NINE_SIXTEEN, png_data_url)

    assert result.url == "data:video/mp4;base64,bXA0LWJ5dGVz"
    assert result.fallback_used is False
    assert result.diagnostics == []
    call = service.client.aio.models.generate_videos.call_args
    assert call.kwargs["image"].mime_type == "image/png"
    assert call.kwargs["config"].aspect_ratio == "9:16"
    assert call.kwargs["config"].number_of_videos == 1
    request = service.http_client.seen_requests[0]
    assert request.headers["x-goog-api-key"] == "test-key"
    await service.close()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_text_to_video_without_storyboard(sample_scene):
    service = _service()

    result = await service.generate_video_clip(sample_scene, AspectRatio.SIXTEEN_NINE)

    assert result.url is not None
    assert result.fallback_used is False
    assert "image" not in service.client.aio.models.generate_videos.call_args.kwargs
    await service.close()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_falls_back_to_text_to_video(sample_scene, png_data_url):
    service = _service(operations=[_operation(uri=None), _operation()])

    result = await service.generate_video_clip(sample_scene, AspectRatio.SIXTEEN_NINE, png_data_url)

    assert result.url is not None
    assert result.fallback_used is True
    assert [d.code for d in result.diagnostics] == ["VEO_EMPTY_VIDEO_URI", "VEO_IMAGE_TO_VIDEO_FAILED"]
    assert result.diagnostics[0].context["attempt_label"] == "scene-s1-image2video"
    second_call = service.client.aio.models.generate_videos.call_args_list[1]
    assert "image" not in second_call.kwargs
    await service.close()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unparseable_storyboard_skips_image_attempt(sample_scene):
    service = _service()

    result = await service.generate_video_clip(sample_scene, AspectRatio.SIXTEEN_NINE, "https://cdn.test/board.png")

    assert result.url is not None
    assert result.fallback_used is True
    assert [d.code for d in result.diagnostics] == ["VEO_SOURCE_IMAGE_PARSE_FAILED"]
    assert service.client.aio.models.generate_videos.await_count == 1
    await service.close()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_polls_until_done(sample_scene):
    service = _service(operations=[_operation(done=False, uri=None)])
    service.client.aio.operations.get.side_effect = [_operation(done=False, uri=None), _operation()]

    result = await service.generate_video_clip(sample_scene, AspectRatio.SIXTEEN_NINE)

    assert result.url is not None
    assert service.client.aio.operations.get.await_count == 2
    await service.close()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_poll_timeout(sample_scene):
    service = _service(operations=[_operation(done=False, uri=None)], max_wait_seconds=0)

    result = await service.generate_video_clip(sample_scene, AspectRatio.SIXTEEN_NINE)

    assert result.url is None
    entry = result.diagnostics[0]
    assert entry.code == "VEO_POLL_TIMEOUT"
    assert entry.level == DiagnosticLevel.WARN
    assert entry.context["attempt_label"] == "scene-s1-text2video"
    assert entry.context["polls"] == 0
    await service.close()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_download_failure(sample_scene):
    service = _service(http_client=_http_client(status_code=403))

    result = await service.generate_video_clip(sample_scene, AspectRatio.SIXTEEN_NINE)

    assert result.url is None
    entry = result.diagnostics[0]
    assert entry.code == "VEO_DOWNLOAD_FAILED"
    assert entry.context["status"] == 403
    await service.close()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_operation_error_is_reported(sample_scene):
    failed = _operation(uri=None)
    failed.error = {"code": 3, "message": "Prompt was blocked by safety filters."}
    service = _service(operations=[failed])

    result = await service.generate_video_clip(sample_scene, AspectRatio.SIXTEEN_NINE)

    assert result.url is None
    entry = result.diagnostics[0]
    assert entry.code == "VEO_OPERATION_FAILED"
    assert entry.level == DiagnosticLevel.ERROR
    assert entry.context["error_code"] == 3
    assert entry.error.message == "Prompt was blocked by safety filters."
    assert "VEO_EMPTY_VIDEO_URI" not in [d.code for d in result.diagnostics]
    await service.close()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unknown_content_type_defaults_to_mp4(sample_scene):
    service = _service(http_client=_http_client(content_type="application/octet-stream"))

    result = await service.generate_video_clip(sample_scene, AspectRatio.SIXTEEN_NINE)

    assert result.url.startswith("data:video/mp4;base64,")
    await service.close()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_both_attempts_fail(sample_scene, png_data_url):
    service = _service(error=RuntimeError("quota exceeded"))

    result = await service.generate_video_clip(sample_scene, AspectRatio.SIXTEEN_NINE, png_data_url)

    assert result.url is None
    assert result.fallback_used is True
    assert [d.code for d in result.diagnostics] == [
        "VEO_REQUEST_FAILED",
        "VEO_IMAGE_TO_VIDEO_FAILED",
        "VEO_REQUEST_FAILED",
    ]
    assert result.diagnostics[-1].error.message == "quota exceeded"
    await service.close()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_missing_api_key(sample_scene):
    service = VideoGenService(api_key="", http_client=_http_client())

    result = await service.generate_video_clip(sample_scene, AspectRatio.SIXTEEN_NINE)

    assert result.url is None
    assert result.diagnostics[0].code == "VEO_MISSING_API_KEY"
    await service.close()
