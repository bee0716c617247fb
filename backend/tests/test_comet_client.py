"""CometClient tests with httpx.MockTransport (no network, no database)."""

import httpx
import pytest

from adgen.services.exceptions import MissingHandleError, ProviderError, ProviderSubmissionError
from adgen.services.media_generation.comet_client import CometClient

BASE_URL = "https://comet.test/v1"


def client_for(handler) -> CometClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CometClient(http_client, api_key="secret-key", base_url=BASE_URL + "/")


@pytest.mark.asyncio
async def test_submit_video_sends_form_and_bearer_token():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["authorization"]
        seen["url"] = str(request.url)
        seen["body"] = request.content
        return httpx.Response(200, json={"id": "video_42", "status": "queued"})

    client = client_for(handler)
    video_id = await client.submit_video("A cat surfing", "sora-2", 8, "720x1280")

    assert video_id == "video_42"
    assert seen["auth"] == "Bearer secret-key"
    assert seen["url"] == f"{BASE_URL}/videos"
    assert b"A cat surfing" in seen["body"]
    assert b"720x1280" in seen["body"]


@pytest.mark.asyncio
async def test_submit_video_error_status():
    client = client_for(lambda request: httpx.Response(429, text="rate limited"))

    with pytest.raises(ProviderSubmissionError) as exc_info:
        await client.submit_video("p", "sora-2", 5, "720x1280")

    assert exc_info.value.status_code == 429
    assert "rate limited" in exc_info.value.body


@pytest.mark.asyncio
async def test_submit_video_without_id():
    client = client_for(lambda request: httpx.Response(200, json={"status": "queued"}))

    with pytest.raises(MissingHandleError):
        await client.submit_video("p", "sora-2", 5, "720x1280")


@pytest.mark.asyncio
async def test_submit_video_network_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ProviderError):
        await client_for(handler).submit_video("p", "sora-2", 5, "720x1280")


@pytest.mark.asyncio
async def test_poll_not_ready_statuses():
    for status_code in (202, 404):
        client = client_for(lambda request, code=status_code: httpx.Response(code))
        result = await client.poll_video("video_1")

        assert result.ready is False
        assert result.status_code == status_code


@pytest.mark.asyncio
async def test_poll_binary_content_is_ready():
    def handler(request):
        assert request.url.path == "/v1/videos/video_1/content"
        return httpx.Response(200, content=b"mp4-bytes", headers={"content-type": "video/mp4"})

    result = await client_for(handler).poll_video("video_1")

    assert result.ready is True
    assert result.content == b"mp4-bytes"
    assert result.url is None


@pytest.mark.asyncio
async def test_poll_json_url_is_ready():
    client = client_for(
        lambda request: httpx.Response(200, json={"content_url": "https://cdn.test/v.mp4"})
    )

    result = await client.poll_video("video_1")

    assert result.ready is True
    assert result.url == "https://cdn.test/v.mp4"


@pytest.mark.asyncio
async def test_poll_json_without_url_is_not_ready():
    client = client_for(lambda request: httpx.Response(200, json={"status": "processing"}))

    result = await client.poll_video("video_1")

    assert result.ready is False
    assert "status" in result.detail


@pytest.mark.asyncio
async def test_poll_network_error_is_not_ready():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    result = await client_for(handler).poll_video("video_1")

    assert result.ready is False
    assert result.status_code == 0


@pytest.mark.asyncio
async def test_generate_image_reads_data_list():
    client = client_for(
        lambda request: httpx.Response(200, json={"data": [{"url": "https://cdn.test/i.png"}]})
    )

    url = await client.generate_image("A shoe", "flux-1.1-pro", "1024x1024", image_b64="aGk=")

    assert url == "https://cdn.test/i.png"


@pytest.mark.asyncio
async def test_generate_image_without_url():
    client = client_for(lambda request: httpx.Response(200, json={"data": []}))

    with pytest.raises(MissingHandleError):
        await client.generate_image("A shoe", "flux-1.1-pro", "1024x1024")


@pytest.mark.asyncio
async def test_download_failure():
    client = client_for(lambda request: httpx.Response(403))

    with pytest.raises(ProviderError):
        await client.download("https://cdn.test/i.png")
