"""CometAPI client for video and image generation.

Videos are asynchronous: submit returns an opaque video id, and the content
endpoint is polled until the media is ready. Images are synchronous: submit
returns the image URL directly.
"""

from dataclasses import dataclass
from typing import Optional

import httpx
import structlog

from adgen.services.exceptions import MissingHandleError, ProviderError, ProviderSubmissionError

logger = structlog.get_logger(__name__)

# 202 Accepted = still rendering, 404 = not materialized yet
NOT_READY_STATUS_CODES = frozenset({202, 404})
BINARY_CONTENT_TYPES = ("video/", "application/octet-stream")
JSON_URL_FIELDS = ("url", "content_url", "video_url")


@dataclass
class PollResult:
    """Outcome of a single content poll.

    Exactly one of `content` (binary media) or `url` (remote location) is set
    when `ready` is True.
    """

    ready: bool
    status_code: int
    content: Optional[bytes] = None
    url: Optional[str] = None
    content_type: str = ""
    detail: str = ""


class CometClient:
    """HTTP client for the CometAPI generation endpoints."""

    def __init__(self, http_client: httpx.AsyncClient, api_key: str, base_url: str):
        """Initialize Comet client.

        Args:
            http_client: Shared AsyncClient owned by the application lifespan
            api_key: Bearer token (from COMET_API_KEY env var)
            base_url: API root, e.g. https://api.cometapi.com/v1
        """
        self.http_client = http_client
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    @property
    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def content_url(self, video_id: str) -> str:
        """Direct URL of a finished video's content."""
        return f"{self.base_url}/videos/{video_id}/content"

    async def submit_video(self, prompt: str, model: str, seconds: int, size: str) -> str:
        """Start a video generation.

        Args:
            prompt: Text prompt
            model: Model identifier, e.g. sora-2
            seconds: Clip length in seconds
            size: Resolution, e.g. 720x1280

        Returns:
            Provider video id used for polling

        Raises:
            ProviderSubmissionError: Non-2xx response
            MissingHandleError: Response body has no id
        """
        # Multipart form; a None filename makes httpx send plain form fields
        form = {
            "prompt": (None, prompt),
            "model": (None, model),
            "seconds": (None, str(seconds)),
            "size": (None, size),
        }
        try:
            response = await self.http_client.post(
                f"{self.base_url}/videos", headers=self._auth_headers, files=form
            )
        except httpx.HTTPError as e:
            raise ProviderError(f"Network error submitting video: {e}") from e

        if not response.is_success:
            raise ProviderSubmissionError(response.status_code, response.text)

        try:
            body = response.json()
        except ValueError as e:
            raise MissingHandleError(f"Non-JSON submission response: {response.text[:200]}") from e

        video_id = body.get("id") if isinstance(body, dict) else None
        if not video_id:
            raise MissingHandleError("No video ID returned from provider")
        return str(video_id)

    async def poll_video(self, video_id: str) -> PollResult:
        """Check whether a video is ready.

        Never raises for HTTP-level problems: a transport error or an
        unexpected response is returned as a not-ready result so the caller's
        polling loop can keep going.
        """
        try:
            response = await self.http_client.get(
                self.content_url(video_id), headers=self._auth_headers
            )
        except httpx.HTTPError as e:
            return PollResult(ready=False, status_code=0, detail=f"network error: {e}")

        content_type = response.headers.get("content-type", "")

        if response.status_code in NOT_READY_STATUS_CODES:
            return PollResult(
                ready=False, status_code=response.status_code, content_type=content_type
            )

        if not response.is_success:
            return PollResult(
                ready=False,
                status_code=response.status_code,
                content_type=content_type,
                detail=response.text[:500],
            )

        if any(marker in content_type for marker in BINARY_CONTENT_TYPES):
            return PollResult(
                ready=True,
                status_code=response.status_code,
                content=response.content,
                content_type=content_type,
            )

        if "application/json" in content_type:
            try:
                data = response.json()
            except ValueError:
                data = {}
            url = None
            if isinstance(data, dict):
                url = next((data[field] for field in JSON_URL_FIELDS if data.get(field)), None)
            if url:
                return PollResult(
                    ready=True, status_code=response.status_code, url=url, content_type=content_type
                )
            fields = sorted(data) if isinstance(data, dict) else []
            return PollResult(
                ready=False,
                status_code=response.status_code,
                content_type=content_type,
                detail=f"no url field in response, fields={fields}",
            )

        return PollResult(
            ready=False,
            status_code=response.status_code,
            content_type=content_type,
            detail=f"unexpected content type: {content_type}",
        )

    async def generate_image(
        self, prompt: str, model: str, size: str, image_b64: Optional[str] = None
    ) -> str:
        """Generate an image, optionally from a base image (image-to-image).

        Returns:
            URL of the generated image

        Raises:
            ProviderSubmissionError: Non-2xx response
            MissingHandleError: Response has neither `url` nor `data[0].url`
        """
        body: dict[str, str] = {"prompt": prompt, "model": model, "size": size}
        if image_b64:
            body["image"] = image_b64

        try:
            response = await self.http_client.post(
                f"{self.base_url}/images", headers=self._auth_headers, json=body
            )
        except httpx.HTTPError as e:
            raise ProviderError(f"Network error submitting image: {e}") from e

        if not response.is_success:
            raise ProviderSubmissionError(response.status_code, response.text)

        try:
            data = response.json()
        except ValueError as e:
            raise MissingHandleError(f"Non-JSON image response: {response.text[:200]}") from e

        image_url = None
        if isinstance(data, dict):
            image_url = data.get("url")
            items = data.get("data")
            if not image_url and isinstance(items, list) and items and isinstance(items[0], dict):
                image_url = items[0].get("url")

        if not image_url:
            raise MissingHandleError("No image URL returned from provider")
        return image_url

    async def download(self, url: str) -> bytes:
        """Fetch a generated asset.

        Raises:
            ProviderError: Network failure or non-2xx response
        """
        try:
            response = await self.http_client.get(url)
        except httpx.HTTPError as e:
            raise ProviderError(f"Failed to download generated asset: {e}") from e

        if not response.is_success:
            raise ProviderError(
                f"Failed to download generated asset: {response.status_code} from {url}"
            )
        return response.content
