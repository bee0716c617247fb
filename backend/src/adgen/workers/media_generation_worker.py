"""Media generation worker: drive one generation request to a settled job.

A run submits one request to the provider, waits for the result, stores it
and folds the outcome into the job through JobStore.mutate():

    submit -> poll every POLL_INTERVAL_SECONDS -> store asset -> settle

Provider failures, timeouts and storage failures never escape a run as
exceptions the caller must handle; they are settled into the job instead
(failed, or completed with partial results when sibling units produced
output). Unexpected exceptions are settled the same way and then re-raised
so the task supervisor logs the crash.
"""

import asyncio
import base64
import time
from typing import Optional
from uuid import uuid4

import structlog

from adgen.core.config import Settings
from adgen.models.job import AdJob, InvalidStateTransition
from adgen.models.media_output import MediaOutput, MediaType
from adgen.services.exceptions import (
    GenerationTimeoutError,
    JobNotFoundError,
    ServiceError,
    StorageError,
)
from adgen.services.job_store import JobStore
from adgen.services.media_generation.asset_storage import AssetStorage
from adgen.services.media_generation.comet_client import (
    NOT_READY_STATUS_CODES,
    CometClient,
    PollResult,
)
from adgen.services.media_generation.request import GenerationRequest

logger = structlog.get_logger(__name__)

DEFAULT_VIDEO_SECONDS = 5
DEFAULT_PLACEMENT = "static_ad"


def build_media_output(
    job: AdJob, request: GenerationRequest, url: str, output_id: str, seconds: int
) -> MediaOutput:
    """Build the output record, numbering unnamed angles from the job's current outputs."""
    count = len(job.media_outputs)

    if request.kind == MediaType.IMAGE:
        angle_number = count // 3 + 1
        return MediaOutput(
            id=output_id,
            type=MediaType.IMAGE,
            url=url,
            angle_id=request.angle_id or angle_number,
            angle_name=request.angle_name or f"Angle {angle_number}",
            prompt=request.prompt,
            placement=request.placement or DEFAULT_PLACEMENT,
            variant=request.variant,
        )

    return MediaOutput(
        id=output_id,
        type=MediaType.VIDEO,
        url=url,
        angle_id=request.angle_id or count + 1,
        angle_name=request.angle_name or f"Variation {count + 1}",
        prompt=request.prompt,
        duration=request.duration or f"{seconds}s",
        variant=request.variant,
    )


class MediaGenerationWorker:
    """Runs generation units against the provider and settles them into jobs."""

    def __init__(
        self,
        job_store: JobStore,
        provider: CometClient,
        storage: AssetStorage,
        settings: Settings,
    ):
        self.job_store = job_store
        self.provider = provider
        self.storage = storage
        self.settings = settings

    async def run(
        self, job_id: str, request: GenerationRequest, is_last: bool = True
    ) -> Optional[MediaOutput]:
        """Generate one asset for a job and settle the outcome.

        Args:
            job_id: Job receiving the output
            request: What to generate
            is_last: Whether this is the final expected unit for the job
                (ignored for jobs whose batch ledger tracks completion)

        Returns:
            The recorded output, or None if generation failed or the output
            could not be recorded
        """
        start_time = time.time()
        output_id = str(uuid4())
        log = logger.bind(
            job_id=job_id,
            kind=request.kind.value,
            variant=request.variant,
            angle_name=request.angle_name,
        )
        log.info("generation.started", is_last=is_last)

        try:
            if request.kind == MediaType.IMAGE:
                url = await self._generate_image(job_id, request, output_id, log)
            else:
                url = await self._generate_video(job_id, request, output_id, log)

        except ServiceError as e:
            log.error(
                "generation.failed",
                error_type=type(e).__name__,
                error_message=str(e),
                duration_seconds=time.time() - start_time,
            )
            await self._settle_failure(job_id, request, e, is_last, log)
            return None

        except asyncio.CancelledError:
            log.warning("generation.cancelled")
            raise

        except Exception as e:
            log.error(
                "generation.failed",
                error_type=type(e).__name__,
                error_message=str(e),
                exc_info=True,
            )
            await self._settle_failure(job_id, request, e, is_last, log)
            raise

        seconds = self._video_seconds(request)
        recorded: list[MediaOutput] = []

        def _record(job: AdJob) -> None:
            recorded.clear()
            output = build_media_output(job, request, url, output_id, seconds)
            job.settle_unit(output=output, is_last=is_last)
            recorded.append(output)

        try:
            job = await self.job_store.mutate(job_id, _record)
        except InvalidStateTransition as e:
            log.warning("generation.output_discarded", url=url, reason=str(e))
            return None
        except (JobNotFoundError, StorageError) as e:
            log.error(
                "generation.settle_failed",
                url=url,
                error_type=type(e).__name__,
                error_message=str(e),
            )
            return None

        log.info(
            "generation.succeeded",
            url=url,
            status=job.status.value,
            total_outputs=len(job.media_outputs),
            duration_seconds=time.time() - start_time,
        )
        return recorded[0]

    def _video_seconds(self, request: GenerationRequest) -> int:
        return min(request.seconds or DEFAULT_VIDEO_SECONDS, self.settings.max_video_seconds)

    async def _generate_video(
        self, job_id: str, request: GenerationRequest, output_id: str, log
    ) -> str:
        """Submit, poll until ready, and return the stored (or remote) video URL."""
        seconds = self._video_seconds(request)
        model = request.model or self.settings.video_model
        video_id = await self.provider.submit_video(
            prompt=request.prompt,
            model=model,
            seconds=seconds,
            size=request.size or self.settings.default_video_size,
        )
        log.info("generation.submitted", video_id=video_id, model=model, seconds=seconds)

        max_attempts = request.max_poll_attempts or self.settings.video_poll_max_attempts
        result = await self._poll_until_ready(video_id, max_attempts, log)

        if result.content is not None:
            return await self.storage.save(job_id, f"{output_id}.mp4", result.content)
        return result.url  # type: ignore[return-value]

    async def _poll_until_ready(self, video_id: str, max_attempts: int, log) -> PollResult:
        """Poll the provider until the video is ready.

        Non-ready and unexpected responses are tolerated until the attempt
        ceiling is reached.

        Raises:
            GenerationTimeoutError: If no attempt observed a ready result
        """
        interval = self.settings.poll_interval_seconds

        for attempt in range(1, max_attempts + 1):
            await asyncio.sleep(interval)
            result = await self.provider.poll_video(video_id)

            if result.ready:
                log.info(
                    "generation.ready",
                    video_id=video_id,
                    attempt=attempt,
                    binary=result.content is not None,
                )
                return result

            if result.status_code in NOT_READY_STATUS_CODES:
                log.debug(
                    "generation.poll.pending",
                    video_id=video_id,
                    attempt=attempt,
                    max_attempts=max_attempts,
                    status_code=result.status_code,
                )
            else:
                log.warning(
                    "generation.poll.unexpected",
                    video_id=video_id,
                    attempt=attempt,
                    max_attempts=max_attempts,
                    status_code=result.status_code,
                    content_type=result.content_type,
                    detail=result.detail,
                )

        raise GenerationTimeoutError(max_attempts, interval)

    async def _generate_image(
        self, job_id: str, request: GenerationRequest, output_id: str, log
    ) -> str:
        """Generate an image (image-to-image when a source upload is readable) and store it."""
        image_b64 = None
        if request.source_image:
            source = await self.storage.read(request.source_image)
            if source is None:
                log.warning("generation.source_image_missing", source_image=request.source_image)
            else:
                image_b64 = base64.b64encode(source).decode("ascii")

        remote_url = await self.provider.generate_image(
            prompt=request.prompt,
            model=request.model or self.settings.image_model,
            size=request.size or self.settings.default_image_size,
            image_b64=image_b64,
        )
        log.info("generation.submitted", remote_url=remote_url, image_to_image=bool(image_b64))

        data = await self.provider.download(remote_url)
        return await self.storage.save(job_id, f"{output_id}.png", data)

    async def _settle_failure(
        self, job_id: str, request: GenerationRequest, exc: BaseException, is_last: bool, log
    ) -> None:
        error = {
            "error": str(exc),
            "error_type": type(exc).__name__,
            "variant": request.variant,
            "angle_name": request.angle_name,
        }
        try:
            job = await self.job_store.mutate(
                job_id, lambda job: job.settle_unit(error=error, is_last=is_last)
            )
        except (JobNotFoundError, StorageError) as e:
            log.error(
                "generation.settle_failed",
                error_type=type(e).__name__,
                error_message=str(e),
            )
            return

        log.info(
            "generation.settled_failure",
            status=job.status.value,
            total_outputs=len(job.media_outputs),
        )
