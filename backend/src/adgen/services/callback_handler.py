"""Workflow-engine callback handling.

Folds asynchronous notifications from n8n into the job store. Three
mutually exclusive branches, checked in order:

1. completed + video_url: append one video output (multi-video workflows)
2. payload_ready: the workflow prepared a prompt, generate here
3. anything else: legacy single-video completion
"""

from dataclasses import dataclass, field
from typing import Any, Optional

import pydantic
import structlog

from adgen.core.config import Settings
from adgen.models.job import AdJob
from adgen.models.media_output import MediaOutput, MediaType
from adgen.models.n8n import CallbackBody, coerce_angle_id, coerce_text
from adgen.services.exceptions import ValidationError
from adgen.services.identity import JobIdentity, resolve_job_identity
from adgen.services.job_store import JobStore
from adgen.services.media_generation.request import GenerationRequest
from adgen.workers.media_generation_worker import MediaGenerationWorker
from adgen.workers.supervisor import TaskSupervisor

logger = structlog.get_logger(__name__)

DEFAULT_CALLBACK_SECONDS = 15
DEFAULT_PAYLOAD_READY_SECONDS = 5


@dataclass
class CallbackResult:
    """Response body returned to the workflow engine."""

    body: dict[str, Any] = field(default_factory=lambda: {"success": True})


def _parse_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class CallbackHandler:
    """Applies workflow callbacks to jobs."""

    def __init__(
        self,
        job_store: JobStore,
        worker: MediaGenerationWorker,
        supervisor: TaskSupervisor,
        settings: Settings,
    ):
        self.job_store = job_store
        self.worker = worker
        self.supervisor = supervisor
        self.settings = settings

    async def handle(self, body: CallbackBody) -> CallbackResult:
        """Route a callback to its branch.

        Raises:
            ValidationError: No job identifier in the body, or field values that
                cannot form an output or generation request
            JobNotFoundError: Unknown job
            InvalidStateTransition: Output or generation request for a terminal job
            StorageError: Persisting the change failed
        """
        identity = resolve_job_identity(body.job_id, body.parent_job_id, body.variant_info)
        if identity is None:
            raise ValidationError("Missing job_id")

        logger.info(
            "callback.received",
            job_id=identity.job_id,
            source_id=identity.source_id,
            variant=identity.variant,
            callback_status=body.status,
            has_video_url=bool(body.video_url),
        )

        try:
            if body.status == "completed" and body.video_url:
                return await self._record_video(identity, body)
            if body.status == "payload_ready":
                return await self._start_generation(identity, body)
            return await self._complete_legacy(identity, body)
        except pydantic.ValidationError as e:
            raise ValidationError(f"Invalid callback fields: {e}") from e

    async def _record_video(self, identity: JobIdentity, body: CallbackBody) -> CallbackResult:
        rest = body.rest
        is_last = bool(rest.get("is_last_video"))

        def _append(job: AdJob) -> None:
            count = len(job.media_outputs)
            seconds = coerce_text(rest.get("seconds")) or DEFAULT_CALLBACK_SECONDS
            output = MediaOutput(
                type=MediaType.VIDEO,
                url=body.video_url,  # type: ignore[arg-type]
                angle_id=coerce_angle_id(rest.get("angle_id")) or count + 1,
                angle_name=coerce_text(rest.get("angle_name"))
                or identity.variant
                or f"Variation {count + 1}",
                prompt=coerce_text(rest.get("prompt")) or "",
                duration=coerce_text(rest.get("duration")) or f"{seconds}s",
                variant=identity.variant or identity.source_id,
            )
            job.record_external_output(output, is_last=is_last)

        job = await self.job_store.mutate(identity.job_id, _append)
        video_count = len(job.media_outputs)

        logger.info(
            "callback.video_recorded",
            job_id=identity.job_id,
            variant=identity.variant,
            status=job.status.value,
            video_count=video_count,
            is_last=is_last,
        )
        return CallbackResult(body={"success": True, "video_count": video_count})

    async def _start_generation(
        self, identity: JobIdentity, body: CallbackBody
    ) -> CallbackResult:
        rest = body.rest
        prompt = coerce_text(rest.get("prompt"))
        if not prompt or not prompt.strip():
            raise ValidationError("payload_ready callback requires a prompt")

        request = GenerationRequest(
            kind=MediaType.VIDEO,
            prompt=prompt,
            seconds=_parse_int(rest.get("n_frames")) or DEFAULT_PAYLOAD_READY_SECONDS,
            model=self.settings.video_model,
            angle_id=coerce_angle_id(rest.get("angle_id")),
            angle_name=coerce_text(rest.get("angle_name")) or identity.variant,
            variant=identity.variant,
            max_poll_attempts=self.settings.callback_poll_max_attempts,
        )

        # Register in the ledger like a batch unit
        await self.job_store.mutate(identity.job_id, lambda job: job.begin_batch(1, raw=rest))

        self.supervisor.submit(
            f"callback:{identity.job_id}",
            self.worker.run(identity.job_id, request, is_last=True),
        )
        logger.info("callback.generation_started", job_id=identity.job_id)
        return CallbackResult(body={"success": True, "message": "Generation started"})

    async def _complete_legacy(self, identity: JobIdentity, body: CallbackBody) -> CallbackResult:
        rest = body.rest
        await self.job_store.mutate(
            identity.job_id, lambda job: job.complete_legacy(body.video_url, rest)
        )
        logger.info(
            "callback.completed",
            job_id=identity.job_id,
            callback_status=body.status,
            video_url=body.video_url,
        )
        return CallbackResult()
