"""Batch dispatcher: fan one parent job out into N video generation units.

The parent job is switched to 'generating' and its batch ledger records how
many units were started; each unit then runs as a supervised background
task and settles into the ledger on its own. The caller gets an answer as
soon as the units are scheduled.
"""

from dataclasses import dataclass

import structlog

from adgen.core.config import Settings
from adgen.models.media_output import MediaType
from adgen.models.n8n import BatchUnitPayload
from adgen.services.exceptions import ValidationError
from adgen.services.identity import split_variant_id
from adgen.services.job_store import JobStore
from adgen.services.media_generation.request import GenerationRequest
from adgen.workers.media_generation_worker import MediaGenerationWorker
from adgen.workers.supervisor import TaskSupervisor

logger = structlog.get_logger(__name__)

DEFAULT_BATCH_SECONDS = 15


@dataclass
class DispatchResult:
    """What the dispatcher scheduled."""

    job_id: str
    started: int
    total: int

    @property
    def message(self) -> str:
        return f"Started generation for {self.started} of {self.total} videos"


class BatchDispatcher:
    """Starts up to MAX_VIDEOS_TO_GENERATE generation units for a parent job."""

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

    def select_units(self, units: list[BatchUnitPayload]) -> list[BatchUnitPayload]:
        """Pick the first K units and flag the last selected one.

        K is MAX_VIDEOS_TO_GENERATE, or all units when that setting is
        zero or negative.
        """
        cap = self.settings.max_videos_to_generate
        count = len(units) if cap <= 0 else min(cap, len(units))
        selected = list(units[:count])
        if selected:
            last = selected[-1]
            metadata = last.n8n_metadata.model_copy(update={"is_last_video": True})
            selected[-1] = last.model_copy(update={"n8n_metadata": metadata})
        return selected

    def build_request(self, parent_job_id: str, unit: BatchUnitPayload) -> GenerationRequest:
        """Translate a workflow batch payload into a generation request."""
        metadata = unit.n8n_metadata
        requested_seconds = unit.seconds or DEFAULT_BATCH_SECONDS
        variant_job_id = metadata.variant_job_id or parent_job_id
        _, variant = split_variant_id(variant_job_id)

        return GenerationRequest(
            kind=MediaType.VIDEO,
            prompt=unit.prompt,
            seconds=min(requested_seconds, self.settings.max_video_seconds),
            duration=f"{requested_seconds}s",
            size=unit.size,
            model=self.settings.batch_video_model,
            angle_id=metadata.angle_id,
            angle_name=metadata.angle_name,
            variant=variant or variant_job_id,
            max_poll_attempts=self.settings.video_poll_max_attempts,
        )

    async def dispatch(self, parent_job_id: str, units: list[BatchUnitPayload]) -> DispatchResult:
        """Schedule generation units for a parent job without waiting for them.

        Args:
            parent_job_id: Job receiving every output
            units: Ordered batch payloads from the workflow

        Returns:
            DispatchResult with how many of the units were started

        Raises:
            ValidationError: If there is nothing to generate
            JobNotFoundError: If the parent job does not exist
            InvalidStateTransition: If the parent job is already terminal
        """
        if not units:
            raise ValidationError("Batch contains no payloads")

        selected = self.select_units(units)
        requests = [self.build_request(parent_job_id, unit) for unit in selected]

        await self.job_store.mutate(parent_job_id, lambda job: job.begin_batch(len(selected)))

        logger.info(
            "batch.dispatching",
            job_id=parent_job_id,
            total=len(units),
            selected=len(selected),
            max_videos=self.settings.max_videos_to_generate,
        )

        for index, (unit, request) in enumerate(zip(selected, requests)):
            is_last = unit.n8n_metadata.is_last_video
            logger.info(
                "batch.unit_started",
                job_id=parent_job_id,
                unit=f"{index + 1}/{len(selected)}",
                variant_job_id=unit.n8n_metadata.variant_job_id,
                angle_name=unit.n8n_metadata.angle_name,
                is_last=is_last,
            )
            self.supervisor.submit(
                f"batch:{parent_job_id}:{index}",
                self.worker.run(parent_job_id, request, is_last=is_last),
            )

        return DispatchResult(job_id=parent_job_id, started=len(selected), total=len(units))
