"""Job store: create, read and update AdJob records.

Every component that changes a job goes through this module. Payload updates
use mutate(), a read-modify-write guarded by the job's version column, so
concurrent generation units appending to the same job never lose each
other's outputs.
"""

from datetime import timedelta
from typing import Any, Callable, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError

from adgen.core.timezone import utcnow
from adgen.models.job import AdJob, JobStatus
from adgen.services.exceptions import (
    ConcurrentUpdateError,
    JobNotFoundError,
    JobUpdateError,
)

logger = structlog.get_logger(__name__)


class JobStore:
    """Persistent job record access built on the Unit of Work."""

    def __init__(self, uow_factory: Callable, max_retries: int = 5):
        """Initialize job store.

        Args:
            uow_factory: Factory returned by create_uow_factory()
            max_retries: Compare-and-swap attempts before giving up in mutate()
        """
        self.uow_factory = uow_factory
        self.max_retries = max_retries

    async def create_job(self, payload: Optional[dict] = None) -> str:
        """Insert a new job with status submitted.

        Args:
            payload: Submitted fields (media_outputs always starts empty)

        Returns:
            Newly assigned job_id

        Raises:
            JobUpdateError: If the insert fails
        """
        initial = dict(payload or {})
        initial["media_outputs"] = []
        job = AdJob(status=JobStatus.SUBMITTED, payload=initial)

        try:
            async with await self.uow_factory() as uow:
                await uow.jobs.add(job)
        except SQLAlchemyError as e:
            logger.error("job.create_failed", error=str(e), error_type=type(e).__name__)
            raise JobUpdateError(f"Failed to create job: {e}") from e

        logger.info("job.created", job_id=job.job_id)
        return job.job_id

    async def get_job(self, job_id: str) -> AdJob:
        """Fetch a job.

        Raises:
            JobNotFoundError: If no job has this id
        """
        async with await self.uow_factory() as uow:
            job = await uow.jobs.get_by_job_id(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def update_job(self, job_id: str, **fields: Any) -> AdJob:
        """Merge the given fields into a job without a version check.

        Use for writes that do not depend on the current payload (status-only
        changes, legacy overwrites). Payload appends must use mutate().

        Raises:
            JobNotFoundError: If no job has this id
            JobUpdateError: If the write fails
        """
        try:
            async with await self.uow_factory() as uow:
                updated = await uow.jobs.update_fields(job_id, fields)
        except SQLAlchemyError as e:
            logger.error("job.update_failed", job_id=job_id, error=str(e))
            raise JobUpdateError(f"Failed to update job {job_id}: {e}") from e

        if not updated:
            raise JobNotFoundError(job_id)
        logger.info("job.updated", job_id=job_id, fields=sorted(fields))
        return await self.get_job(job_id)

    async def mutate(self, job_id: str, mutator: Callable[[AdJob], Any]) -> AdJob:
        """Apply a change to the latest state of a job with optimistic concurrency.

        Workflow:
        1. Read the job (detached) and remember its version
        2. Apply mutator to the detached copy
        3. UPDATE ... WHERE version = remembered version
        4. On conflict, start over with a fresh read

        The mutator may run more than once and must derive everything from
        the job it is handed. Exceptions raised by the mutator propagate
        unchanged and nothing is written.

        Args:
            job_id: Job identifier
            mutator: Callable changing the job in place

        Returns:
            The job as written

        Raises:
            JobNotFoundError: If no job has this id
            ConcurrentUpdateError: If every attempt lost the race
            JobUpdateError: If the database rejects the write
        """
        for attempt in range(1, self.max_retries + 1):
            try:
                async with await self.uow_factory() as uow:
                    job = await uow.jobs.get_detached(job_id)
                    if job is None:
                        raise JobNotFoundError(job_id)

                    read_version = job.version
                    mutator(job)

                    if await uow.jobs.save_if_version(job, read_version):
                        return job
            except SQLAlchemyError as e:
                logger.error("job.update_failed", job_id=job_id, error=str(e))
                raise JobUpdateError(f"Failed to update job {job_id}: {e}") from e

            logger.warning(
                "job.update_conflict",
                job_id=job_id,
                attempt=attempt,
                max_retries=self.max_retries,
            )

        raise ConcurrentUpdateError(
            f"Job {job_id} changed concurrently on all {self.max_retries} attempts"
        )

    async def find_orphaned(
        self, limit: int = 100, stale_after_seconds: float = 0
    ) -> list[AdJob]:
        """Jobs stuck in generating whose in-process units never settled.

        Args:
            limit: Maximum number of jobs to return
            stale_after_seconds: Skip jobs written within this many seconds
                (0 returns every unsettled job)
        """
        stale_before = None
        if stale_after_seconds > 0:
            stale_before = utcnow() - timedelta(seconds=stale_after_seconds)
        async with await self.uow_factory() as uow:
            return await uow.jobs.get_orphaned(limit=limit, stale_before=stale_before)
