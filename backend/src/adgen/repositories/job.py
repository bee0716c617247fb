"""AdJob repository.

Provides data access methods for AdJob entities, including the versioned
compare-and-swap write used to serialize concurrent payload updates.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from adgen.core.timezone import utcnow
from adgen.models.job import AdJob, JobStatus

# Columns written back by save_if_version(); job_id and created_at are immutable
MUTABLE_COLUMNS = (
    "status",
    "payload",
    "video_url",
    "completed_at",
    "n8n_raw",
    "expected_units",
    "settled_units",
)


class AdJobRepository:
    """Repository for AdJob entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, job: AdJob) -> AdJob:
        """Persist new job to database.

        Args:
            job: AdJob entity to persist

        Returns:
            Persisted job
        """
        self.session.add(job)
        await self.session.flush()
        return job

    async def get_by_job_id(self, job_id: str) -> AdJob | None:
        """Retrieve job by its public identifier.

        Args:
            job_id: Job identifier returned at submission

        Returns:
            AdJob if found, None otherwise
        """
        result = await self.session.execute(
            select(AdJob).where(AdJob.job_id == job_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_detached(self, job_id: str) -> AdJob | None:
        """Retrieve job and detach it from the session.

        In-memory changes on a detached job are never auto-flushed, so the
        only way to persist them is save_if_version().
        """
        job = await self.get_by_job_id(job_id)
        if job is not None:
            self.session.expunge(job)
        return job

    async def update_fields(self, job_id: str, values: dict) -> bool:
        """Merge the given column values into a job (last writer wins).

        Args:
            job_id: Job identifier
            values: Column name -> new value; `payload` is replaced wholesale,
                `updated_at` defaults to now

        Returns:
            True if a row was updated, False if the job does not exist
        """
        result = await self.session.execute(
            update(AdJob)
            .where(AdJob.job_id == job_id)  # type: ignore[arg-type]
            .values(**{"updated_at": utcnow(), **values}, version=AdJob.version + 1)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def save_if_version(self, job: AdJob, expected_version: int) -> bool:
        """Write a job's mutable columns only if nobody wrote it since it was read.

        Query:
            UPDATE ad_jobs SET ..., updated_at = now(), version = :expected + 1
            WHERE job_id = :job_id AND version = :expected

        Args:
            job: Detached job carrying the new state
            expected_version: Version observed when the job was read

        Returns:
            True if the write won, False on a concurrent modification
        """
        values = {column: getattr(job, column) for column in MUTABLE_COLUMNS}
        values["updated_at"] = utcnow()
        result = await self.session.execute(
            update(AdJob)
            .where(
                AdJob.job_id == job.job_id,  # type: ignore[arg-type]
                AdJob.version == expected_version,  # type: ignore[arg-type]
            )
            .values(**values, version=expected_version + 1)
        )
        won = result.rowcount == 1  # type: ignore[attr-defined]
        if won:
            job.version = expected_version + 1
            job.updated_at = values["updated_at"]
        return won

    async def get_orphaned(
        self, limit: int = 100, stale_before: Optional[datetime] = None
    ) -> list[AdJob]:
        """Retrieve jobs left in generating with unsettled in-process units.

        Only a crash or restart leaves such jobs behind: their generation
        tasks died with the process that ran them. A batch still running in
        another process looks the same, so callers pass `stale_before` to
        skip jobs written recently.

        Query:
            SELECT * FROM ad_jobs
            WHERE status = 'generating'
              AND expected_units IS NOT NULL
              AND settled_units < expected_units
              [AND updated_at < :stale_before]
            ORDER BY created_at ASC
            LIMIT :limit

        Args:
            limit: Maximum number of jobs to return
            stale_before: Only jobs last written before this instant

        Returns:
            Orphaned jobs ordered by creation time (oldest first)
        """
        query = select(AdJob).where(
            AdJob.status == JobStatus.GENERATING,  # type: ignore[arg-type]
            AdJob.expected_units.is_not(None),  # type: ignore[union-attr]
            AdJob.settled_units < AdJob.expected_units,  # type: ignore[arg-type,operator]
        )
        if stale_before is not None:
            query = query.where(AdJob.updated_at < stale_before)  # type: ignore[operator]

        result = await self.session.execute(
            query.order_by(AdJob.created_at.asc())  # type: ignore[union-attr]
            .limit(limit)
        )
        return list(result.scalars().all())
