"""Startup recovery for jobs orphaned by a crash or restart.

Generation units run as in-process tasks. If the process dies while a batch
is in flight, its job stays in 'generating' with an unsettled ledger and no
task will ever settle it. Recovery settles the missing units as failed, so
the job ends completed (if some outputs arrived) or failed.
"""

from dataclasses import dataclass, field

import structlog

from adgen.models.job import InvalidStateTransition
from adgen.services.exceptions import JobNotFoundError
from adgen.services.job_store import JobStore

logger = structlog.get_logger(__name__)

INTERRUPTED_REASON = "Generation interrupted by service restart"


@dataclass
class RecoveryResult:
    """Summary of a recovery pass."""

    orphaned_count: int = 0
    recovered_job_ids: list[str] = field(default_factory=list)
    abandoned_units: int = 0


async def recover_orphaned_jobs(
    job_store: JobStore,
    limit: int = 100,
    dry_run: bool = False,
    stale_after_seconds: float = 0,
) -> RecoveryResult:
    """Settle jobs stuck in 'generating' with unsettled in-process units.

    A job qualifies only if it has not been written for `stale_after_seconds`.
    A live unit in another process settles within its polling ceiling, so a
    threshold above the longest ceiling leaves running batches alone.

    Args:
        job_store: Job store
        limit: Maximum number of jobs to inspect
        dry_run: Report orphans without writing
        stale_after_seconds: Minimum quiet period before a job counts as
            orphaned (0 = every unsettled job)

    Returns:
        RecoveryResult with the jobs that were (or would be) settled
    """
    orphans = await job_store.find_orphaned(
        limit=limit, stale_after_seconds=stale_after_seconds
    )
    result = RecoveryResult(orphaned_count=len(orphans))

    for orphan in orphans:
        if dry_run:
            result.recovered_job_ids.append(orphan.job_id)
            result.abandoned_units += (orphan.expected_units or 0) - orphan.settled_units
            continue

        abandoned: list[int] = []

        def _abandon(job) -> None:
            abandoned.clear()
            abandoned.append(job.abandon_pending_units(INTERRUPTED_REASON))

        try:
            job = await job_store.mutate(orphan.job_id, _abandon)
        except (JobNotFoundError, InvalidStateTransition) as e:
            logger.warning("recovery.skipped", job_id=orphan.job_id, reason=str(e))
            continue

        result.recovered_job_ids.append(job.job_id)
        result.abandoned_units += abandoned[0]
        logger.info(
            "recovery.job_settled",
            job_id=job.job_id,
            status=job.status.value,
            abandoned_units=abandoned[0],
            outputs=len(job.media_outputs),
        )

    if result.orphaned_count:
        logger.info(
            "recovery.completed",
            orphaned=result.orphaned_count,
            recovered=len(result.recovered_job_ids),
            dry_run=dry_run,
        )
    return result
