"""JobStore tests against PostgreSQL.

Tests focus on:
- Job creation (unique ids, initial status)
- Not-found handling
- Optimistic concurrency: concurrent appends never lose outputs
"""

import asyncio
from datetime import timedelta

import pytest

from adgen.core.timezone import utcnow
from adgen.models.job import InvalidStateTransition, JobStatus
from adgen.models.media_output import MediaOutput, MediaType
from adgen.repositories.job import AdJobRepository
from adgen.services.exceptions import ConcurrentUpdateError, JobNotFoundError
from adgen.services.job_store import JobStore


def video(url: str) -> MediaOutput:
    return MediaOutput(type=MediaType.VIDEO, url=url)


@pytest.mark.asyncio
async def test_create_job_assigns_unique_ids(job_store):
    first = await job_store.create_job({"product": "shoes"})
    second = await job_store.create_job({"product": "shoes"})

    assert first != second

    job = await job_store.get_job(first)
    assert job.status == JobStatus.SUBMITTED
    assert job.payload == {"product": "shoes", "media_outputs": []}
    assert job.created_at.tzinfo is not None
    assert job.completed_at is None


@pytest.mark.asyncio
async def test_create_job_ignores_caller_media_outputs(job_store):
    job_id = await job_store.create_job({"media_outputs": "abc"})
    await job_store.mutate(job_id, lambda job: job.append_media_output(video("/a.mp4")))

    job = await job_store.get_job(job_id)
    assert [o["url"] for o in job.media_outputs] == ["/a.mp4"]


@pytest.mark.asyncio
async def test_get_unknown_job_raises(job_store):
    with pytest.raises(JobNotFoundError):
        await job_store.get_job("does-not-exist")


@pytest.mark.asyncio
async def test_update_job_merges_fields(job_store):
    job_id = await job_store.create_job({})

    await job_store.update_job(job_id, status=JobStatus.PROCESSING, video_url="/v.mp4")

    job = await job_store.get_job(job_id)
    assert job.status == JobStatus.PROCESSING
    assert job.video_url == "/v.mp4"
    assert job.version == 2


@pytest.mark.asyncio
async def test_update_unknown_job_raises(job_store):
    with pytest.raises(JobNotFoundError):
        await job_store.update_job("missing", status=JobStatus.FAILED)


@pytest.mark.asyncio
async def test_mutate_then_read_round_trip(job_store):
    job_id = await job_store.create_job({})

    written = await job_store.mutate(
        job_id, lambda job: job.record_external_output(video("/media/a.mp4"), is_last=False)
    )

    stored = await job_store.get_job(job_id)
    assert written.version == stored.version == 2
    assert stored.status == JobStatus.PROCESSING
    assert [o["url"] for o in stored.media_outputs] == ["/media/a.mp4"]


@pytest.mark.asyncio
async def test_mutator_exception_propagates_without_write(job_store):
    job_id = await job_store.create_job({})
    await job_store.update_job(job_id, status=JobStatus.COMPLETED)

    with pytest.raises(InvalidStateTransition):
        await job_store.mutate(job_id, lambda job: job.append_media_output(video("/late.mp4")))

    job = await job_store.get_job(job_id)
    assert job.media_outputs == []
    assert job.version == 2


@pytest.mark.asyncio
async def test_concurrent_appends_keep_every_output(job_store):
    """Five writers append to the same job at once; all five outputs survive."""
    job_id = await job_store.create_job({})
    urls = [f"/media/{job_id}/{i}.mp4" for i in range(5)]

    def appender(url):
        return lambda job: job.append_media_output(video(url))

    await asyncio.gather(*(job_store.mutate(job_id, appender(url)) for url in urls))

    job = await job_store.get_job(job_id)
    assert sorted(o["url"] for o in job.media_outputs) == sorted(urls)
    assert job.version == 6


@pytest.mark.asyncio
async def test_stale_version_write_is_rejected(uow_factory, job_store):
    """A write based on an old read loses instead of overwriting newer data."""
    job_id = await job_store.create_job({})

    async with await uow_factory() as uow:
        stale = await uow.jobs.get_detached(job_id)

    await job_store.mutate(job_id, lambda job: job.append_media_output(video("/winner.mp4")))

    stale.append_media_output(video("/loser.mp4"))
    async with await uow_factory() as uow:
        assert await uow.jobs.save_if_version(stale, expected_version=1) is False

    job = await job_store.get_job(job_id)
    assert [o["url"] for o in job.media_outputs] == ["/winner.mp4"]


@pytest.mark.asyncio
async def test_mutate_gives_up_after_max_retries(uow_factory, monkeypatch):
    job_store = JobStore(uow_factory, max_retries=3)
    job_id = await job_store.create_job({})
    attempts = []

    async def always_conflict(self, job, expected_version):
        attempts.append(expected_version)
        return False

    monkeypatch.setattr(AdJobRepository, "save_if_version", always_conflict)

    with pytest.raises(ConcurrentUpdateError):
        await job_store.mutate(job_id, lambda job: job.advance_to_processing())

    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_find_orphaned_only_returns_unsettled_batches(job_store):
    orphan_id = await job_store.create_job({})
    await job_store.mutate(orphan_id, lambda job: job.begin_batch(2))

    settled_id = await job_store.create_job({})
    await job_store.mutate(settled_id, lambda job: job.begin_batch(1))
    await job_store.mutate(settled_id, lambda job: job.settle_unit(output=video("/x.mp4")))

    callback_id = await job_store.create_job({})
    await job_store.mutate(callback_id, lambda job: job.mark_generating())

    orphans = await job_store.find_orphaned()

    assert [job.job_id for job in orphans] == [orphan_id]


@pytest.mark.asyncio
async def test_mutate_stamps_updated_at(job_store):
    job_id = await job_store.create_job({})
    created = await job_store.get_job(job_id)

    written = await job_store.mutate(job_id, lambda job: job.advance_to_processing())

    assert written.updated_at >= created.updated_at
    assert (await job_store.get_job(job_id)).updated_at == written.updated_at


@pytest.mark.asyncio
async def test_find_orphaned_skips_recently_written_jobs(job_store):
    live_id = await job_store.create_job({})
    await job_store.mutate(live_id, lambda job: job.begin_batch(2))

    quiet_id = await job_store.create_job({})
    await job_store.mutate(quiet_id, lambda job: job.begin_batch(2))
    await job_store.update_job(quiet_id, updated_at=utcnow() - timedelta(hours=1))

    orphans = await job_store.find_orphaned(stale_after_seconds=600)

    assert [job.job_id for job in orphans] == [quiet_id]
