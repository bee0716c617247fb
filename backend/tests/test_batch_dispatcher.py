"""BatchDispatcher tests: selection, request building and the settled batch."""

import pytest

from adgen.models.job import InvalidStateTransition, JobStatus
from adgen.models.n8n import BatchUnitPayload
from adgen.services.exceptions import JobNotFoundError, ValidationError


def units(count: int) -> list[BatchUnitPayload]:
    return [
        BatchUnitPayload(
            prompt=f"Variation prompt {i}",
            seconds=15,
            n8n_metadata={
                "variant_job_id": f"parent_VARIATION_{chr(ord('A') + i)}",
                "angle_id": i + 1,
                "angle_name": f"Angle {chr(ord('A') + i)}",
            },
        )
        for i in range(count)
    ]


def test_select_units_caps_and_flags_last(services):
    selected = services.dispatcher.select_units(units(3))

    assert len(selected) == 1
    assert selected[0].n8n_metadata.is_last_video is True
    assert selected[0].prompt == "Variation prompt 0"


def test_select_units_without_cap_takes_all(services, settings):
    settings.max_videos_to_generate = -1

    selected = services.dispatcher.select_units(units(3))

    assert [u.n8n_metadata.is_last_video for u in selected] == [False, False, True]


def test_build_request_uses_batch_model_and_variant(services):
    request = services.dispatcher.build_request("parent", units(2)[1])

    assert request.model == "sora-2-pro"
    assert request.seconds == 12
    assert request.duration == "15s"
    assert request.variant == "B"
    assert request.angle_name == "Angle B"


@pytest.mark.asyncio
async def test_batch_of_three_with_cap_one(services, fake_comet):
    """Scenario: 3 payloads, MAX_VIDEOS_TO_GENERATE=1 -> one video, job completed."""
    job_id = await services.job_store.create_job({})

    result = await services.dispatcher.dispatch(job_id, units(3))
    assert result.message == "Started generation for 1 of 3 videos"

    job = await services.job_store.get_job(job_id)
    assert job.status in (JobStatus.GENERATING, JobStatus.COMPLETED)
    assert job.expected_units == 1

    await services.supervisor.drain()

    job = await services.job_store.get_job(job_id)
    assert job.status == JobStatus.COMPLETED
    assert len(job.media_outputs) == 1
    assert job.media_outputs[0]["angle_name"] == "Angle A"
    assert job.media_outputs[0]["duration"] == "15s"
    assert len(fake_comet.video_submissions) == 1


@pytest.mark.asyncio
async def test_batch_completes_only_after_every_unit(services, settings):
    settings.max_videos_to_generate = 3
    job_id = await services.job_store.create_job({})

    await services.dispatcher.dispatch(job_id, units(3))
    await services.supervisor.drain()

    job = await services.job_store.get_job(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.settled_units == 3
    assert sorted(o["variant"] for o in job.media_outputs) == ["A", "B", "C"]
    assert job.video_url in {o["url"] for o in job.media_outputs}


@pytest.mark.asyncio
async def test_empty_batch_is_rejected(services):
    job_id = await services.job_store.create_job({})

    with pytest.raises(ValidationError):
        await services.dispatcher.dispatch(job_id, [])

    job = await services.job_store.get_job(job_id)
    assert job.status == JobStatus.SUBMITTED


@pytest.mark.asyncio
async def test_unknown_parent_is_rejected(services):
    with pytest.raises(JobNotFoundError):
        await services.dispatcher.dispatch("missing", units(1))
    assert services.supervisor.active_count == 0


@pytest.mark.asyncio
async def test_finished_parent_is_rejected(services):
    job_id = await services.job_store.create_job({})
    await services.job_store.update_job(job_id, status=JobStatus.COMPLETED)

    with pytest.raises(InvalidStateTransition):
        await services.dispatcher.dispatch(job_id, units(1))
    assert services.supervisor.active_count == 0
