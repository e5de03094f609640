import pytest

from storyreel.models.job import Job, JobParams, JobStatus
from storyreel.models.video import Video, VideoStatus
from storyreel.services.project_store import ProjectStore
from storyreel.utils.exceptions import JobConflictError, NotFoundError


@pytest.fixture
def store(tmp_path):
    return ProjectStore(str(tmp_path / "storyreel.db"))


def _job(video_id: str = "v1") -> Job:
    return Job(video_id=video_id, user_id="u1", params=JobParams(provider_model_id="kling-1.6"))


@pytest.mark.asyncio
async def test_create_job_sets_current_job(store):
    job = _job()
    video = await store.create_job(job, Video(video_id="v1", user_id="u1"))

    assert video.current_job_id == job.job_id
    assert video.status == VideoStatus.QUEUED
    stored = await store.get_video("v1")
    assert stored.current_job_id == job.job_id
    assert stored.processing_history[-1].message == "CREATE_VIDEO queued"
    assert (await store.get_job(job.job_id)).status == JobStatus.QUEUED


@pytest.mark.asyncio
async def test_second_active_job_conflicts(store):
    first = _job()
    await store.create_job(first, Video(video_id="v1", user_id="u1"))

    with pytest.raises(JobConflictError) as exc_info:
        await store.create_job(_job(), Video(video_id="v1", user_id="u1"))
    assert exc_info.value.details["active_job_id"] == first.job_id


@pytest.mark.asyncio
async def test_new_job_allowed_after_terminal(store):
    first = _job()
    await store.create_job(first, Video(video_id="v1", user_id="u1"))
    first.transition(JobStatus.FAILED)
    await store.upsert_job(first)

    second = _job()
    video = await store.create_job(second, Video(video_id="v1", user_id="u1"))
    assert video.current_job_id == second.job_id
    assert len(video.processing_history) == 2


@pytest.mark.asyncio
async def test_missing_records(store):
    with pytest.raises(NotFoundError):
        await store.get_job("nope")
    with pytest.raises(NotFoundError):
        await store.get_video("nope")
    assert await store.find_video("nope") is None


@pytest.mark.asyncio
async def test_save_and_list(store):
    video = Video(video_id="v1", user_id="u1")
    jobs = [_job(), _job()]
    for job in jobs:
        await store.save(job, video)
    await store.upsert_job(_job("v2"))

    listed = await store.list_jobs("v1")
    assert {j.job_id for j in listed} == {j.job_id for j in jobs}
    assert len(await store.list_jobs()) == 3

    status = await store.get_job_status(jobs[0].job_id)
    assert status.job_id == jobs[0].job_id
    assert status.result is None
