"""
Jobs Router
Job submission onto the durable queue and status polling.
"""

from fastapi import APIRouter, Depends, Request, status

from ..container import Services
from ..models.job import Job, JobCreate, JobError, JobPayload, JobStatus, JobStatusView, JobType
from ..models.video import Video, VideoStatus
from ..utils.exceptions import ValidationError
from ..utils.logger import get_logger

router = APIRouter(prefix="/api/jobs", tags=["jobs"])
logger = get_logger()


def get_services(request: Request) -> Services:
    return request.app.state.services


@router.post("", response_model=JobStatusView, status_code=status.HTTP_202_ACCEPTED)
async def create_job(request: JobCreate, services: Services = Depends(get_services)):
    """Create a QUEUED job for a video and put it on the queue"""
    params = request.to_params()
    # Reject bad provider settings before anything is queued
    services.registry.validate_config(request.provider_model_id, params.provider_settings())
    if request.type == JobType.UPDATE_SCENE and request.scene_number is None:
        raise ValidationError(
            "UPDATE_SCENE requires a scene number",
            field_errors=[{"field": "sceneNumber", "message": "required"}],
        )

    job = Job(
        video_id=request.video_id,
        user_id=request.user_id,
        type=request.type,
        params=params,
    )
    video = await services.store.find_video(request.video_id)
    if video is None:
        video = Video(video_id=request.video_id, user_id=request.user_id, aspect_ratio=request.aspect_ratio)
    elif video.user_id != request.user_id:
        raise ValidationError(
            f"Video {request.video_id} belongs to another user",
            field_errors=[{"field": "userId", "message": "does not own this video"}],
        )

    video = await services.store.create_job(job, video)
    try:
        await services.consumer.add(JobPayload.from_job(job))
    except Exception as e:
        # A job that never reached the queue must not hold the video
        logger.error(f"Could not enqueue job {job.job_id}: {e}")
        job.error = JobError(stage=job.stage, message=f"enqueue failed: {e}", code="ENQUEUE_FAILED")
        job.transition(JobStatus.FAILED)
        video.status = VideoStatus.FAILED
        video.record(job.job_id, job.status, job.stage, "enqueue failed")
        await services.store.save(job, video)
        raise

    logger.info(f"Queued {job.type.value} job {job.job_id} for video {job.video_id}")
    return JobStatusView.from_job(job)


@router.get("/stats/queue")
async def get_queue_stats(services: Services = Depends(get_services)):
    """Get current queue/concurrency status"""
    return await services.consumer.stats()


@router.get("/{job_id}", response_model=JobStatusView)
async def get_job_status(job_id: str, services: Services = Depends(get_services)):
    """Poll a job's status, stage, progress, error and result"""
    return await services.store.get_job_status(job_id)
