import pytest
from pydantic import ValidationError as PydanticValidationError

from storyreel.models import (
    Job,
    JobCreate,
    JobParams,
    JobPayload,
    JobStatus,
    JobType,
    PipelineStage,
    Scene,
    Storyboard,
    Video,
)
from storyreel.utils.exceptions import InvalidTransitionError, ValidationError


def _job(**kwargs) -> Job:
    return Job(video_id="v1", user_id="u1", params=JobParams(provider_model_id="kling-1.6"), **kwargs)


def test_job_lifecycle_sets_timestamps_and_terminal_stage():
    job = _job()
    assert job.status == JobStatus.QUEUED
    assert job.started_at is None

    job.transition(JobStatus.PROCESSING)
    assert job.started_at is not None

    job.transition(JobStatus.COMPLETED)
    assert job.is_terminal
    assert job.stage == PipelineStage.COMPLETED
    assert job.completed_at is not None


def test_job_cannot_leave_terminal_state():
    job = _job()
    job.transition(JobStatus.FAILED)
    assert job.stage == PipelineStage.FAILED

    with pytest.raises(InvalidTransitionError):
        job.transition(JobStatus.PROCESSING)


def test_processing_cannot_go_back_to_queued():
    job = _job()
    job.transition(JobStatus.PROCESSING)
    with pytest.raises(InvalidTransitionError):
        job.transition(JobStatus.QUEUED)


def test_stage_progress():
    job = _job()
    job.enter_stage(PipelineStage.RENDERING_SCENES)
    assert job.progress.current_step == "rendering_scenes"

    job.complete_stage(PipelineStage.RENDERING_SCENES)
    assert job.progress.percent == 25.0
    job.complete_stage(PipelineStage.UPLOADING)
    assert job.progress.completed_steps == 4
    assert job.progress.percent == 100.0


def test_reset_for_attempt_keeps_error_and_clears_result():
    job = _job()
    job.transition(JobStatus.PROCESSING)
    job.enter_stage(PipelineStage.STITCHING)
    job.complete_stage(PipelineStage.SYNTHESIZING_AUDIO)

    job.reset_for_attempt(2)
    assert job.attempts == 2
    assert job.stage == PipelineStage.QUEUED
    assert job.progress.percent == 0
    assert job.result is None


def test_job_create_accepts_camel_case_and_story_idea():
    request = JobCreate.model_validate({
        "videoId": "v1",
        "userId": "u1",
        "providerModelId": "pika-v2.2",
        "storyIdea": "A robot learns to paint",
        "maxScenes": 4,
        "aspectRatio": "9:16",
    })
    params = request.to_params()
    assert params.concept == "A robot learns to paint"
    assert params.max_scenes == 4
    assert params.aspect_ratio == "9:16"
    assert request.type == JobType.CREATE_VIDEO


def test_provider_settings_carry_the_job_aspect_ratio():
    params = JobParams(provider_model_id="kling-1.6", aspect_ratio="9:16", provider_config={"durationSeconds": 10})
    assert params.provider_settings() == {"duration": 10, "aspect_ratio": "9:16"}

    params.provider_config = {"aspectRatio": "9:16"}
    assert params.provider_settings() == {"aspect_ratio": "9:16"}


def test_provider_settings_reject_a_different_aspect_ratio():
    params = JobParams(provider_model_id="kling-1.6", aspect_ratio="16:9", provider_config={"aspect_ratio": "9:16"})
    with pytest.raises(ValidationError) as exc_info:
        params.provider_settings()
    assert exc_info.value.field_errors[0]["field"] == "providerConfig.aspect_ratio"

def test_payload_wire_format():
    job = _job(type=JobType.UPDATE_SCENE)
    job.params.scene_number = 2
    job.params.description = "A quieter shot"

    wire = JobPayload.from_job(job).to_wire()
    assert wire["jobId"] == job.job_id
    assert wire["videoId"] == "v1"
    assert wire["type"] == "UPDATE_SCENE"
    assert wire["sceneNumber"] == 2
    assert "storyIdea" not in wire

    restored = JobPayload.model_validate(wire)
    assert restored.job_id == job.job_id
    assert restored.scene_number == 2


def test_storyboard_sorts_scenes():
    board = Storyboard(scenes=[
        Scene(scene_number=2, description="b"),
        Scene(scene_number=1, description="a"),
    ])
    assert [s.description for s in board.scenes] == ["a", "b"]
    assert board.scene(2).description == "b"
    assert board.scene(3) is None


def test_storyboard_rejects_gaps_and_duplicates():
    with pytest.raises(PydanticValidationError):
        Storyboard(scenes=[Scene(scene_number=1, description="a"), Scene(scene_number=3, description="c")])
    with pytest.raises(PydanticValidationError):
        Storyboard(scenes=[Scene(scene_number=1, description="a"), Scene(scene_number=1, description="b")])


def test_scene_requires_description():
    with pytest.raises(PydanticValidationError):
        Scene(scene_number=1, description="")


def test_video_history_and_version():
    video = Video(video_id="v1", user_id="u1")
    video.record("j1", JobStatus.QUEUED, PipelineStage.QUEUED, "queued")
    assert video.processing_history[0].job_id == "j1"
    assert video.bump_version() == 1
    assert video.version == 1
