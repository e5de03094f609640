"""
Job Data Models
Represents one unit of pipeline work and its wire payload
"""

from pydantic import BaseModel, Field, ConfigDict, AliasChoices
from typing import Optional, List, Dict, Any
from enum import Enum
from datetime import datetime, timezone
import uuid

from ..utils.exceptions import InvalidTransitionError, ValidationError
from .provider import normalize_provider_config


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobType(str, Enum):
    """Kind of work a job performs on a video"""
    CREATE_VIDEO = "CREATE_VIDEO"
    UPDATE_SCENE = "UPDATE_SCENE"
    REGENERATE_VIDEO = "REGENERATE_VIDEO"


class JobStatus(str, Enum):
    """Job processing status"""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class PipelineStage(str, Enum):
    """Pipeline stage the job is in or failed at"""
    QUEUED = "queued"
    RENDERING_SCENES = "rendering_scenes"
    SYNTHESIZING_AUDIO = "synthesizing_audio"
    STITCHING = "stitching"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"


# Working stages in execution order
WORKING_STAGES = [
    PipelineStage.RENDERING_SCENES,
    PipelineStage.SYNTHESIZING_AUDIO,
    PipelineStage.STITCHING,
    PipelineStage.UPLOADING,
]

_ALLOWED_TRANSITIONS = {
    JobStatus.QUEUED: {JobStatus.QUEUED, JobStatus.PROCESSING, JobStatus.FAILED},
    JobStatus.PROCESSING: {JobStatus.PROCESSING, JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


class JobParams(BaseModel):
    """Parameters a job was submitted with"""
    provider_model_id: str = Field(..., description="Registered provider model id")
    voice_id: Optional[str] = Field(None, description="ElevenLabs voice id")
    max_scenes: int = Field(default=5, ge=1, le=30)
    aspect_ratio: str = Field(default="16:9")
    concept: Optional[str] = Field(None, description="Story idea for storyboard breakdown")
    provider_config: Dict[str, Any] = Field(default_factory=dict)
    # UPDATE_SCENE only
    scene_number: Optional[int] = Field(None, ge=1)
    description: Optional[str] = None
    voiceover: Optional[str] = None

    def provider_settings(self) -> Dict[str, Any]:
        """
        Provider config carrying the job's aspect ratio

        Raises:
            ValidationError: the provider config asks for a different aspect ratio
        """
        config = normalize_provider_config(self.provider_config)
        requested = config.get("aspect_ratio")
        if requested is not None and requested != self.aspect_ratio:
            raise ValidationError(
                f"providerConfig aspect ratio {requested} conflicts with aspectRatio {self.aspect_ratio}",
                field_errors=[{"field": "providerConfig.aspect_ratio", "message": f"must match aspectRatio {self.aspect_ratio}"}],
            )
        config["aspect_ratio"] = self.aspect_ratio
        return config


class JobProgress(BaseModel):
    current_step: str = PipelineStage.QUEUED.value
    completed_steps: int = 0
    total_steps: int = len(WORKING_STAGES)
    percent: float = Field(default=0.0, ge=0, le=100)


class JobError(BaseModel):
    """Failure recorded on a job, with the stage it happened in"""
    stage: PipelineStage
    message: str
    code: str = "UNKNOWN_ERROR"
    attempt: int = 1
    details: Dict[str, Any] = Field(default_factory=dict)


class SceneArtifact(BaseModel):
    scene_number: int
    duration: float
    video_url: Optional[str] = None
    audio_url: Optional[str] = None
    synced_url: Optional[str] = None


class JobResult(BaseModel):
    """Output of a fully completed run"""
    video_url: str
    video_key: str
    thumbnail_url: Optional[str] = None
    thumbnail_key: Optional[str] = None
    duration: float
    version: int
    scenes: List[SceneArtifact] = Field(default_factory=list)


class Job(BaseModel):
    """Complete job model with all fields"""
    job_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    video_id: str
    user_id: str
    type: JobType = JobType.CREATE_VIDEO
    status: JobStatus = JobStatus.QUEUED
    stage: PipelineStage = PipelineStage.QUEUED
    params: JobParams
    progress: JobProgress = Field(default_factory=JobProgress)
    error: Optional[JobError] = None
    result: Optional[JobResult] = None
    attempts: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)

    def transition(self, status: JobStatus) -> None:
        """
        Move to `status`, refusing backward moves

        Raises:
            InvalidTransitionError: status would leave a terminal state or go back to QUEUED
        """
        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(self.job_id, self.status.value, status.value)

        now = utcnow()
        if status == JobStatus.PROCESSING and self.started_at is None:
            self.started_at = now
        if status in (JobStatus.COMPLETED, JobStatus.FAILED):
            self.completed_at = now
            self.stage = PipelineStage.COMPLETED if status == JobStatus.COMPLETED else PipelineStage.FAILED
        self.status = status
        self.updated_at = now

    def enter_stage(self, stage: PipelineStage) -> None:
        """Record the stage being worked on and recompute progress"""
        self.stage = stage
        self.progress.current_step = stage.value
        self.updated_at = utcnow()

    def complete_stage(self, stage: PipelineStage) -> None:
        completed = WORKING_STAGES.index(stage) + 1
        self.progress.completed_steps = completed
        self.progress.percent = round(completed / self.progress.total_steps * 100, 2)
        self.updated_at = utcnow()

    def reset_for_attempt(self, attempt: int) -> None:
        """Start a delivery from scratch, keeping the last error for inspection"""
        self.attempts = attempt
        self.stage = PipelineStage.QUEUED
        self.progress = JobProgress()
        self.result = None
        self.updated_at = utcnow()


class JobCreate(BaseModel):
    """Request model for submitting a job (camelCase on the wire)"""
    model_config = ConfigDict(populate_by_name=True)

    video_id: str = Field(..., alias="videoId")
    user_id: str = Field(..., alias="userId")
    type: JobType = Field(default=JobType.CREATE_VIDEO)
    concept: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("storyIdea", "concept"),
        serialization_alias="storyIdea"
    )
    max_scenes: int = Field(default=5, ge=1, le=30, alias="maxScenes")
    voice_id: Optional[str] = Field(None, alias="voiceId")
    provider_model_id: str = Field(..., alias="providerModelId")
    aspect_ratio: str = Field(default="16:9", alias="aspectRatio")
    provider_config: Dict[str, Any] = Field(default_factory=dict, alias="providerConfig")
    scene_number: Optional[int] = Field(None, ge=1, alias="sceneNumber")
    description: Optional[str] = None
    voiceover: Optional[str] = None

    def to_params(self) -> JobParams:
        return JobParams(
            provider_model_id=self.provider_model_id,
            voice_id=self.voice_id,
            max_scenes=self.max_scenes,
            aspect_ratio=self.aspect_ratio,
            concept=self.concept,
            provider_config=dict(self.provider_config),
            scene_number=self.scene_number,
            description=self.description,
            voiceover=self.voiceover,
        )


class JobPayload(JobCreate):
    """Durable queue message"""
    job_id: str = Field(..., alias="jobId")

    @classmethod
    def from_job(cls, job: Job) -> "JobPayload":
        return cls(
            job_id=job.job_id,
            video_id=job.video_id,
            user_id=job.user_id,
            type=job.type,
            concept=job.params.concept,
            max_scenes=job.params.max_scenes,
            voice_id=job.params.voice_id,
            provider_model_id=job.params.provider_model_id,
            aspect_ratio=job.params.aspect_ratio,
            provider_config=job.params.provider_config,
            scene_number=job.params.scene_number,
            description=job.params.description,
            voiceover=job.params.voiceover,
        )

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class JobStatusView(BaseModel):
    """Status polling response"""
    job_id: str
    status: JobStatus
    stage: PipelineStage
    progress: JobProgress
    attempts: int = 0
    error: Optional[JobError] = None
    result: Optional[JobResult] = None

    @classmethod
    def from_job(cls, job: Job) -> "JobStatusView":
        return cls(
            job_id=job.job_id,
            status=job.status,
            stage=job.stage,
            progress=job.progress,
            attempts=job.attempts,
            error=job.error,
            result=job.result,
        )
