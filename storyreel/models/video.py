"""
Video Data Models
Project document, storyboard and scenes
"""

from pydantic import BaseModel, Field, model_validator
from typing import Optional, List
from enum import Enum
from datetime import datetime
import uuid

from .job import JobStatus, PipelineStage, JobResult, utcnow


class Visibility(str, Enum):
    PRIVATE = "private"
    UNLISTED = "unlisted"
    PUBLIC = "public"


class VideoStatus(str, Enum):
    """Mirrors the state of the video's current job"""
    DRAFT = "draft"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class WordTimestamp(BaseModel):
    """One caption word with start/end seconds"""
    word: str
    start: float = Field(..., ge=0)
    end: float = Field(..., ge=0)


class Scene(BaseModel):
    """One storyboard scene and its rendered artifacts"""
    scene_number: int = Field(..., ge=1)
    description: str = Field(..., min_length=1, description="Visual prompt")
    voiceover: str = Field(default="", description="Narration text")
    duration: Optional[float] = None
    video_path: Optional[str] = None
    audio_path: Optional[str] = None
    synced_path: Optional[str] = None
    words: List[WordTimestamp] = Field(default_factory=list)
    version: int = 0


class Storyboard(BaseModel):
    """Ordered scene list plus the creative brief"""
    title: str = ""
    tags: List[str] = Field(default_factory=list)
    music_description: str = ""
    visual_style: str = ""
    scenes: List[Scene] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_scene_numbers(self):
        self.scenes.sort(key=lambda s: s.scene_number)
        numbers = [s.scene_number for s in self.scenes]
        if numbers != list(range(1, len(numbers) + 1)):
            raise ValueError(
                f"scene numbers must be unique and contiguous from 1, got {numbers}"
            )
        return self

    def scene(self, scene_number: int) -> Optional[Scene]:
        for scene in self.scenes:
            if scene.scene_number == scene_number:
                return scene
        return None


class HistoryEntry(BaseModel):
    """Append-only record of a job transition on a video"""
    job_id: str
    status: JobStatus
    stage: PipelineStage
    message: str = ""
    at: datetime = Field(default_factory=utcnow)


class Video(BaseModel):
    """Project document"""
    video_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    visibility: Visibility = Visibility.PRIVATE
    version: int = 0
    status: VideoStatus = VideoStatus.DRAFT
    aspect_ratio: str = "16:9"
    storyboard: Storyboard = Field(default_factory=Storyboard)
    current_job_id: Optional[str] = None
    processing_history: List[HistoryEntry] = Field(default_factory=list)
    result: Optional[JobResult] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def record(self, job_id: str, status: JobStatus, stage: PipelineStage, message: str = "") -> None:
        self.processing_history.append(
            HistoryEntry(job_id=job_id, status=status, stage=stage, message=message)
        )
        self.updated_at = utcnow()

    def bump_version(self) -> int:
        self.version += 1
        return self.version
