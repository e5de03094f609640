"""Models package initialization"""
from .job import (
    Job,
    JobType,
    JobStatus,
    PipelineStage,
    JobParams,
    JobProgress,
    JobError,
    JobResult,
    SceneArtifact,
    JobCreate,
    JobPayload,
    JobStatusView
)
from .video import Video, VideoStatus, Visibility, Storyboard, Scene, WordTimestamp, HistoryEntry
from .provider import ProviderModelConfig, ProviderCapabilities, ProviderRequest

__all__ = [
    "Job", "JobType", "JobStatus", "PipelineStage", "JobParams", "JobProgress",
    "JobError", "JobResult", "SceneArtifact", "JobCreate", "JobPayload", "JobStatusView",
    "Video", "VideoStatus", "Visibility", "Storyboard", "Scene", "WordTimestamp", "HistoryEntry",
    "ProviderModelConfig", "ProviderCapabilities", "ProviderRequest"
]
