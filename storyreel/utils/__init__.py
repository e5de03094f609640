"""Utils package initialization"""
from .logger import setup_logger, get_logger
from .exceptions import (
    StoryReelError,
    ValidationError,
    IncompatibleCapabilityError,
    NotFoundError,
    ProviderError,
    APIKeyError,
    MediaProcessingError,
    StorageError,
    JobConflictError,
    InvalidTransitionError,
    is_retryable
)
from .retry import RetryPolicy, retry_async
from .ffmpeg import FFmpegRunner
from .workspace import job_workspace

__all__ = [
    "setup_logger",
    "get_logger",
    "StoryReelError",
    "ValidationError",
    "IncompatibleCapabilityError",
    "NotFoundError",
    "ProviderError",
    "APIKeyError",
    "MediaProcessingError",
    "StorageError",
    "JobConflictError",
    "InvalidTransitionError",
    "is_retryable",
    "RetryPolicy",
    "retry_async",
    "FFmpegRunner",
    "job_workspace"
]
