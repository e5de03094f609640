"""
Custom Exceptions for StoryReel
Structured error handling with recovery hints
"""

from typing import Optional, Dict, Any, List


class StoryReelError(Exception):
    """Base exception for all StoryReel errors"""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        recoverable: bool = False,
        recovery_hint: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.recoverable = recoverable
        self.recovery_hint = recovery_hint
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to JSON-serializable dict"""
        return {
            "error": self.code,
            "message": self.message,
            "recoverable": self.recoverable,
            "recovery_hint": self.recovery_hint,
            "details": self.details
        }


# ============================================================================
# Configuration Errors
# ============================================================================

class ValidationError(StoryReelError):
    """Provider configuration failed schema validation"""

    def __init__(
        self,
        message: str,
        field_errors: Optional[List[Dict[str, str]]] = None,
        code: str = "VALIDATION_ERROR",
        **kwargs
    ):
        super().__init__(
            message=message,
            code=code,
            recoverable=False,
            recovery_hint="Fix the listed fields and submit the job again.",
            details={"fields": field_errors or [], **kwargs}
        )
        self.field_errors = field_errors or []


class IncompatibleCapabilityError(ValidationError):
    """Provider cannot satisfy the requested aspect ratio or duration"""

    def __init__(self, model_id: str, capability: str, requested: Any, supported: list):
        super().__init__(
            message=(
                f"Model '{model_id}' does not support {capability} {requested!r} "
                f"(supported: {', '.join(str(s) for s in supported)})"
            ),
            field_errors=[{
                "field": capability,
                "message": f"unsupported value {requested!r}",
            }],
            code="INCOMPATIBLE_CAPABILITY",
            model_id=model_id,
            requested=requested,
            supported=supported,
        )


class NotFoundError(StoryReelError):
    """Unknown provider model, job, video or missing storage artifact"""

    def __init__(self, kind: str, identifier: str, **kwargs):
        super().__init__(
            message=f"{kind} not found: {identifier}",
            code="NOT_FOUND",
            recoverable=False,
            details={"kind": kind, "id": identifier, **kwargs}
        )


# ============================================================================
# Generation Errors
# ============================================================================

class ProviderError(StoryReelError):
    """External generation or synthesis API failure or timeout"""

    def __init__(self, provider: str, message: str, **kwargs):
        super().__init__(
            message=f"{provider}: {message}",
            code="PROVIDER_ERROR",
            recoverable=True,
            recovery_hint=f"Check the {provider} credentials and quota. The job will be retried.",
            details={"provider": provider, **kwargs}
        )


class APIKeyError(ProviderError):
    """Missing API key for a generation backend"""

    def __init__(self, service: str):
        super().__init__(
            service,
            "API key is missing or invalid",
        )
        self.code = "API_KEY_ERROR"
        self.recoverable = False
        self.recovery_hint = f"Configure the {service} API key in the .env file."


# ============================================================================
# Media Errors
# ============================================================================

class MediaProcessingError(StoryReelError):
    """Transcoding, stitching, mixing or caption failure"""

    def __init__(
        self,
        message: str,
        step: Optional[str] = None,
        command: Optional[str] = None,
        stderr: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message=message,
            code="MEDIA_PROCESSING_ERROR",
            recoverable=True,
            recovery_hint="Ensure FFmpeg is installed and in PATH and there's enough disk space.",
            details={
                "step": step,
                "command": command,
                "stderr": stderr[-500:] if stderr else None,
                **kwargs
            }
        )


# ============================================================================
# Storage Errors
# ============================================================================

class StorageError(StoryReelError):
    """Object store I/O failure"""

    def __init__(self, message: str, bucket: Optional[str] = None, key: Optional[str] = None):
        super().__init__(
            message=message,
            code="STORAGE_ERROR",
            recoverable=True,
            recovery_hint="Check AWS credentials and bucket permissions.",
            details={"bucket": bucket, "key": key}
        )


# ============================================================================
# Job Processing Errors
# ============================================================================

class JobConflictError(StoryReelError):
    """Another job already owns the video"""

    def __init__(self, video_id: str, active_job_id: Optional[str]):
        super().__init__(
            message=f"Video {video_id} is owned by job {active_job_id}",
            code="JOB_CONFLICT",
            recoverable=False,
            recovery_hint="Wait for the active job to finish before submitting another.",
            details={"video_id": video_id, "active_job_id": active_job_id}
        )


class InvalidTransitionError(StoryReelError):
    """Job status would move backwards"""

    def __init__(self, job_id: str, current: str, requested: str):
        super().__init__(
            message=f"Job {job_id} cannot move from {current} to {requested}",
            code="INVALID_TRANSITION",
            recoverable=False,
            details={"job_id": job_id, "from": current, "to": requested}
        )


def is_retryable(exc: BaseException) -> bool:
    """Unknown errors are retried; StoryReel errors only when recoverable"""
    if isinstance(exc, StoryReelError):
        return exc.recoverable
    return True
