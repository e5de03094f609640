"""
Pipeline Orchestrator
Runs one job through scene rendering, audio sync, stitching and upload
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Dict, Any

from ..config import Settings
from ..models.job import Job, JobStatus, JobType, PipelineStage, JobError, JobResult, SceneArtifact
from ..models.video import Video, VideoStatus, Scene, Storyboard, WordTimestamp
from ..utils.exceptions import (
    StoryReelError,
    ValidationError,
    JobConflictError,
    NotFoundError,
    is_retryable,
)
from ..utils.logger import get_logger
from ..utils.workspace import job_workspace
from .captions import offset_words
from .job_queue import QueueEntry, STALLED_ERROR
from .media_stitcher import MediaStitcher
from .music_generator import MusicGenerator
from .project_store import ProjectStore
from .provider_registry import ProviderRegistry
from .scene_renderer import SceneRenderer, RenderedScene
from .storage import StorageGateway
from .storyboard_planner import StoryboardPlanner

logger = get_logger()


@dataclass
class StitchInput:
    """A synchronized scene clip on local disk"""
    scene_number: int
    path: str
    duration: float
    words: List[WordTimestamp] = field(default_factory=list)
    rendered: Optional[RenderedScene] = None


@dataclass
class _RunState:
    """Artifacts carried between stages of one attempt"""
    workdir: Path
    scenes: List[Scene] = field(default_factory=list)
    targets: List[Scene] = field(default_factory=list)
    provider_config: Dict[str, Any] = field(default_factory=dict)
    assets: list = field(default_factory=list)
    inputs: List[StitchInput] = field(default_factory=list)
    music_path: Optional[str] = None
    final_path: Optional[str] = None
    thumbnail_path: Optional[str] = None
    final_duration: float = 0.0
    last_good_video: Optional[str] = None


class PipelineOrchestrator:
    """State machine for a single job, checkpointed to the project store after every stage"""

    def __init__(
        self,
        settings: Settings,
        store: ProjectStore,
        registry: ProviderRegistry,
        renderer: SceneRenderer,
        stitcher: MediaStitcher,
        storage: StorageGateway,
        planner: Optional[StoryboardPlanner] = None,
        music: Optional[MusicGenerator] = None
    ):
        self.settings = settings
        self.store = store
        self.registry = registry
        self.renderer = renderer
        self.stitcher = stitcher
        self.storage = storage
        self.planner = planner
        self.music = music
        self.bucket = settings.s3_bucket_name
        self.transition_type = settings.transition_type
        self.transition_duration = settings.transition_duration

    async def handle(self, entry: QueueEntry) -> None:
        """Queue consumer entry point"""
        await self.run(entry.job_id, attempt=entry.attempt, is_final_attempt=entry.is_final_attempt)

    async def fail_stalled(self, job_id: str) -> Optional[Job]:
        """Fail a job whose final delivery was lost with the process running it"""
        try:
            job = await self.store.get_job(job_id)
        except NotFoundError:
            logger.warning(f"Stalled queue entry {job_id} has no job record")
            return None
        if job.is_terminal:
            return job

        video = await self.store.get_video(job.video_id)
        job.error = JobError(
            stage=job.stage,
            message=STALLED_ERROR,
            code="STALLED",
            attempt=max(job.attempts, 1),
        )
        job.result = None
        job.transition(JobStatus.FAILED)
        if video.current_job_id == job.job_id:
            video.status = VideoStatus.FAILED
        logger.error(f"[{job_id}] {STALLED_ERROR}, marked failed")
        await self._checkpoint(job, video, f"failed: {STALLED_ERROR}")
        return job

    async def run(self, job_id: str, attempt: int = 1, is_final_attempt: bool = True) -> Job:
        """
        Execute every stage of a job from scratch

        A failed attempt that will be retried keeps the job PROCESSING with
        the error recorded; the final attempt (or a non-retryable error)
        moves it to FAILED. The error is re-raised so the queue can decide.
        """
        job = await self.store.get_job(job_id)
        if job.is_terminal:
            logger.warning(f"Job {job_id} is already {job.status.value}, skipping redelivery")
            return job

        video = await self.store.get_video(job.video_id)
        if video.current_job_id != job.job_id:
            conflict = JobConflictError(video.video_id, video.current_job_id)
            job.error = self._error_for(job, conflict, attempt)
            job.transition(JobStatus.FAILED)
            await self.store.upsert_job(job)
            raise conflict

        job.reset_for_attempt(attempt)
        job.transition(JobStatus.PROCESSING)
        video.status = VideoStatus.PROCESSING
        await self._checkpoint(job, video, f"attempt {attempt} started")

        async with job_workspace(self.settings.temp_dir, job.job_id) as workdir:
            state = _RunState(workdir=workdir)
            try:
                await self._render_scenes(job, video, state)
                await self._synthesize_audio(job, video, state)
                await self._stitch(job, video, state)
                await self._upload(job, video, state)
            except Exception as exc:
                final = is_final_attempt or not is_retryable(exc)
                await self._record_failure(job, video, state, exc, attempt, final)
                raise

        return job

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _render_scenes(self, job: Job, video: Video, state: _RunState):
        job.enter_stage(PipelineStage.RENDERING_SCENES)
        await self._checkpoint(job, video)
        params = job.params

        # Validate before any provider call
        state.provider_config = self.registry.validate_config(params.provider_model_id, params.provider_settings())

        await self._prepare_storyboard(job, video)
        video.aspect_ratio = params.aspect_ratio
        state.scenes = list(video.storyboard.scenes)

        if job.type == JobType.UPDATE_SCENE:
            state.targets = [video.storyboard.scene(params.scene_number)]
            missing = [
                s.scene_number for s in state.scenes
                if s.scene_number != params.scene_number and (not s.synced_path or s.duration is None)
            ]
            if missing:
                raise ValidationError(
                    f"Scenes {missing} have never been rendered, regenerate the whole video instead",
                    field_errors=[{"field": "type", "message": "UPDATE_SCENE needs previously rendered scenes"}],
                )
        else:
            state.targets = list(state.scenes)

        logger.info(f"[{job.job_id}] rendering {len(state.targets)} of {len(state.scenes)} scene(s) with {params.provider_model_id}")
        state.assets = await self.renderer.generate_all(
            state.targets,
            job_id=job.job_id,
            provider_model_id=params.provider_model_id,
            provider_config=state.provider_config,
            voice_id=params.voice_id,
            workdir=state.workdir,
            user_id=job.user_id,
            video_id=job.video_id,
            attempt=job.attempts,
        )

        job.complete_stage(PipelineStage.RENDERING_SCENES)
        await self._checkpoint(job, video)

    async def _prepare_storyboard(self, job: Job, video: Video):
        params = job.params

        if job.type == JobType.UPDATE_SCENE:
            if params.scene_number is None:
                raise ValidationError(
                    "UPDATE_SCENE requires a scene number",
                    field_errors=[{"field": "scene_number", "message": "required"}],
                )
            scene = video.storyboard.scene(params.scene_number)
            if scene is None:
                raise ValidationError(
                    f"Video {video.video_id} has no scene {params.scene_number}",
                    field_errors=[{"field": "scene_number", "message": "unknown scene"}],
                )
            if params.description:
                scene.description = params.description
            if params.voiceover is not None:
                scene.voiceover = params.voiceover
            return

        if video.storyboard.scenes:
            return

        if not params.concept:
            raise ValidationError(
                f"Video {video.video_id} has no storyboard and no concept was given",
                field_errors=[{"field": "concept", "message": "required when the video has no scenes"}],
            )
        if self.planner is None:
            raise ValidationError("Storyboard planning is not configured")

        max_scenes = min(params.max_scenes, self.settings.max_scenes_limit)
        storyboard: Storyboard = await self.planner.plan(params.concept, max_scenes)
        video.storyboard = storyboard

    async def _synthesize_audio(self, job: Job, video: Video, state: _RunState):
        job.enter_stage(PipelineStage.SYNTHESIZING_AUDIO)
        await self._checkpoint(job, video)

        rendered = await self.renderer.synchronize_all(state.assets, aspect_ratio=video.aspect_ratio)
        by_number = {r.scene_number: r for r in rendered}

        inputs: List[StitchInput] = []
        for scene in state.scenes:
            r = by_number.get(scene.scene_number)
            if r is not None:
                inputs.append(StitchInput(scene.scene_number, r.synced_path, r.duration, r.words, rendered=r))
                continue

            # Untouched scene of an UPDATE_SCENE job
            local = state.workdir / f"scene-{scene.scene_number}" / "synced.mp4"
            await self.storage.download(self.bucket, scene.synced_path, str(local))
            inputs.append(StitchInput(scene.scene_number, str(local), scene.duration, list(scene.words)))

        state.inputs = inputs

        if self.music is not None and self.settings.enable_background_music:
            total = self._timeline_length([i.duration for i in inputs])
            state.music_path = await self.music.generate(
                video.storyboard.music_description,
                total,
                str(state.workdir / "music.wav"),
            )

        job.complete_stage(PipelineStage.SYNTHESIZING_AUDIO)
        await self._checkpoint(job, video)

    async def _stitch(self, job: Job, video: Video, state: _RunState):
        job.enter_stage(PipelineStage.STITCHING)
        await self._checkpoint(job, video)
        workdir = state.workdir
        transition = self._transition_for(len(state.inputs))

        current = await self.stitcher.combine_videos(
            [i.path for i in state.inputs],
            str(workdir / "combined.mp4"),
            transition=self.transition_type,
            duration=transition,
        )
        state.last_good_video = current

        if state.music_path:
            current = await self.stitcher.add_music(current, state.music_path, str(workdir / "with_music.mp4"))
            state.last_good_video = current

        words = offset_words(
            [i.words for i in state.inputs],
            [i.duration for i in state.inputs],
            transition,
        )
        current = await self.stitcher.burn_subtitles(current, words, str(workdir / "final.mp4"))
        state.last_good_video = current

        state.thumbnail_path = await self.stitcher.extract_thumbnail(
            current,
            str(workdir / "thumbnail.jpg"),
            timestamp=self.settings.thumbnail_timestamp,
            aspect_ratio=video.aspect_ratio,
        )
        state.final_path = current
        state.final_duration = await self.stitcher.runner.probe_duration(current)

        job.complete_stage(PipelineStage.STITCHING)
        await self._checkpoint(job, video)

    async def _upload(self, job: Job, video: Video, state: _RunState):
        job.enter_stage(PipelineStage.UPLOADING)
        await self._checkpoint(job, video)

        version = video.version + 1
        base = self._key_prefix(video)

        artifacts: List[SceneArtifact] = []
        for item in state.inputs:
            scene = video.storyboard.scene(item.scene_number)
            if item.rendered is not None:
                scene_prefix = f"{base}/scenes/scene-{item.scene_number}"
                r = item.rendered
                video_url = await self.storage.upload(r.video_path, self.bucket, f"{scene_prefix}/video.mp4")
                audio_url = await self.storage.upload(r.audio_path, self.bucket, f"{scene_prefix}/audio.mp3")
                synced_url = await self.storage.upload(r.synced_path, self.bucket, f"{scene_prefix}/synced.mp4")

                scene.video_path = f"{scene_prefix}/video.mp4"
                scene.audio_path = f"{scene_prefix}/audio.mp3"
                scene.synced_path = f"{scene_prefix}/synced.mp4"
                scene.duration = r.duration
                scene.words = list(r.words)
                scene.version += 1
            else:
                video_url = self.storage.url_for(self.bucket, scene.video_path) if scene.video_path else None
                audio_url = self.storage.url_for(self.bucket, scene.audio_path) if scene.audio_path else None
                synced_url = self.storage.url_for(self.bucket, scene.synced_path)

            artifacts.append(SceneArtifact(
                scene_number=item.scene_number,
                duration=item.duration,
                video_url=video_url,
                audio_url=audio_url,
                synced_url=synced_url,
            ))

        video_key = f"{base}/final_v{version}.mp4"
        thumbnail_key = f"{base}/thumbnail_v{version}.jpg"
        video_url = await self.storage.upload(state.final_path, self.bucket, video_key)
        thumbnail_url = await self.storage.upload(state.thumbnail_path, self.bucket, thumbnail_key)

        result = JobResult(
            video_url=video_url,
            video_key=video_key,
            thumbnail_url=thumbnail_url,
            thumbnail_key=thumbnail_key,
            duration=state.final_duration,
            version=version,
            scenes=artifacts,
        )

        job.complete_stage(PipelineStage.UPLOADING)
        job.result = result
        job.error = None
        job.transition(JobStatus.COMPLETED)

        video.bump_version()
        video.result = result
        video.status = VideoStatus.COMPLETED
        await self._checkpoint(job, video, f"completed v{version}")
        logger.info(f"[{job.job_id}] completed: {video_url} ({state.final_duration:.2f}s)")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _transition_for(self, clip_count: int) -> float:
        return self.transition_duration if clip_count > 1 else 0.0

    def _timeline_length(self, durations: List[float]) -> float:
        overlap = self._transition_for(len(durations))
        return sum(durations) - max(0, len(durations) - 1) * overlap

    @staticmethod
    def _key_prefix(video: Video) -> str:
        return f"users/{video.user_id}/videos/{video.video_id}"

    async def _checkpoint(self, job: Job, video: Video, message: str = ""):
        video.record(job.job_id, job.status, job.stage, message)
        await self.store.save(job, video)

    @staticmethod
    def _error_for(job: Job, exc: BaseException, attempt: int) -> JobError:
        if isinstance(exc, StoryReelError):
            return JobError(
                stage=job.stage,
                message=exc.message,
                code=exc.code,
                attempt=attempt,
                details=dict(exc.details),
            )
        return JobError(
            stage=job.stage,
            message=str(exc) or exc.__class__.__name__,
            code="INTERNAL_ERROR",
            attempt=attempt,
            details={"type": exc.__class__.__name__},
        )

    async def _record_failure(
        self,
        job: Job,
        video: Video,
        state: _RunState,
        exc: BaseException,
        attempt: int,
        final: bool
    ):
        error = self._error_for(job, exc, attempt)
        failed_stage = job.stage
        logger.error(f"[{job.job_id}] failed at {failed_stage.value} (attempt {attempt}): {error.message}")

        if (
            self.settings.persist_partial_output
            and failed_stage == PipelineStage.STITCHING
            and state.last_good_video
        ):
            partial_key = f"{self._key_prefix(video)}/partial/{job.job_id}_attempt{attempt}.mp4"
            try:
                error.details["partial_url"] = await self.storage.upload(
                    state.last_good_video, self.bucket, partial_key
                )
                error.details["partial_key"] = partial_key
            except StoryReelError as upload_error:
                logger.warning(f"[{job.job_id}] could not store partial output: {upload_error.message}")

        job.error = error
        job.result = None

        if final:
            job.transition(JobStatus.FAILED)
            video.status = VideoStatus.FAILED
            await self._checkpoint(job, video, f"failed at {failed_stage.value}: {error.message}")
        else:
            await self._checkpoint(job, video, f"attempt {attempt} failed at {failed_stage.value}: {error.message}")
