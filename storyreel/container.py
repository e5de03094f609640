"""
Service Container
Builds every client and service once at start-up and wires them together
"""

from dataclasses import dataclass
from pathlib import Path

from .config import Settings
from .services.captions import CaptionStyle
from .services.fal_queue import FalQueueClient
from .services.job_queue import DurableJobQueue, JobQueueConsumer, StalledRecovery
from .services.media_stitcher import MediaStitcher
from .services.music_generator import MusicGenerator
from .services.pipeline import PipelineOrchestrator
from .services.project_store import ProjectStore
from .services.provider_registry import ProviderRegistry
from .services.scene_renderer import SceneRenderer
from .services.storage import StorageGateway
from .services.storyboard_planner import StoryboardPlanner
from .services.video_providers import ProviderDispatcher, FalVideoProvider, BedrockVideoProvider
from .services.voice_synthesizer import VoiceSynthesizer
from .utils.ffmpeg import FFmpegRunner
from .utils.retry import RetryPolicy


@dataclass
class Services:
    settings: Settings
    runner: FFmpegRunner
    registry: ProviderRegistry
    storage: StorageGateway
    fal: FalQueueClient
    store: ProjectStore
    queue: DurableJobQueue
    orchestrator: PipelineOrchestrator
    consumer: JobQueueConsumer

    async def recover(self) -> StalledRecovery:
        """Requeue deliveries a dead process left active and fail jobs that were on their last attempt"""
        recovery = await self.queue.recover_stalled()
        for job_id in recovery.dead_lettered:
            await self.orchestrator.fail_stalled(job_id)
        return recovery

    async def close(self):
        await self.consumer.stop()
        await self.fal.close()


def build_services(settings: Settings) -> Services:
    """Construct the object graph. No network calls happen here."""
    data_dir = Path(settings.data_dir)

    runner = FFmpegRunner()
    registry = ProviderRegistry()
    storage = StorageGateway(settings)
    fal = FalQueueClient(settings)

    dispatcher = ProviderDispatcher(registry, {
        "fal": FalVideoProvider(fal),
        "amazon": BedrockVideoProvider(settings, storage),
    })
    renderer = SceneRenderer(
        dispatcher,
        VoiceSynthesizer(settings, runner),
        runner,
        fps=settings.output_fps,
        concurrency=settings.scene_concurrency,
    )
    stitcher = MediaStitcher(
        runner,
        fps=settings.output_fps,
        caption_style=CaptionStyle.from_settings(settings),
        caption_batch_size=settings.caption_batch_size,
        music_volume=settings.music_volume,
        voice_volume=settings.voice_volume,
    )

    store = ProjectStore(str(data_dir / "storyreel.db"))
    queue = DurableJobQueue(
        str(data_dir / "queue.db"),
        name=settings.queue_name,
        remove_on_complete=settings.queue_remove_on_complete,
        remove_on_fail=settings.queue_remove_on_fail,
    )

    orchestrator = PipelineOrchestrator(
        settings,
        store,
        registry,
        renderer,
        stitcher,
        storage,
        planner=StoryboardPlanner(settings),
        music=MusicGenerator(settings, fal),
    )
    consumer = JobQueueConsumer(
        queue,
        orchestrator.handle,
        RetryPolicy(
            max_attempts=settings.job_max_attempts,
            base_delay=settings.job_backoff_base_seconds,
            multiplier=settings.job_backoff_multiplier,
        ),
        concurrency=settings.job_worker_concurrency,
        poll_interval=settings.queue_poll_interval,
    )

    return Services(
        settings=settings,
        runner=runner,
        registry=registry,
        storage=storage,
        fal=fal,
        store=store,
        queue=queue,
        orchestrator=orchestrator,
        consumer=consumer,
    )
