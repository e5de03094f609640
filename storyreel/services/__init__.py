"""Services package initialization"""
from .provider_registry import ProviderRegistry, PROVIDER_MODELS
from .storage import StorageGateway
from .fal_queue import FalQueueClient
from .video_providers import VideoProvider, FalVideoProvider, BedrockVideoProvider, ProviderDispatcher
from .voice_synthesizer import VoiceSynthesizer, Narration
from .music_generator import MusicGenerator
from .storyboard_planner import StoryboardPlanner
from .scene_renderer import SceneRenderer, SceneAssets, RenderedScene
from .media_stitcher import MediaStitcher
from .project_store import ProjectStore
from .job_queue import DurableJobQueue, JobQueueConsumer, QueueEntry
from .pipeline import PipelineOrchestrator

__all__ = [
    "ProviderRegistry",
    "PROVIDER_MODELS",
    "StorageGateway",
    "FalQueueClient",
    "VideoProvider",
    "FalVideoProvider",
    "BedrockVideoProvider",
    "ProviderDispatcher",
    "VoiceSynthesizer",
    "Narration",
    "MusicGenerator",
    "StoryboardPlanner",
    "SceneRenderer",
    "SceneAssets",
    "RenderedScene",
    "MediaStitcher",
    "ProjectStore",
    "DurableJobQueue",
    "JobQueueConsumer",
    "QueueEntry",
    "PipelineOrchestrator"
]
