"""
Scene Renderer
Generates a clip and narration per scene and synchronizes them into one track
"""

import asyncio
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Dict, Any, Sequence

from ..models.provider import ProviderRequest
from ..models.video import Scene, WordTimestamp
from ..utils.ffmpeg import FFmpegRunner
from ..utils.logger import get_logger
from .media_stitcher import frame_size_for
from .video_providers import ProviderDispatcher
from .voice_synthesizer import VoiceSynthesizer, Narration

logger = get_logger()


def slowdown_factor(audio_duration: float, video_duration: float) -> float:
    """
    PTS multiplier applied to the video

    Stretch-only: the video is slowed down to the narration length when the
    narration is longer, and never sped up or trimmed otherwise.
    """
    if video_duration <= 0:
        raise ValueError(f"video duration must be positive, got {video_duration}")
    factor = audio_duration / video_duration
    return factor if factor > 1 else 1.0


@dataclass
class SceneAssets:
    """Raw generation output for one scene"""
    scene_number: int
    video_path: str
    video_duration: float
    narration: Narration


@dataclass
class RenderedScene:
    """Synchronized scene ready for stitching"""
    scene_number: int
    video_path: str
    audio_path: str
    synced_path: str
    duration: float
    factor: float = 1.0
    words: List[WordTimestamp] = field(default_factory=list)


class SceneRenderer:
    """Per-scene generation and audio/video synchronization"""

    def __init__(
        self,
        dispatcher: ProviderDispatcher,
        synthesizer: VoiceSynthesizer,
        runner: FFmpegRunner,
        fps: int = 24,
        concurrency: int = 4
    ):
        self.dispatcher = dispatcher
        self.synthesizer = synthesizer
        self.runner = runner
        self.fps = fps
        self.concurrency = concurrency

    async def generate(
        self,
        scene: Scene,
        job_id: str,
        provider_model_id: str,
        provider_config: Dict[str, Any],
        voice_id: Optional[str],
        workdir: Path,
        *,
        user_id: str,
        video_id: str,
        attempt: int = 1
    ) -> SceneAssets:
        """Request the clip and the narration concurrently"""
        scene_dir = Path(workdir) / f"scene-{scene.scene_number}"
        scene_dir.mkdir(parents=True, exist_ok=True)

        request = ProviderRequest(
            provider_model_id=provider_model_id,
            prompt=scene.description,
            config=provider_config,
            job_id=job_id,
            user_id=user_id,
            video_id=video_id,
            scene_number=scene.scene_number,
            attempt=attempt,
        )

        video_path, narration = await asyncio.gather(
            self.dispatcher.generate_clip(request, str(scene_dir / "video.mp4")),
            self.synthesizer.synthesize(scene.voiceover, voice_id, str(scene_dir / "audio.mp3")),
        )
        video_duration = await self.runner.probe_duration(video_path, stream="v")

        logger.info(
            f"[{job_id}] scene {scene.scene_number} generated: "
            f"video {video_duration:.2f}s, narration {narration.duration:.2f}s"
        )
        return SceneAssets(
            scene_number=scene.scene_number,
            video_path=video_path,
            video_duration=video_duration,
            narration=narration,
        )

    async def generate_all(
        self,
        scenes: Sequence[Scene],
        job_id: str,
        provider_model_id: str,
        provider_config: Dict[str, Any],
        voice_id: Optional[str],
        workdir: Path,
        *,
        user_id: str,
        video_id: str,
        attempt: int = 1
    ) -> List[SceneAssets]:
        """Generate every scene, at most `concurrency` at a time, in scene order"""
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _bounded(scene: Scene) -> SceneAssets:
            async with semaphore:
                return await self.generate(
                    scene, job_id, provider_model_id, provider_config, voice_id, workdir,
                    user_id=user_id, video_id=video_id, attempt=attempt,
                )

        assets = await asyncio.gather(*(_bounded(s) for s in scenes))
        return sorted(assets, key=lambda a: a.scene_number)

    async def synchronize(self, assets: SceneAssets, output_path: str, aspect_ratio: str = "16:9") -> RenderedScene:
        """
        Fit video and narration to one duration

        The video is slowed down when the narration is longer, then the
        narration is padded with silence to the video length. Output is
        re-encoded at a fixed frame rate and the scene duration is probed
        from the result.
        """
        factor = slowdown_factor(assets.narration.duration, assets.video_duration)
        target = assets.video_duration * factor
        width, height = frame_size_for(aspect_ratio)

        filter_complex = (
            f"[0:v]setpts={factor:.6f}*PTS,"
            f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
            f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2,setsar=1,"
            f"fps={self.fps},format=yuv420p[v];"
            f"[1:a]aresample=44100,apad[a]"
        )

        await self.runner.run(
            [
                "-i", assets.video_path,
                "-i", assets.narration.audio_path,
                "-filter_complex", filter_complex,
                "-map", "[v]", "-map", "[a]",
                "-t", f"{target:.3f}",
                "-r", str(self.fps),
                "-c:v", "libx264", "-preset", "medium", "-crf", "23", "-pix_fmt", "yuv420p",
                "-c:a", "aac", "-ar", "44100", "-ac", "2",
                output_path
            ],
            step=f"scene {assets.scene_number} sync",
            duration=target
        )

        duration = await self.runner.probe_duration(output_path, stream="v")
        logger.info(
            f"Scene {assets.scene_number} synchronized: factor {factor:.3f}, "
            f"{duration:.2f}s -> {os.path.basename(output_path)}"
        )
        return RenderedScene(
            scene_number=assets.scene_number,
            video_path=assets.video_path,
            audio_path=assets.narration.audio_path,
            synced_path=output_path,
            duration=duration,
            factor=factor,
            words=list(assets.narration.words),
        )

    async def synchronize_all(self, assets: Sequence[SceneAssets], aspect_ratio: str = "16:9") -> List[RenderedScene]:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _bounded(item: SceneAssets) -> RenderedScene:
            out = str(Path(item.video_path).parent / "synced.mp4")
            async with semaphore:
                return await self.synchronize(item, out, aspect_ratio)

        rendered = await asyncio.gather(*(_bounded(a) for a in assets))
        return sorted(rendered, key=lambda r: r.scene_number)
