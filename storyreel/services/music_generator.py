"""
Music Generation Service
Background music from a text prompt via the fal.ai queue
"""

import math
from typing import Optional

from ..config import Settings
from ..utils.exceptions import ProviderError
from ..utils.logger import get_logger
from .fal_queue import FalQueueClient

logger = get_logger()

SUPPORTED_DURATIONS = [30, 60, 120, 180]

DEFAULT_MUSIC_PROMPT = "Uplifting cinematic background score, light percussion, no vocals"


def music_duration_for(video_seconds: float) -> int:
    """Smallest supported track length covering the video (the mix loops shorter tracks)"""
    needed = math.ceil(max(video_seconds, 0))
    for duration in SUPPORTED_DURATIONS:
        if duration >= needed:
            return duration
    return SUPPORTED_DURATIONS[-1]


class MusicGenerator:
    """Generates one background track per job"""

    def __init__(self, settings: Settings, fal: FalQueueClient):
        self.model = settings.music_model
        self.fal = fal

    async def generate(self, description: Optional[str], video_seconds: float, output_path: str) -> str:
        prompt = (description or "").strip()[:300] or DEFAULT_MUSIC_PROMPT
        duration = music_duration_for(video_seconds)
        logger.info(f"Requesting {duration}s of music: \"{prompt[:60]}\"")

        result = await self.fal.run(self.model, {"prompt": prompt, "duration": duration})

        audio_url = (result.get("audio_file") or {}).get("url")
        if not audio_url:
            raise ProviderError("fal.ai", f"{self.model} returned no audio url", result=result)

        return await self.fal.download(audio_url, output_path)
