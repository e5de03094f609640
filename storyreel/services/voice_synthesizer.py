"""
Voice Synthesis Service
ElevenLabs narration with character alignment converted to word timestamps
"""

import asyncio
import base64
import os
from dataclasses import dataclass, field
from typing import Optional, List

from ..config import Settings
from ..models.video import WordTimestamp
from ..utils.exceptions import ProviderError, APIKeyError
from ..utils.ffmpeg import FFmpegRunner
from ..utils.logger import get_logger
from .captions import words_from_alignment

logger = get_logger()


@dataclass
class Narration:
    """Processed narration track for one scene"""
    audio_path: str
    duration: float
    words: List[WordTimestamp] = field(default_factory=list)


class VoiceSynthesizer:
    """Narration using ElevenLabs text-to-speech with timestamps"""

    def __init__(self, settings: Settings, runner: FFmpegRunner, client=None):
        self.settings = settings
        self.runner = runner
        self.model_id = settings.elevenlabs_model_id
        self.default_voice_id = settings.default_voice_id
        self.tail_padding = settings.narration_tail_padding
        self._client = client

    def _ensure_initialized(self):
        """Lazy initialize ElevenLabs client"""
        if self._client is not None:
            return

        if not self.settings.elevenlabs_api_key:
            raise APIKeyError("ElevenLabs")

        from elevenlabs import ElevenLabs

        self._client = ElevenLabs(api_key=self.settings.elevenlabs_api_key)
        logger.info("ElevenLabs client initialized")

    async def synthesize(
        self,
        text: str,
        voice_id: Optional[str],
        output_path: str
    ) -> Narration:
        """
        Generate narration for text and pad it with trailing silence

        Args:
            text: Voiceover text
            voice_id: ElevenLabs voice ID (settings default if None)
            output_path: Where the processed mp3 is written

        Returns:
            Narration with probed duration and scene-relative words
        """
        if not text or not text.strip():
            await self._write_silence(output_path)
            duration = await self.runner.probe_duration(output_path)
            return Narration(audio_path=output_path, duration=duration)

        self._ensure_initialized()
        voice_id = voice_id or self.default_voice_id
        raw_path = output_path.rsplit('.', 1)[0] + '_raw.mp3'

        loop = asyncio.get_event_loop()
        try:
            response = await loop.run_in_executor(
                None,
                lambda: self._client.text_to_speech.convert_with_timestamps(
                    voice_id=voice_id,
                    text=text,
                    model_id=self.model_id,
                    output_format="mp3_44100_128",
                )
            )
        except Exception as e:
            raise ProviderError("ElevenLabs", f"speech synthesis failed: {e}", voice_id=voice_id) from e

        audio_b64 = getattr(response, "audio_base_64", None) or getattr(response, "audio_base64", None)
        if not audio_b64:
            raise ProviderError("ElevenLabs", "response contained no audio", voice_id=voice_id)

        with open(raw_path, "wb") as f:
            f.write(base64.b64decode(audio_b64))

        alignment = getattr(response, "normalized_alignment", None) or getattr(response, "alignment", None)
        words = words_from_alignment(alignment)

        try:
            await self.runner.run(
                ["-i", raw_path, "-af", f"apad=pad_dur={self.tail_padding}", output_path],
                step="narration padding"
            )
        finally:
            if os.path.exists(raw_path):
                os.remove(raw_path)

        duration = await self.runner.probe_duration(output_path)
        logger.info(f"Narration ready: {os.path.basename(output_path)} ({duration:.2f}s, {len(words)} words)")
        return Narration(audio_path=output_path, duration=duration, words=words)

    async def _write_silence(self, output_path: str) -> None:
        seconds = max(self.tail_padding, 0.1)
        await self.runner.run(
            [
                "-f", "lavfi", "-i", "anullsrc=r=44100:cl=stereo",
                "-t", f"{seconds:.3f}", output_path
            ],
            step="silent narration"
        )
