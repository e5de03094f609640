"""
Media Stitcher
FFmpeg-based concatenation with transitions, music mixing, captions and thumbnails
"""

import os
import shutil
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Callable

from ..models.video import WordTimestamp
from ..utils.exceptions import MediaProcessingError
from ..utils.ffmpeg import FFmpegRunner
from ..utils.logger import get_logger
from .captions import CaptionStyle, batch_words, build_drawtext_filter

logger = get_logger()

FRAME_SIZES = {
    "16:9": (1280, 720),
    "9:16": (720, 1280),
    "1:1": (720, 720),
}

# Subset of ffmpeg xfade transitions offered to users
XFADE_TRANSITIONS = {
    "fade", "fadeblack", "fadewhite", "dissolve", "wipeleft", "wiperight",
    "wipeup", "wipedown", "slideleft", "slideright", "slideup", "slidedown",
    "circleopen", "circleclose", "radial", "smoothleft", "smoothright", "pixelize",
}


def frame_size_for(aspect_ratio: str) -> Tuple[int, int]:
    if aspect_ratio not in FRAME_SIZES:
        raise ValueError(f"Unsupported aspect ratio: {aspect_ratio}")
    return FRAME_SIZES[aspect_ratio]


def expected_duration(durations: Sequence[float], transition_duration: float) -> float:
    """Length of n clips joined with n-1 overlapping transitions"""
    if not durations:
        return 0.0
    return sum(durations) - (len(durations) - 1) * transition_duration


def xfade_offsets(durations: Sequence[float], transition_duration: float) -> List[float]:
    """Offset of the k-th transition (k >= 1) on the accumulated output timeline"""
    return [
        sum(durations[:k]) - k * transition_duration
        for k in range(1, len(durations))
    ]


class MediaStitcher:
    """Final assembly of synchronized scenes"""

    def __init__(
        self,
        runner: FFmpegRunner,
        fps: int = 24,
        caption_style: Optional[CaptionStyle] = None,
        caption_batch_size: int = 20,
        music_volume: float = 0.3,
        voice_volume: float = 1.0
    ):
        self.runner = runner
        self.fps = fps
        self.caption_style = caption_style or CaptionStyle()
        self.caption_batch_size = caption_batch_size
        self.music_volume = music_volume
        self.voice_volume = voice_volume

    def _encode_args(self) -> List[str]:
        return [
            "-r", str(self.fps),
            "-c:v", "libx264", "-preset", "medium", "-crf", "23", "-pix_fmt", "yuv420p",
            "-c:a", "aac", "-ar", "44100", "-ac", "2",
            "-movflags", "+faststart",
        ]

    async def combine_videos(
        self,
        paths: Sequence[str],
        output_path: str,
        transition: str = "fade",
        duration: float = 1.0,
        progress_callback: Optional[Callable[[float, str], None]] = None
    ) -> str:
        """
        Join clips in order

        One clip is copied byte for byte. Several clips are crossfaded with
        xfade/acrossfade so the result lasts sum(d) - (n-1) * duration; a zero
        duration concatenates without overlap.

        Raises:
            MediaProcessingError: no inputs, unknown transition, or a clip not
                longer than the transition
        """
        if not paths:
            raise MediaProcessingError("No clips to combine", step="combine")

        if len(paths) == 1:
            shutil.copyfile(paths[0], output_path)
            logger.info(f"Single clip copied to {os.path.basename(output_path)}")
            return output_path

        if duration < 0:
            raise MediaProcessingError(f"Negative transition duration {duration}", step="combine")
        if duration > 0 and transition not in XFADE_TRANSITIONS:
            raise MediaProcessingError(
                f"Unknown transition '{transition}'",
                step="combine",
                supported=sorted(XFADE_TRANSITIONS)
            )

        durations = [await self.runner.probe_duration(p, stream="v") for p in paths]
        if duration > 0:
            too_short = [i + 1 for i, d in enumerate(durations) if d <= duration]
            if too_short:
                raise MediaProcessingError(
                    f"Clips {too_short} are not longer than the {duration}s transition",
                    step="combine"
                )

        n = len(paths)
        filters = [
            f"[{i}:v]fps={self.fps},format=yuv420p,setsar=1,settb=AVTB[v{i}];"
            f"[{i}:a]aformat=sample_rates=44100:channel_layouts=stereo[a{i}]"
            for i in range(n)
        ]

        if duration == 0:
            pairs = "".join(f"[v{i}][a{i}]" for i in range(n))
            filters.append(f"{pairs}concat=n={n}:v=1:a=1[vout][aout]")
        else:
            prev_v, prev_a = "v0", "a0"
            for k, offset in enumerate(xfade_offsets(durations, duration), start=1):
                out_v, out_a = f"xv{k}", f"xa{k}"
                filters.append(
                    f"[{prev_v}][v{k}]xfade=transition={transition}:duration={duration}:offset={offset:.3f}[{out_v}]"
                )
                filters.append(f"[{prev_a}][a{k}]acrossfade=d={duration}[{out_a}]")
                prev_v, prev_a = out_v, out_a
            filters.append(f"[{prev_v}]null[vout]")
            filters.append(f"[{prev_a}]anull[aout]")

        args: List[str] = []
        for p in paths:
            args.extend(["-i", p])
        args.extend([
            "-filter_complex", ";".join(filters),
            "-map", "[vout]", "-map", "[aout]",
            *self._encode_args(),
            output_path
        ])

        total = expected_duration(durations, duration)
        logger.info(f"Combining {n} clips with {transition} ({duration}s): expected {total:.2f}s")
        await self.runner.run(args, step="combine", duration=total, progress_callback=progress_callback)
        return output_path

    async def add_music(self, video_path: str, music_path: str, output_path: str) -> str:
        """
        Loop the music under the existing audio

        amix duration=first keeps the foreground length, so the output is
        never longer than the input video.
        """
        filter_complex = (
            f"[0:a]volume={self.voice_volume}[a1];"
            f"[1:a]volume={self.music_volume},aloop=loop=-1:size=2e+09[a2];"
            f"[a1][a2]amix=inputs=2:duration=first[aout]"
        )
        await self.runner.run(
            [
                "-i", video_path,
                "-i", music_path,
                "-filter_complex", filter_complex,
                "-map", "0:v:0", "-map", "[aout]",
                "-c:v", "copy", "-c:a", "aac",
                output_path
            ],
            step="music mix"
        )
        return output_path

    async def burn_subtitles(
        self,
        video_path: str,
        words: Sequence[WordTimestamp],
        output_path: str,
        batch_size: Optional[int] = None
    ) -> str:
        """
        Burn word captions into the video

        Words are split into batches; each batch is one ffmpeg pass reading
        its drawtext chain from a filter script, and passes are chained so
        every batch ends up on the same frames it would in a single pass.
        """
        batch_size = batch_size or self.caption_batch_size
        batches = [
            chain for chain in (
                build_drawtext_filter(batch, self.caption_style)
                for batch in batch_words(words, batch_size)
            ) if chain
        ]

        if not batches:
            shutil.copyfile(video_path, output_path)
            logger.info("No captions to burn, video copied")
            return output_path

        out_dir = Path(output_path).parent
        stem = Path(output_path).stem
        current = video_path
        scratch: List[Path] = []

        try:
            for i, chain in enumerate(batches):
                last = i == len(batches) - 1
                target = output_path if last else str(out_dir / f"{stem}.pass{i + 1}.mp4")
                script = out_dir / f"{stem}.subtitles{i + 1}.txt"
                script.write_text(f"[0:v]{chain}[vout]", encoding="utf-8")
                scratch.append(script)

                await self.runner.run(
                    [
                        "-i", current,
                        "-filter_complex_script", str(script),
                        "-map", "[vout]", "-map", "0:a?",
                        "-c:v", "libx264", "-preset", "medium", "-crf", "20", "-pix_fmt", "yuv420p",
                        "-c:a", "copy",
                        target
                    ],
                    step=f"subtitles pass {i + 1}/{len(batches)}"
                )
                if not last:
                    scratch.append(Path(target))
                current = target
        finally:
            for path in scratch:
                if path.exists():
                    path.unlink()

        logger.info(f"Burned {len(words)} caption words in {len(batches)} pass(es)")
        return output_path

    async def extract_thumbnail(
        self,
        video_path: str,
        output_path: str,
        timestamp: float = 1.0,
        aspect_ratio: str = "16:9"
    ) -> str:
        """One frame at timestamp (clamped into the video), sized for the aspect ratio"""
        width, height = frame_size_for(aspect_ratio)
        length = await self.runner.probe_duration(video_path)
        if timestamp >= length:
            timestamp = max(0.0, length / 2)

        await self.runner.run(
            [
                "-ss", f"{timestamp:.3f}",
                "-i", video_path,
                "-frames:v", "1",
                "-vf", (
                    f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
                    f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2"
                ),
                "-q:v", "2",
                output_path
            ],
            step="thumbnail"
        )
        return output_path
