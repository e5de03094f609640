"""
FFmpeg Process Runner
Scoped ffmpeg/ffprobe subprocesses executed off the event loop
"""

import asyncio
import json
import shutil
import subprocess
from typing import List, Optional, Callable

from .exceptions import MediaProcessingError
from .logger import get_logger

logger = get_logger()


class FFmpegRunner:
    """Runs ffmpeg and ffprobe commands in the default executor"""

    def __init__(self, ffmpeg_bin: str = "ffmpeg", ffprobe_bin: str = "ffprobe"):
        self.ffmpeg_bin = ffmpeg_bin
        self.ffprobe_bin = ffprobe_bin

    def check_available(self) -> bool:
        """Verify both binaries are on PATH"""
        missing = [b for b in (self.ffmpeg_bin, self.ffprobe_bin) if shutil.which(b) is None]
        if missing:
            logger.error(f"FFmpeg not installed: missing {', '.join(missing)}")
            return False
        logger.info("FFmpeg available")
        return True

    async def run(
        self,
        args: List[str],
        step: str,
        duration: Optional[float] = None,
        progress_callback: Optional[Callable[[float, str], None]] = None
    ) -> None:
        """
        Run ffmpeg with the given arguments (without the binary name)

        Raises:
            MediaProcessingError: non-zero exit or missing binary
        """
        cmd = [self.ffmpeg_bin, "-hide_banner", "-y", *args]
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(
            None,
            self._run_blocking,
            cmd,
            step,
            duration,
            progress_callback
        )

    def _run_blocking(
        self,
        cmd: List[str],
        step: str,
        duration: Optional[float],
        progress_callback: Optional[Callable[[float, str], None]]
    ) -> None:
        logger.debug(f"FFmpeg command: {' '.join(cmd)}")

        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                universal_newlines=True
            )
        except FileNotFoundError as e:
            raise MediaProcessingError(
                f"{step}: ffmpeg binary not found",
                step=step,
                command=" ".join(cmd)
            ) from e

        stderr_output = []
        try:
            for line in process.stderr:
                stderr_output.append(line)

                if "time=" in line and progress_callback and duration:
                    current_time = _parse_timestamp(line.split("time=")[1].split()[0])
                    if current_time is not None:
                        progress = min(95, (current_time / duration) * 100)
                        progress_callback(progress, f"{step}: {progress:.0f}%")

            process.wait()
        finally:
            if process.poll() is None:
                process.kill()
                process.wait()

        if process.returncode != 0:
            error_msg = "".join(stderr_output[-10:])
            logger.error(f"FFmpeg failed during {step}: {error_msg}")
            raise MediaProcessingError(
                f"{step} failed (ffmpeg exit {process.returncode})",
                step=step,
                command=" ".join(cmd),
                stderr=error_msg
            )

    async def probe_duration(self, path: str, stream: Optional[str] = None) -> float:
        """
        Duration of a media file in seconds

        Args:
            path: Media file
            stream: "v" or "a" to read the first video/audio stream duration,
                None for the container duration
        """
        if stream:
            cmd = [
                self.ffprobe_bin, "-v", "error",
                "-select_streams", f"{stream}:0",
                "-show_entries", "stream=duration:format=duration",
                "-of", "json", path
            ]
        else:
            cmd = [
                self.ffprobe_bin, "-v", "error",
                "-show_entries", "format=duration",
                "-of", "json", path
            ]

        loop = asyncio.get_event_loop()
        try:
            result = await loop.run_in_executor(
                None,
                lambda: subprocess.run(cmd, capture_output=True, text=True)
            )
        except FileNotFoundError as e:
            raise MediaProcessingError("ffprobe binary not found", step="probe", command=" ".join(cmd)) from e

        if result.returncode != 0:
            raise MediaProcessingError(
                f"Could not probe {path}",
                step="probe",
                command=" ".join(cmd),
                stderr=result.stderr
            )

        info = json.loads(result.stdout or "{}")
        candidates = [s.get("duration") for s in info.get("streams", [])]
        candidates.append(info.get("format", {}).get("duration"))
        for value in candidates:
            try:
                return float(value)
            except (TypeError, ValueError):
                continue

        raise MediaProcessingError(f"No duration reported for {path}", step="probe")


def _parse_timestamp(value: str) -> Optional[float]:
    """Parse an ffmpeg HH:MM:SS.xx timestamp"""
    parts = value.split(":")
    if len(parts) != 3:
        return None
    try:
        return float(parts[0]) * 3600 + float(parts[1]) * 60 + float(parts[2])
    except ValueError:
        return None
