import shutil
import subprocess
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from storyreel.config import Settings


requires_ffmpeg = pytest.mark.skipif(
    shutil.which("ffmpeg") is None or shutil.which("ffprobe") is None,
    reason="ffmpeg/ffprobe not installed",
)


def _has_filter(name: str) -> bool:
    if shutil.which("ffmpeg") is None:
        return False
    out = subprocess.run(["ffmpeg", "-hide_banner", "-filters"], capture_output=True, text=True).stdout
    return any(line.split()[1:2] == [name] for line in out.splitlines() if line.strip())


requires_drawtext = pytest.mark.skipif(not _has_filter("drawtext"), reason="ffmpeg built without drawtext")


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        temp_dir=str(tmp_path / "temp"),
        data_dir=str(tmp_path / "data"),
        s3_bucket_name="test-bucket",
        enable_background_music=False,
        transition_duration=1.0,
    )


class FakeRunner:
    """Records ffmpeg calls instead of spawning processes"""

    def __init__(self, durations: Optional[Dict[str, float]] = None, default: float = 5.0):
        self.durations = durations or {}
        self.default = default
        self.calls: List[dict] = []

    async def run(self, args, step, duration=None, progress_callback=None):
        self.calls.append({"args": list(args), "step": step, "duration": duration})
        Path(args[-1]).parent.mkdir(parents=True, exist_ok=True)
        Path(args[-1]).write_bytes(b"fake media")

    async def probe_duration(self, path, stream=None):
        return self.durations.get(str(path), self.default)


@pytest.fixture
def fake_runner():
    return FakeRunner()


# ============================================================================
# lavfi-generated media
# ============================================================================

def make_clip(path: Path, seconds: float, size: str = "320x240", with_audio: bool = True) -> str:
    cmd = [
        "ffmpeg", "-hide_banner", "-y", "-loglevel", "error",
        "-f", "lavfi", "-i", f"testsrc=duration={seconds}:size={size}:rate=24",
    ]
    if with_audio:
        cmd += ["-f", "lavfi", "-i", f"sine=frequency=440:duration={seconds}"]
    cmd += ["-c:v", "libx264", "-pix_fmt", "yuv420p"]
    if with_audio:
        cmd += ["-c:a", "aac", "-shortest"]
    cmd.append(str(path))
    subprocess.run(cmd, check=True)
    return str(path)


def make_tone(path: Path, seconds: float) -> str:
    subprocess.run(
        [
            "ffmpeg", "-hide_banner", "-y", "-loglevel", "error",
            "-f", "lavfi", "-i", f"sine=frequency=220:duration={seconds}",
            "-c:a", "libmp3lame", str(path),
        ],
        check=True,
    )
    return str(path)


def probe(path: str, stream: Optional[str] = None) -> float:
    cmd = ["ffprobe", "-v", "error"]
    if stream:
        cmd += ["-select_streams", f"{stream}:0", "-show_entries", "stream=duration"]
    else:
        cmd += ["-show_entries", "format=duration"]
    cmd += ["-of", "default=noprint_wrappers=1:nokey=1", path]
    out = subprocess.run(cmd, capture_output=True, text=True, check=True).stdout
    return float(out.strip().splitlines()[0])
