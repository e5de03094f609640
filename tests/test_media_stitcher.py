import os

import pytest

from storyreel.models.video import WordTimestamp
from storyreel.services.captions import CaptionStyle
from storyreel.services.media_stitcher import (
    MediaStitcher,
    expected_duration,
    frame_size_for,
    xfade_offsets,
)
from storyreel.utils.exceptions import MediaProcessingError
from storyreel.utils.ffmpeg import FFmpegRunner

from conftest import FakeRunner, make_clip, make_tone, probe, requires_drawtext, requires_ffmpeg


def test_expected_duration():
    assert expected_duration([5.0, 5.0, 5.0], 1.0) == 13.0
    assert expected_duration([5.0], 1.0) == 5.0
    assert expected_duration([], 1.0) == 0.0


def test_xfade_offsets():
    assert xfade_offsets([5.0, 5.0, 5.0], 1.0) == [4.0, 8.0]
    assert xfade_offsets([4.0, 6.0], 0.5) == [3.5]


def test_frame_size_for():
    assert frame_size_for("9:16") == (720, 1280)
    with pytest.raises(ValueError):
        frame_size_for("4:3")


@pytest.mark.asyncio
async def test_single_clip_is_copied_byte_for_byte(tmp_path):
    source = tmp_path / "only.mp4"
    source.write_bytes(os.urandom(4096))
    runner = FakeRunner()
    stitcher = MediaStitcher(runner)

    out = await stitcher.combine_videos([str(source)], str(tmp_path / "combined.mp4"))

    assert open(out, "rb").read() == source.read_bytes()
    assert runner.calls == []


@pytest.mark.asyncio
async def test_combine_requires_inputs(tmp_path):
    with pytest.raises(MediaProcessingError):
        await MediaStitcher(FakeRunner()).combine_videos([], str(tmp_path / "out.mp4"))


@pytest.mark.asyncio
async def test_clip_not_longer_than_transition_is_rejected(tmp_path):
    runner = FakeRunner(durations={"a.mp4": 5.0, "b.mp4": 0.8})
    stitcher = MediaStitcher(runner)

    with pytest.raises(MediaProcessingError) as exc_info:
        await stitcher.combine_videos(["a.mp4", "b.mp4"], str(tmp_path / "out.mp4"), duration=1.0)
    assert "[2]" in exc_info.value.message
    assert runner.calls == []


@pytest.mark.asyncio
async def test_unknown_transition(tmp_path):
    with pytest.raises(MediaProcessingError):
        await MediaStitcher(FakeRunner()).combine_videos(
            ["a.mp4", "b.mp4"], str(tmp_path / "out.mp4"), transition="spin"
        )


@pytest.mark.asyncio
async def test_xfade_chain(tmp_path):
    runner = FakeRunner(default=5.0)
    stitcher = MediaStitcher(runner)

    await stitcher.combine_videos(["a.mp4", "b.mp4", "c.mp4"], str(tmp_path / "out.mp4"), "wipeleft", 1.0)

    call = runner.calls[0]
    graph = call["args"][call["args"].index("-filter_complex") + 1]
    assert "xfade=transition=wipeleft:duration=1.0:offset=4.000[xv1]" in graph
    assert "xfade=transition=wipeleft:duration=1.0:offset=8.000[xv2]" in graph
    assert graph.count("acrossfade=d=1.0") == 2
    assert call["duration"] == 13.0


@pytest.mark.asyncio
async def test_zero_transition_concatenates(tmp_path):
    runner = FakeRunner(default=5.0)
    await MediaStitcher(runner).combine_videos(["a.mp4", "b.mp4"], str(tmp_path / "out.mp4"), duration=0)

    graph = runner.calls[0]["args"][runner.calls[0]["args"].index("-filter_complex") + 1]
    assert "concat=n=2:v=1:a=1" in graph
    assert "xfade" not in graph


@pytest.mark.asyncio
async def test_subtitles_run_one_pass_per_batch(tmp_path):
    runner = FakeRunner()
    stitcher = MediaStitcher(runner, caption_style=CaptionStyle(font_path=None), caption_batch_size=20)
    words = [WordTimestamp(word=f"W{i}", start=i * 0.2, end=i * 0.2 + 0.2) for i in range(45)]
    scripts = []

    original_run = runner.run

    async def capture(args, step, duration=None, progress_callback=None):
        script = args[args.index("-filter_complex_script") + 1]
        scripts.append(open(script, encoding="utf-8").read())
        await original_run(args, step, duration, progress_callback)

    runner.run = capture
    out = await stitcher.burn_subtitles("in.mp4", words, str(tmp_path / "final.mp4"))

    assert out == str(tmp_path / "final.mp4")
    assert len(runner.calls) == 3
    assert [c["args"][1] for c in runner.calls] == [
        "in.mp4",
        str(tmp_path / "final.pass1.mp4"),
        str(tmp_path / "final.pass2.mp4"),
    ]
    assert sum(s.count("drawtext=") for s in scripts) == 45
    assert all(s.startswith("[0:v]") and s.endswith("[vout]") for s in scripts)
    # scratch passes and scripts are removed
    assert sorted(p.name for p in tmp_path.iterdir()) == ["final.mp4"]


@pytest.mark.asyncio
async def test_subtitles_without_words_copy_video(tmp_path):
    source = tmp_path / "in.mp4"
    source.write_bytes(b"video")
    runner = FakeRunner()

    out = await MediaStitcher(runner).burn_subtitles(str(source), [], str(tmp_path / "out.mp4"))
    assert open(out, "rb").read() == b"video"
    assert runner.calls == []


@pytest.mark.asyncio
async def test_thumbnail_timestamp_is_clamped(tmp_path):
    runner = FakeRunner(durations={"short.mp4": 0.6})
    await MediaStitcher(runner).extract_thumbnail("short.mp4", str(tmp_path / "thumb.jpg"), timestamp=1.0)
    args = runner.calls[0]["args"]
    assert args[args.index("-ss") + 1] == "0.300"


# ============================================================================
# Real ffmpeg
# ============================================================================

@requires_ffmpeg
@pytest.mark.asyncio
async def test_three_clips_with_fade_last_thirteen_seconds(tmp_path):
    clips = [make_clip(tmp_path / f"clip{i}.mp4", 5) for i in range(3)]
    stitcher = MediaStitcher(FFmpegRunner())

    out = await stitcher.combine_videos(clips, str(tmp_path / "combined.mp4"), "fade", 1.0)

    assert probe(out, "v") == pytest.approx(13.0, abs=0.1)


@requires_ffmpeg
@pytest.mark.asyncio
@pytest.mark.parametrize("music_seconds", [2, 20])
async def test_music_never_extends_video(tmp_path, music_seconds):
    video = make_clip(tmp_path / "video.mp4", 6)
    music = make_tone(tmp_path / "music.mp3", music_seconds)
    stitcher = MediaStitcher(FFmpegRunner())

    out = await stitcher.add_music(video, music, str(tmp_path / "with_music.mp4"))

    assert probe(out) <= probe(video, "v") + 0.1
    assert probe(out, "a") == pytest.approx(probe(video, "a"), abs=0.1)


@requires_ffmpeg
@requires_drawtext
@pytest.mark.asyncio
async def test_batched_subtitles_keep_duration(tmp_path):
    video = make_clip(tmp_path / "video.mp4", 4)
    words = [WordTimestamp(word=f"WORD{i}", start=i * 0.1, end=i * 0.1 + 0.1) for i in range(40)]
    stitcher = MediaStitcher(FFmpegRunner(), caption_batch_size=15)

    out = await stitcher.burn_subtitles(video, words, str(tmp_path / "final.mp4"))

    assert probe(out, "v") == pytest.approx(probe(video, "v"), abs=0.1)


@requires_ffmpeg
@pytest.mark.asyncio
async def test_thumbnail_is_written(tmp_path):
    video = make_clip(tmp_path / "video.mp4", 3)
    out = await MediaStitcher(FFmpegRunner()).extract_thumbnail(video, str(tmp_path / "thumb.jpg"), aspect_ratio="1:1")
    assert os.path.getsize(out) > 0
