import pytest

from storyreel.models.video import Scene, WordTimestamp
from storyreel.services.scene_renderer import SceneRenderer, SceneAssets, slowdown_factor
from storyreel.services.voice_synthesizer import Narration
from storyreel.utils.ffmpeg import FFmpegRunner

from conftest import FakeRunner, make_clip, make_tone, probe, requires_ffmpeg


def test_slowdown_factor_stretches_only():
    assert slowdown_factor(7.0, 5.0) == pytest.approx(1.4)
    assert slowdown_factor(3.0, 5.0) == 1.0
    assert slowdown_factor(5.0, 5.0) == 1.0


def test_slowdown_factor_rejects_empty_video():
    with pytest.raises(ValueError):
        slowdown_factor(3.0, 0.0)


class FakeDispatcher:
    def __init__(self):
        self.requests = []

    async def generate_clip(self, request, output_path):
        self.requests.append(request)
        return output_path


class FakeSynthesizer:
    async def synthesize(self, text, voice_id, output_path):
        return Narration(audio_path=output_path, duration=len(text) / 10,
                         words=[WordTimestamp(word=text.upper(), start=0, end=0.5)])


@pytest.mark.asyncio
async def test_generate_all_returns_scene_order(tmp_path):
    dispatcher = FakeDispatcher()
    renderer = SceneRenderer(dispatcher, FakeSynthesizer(), FakeRunner(default=5.0), concurrency=2)
    scenes = [Scene(scene_number=n, description=f"shot {n}", voiceover="x" * (n * 10)) for n in (3, 1, 2)]

    assets = await renderer.generate_all(
        scenes,
        job_id="job-1",
        provider_model_id="kling-1.6",
        provider_config={"duration": "5"},
        voice_id=None,
        workdir=tmp_path,
        user_id="u1",
        video_id="v1",
        attempt=2,
    )

    assert [a.scene_number for a in assets] == [1, 2, 3]
    assert assets[1].narration.duration == pytest.approx(2.0)
    assert assets[0].video_path.endswith("scene-1/video.mp4")
    assert {r.prompt for r in dispatcher.requests} == {"shot 1", "shot 2", "shot 3"}
    assert all(r.config == {"duration": "5"} for r in dispatcher.requests)
    assert {(r.user_id, r.video_id, r.attempt) for r in dispatcher.requests} == {("u1", "v1", 2)}


@pytest.mark.asyncio
async def test_synchronize_builds_stretch_filter(tmp_path):
    runner = FakeRunner(default=7.0)
    renderer = SceneRenderer(FakeDispatcher(), FakeSynthesizer(), runner)
    assets = SceneAssets(
        scene_number=1,
        video_path=str(tmp_path / "video.mp4"),
        video_duration=5.0,
        narration=Narration(audio_path=str(tmp_path / "audio.mp3"), duration=7.0),
    )

    rendered = await renderer.synchronize(assets, str(tmp_path / "synced.mp4"), aspect_ratio="9:16")

    args = runner.calls[0]["args"]
    filter_complex = args[args.index("-filter_complex") + 1]
    assert "setpts=1.400000*PTS" in filter_complex
    assert "scale=720:1280" in filter_complex
    assert "apad" in filter_complex
    assert args[args.index("-t") + 1] == "7.000"
    assert rendered.factor == pytest.approx(1.4)
    assert rendered.duration == 7.0


@requires_ffmpeg
@pytest.mark.asyncio
async def test_long_narration_slows_video(tmp_path):
    video = make_clip(tmp_path / "video.mp4", 5, with_audio=False)
    audio = make_tone(tmp_path / "audio.mp3", 7)
    runner = FFmpegRunner()
    renderer = SceneRenderer(FakeDispatcher(), FakeSynthesizer(), runner)

    assets = SceneAssets(
        scene_number=1,
        video_path=video,
        video_duration=await runner.probe_duration(video, stream="v"),
        narration=Narration(audio_path=audio, duration=await runner.probe_duration(audio)),
    )
    rendered = await renderer.synchronize(assets, str(tmp_path / "synced.mp4"))

    assert rendered.factor > 1.0
    assert rendered.duration == pytest.approx(assets.narration.duration, abs=0.1)
    assert probe(rendered.synced_path, "v") == pytest.approx(assets.narration.duration, abs=0.1)


@requires_ffmpeg
@pytest.mark.asyncio
async def test_short_narration_keeps_video_length(tmp_path):
    video = make_clip(tmp_path / "video.mp4", 5, with_audio=False)
    audio = make_tone(tmp_path / "audio.mp3", 3)
    runner = FFmpegRunner()
    renderer = SceneRenderer(FakeDispatcher(), FakeSynthesizer(), runner)

    assets = SceneAssets(
        scene_number=1,
        video_path=video,
        video_duration=await runner.probe_duration(video, stream="v"),
        narration=Narration(audio_path=audio, duration=await runner.probe_duration(audio)),
    )
    rendered = await renderer.synchronize(assets, str(tmp_path / "synced.mp4"))

    assert rendered.factor == 1.0
    assert rendered.duration == pytest.approx(5.0, abs=0.1)
    # narration padded with silence up to the video length
    assert probe(rendered.synced_path, "a") == pytest.approx(5.0, abs=0.15)
