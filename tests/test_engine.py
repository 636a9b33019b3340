"""Tests for the export orchestrator."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from clipstack.engine import Exporter, ExportResult
from clipstack.errors import ConfigurationError, ExportError
from clipstack.manifest import EngineConfig
from clipstack.models import AudioMix, Clip, MediaInfo, PipConfig, Timeline


@pytest.fixture
def exporter(fake_ffmpeg, engine_config):
    exp = Exporter(fake_ffmpeg, engine_config)
    yield exp
    exp.shutdown()


def _workdir_files(config):
    return sorted(p.name for p in Path(config.temp_dir).iterdir())


class TestExportResult:
    def test_defaults(self):
        r = ExportResult(output_path=Path("out.mp4"), strategy="single")
        assert r.steps_run == 0
        assert r.duration == 0.0


class TestValidation:
    def test_rejects_extension(self, exporter, two_clip_timeline, tmp_path, fake_ffmpeg):
        with pytest.raises(ConfigurationError, match=r"\.mp4 or \.mov"):
            exporter.execute(two_clip_timeline, tmp_path / "out.avi")
        assert fake_ffmpeg.steps == []

    def test_accepts_mov_uppercase(self, exporter, two_clip_timeline, tmp_path):
        result = exporter.execute(two_clip_timeline, tmp_path / "out.MOV")
        assert result.output_path == tmp_path / "out.MOV"

    def test_missing_input(self, exporter, tmp_path, fake_ffmpeg):
        tl = Timeline(clips=[Clip(source=tmp_path / "gone.mp4", duration=1)])
        with pytest.raises(ConfigurationError, match="gone.mp4"):
            exporter.execute(tl, tmp_path / "out.mp4")
        assert fake_ffmpeg.steps == []

    def test_empty_base_track(self, exporter, make_source, tmp_path):
        tl = Timeline(clips=[Clip(source=make_source("cam.mp4"), duration=1, track=1)])
        with pytest.raises(ConfigurationError, match="Track 0"):
            exporter.execute(tl, tmp_path / "out.mp4")

    def test_missing_subtitles(self, exporter, two_clip_timeline, tmp_path):
        two_clip_timeline.subtitles = tmp_path / "nope.srt"
        with pytest.raises(ConfigurationError, match="Subtitle file not found"):
            exporter.execute(two_clip_timeline, tmp_path / "out.mp4")

    def test_configuration_error_is_value_error(self, exporter, two_clip_timeline, tmp_path):
        with pytest.raises(ValueError):
            exporter.execute(two_clip_timeline, tmp_path / "out.webm")


class TestExecute:
    def test_single_clip(self, exporter, make_source, tmp_path, fake_ffmpeg, engine_config):
        tl = Timeline(clips=[Clip(source=make_source("a.mp4"), duration=2)])
        result = exporter.execute(tl, tmp_path / "out.mp4")
        assert result.strategy == "single"
        assert result.steps_run == 1
        assert result.duration == 5.0
        assert (tmp_path / "out.mp4").exists()
        assert _workdir_files(engine_config) == []

    def test_concat_cleans_intermediates(self, exporter, two_clip_timeline, tmp_path, fake_ffmpeg, engine_config):
        result = exporter.execute(two_clip_timeline, tmp_path / "out.mp4")
        assert result.strategy == "concat"
        assert result.steps_run == 3
        assert _workdir_files(engine_config) == []
        # list file was on disk while the concat step ran
        names = fake_ffmpeg.existing_during_run[-1]
        assert any(n.endswith("_concat.txt") for n in names)
        assert sum(n.endswith(".mp4") and "_clip" in n for n in names) == 2

    def test_progress_callback(self, exporter, two_clip_timeline, tmp_path):
        seen = []
        exporter.execute(two_clip_timeline, tmp_path / "out.mp4", on_progress=lambda s, f: seen.append((s, f)))
        assert seen[0] == ("Validating timeline", 0.0)
        assert seen[-1] == ("Done", 1.0)
        fractions = [f for _, f in seen]
        assert fractions == sorted(fractions)

    def test_failed_step_raises_and_cleans(self, tmp_path, two_clip_timeline, engine_config, ffmpeg_factory):
        ff = ffmpeg_factory(fail_on="trim clip 1")
        exporter = Exporter(ff, engine_config)
        with pytest.raises(ExportError) as exc:
            exporter.execute(two_clip_timeline, tmp_path / "out.mp4")
        assert exc.value.step == "trim clip 1"
        assert "Invalid argument" in exc.value.diagnostic
        assert "Invalid argument" in str(exc.value)
        assert _workdir_files(engine_config) == []
        assert len(ff.steps) == 2

    def test_failed_final_step_removes_partial_output(self, tmp_path, two_clip_timeline, engine_config, ffmpeg_factory):
        out = tmp_path / "out.mp4"
        out.write_bytes(b"partial")
        ff = ffmpeg_factory(fail_on="concat")
        with pytest.raises(ExportError):
            Exporter(ff, engine_config).execute(two_clip_timeline, out)
        assert not out.exists()
        assert _workdir_files(engine_config) == []

    def test_missing_output_is_an_error(self, tmp_path, two_clip_timeline, engine_config, ffmpeg_factory):
        ff = ffmpeg_factory(skip_output="trim clip 0")
        with pytest.raises(ExportError, match="no output file") as exc:
            Exporter(ff, engine_config).execute(two_clip_timeline, tmp_path / "out.mp4")
        assert exc.value.step == "trim clip 0"
        assert len(ff.steps) == 1

    def test_subtitles_staged_and_removed(self, exporter, two_clip_timeline, tmp_path, fake_ffmpeg, engine_config, sample_srt_path):
        two_clip_timeline.subtitles = sample_srt_path
        exporter.execute(two_clip_timeline, tmp_path / "out.mp4")
        final = fake_ffmpeg.steps[-1]
        assert final.cwd == Path(engine_config.temp_dir)
        names = fake_ffmpeg.existing_during_run[-1]
        assert any(n.endswith("_subs.ass") for n in names)
        assert _workdir_files(engine_config) == []

    def test_relative_paths_with_subtitles(self, tmp_path, monkeypatch, fake_ffmpeg, sample_srt_path):
        monkeypatch.chdir(tmp_path)
        Path("a.mp4").write_bytes(b"source")
        Path("subs.srt").write_bytes(sample_srt_path.read_bytes())
        ff = fake_ffmpeg

        tl = Timeline(clips=[Clip(source=Path("a.mp4"), duration=2.0)], subtitles=Path("subs.srt"))
        result = Exporter(ff, EngineConfig(temp_dir=Path("work"))).execute(tl, "out.mp4")

        assert ff.steps[-1].cwd == tmp_path / "work"
        assert ff.missing_inputs == []
        assert result.output_path == tmp_path / "out.mp4"
        assert (tmp_path / "out.mp4").exists()
        assert list((tmp_path / "work").iterdir()) == []

    def test_composite_probes_each_source_once(self, tmp_path, make_source, engine_config, ffmpeg_factory):
        screen, cam = make_source("screen.mp4"), make_source("cam.mp4")
        ff = ffmpeg_factory(media={screen: MediaInfo(6.0, True), cam: MediaInfo(6.0, False)})
        ff.probe_media = MagicMock(side_effect=ff.probe_media)
        tl = Timeline(clips=[
            Clip(source=screen, duration=3),
            Clip(source=screen, duration=3, trim_start=3, start_time=3),
            Clip(source=cam, duration=6, track=1),
        ])
        result = Exporter(ff, engine_config).execute(tl, tmp_path / "out.mp4")
        assert result.strategy == "composite"
        assert ff.probe_media.call_count == 2


class TestSubmit:
    def test_future_result(self, exporter, two_clip_timeline, tmp_path):
        future = exporter.submit(two_clip_timeline, tmp_path / "out.mp4")
        assert future.result(timeout=10).strategy == "concat"

    def test_future_carries_error(self, exporter, two_clip_timeline, tmp_path):
        future = exporter.submit(two_clip_timeline, tmp_path / "out.mkv")
        with pytest.raises(ConfigurationError):
            future.result(timeout=10)


class TestCompositePip:
    def test_builds_two_track_timeline(self, tmp_path, make_source, engine_config, ffmpeg_factory):
        screen, cam = make_source("screen.mp4"), make_source("cam.mp4")
        ff = ffmpeg_factory(media={screen: MediaInfo(10.0, True), cam: MediaInfo(12.0, True)})
        exporter = Exporter(ff, engine_config)
        result = exporter.composite_pip(
            screen, cam, tmp_path / "pip.mp4",
            pip=PipConfig(corner="top-left", size="large"),
            audio_mix=AudioMix(delay_offset=0.15),
        )
        assert result.strategy == "composite"
        final = ff.steps[-1]
        assert "overlay=x=20:y=20" in final.filter_graph
        assert "adelay=delays=350:all=1" in final.filter_graph
        assert final.args[final.args.index("-t") + 1] == "10"
        # the webcam layer never runs past the screen recording
        layer = ff.steps[1]
        assert "d=10" in layer.filter_graph

    def test_missing_input(self, exporter, tmp_path, make_source):
        with pytest.raises(ConfigurationError):
            exporter.composite_pip(make_source("s.mp4"), tmp_path / "cam.mp4", tmp_path / "o.mp4")

    def test_unknown_screen_duration(self, tmp_path, make_source, engine_config, ffmpeg_factory):
        screen = make_source("s.mp4")
        ff = ffmpeg_factory(media={screen: MediaInfo(0.0, True)})
        with pytest.raises(ConfigurationError, match="duration"):
            Exporter(ff, engine_config).composite_pip(screen, make_source("c.mp4"), tmp_path / "o.mp4")
