"""Tests for the timeline data model."""

from pathlib import Path

import pytest

from clipstack.models import AudioMix, Clip, ColorFilters, PipConfig, Timeline


class TestColorFilters:
    def test_identity(self):
        assert ColorFilters().is_identity
        assert not ColorFilters(brightness=5).is_identity

    @pytest.mark.parametrize("field", ["brightness", "contrast", "saturation"])
    def test_out_of_range(self, field):
        with pytest.raises(ValueError, match=field):
            ColorFilters(**{field: 101})
        with pytest.raises(ValueError):
            ColorFilters(**{field: -100.5})

    def test_bounds_are_inclusive(self):
        f = ColorFilters(brightness=-100, contrast=100, saturation=-100)
        assert f.contrast == 100


class TestClip:
    def test_end_time(self):
        c = Clip(source=Path("a.mp4"), duration=2.5, start_time=1.0)
        assert c.end_time == 3.5

    def test_rejects_zero_duration(self):
        with pytest.raises(ValueError, match="duration"):
            Clip(source=Path("a.mp4"), duration=0)

    def test_rejects_negative_trim(self):
        with pytest.raises(ValueError, match="trim_start"):
            Clip(source=Path("a.mp4"), duration=1, trim_start=-0.1)

    def test_rejects_negative_start(self):
        with pytest.raises(ValueError, match="start_time"):
            Clip(source=Path("a.mp4"), duration=1, start_time=-1)

    def test_rejects_unknown_track(self):
        with pytest.raises(ValueError, match="track"):
            Clip(source=Path("a.mp4"), duration=1, track=3)

    def test_has_filters(self):
        src = Path("a.mp4")
        assert not Clip(source=src, duration=1).has_filters
        assert not Clip(source=src, duration=1, filters=ColorFilters()).has_filters
        assert Clip(source=src, duration=1, filters=ColorFilters(contrast=10)).has_filters


class TestPipConfig:
    def test_defaults(self):
        pip = PipConfig()
        assert pip.corner == "bottom-right"
        assert pip.dimensions == (320, 180)
        assert pip.padding == 20

    def test_sizes(self):
        assert PipConfig(size="medium").dimensions == (480, 270)
        assert PipConfig(size="large").dimensions == (640, 360)

    def test_rejects_unknown_corner(self):
        with pytest.raises(ValueError):
            PipConfig(corner="center")


class TestTimeline:
    def _clip(self, name, start, track=0, duration=1.0):
        return Clip(source=Path(name), duration=duration, start_time=start, track=track)

    def test_tracks_sorted_by_start(self):
        tl = Timeline(clips=[self._clip("b", 5), self._clip("a", 0), self._clip("w", 0, track=1)])
        tracks = tl.tracks()
        assert [c.source.name for c in tracks[0]] == ["a", "b"]
        assert [c.source.name for c in tracks[1]] == ["w"]
        assert tracks[2] == []

    def test_equal_start_keeps_insertion_order(self):
        tl = Timeline(clips=[self._clip("first", 2), self._clip("second", 2), self._clip("zero", 0)])
        assert [c.source.name for c in tl.tracks()[0]] == ["zero", "first", "second"]

    def test_duration_is_latest_end(self):
        tl = Timeline(clips=[self._clip("a", 0, duration=3), self._clip("w", 1, track=1, duration=4)])
        assert tl.duration == 5

    def test_has_overlays(self):
        assert not Timeline(clips=[self._clip("a", 0)]).has_overlays
        assert Timeline(clips=[self._clip("a", 0), self._clip("w", 0, track=2)]).has_overlays

    def test_validate_requires_base_track(self):
        with pytest.raises(ValueError, match="Track 0"):
            Timeline(clips=[self._clip("w", 0, track=1)]).validate()
        with pytest.raises(ValueError):
            Timeline().validate()

    def test_validate_rejects_bad_corner(self):
        tl = Timeline(clips=[self._clip("a", 0)], track_corners={1: "middle"})
        with pytest.raises(ValueError, match="middle"):
            tl.validate()

    def test_corner_defaults(self):
        tl = Timeline(clips=[self._clip("a", 0)])
        assert tl.corner_for(1) == "bottom-right"
        assert tl.corner_for(2) == "top-right"

    def test_corner_precedence(self):
        tl = Timeline(
            clips=[self._clip("a", 0)],
            pip=PipConfig(corner="top-left"),
            track_corners={2: "bottom-left"},
        )
        assert tl.corner_for(1) == "top-left"
        assert tl.corner_for(2) == "bottom-left"


class TestAudioMix:
    def test_defaults(self):
        mix = AudioMix()
        assert mix.include_system_audio and mix.include_mic_audio
        assert mix.delay_offset == 0.0
