"""Tests for SRT parsing and ASS conversion."""

import pytest

from clipstack.models import SubtitleEntry
from clipstack.subtitles import (
    escape_ass_text,
    escape_filter_path,
    format_ass_time,
    format_srt_time,
    is_filter_safe,
    parse_ass_time,
    parse_srt,
    parse_srt_time,
    srt_to_ass,
    srt_to_ass_time,
    write_srt,
)


class TestTimestamps:
    def test_srt_to_ass_time(self):
        assert srt_to_ass_time("00:00:05,250") == "0:00:05.25"
        assert srt_to_ass_time("01:02:03,004") == "1:02:03.00"

    def test_parse_srt_time(self):
        assert parse_srt_time("00:01:02,500") == pytest.approx(62.5)
        assert parse_srt_time("00:00:01.5") == pytest.approx(1.5)

    def test_parse_srt_time_invalid(self):
        with pytest.raises(ValueError):
            parse_srt_time("five seconds")

    def test_format_srt_time(self):
        assert format_srt_time(3661.5) == "01:01:01,500"
        assert format_srt_time(0) == "00:00:00,000"

    def test_ass_centiseconds(self):
        assert format_ass_time(5.25) == "0:00:05.25"
        assert format_ass_time(3600) == "1:00:00.00"

    @pytest.mark.parametrize("text", ["0:00:05.25", "1:23:45.67", "0:00:00.00"])
    def test_ass_round_trip(self, text):
        assert format_ass_time(parse_ass_time(text)) == text


class TestParseSrt:
    def test_fixture(self, sample_srt_path):
        entries = parse_srt(sample_srt_path.read_text(encoding="utf-8"))
        assert len(entries) == 2
        assert entries[0].text == "Hello there"
        assert entries[0].start == pytest.approx(0.5)
        assert entries[0].end == pytest.approx(2.25)
        assert entries[1].text == "Two {styled}\nlines"

    def test_missing_index(self):
        entries = parse_srt("00:00:01,000 --> 00:00:02,000\nNo number\n")
        assert entries == [SubtitleEntry(index=1, start=1.0, end=2.0, text="No number")]

    def test_empty(self):
        assert parse_srt("") == []


class TestWriteSrt:
    def test_writes_numbered_cues(self, tmp_path):
        path = write_srt(
            [SubtitleEntry(index=7, start=0.5, end=1.25, text="Hi")],
            tmp_path / "out.srt",
        )
        assert path.read_text() == "1\n00:00:00,500 --> 00:00:01,250\nHi\n"


class TestSrtToAss:
    def test_header_and_dialogue(self, sample_srt_path):
        ass = srt_to_ass(sample_srt_path.read_text(encoding="utf-8"), 1280, 720)
        assert "PlayResX: 1280" in ass
        assert "PlayResY: 720" in ass
        assert "Style: Default,Arial,24," in ass
        assert "Dialogue: 0,0:00:00.50,0:00:02.25,Default,,0,0,0,,Hello there" in ass
        assert "Dialogue: 0,0:00:03.00,0:00:04.75,Default,,0,0,0,,Two \\{styled\\}\\Nlines" in ass

    def test_custom_font(self):
        ass = srt_to_ass("", font="DejaVu Sans", size=32)
        assert "Style: Default,DejaVu Sans,32," in ass
        assert "Dialogue" not in ass

    def test_escape_ass_text(self):
        assert escape_ass_text("a\\b\nc") == "a\\\\b\\Nc"


class TestFilterPaths:
    def test_escape_windows_path(self):
        assert escape_filter_path("C:\\work\\subs.ass") == "'C\\:/work/subs.ass'"

    def test_escape_quote(self):
        assert escape_filter_path("it's.ass") == "'it\\'s.ass'"

    def test_bare_name_untouched(self):
        assert escape_filter_path("clip_subs.ass") == "'clip_subs.ass'"

    def test_is_filter_safe(self):
        assert is_filter_safe("clip_subs.ass")
        assert not is_filter_safe("C:/Users/x/subs.ass")
        assert not is_filter_safe("/tmp/ünïcode.ass")
