"""SRT reading/writing and conversion to ASS for subtitle burn-in."""

import logging
import re
from pathlib import Path

from clipstack.models import SubtitleEntry

logger = logging.getLogger(__name__)

_SRT_TIME = re.compile(r"(\d+):(\d{1,2}):(\d{1,2})[,.](\d{1,3})")
_ASS_TIME = re.compile(r"(\d+):(\d{2}):(\d{2})\.(\d{2})")

ASS_HEADER = """\
[Script Info]
ScriptType: v4.00+
PlayResX: {width}
PlayResY: {height}
WrapStyle: 0
ScaledBorderAndShadow: yes

[V4+ Styles]
Format: Name, Fontname, Fontsize, PrimaryColour, SecondaryColour, OutlineColour, BackColour, Bold, Italic, Underline, StrikeOut, ScaleX, ScaleY, Spacing, Angle, BorderStyle, Outline, Shadow, Alignment, MarginL, MarginR, MarginV, Encoding
Style: Default,{font},{size},&H00FFFFFF,&H000000FF,&H00000000,&H80000000,0,0,0,0,100,100,0,0,1,2,0,2,10,10,{margin},1

[Events]
Format: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text
"""


def parse_srt_time(text: str) -> float:
    m = _SRT_TIME.fullmatch(text.strip())
    if m is None:
        raise ValueError(f"Invalid SRT timestamp: {text!r}")
    h, mnt, s, frac = m.groups()
    return int(h) * 3600 + int(mnt) * 60 + int(s) + int(frac.ljust(3, "0")) / 1000


def format_srt_time(seconds: float) -> str:
    total_ms = int(round(seconds * 1000))
    h, rem = divmod(total_ms, 3_600_000)
    m, rem = divmod(rem, 60_000)
    s, ms = divmod(rem, 1000)
    return f"{h:02d}:{m:02d}:{s:02d},{ms:03d}"


def format_ass_time(seconds: float) -> str:
    """ASS timestamps are ``H:MM:SS.cc`` (centiseconds)."""
    total_cs = int(round(seconds * 100))
    h, rem = divmod(total_cs, 360_000)
    m, rem = divmod(rem, 6000)
    s, cs = divmod(rem, 100)
    return f"{h}:{m:02d}:{s:02d}.{cs:02d}"


def parse_ass_time(text: str) -> float:
    m = _ASS_TIME.fullmatch(text.strip())
    if m is None:
        raise ValueError(f"Invalid ASS timestamp: {text!r}")
    h, mnt, s, cs = m.groups()
    return int(h) * 3600 + int(mnt) * 60 + int(s) + int(cs) / 100


def srt_to_ass_time(text: str) -> str:
    """'00:00:05,250' -> '0:00:05.25'"""
    return format_ass_time(parse_srt_time(text))


def parse_srt(text: str) -> list[SubtitleEntry]:
    """Parse SRT text into cues. Malformed blocks are skipped."""
    text = text.lstrip("\ufeff").replace("\r\n", "\n").replace("\r", "\n")
    entries: list[SubtitleEntry] = []
    for block in re.split(r"\n\s*\n", text.strip()):
        lines = block.split("\n")
        if len(lines) < 2:
            continue
        # The sequence number is optional in the wild
        if "-->" in lines[0]:
            timing, body = lines[0], lines[1:]
            index = len(entries) + 1
        else:
            timing, body = lines[1], lines[2:]
            try:
                index = int(lines[0].strip())
            except ValueError:
                index = len(entries) + 1
        try:
            start_text, end_text = (part.strip() for part in timing.split("-->", 1))
            start = parse_srt_time(start_text)
            end = parse_srt_time(end_text.split()[0])
        except ValueError:
            logger.warning("Skipping malformed subtitle block: %r", block[:80])
            continue
        entries.append(SubtitleEntry(index=index, start=start, end=end, text="\n".join(body).strip()))
    return entries


def write_srt(entries: list[SubtitleEntry], path: Path) -> Path:
    lines: list[str] = []
    for i, entry in enumerate(entries, 1):
        lines.append(str(i))
        lines.append(f"{format_srt_time(entry.start)} --> {format_srt_time(entry.end)}")
        lines.append(entry.text)
        lines.append("")
    path.write_text("\n".join(lines), encoding="utf-8")
    return path


def escape_ass_text(text: str) -> str:
    text = text.replace("\\", "\\\\").replace("{", "\\{").replace("}", "\\}")
    return text.replace("\n", "\\N")


def srt_to_ass(
    srt_text: str,
    width: int = 1920,
    height: int = 1080,
    font: str = "Arial",
    size: int = 24,
) -> str:
    """Convert SRT text to a single-style ASS script."""
    header = ASS_HEADER.format(
        width=width, height=height, font=font, size=size, margin=max(20, height // 27)
    )
    dialogue = [
        "Dialogue: 0,{start},{end},Default,,0,0,0,,{text}".format(
            start=format_ass_time(e.start),
            end=format_ass_time(e.end),
            text=escape_ass_text(e.text),
        )
        for e in parse_srt(srt_text)
    ]
    return header + "\n".join(dialogue) + "\n"


def escape_filter_path(path: str | Path) -> str:
    """Quote a file path for use as a filter option value."""
    text = str(path).replace("\\", "/")
    text = text.replace(":", r"\:").replace("'", r"\'")
    return f"'{text}'"


def is_filter_safe(path: str | Path) -> bool:
    """True when a path has no drive-letter colon and is pure ASCII."""
    text = str(path)
    return text.isascii() and ":" not in text
