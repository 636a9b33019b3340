#!/usr/bin/env python3
"""Generate synthetic clips and a timeline manifest for trying ClipStack.

Produces, in the target directory:
  clip_a.mp4   3s 440 Hz tone + blue      (track 0, starts at 0s)
  clip_b.mp4   2s 880 Hz tone + red       (track 0, starts at 3s)
  webcam.mp4   5s silent green            (track 1 overlay)
  subs.srt     two cues
  timeline.json
"""

import json
import subprocess
import sys
from pathlib import Path

CLIPS = [
    ("clip_a.mp4", "blue", 440, 3),
    ("clip_b.mp4", "red", 880, 2),
]

SUBS = """\
1
00:00:00,500 --> 00:00:02,250
First clip

2
00:00:03,000 --> 00:00:04,750
Second clip
"""


def _make_clip(output: Path, color: str, freq: int | None, duration: float) -> None:
    cmd = [
        "ffmpeg", "-y", "-hide_banner", "-loglevel", "error",
        "-f", "lavfi", "-i", f"color=c={color}:s=640x360:d={duration}:r=30",
    ]
    if freq is not None:
        cmd += ["-f", "lavfi", "-i", f"sine=f={freq}:d={duration}", "-c:a", "aac"]
    cmd += ["-c:v", "libx264", "-pix_fmt", "yuv420p", "-shortest", str(output)]
    subprocess.run(cmd, check=True)
    print(f"Generated: {output}")


def generate(out_dir: Path) -> None:
    out_dir.mkdir(parents=True, exist_ok=True)
    start = 0.0
    clips = []
    for name, color, freq, duration in CLIPS:
        _make_clip(out_dir / name, color, freq, duration)
        clips.append({"source": str(out_dir / name), "duration": duration, "start_time": start})
        start += duration

    _make_clip(out_dir / "webcam.mp4", "green", None, start)
    clips.append({"source": str(out_dir / "webcam.mp4"), "duration": start, "track": 1})

    (out_dir / "subs.srt").write_text(SUBS, encoding="utf-8")

    manifest = {
        "version": "1",
        "output": str(out_dir / "render.mp4"),
        "width": 1280,
        "height": 720,
        "clips": clips,
        "pip": {"corner": "bottom-right", "size": "small", "padding": 20},
        "subtitles": str(out_dir / "subs.srt"),
    }
    (out_dir / "timeline.json").write_text(json.dumps(manifest, indent=2))
    print(f"Manifest: {out_dir / 'timeline.json'}")


if __name__ == "__main__":
    out = Path(sys.argv[1]) if len(sys.argv) > 1 else Path("tests/fixtures/generated")
    generate(out)
