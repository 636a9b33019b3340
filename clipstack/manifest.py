"""JSON manifest schema, the contract between CLI/API and engine."""

import json
from dataclasses import dataclass, field
from pathlib import Path

from clipstack.models import AudioMix, Clip, ColorFilters, PipConfig, Timeline


@dataclass
class EngineConfig:
    """Tunables for locating ffmpeg and for capture timing."""

    ffmpeg_path: Path | None = None
    ffprobe_path: Path | None = None
    temp_dir: Path | None = None
    # Delay between spawning screen capture and starting audio capture
    capture_warmup: float = 0.5
    # Added to the configured PiP delay offset when mixing system audio
    webcam_latency_buffer: float = 0.2
    stop_timeout: float = 5.0
    audio_join_timeout: float = 3.0
    capture_framerate: int = 30
    audio_poll_interval: float = 0.1


@dataclass
class Manifest:
    """Top-level render manifest."""

    output: Path
    timeline: Timeline
    version: str = "1"
    engine: EngineConfig = field(default_factory=EngineConfig)


def engine_config_from_dict(data: dict) -> EngineConfig:
    data = dict(data)
    for key in ("ffmpeg_path", "ffprobe_path", "temp_dir"):
        if data.get(key):
            data[key] = Path(data[key])
    return EngineConfig(**data)


def clip_from_dict(data: dict) -> Clip:
    if "source" not in data or "duration" not in data:
        raise ValueError("Each clip must contain 'source' and 'duration' fields")
    filters = ColorFilters(**data["filters"]) if data.get("filters") else None
    return Clip(
        source=Path(data["source"]),
        duration=float(data["duration"]),
        trim_start=float(data.get("trim_start", 0.0)),
        start_time=float(data.get("start_time", 0.0)),
        track=int(data.get("track", 0)),
        filters=filters,
    )


def timeline_from_dict(data: dict) -> Timeline:
    """Build a Timeline from the manifest/API dictionary form."""
    if not data.get("clips"):
        raise ValueError("Timeline must contain a non-empty 'clips' list")

    pip = PipConfig(**data["pip"]) if data.get("pip") else None
    audio_mix = AudioMix(**data["audio_mix"]) if data.get("audio_mix") else None
    subtitles = Path(data["subtitles"]) if data.get("subtitles") else None
    corners = {int(k): v for k, v in data.get("track_corners", {}).items()}

    return Timeline(
        clips=[clip_from_dict(c) for c in data["clips"]],
        width=int(data.get("width", 1920)),
        height=int(data.get("height", 1080)),
        preset=data.get("preset", "medium"),
        crf=int(data.get("crf", 23)),
        pip=pip,
        audio_mix=audio_mix,
        subtitles=subtitles,
        track_corners=corners,
    )


def load_manifest(path: str | Path) -> Manifest:
    """Load and validate a render manifest from a JSON file."""
    path = Path(path)
    data = json.loads(path.read_text())

    if "output" not in data or "clips" not in data:
        raise ValueError("Manifest must contain 'output' and 'clips' fields")

    engine = engine_config_from_dict(data["engine"]) if "engine" in data else EngineConfig()

    return Manifest(
        version=data.get("version", "1"),
        output=Path(data["output"]),
        timeline=timeline_from_dict(data),
        engine=engine,
    )
