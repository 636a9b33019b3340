"""Shared data types used across ClipStack."""

from dataclasses import dataclass, field
from pathlib import Path

TRACK_COUNT = 3
CORNERS = ("top-left", "top-right", "bottom-left", "bottom-right")

# PiP size class -> (width, height) in pixels
PIP_SIZES: dict[str, tuple[int, int]] = {
    "small": (320, 180),
    "medium": (480, 270),
    "large": (640, 360),
}


@dataclass(frozen=True)
class ColorFilters:
    """Per-clip color correction, each value in [-100, 100]."""

    brightness: float = 0.0
    contrast: float = 0.0
    saturation: float = 0.0

    def __post_init__(self) -> None:
        for name in ("brightness", "contrast", "saturation"):
            value = getattr(self, name)
            if not -100 <= value <= 100:
                raise ValueError(f"{name} must be within [-100, 100], got {value}")

    @property
    def is_identity(self) -> bool:
        return self.brightness == 0 and self.contrast == 0 and self.saturation == 0


@dataclass(frozen=True)
class Clip:
    """One trimmed segment of a source file placed on a track."""

    source: Path
    duration: float
    trim_start: float = 0.0
    start_time: float = 0.0
    track: int = 0
    filters: ColorFilters | None = None

    def __post_init__(self) -> None:
        if self.trim_start < 0:
            raise ValueError(f"trim_start must be >= 0, got {self.trim_start}")
        if self.duration <= 0:
            raise ValueError(f"duration must be > 0, got {self.duration}")
        if self.start_time < 0:
            raise ValueError(f"start_time must be >= 0, got {self.start_time}")
        if self.track not in range(TRACK_COUNT):
            raise ValueError(f"track must be 0, 1 or 2, got {self.track}")

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration

    @property
    def has_filters(self) -> bool:
        return self.filters is not None and not self.filters.is_identity


@dataclass(frozen=True)
class PipConfig:
    """Placement of an overlay (webcam) layer on the base video."""

    corner: str = "bottom-right"
    size: str = "small"
    padding: int = 20

    def __post_init__(self) -> None:
        if self.corner not in CORNERS:
            raise ValueError(f"Unknown corner {self.corner!r}")
        if self.size not in PIP_SIZES:
            raise ValueError(f"Unknown PiP size {self.size!r}")
        if self.padding < 0:
            raise ValueError("padding must be >= 0")

    @property
    def dimensions(self) -> tuple[int, int]:
        return PIP_SIZES[self.size]


@dataclass(frozen=True)
class AudioMix:
    """Which captured audio sources end up in a composite."""

    include_system_audio: bool = True
    include_mic_audio: bool = True
    delay_offset: float = 0.0


@dataclass
class Timeline:
    """Everything needed to render one export."""

    clips: list[Clip] = field(default_factory=list)
    width: int = 1920
    height: int = 1080
    preset: str = "medium"
    crf: int = 23
    pip: PipConfig | None = None
    audio_mix: AudioMix | None = None
    subtitles: Path | None = None
    track_corners: dict[int, str] = field(default_factory=dict)

    def tracks(self) -> list[list[Clip]]:
        """Clips grouped per track, sorted by start time.

        Clips sharing a start time keep the order they were added in.
        """
        grouped: list[list[tuple[int, Clip]]] = [[] for _ in range(TRACK_COUNT)]
        for order, clip in enumerate(self.clips):
            grouped[clip.track].append((order, clip))
        return [
            [clip for _, clip in sorted(items, key=lambda item: (item[1].start_time, item[0]))]
            for items in grouped
        ]

    @property
    def duration(self) -> float:
        return max((c.end_time for c in self.clips), default=0.0)

    @property
    def has_overlays(self) -> bool:
        return any(c.track > 0 for c in self.clips)

    def corner_for(self, track: int) -> str:
        if track in self.track_corners:
            return self.track_corners[track]
        if self.pip is not None:
            return self.pip.corner
        return "bottom-right" if track == 1 else "top-right"

    def validate(self) -> None:
        if not any(c.track == 0 for c in self.clips):
            raise ValueError("Track 0 must contain at least one clip")
        for track, corner in self.track_corners.items():
            if corner not in CORNERS:
                raise ValueError(f"Unknown corner {corner!r} for track {track}")


@dataclass(frozen=True)
class MediaInfo:
    """What probing told us about a source file."""

    duration: float = 0.0
    has_audio: bool = False


@dataclass(frozen=True)
class TranscodeStep:
    """One self-contained ffmpeg invocation (arguments exclude the executable)."""

    label: str
    inputs: tuple[Path, ...]
    output: Path
    args: tuple[str, ...]
    filter_graph: str = ""
    cwd: Path | None = None


@dataclass
class ExportPlan:
    """Ordered steps plus every intermediate file they create."""

    strategy: str
    steps: list[TranscodeStep]
    output: Path
    temp_files: list[Path] = field(default_factory=list)
    staged_files: dict[Path, str] = field(default_factory=dict)


@dataclass
class SubtitleEntry:
    """A single timed subtitle cue."""

    index: int
    start: float
    end: float
    text: str
