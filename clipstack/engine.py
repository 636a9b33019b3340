"""Orchestrator: plans a Timeline export and runs its steps through ffmpeg."""

import logging
import tempfile
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable

from clipstack.compiler import compile_timeline
from clipstack.errors import ConfigurationError, ExportError
from clipstack.ffutil import FFmpeg
from clipstack.manifest import EngineConfig
from clipstack.models import AudioMix, Clip, ExportPlan, MediaInfo, PipConfig, Timeline

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".mp4", ".mov")

ProgressCallback = Callable[[str, float], None]


@dataclass
class ExportResult:
    output_path: Path
    strategy: str
    steps_run: int = 0
    duration: float = 0.0


def _absolute_paths(timeline: Timeline) -> Timeline:
    return replace(
        timeline,
        clips=[replace(c, source=Path(c.source).absolute()) for c in timeline.clips],
        subtitles=Path(timeline.subtitles).absolute() if timeline.subtitles is not None else None,
    )


class Exporter:
    """Validates, compiles and executes timeline exports.

    ``execute`` blocks; ``submit`` runs the same work on a single background
    worker and returns a Future. A started export cannot be cancelled.
    """

    def __init__(self, ffmpeg: FFmpeg | None = None, config: EngineConfig | None = None):
        self.config = config or EngineConfig()
        self.ffmpeg = ffmpeg or FFmpeg(self.config.ffmpeg_path, self.config.ffprobe_path)
        self._pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="clipstack-export")

    @property
    def workdir(self) -> Path:
        return Path(self.config.temp_dir or tempfile.gettempdir()).absolute()

    def validate(self, timeline: Timeline, output: Path) -> None:
        """Raise ConfigurationError for anything detectable without ffmpeg."""
        if output.suffix.lower() not in SUPPORTED_EXTENSIONS:
            raise ConfigurationError(
                f"Output must end with {' or '.join(SUPPORTED_EXTENSIONS)}, got {output.name!r}"
            )
        try:
            timeline.validate()
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

        missing = sorted({str(c.source) for c in timeline.clips if not c.source.is_file()})
        if missing:
            raise ConfigurationError(f"Input file not found: {', '.join(missing)}")
        if timeline.subtitles is not None and not timeline.subtitles.is_file():
            raise ConfigurationError(f"Subtitle file not found: {timeline.subtitles}")

    def probe(self, timeline: Timeline) -> dict[Path, MediaInfo]:
        media: dict[Path, MediaInfo] = {}
        for clip in timeline.clips:
            if clip.source not in media:
                media[clip.source] = self.ffmpeg.probe_media(clip.source)
        return media

    def plan(self, timeline: Timeline, output: Path, token: str | None = None) -> ExportPlan:
        # Steps that burn subtitles run inside the work directory.
        output = Path(output).absolute()
        timeline = _absolute_paths(timeline)
        self.validate(timeline, output)
        media = self.probe(timeline)
        subtitles_text = None
        if timeline.subtitles is not None:
            subtitles_text = timeline.subtitles.read_text(encoding="utf-8-sig")
        return compile_timeline(
            timeline,
            media,
            output,
            self.workdir,
            subtitles_text=subtitles_text,
            config=self.config,
            token=token or f"clipstack_{uuid.uuid4().hex[:12]}",
        )

    def execute(
        self,
        timeline: Timeline,
        output: str | Path,
        on_progress: ProgressCallback | None = None,
    ) -> ExportResult:
        """Run the full export and return the verified output.

        Args:
            timeline: What to render.
            output: Destination file (.mp4 or .mov).
            on_progress: Optional callback(stage_name, fraction_complete).
        """

        def _progress(stage: str, frac: float) -> None:
            if on_progress:
                on_progress(stage, frac)

        output = Path(output).absolute()
        _progress("Validating timeline", 0.0)
        plan = self.plan(timeline, output)
        logger.info("Exporting %s (%s, %d steps)", output, plan.strategy, len(plan.steps))

        tracked: list[Path] = []
        final_started = False
        succeeded = False
        try:
            for path, text in plan.staged_files.items():
                tracked.append(path)
                path.write_text(text, encoding="utf-8")
            tracked += [p for p in plan.temp_files if p not in tracked]

            total = len(plan.steps)
            for i, step in enumerate(plan.steps):
                _progress(f"Running {step.label}", 0.05 + 0.9 * i / total)
                final_started = step.output == output
                result = self.ffmpeg.run_step(step)
                if not result.ok:
                    raise ExportError(
                        f"Step '{step.label}' failed", step=step.label, diagnostic=result.diagnostic()
                    )
                if not step.output.exists():
                    raise ExportError(
                        f"Step '{step.label}' reported success but produced no output file",
                        step=step.label,
                    )
            succeeded = True
        finally:
            for path in tracked:
                path.unlink(missing_ok=True)
            if not succeeded and final_started:
                output.unlink(missing_ok=True)
            logger.debug("Removed %d intermediate files", len(tracked))

        _progress("Verifying result", 0.97)
        duration = self.ffmpeg.probe_duration(output)
        _progress("Done", 1.0)
        return ExportResult(
            output_path=output,
            strategy=plan.strategy,
            steps_run=len(plan.steps),
            duration=duration,
        )

    def submit(
        self,
        timeline: Timeline,
        output: str | Path,
        on_progress: ProgressCallback | None = None,
    ) -> Future:
        """Run ``execute`` on the background worker."""
        return self._pool.submit(self.execute, timeline, output, on_progress)

    def composite_pip(
        self,
        screen: Path,
        webcam: Path,
        output: str | Path,
        pip: PipConfig | None = None,
        audio_mix: AudioMix | None = None,
        width: int = 1920,
        height: int = 1080,
        on_progress: ProgressCallback | None = None,
    ) -> ExportResult:
        """Overlay a webcam recording on a screen recording of the same session."""
        screen, webcam = Path(screen), Path(webcam)
        for path in (screen, webcam):
            if not path.is_file():
                raise ConfigurationError(f"Input file not found: {path}")

        screen_duration = self.ffmpeg.probe_duration(screen)
        if screen_duration <= 0:
            raise ConfigurationError(f"Could not determine duration of {screen}")
        webcam_duration = self.ffmpeg.probe_duration(webcam) or screen_duration

        timeline = Timeline(
            clips=[
                Clip(source=screen, duration=screen_duration),
                Clip(source=webcam, duration=min(webcam_duration, screen_duration), track=1),
            ],
            width=width,
            height=height,
            pip=pip or PipConfig(),
            audio_mix=audio_mix or AudioMix(),
        )
        return self.execute(timeline, output, on_progress=on_progress)

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)
