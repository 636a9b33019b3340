"""FFmpeg/ffprobe subprocess helpers."""

import logging
import re
import shutil
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path

from clipstack.errors import EngineInvocationError, FFmpegNotFoundError
from clipstack.models import MediaInfo, TranscodeStep

logger = logging.getLogger(__name__)

PACKAGE_BIN = Path(__file__).parent / "bin"

WELL_KNOWN_DIRS: dict[str, list[Path]] = {
    "win32": [
        Path("C:/ffmpeg/bin"),
        Path("C:/Program Files/ffmpeg/bin"),
        Path("C:/Program Files (x86)/ffmpeg/bin"),
        Path.home() / "scoop" / "shims",
        Path("C:/ProgramData/chocolatey/bin"),
    ],
    "darwin": [
        Path("/opt/homebrew/bin"),
        Path("/usr/local/bin"),
        Path("/opt/local/bin"),
    ],
    "linux": [
        Path("/usr/bin"),
        Path("/usr/local/bin"),
        Path("/snap/bin"),
    ],
}

_AUDIO_STREAM = re.compile(r"Stream #\d+:\d+.*?: Audio:")


def _executable_name(name: str) -> str:
    return f"{name}.exe" if sys.platform == "win32" else name


def bundled_dirs() -> list[Path]:
    """Directories shipped alongside the application."""
    return [Path(sys.executable).resolve().parent, PACKAGE_BIN]


def locate_binary(
    name: str,
    bundled: list[Path] | None = None,
    search_dirs: list[Path] | None = None,
) -> Path:
    """Find ``name`` next to the app, then on PATH, then in well-known dirs."""
    exe = _executable_name(name)
    bundled = bundled_dirs() if bundled is None else bundled
    if search_dirs is None:
        search_dirs = WELL_KNOWN_DIRS.get(sys.platform, WELL_KNOWN_DIRS["linux"])

    tried: list[str] = []
    for directory in bundled:
        candidate = directory / exe
        tried.append(str(candidate))
        if candidate.is_file():
            return candidate

    on_path = shutil.which(name)
    tried.append("PATH")
    if on_path:
        return Path(on_path)

    for directory in search_dirs:
        candidate = directory / exe
        tried.append(str(candidate))
        if candidate.is_file():
            return candidate

    raise FFmpegNotFoundError(f"{name} not found (tried: {', '.join(tried)})")


@dataclass
class Invocation:
    """Exit status and captured output of one ffmpeg/ffprobe run."""

    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def diagnostic(self, limit: int = 2000) -> str:
        text = self.stderr.strip()
        return text[-limit:] if text else f"exit code {self.returncode}"


class FFmpeg:
    """Adapter around the ffmpeg and ffprobe executables."""

    def __init__(self, ffmpeg_path: str | Path | None = None, ffprobe_path: str | Path | None = None):
        self._ffmpeg = Path(ffmpeg_path) if ffmpeg_path else None
        self._ffprobe = Path(ffprobe_path) if ffprobe_path else None

    @property
    def ffmpeg(self) -> Path:
        if self._ffmpeg is None:
            self._ffmpeg = locate_binary("ffmpeg")
            logger.debug("Using ffmpeg at %s", self._ffmpeg)
        return self._ffmpeg

    @property
    def ffprobe(self) -> Path:
        if self._ffprobe is None:
            self._ffprobe = locate_binary("ffprobe")
            logger.debug("Using ffprobe at %s", self._ffprobe)
        return self._ffprobe

    def check(self) -> None:
        """Raise FFmpegNotFoundError if either executable cannot be resolved."""
        self.ffmpeg
        self.ffprobe

    def _run(self, cmd: list[str], cwd: Path | None = None) -> Invocation:
        logger.debug("Running: %s", " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                cwd=cwd,
            )
        except OSError as e:
            raise EngineInvocationError(f"Failed to execute {cmd[0]}: {e}") from e
        return Invocation(result.returncode, result.stdout or "", result.stderr or "")

    def invoke(self, args: list[str] | tuple[str, ...], cwd: Path | None = None) -> Invocation:
        return self._run([str(self.ffmpeg), *args], cwd=cwd)

    def run_step(self, step: TranscodeStep) -> Invocation:
        logger.info("Transcode step %s -> %s", step.label, step.output)
        return self.invoke(step.args, cwd=step.cwd)

    def spawn(self, step: TranscodeStep, log_path: Path | None = None) -> subprocess.Popen:
        """Start a step as a background process with a writable stdin.

        stderr goes to ``log_path`` (or is discarded) so a long-running
        process never blocks on a full pipe.
        """
        cmd = [str(self.ffmpeg), *step.args]
        logger.debug("Spawning: %s", " ".join(cmd))
        try:
            if log_path is None:
                return subprocess.Popen(
                    cmd,
                    stdin=subprocess.PIPE,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                    cwd=step.cwd,
                )
            with open(log_path, "wb") as log:
                return subprocess.Popen(
                    cmd,
                    stdin=subprocess.PIPE,
                    stdout=subprocess.DEVNULL,
                    stderr=log,
                    cwd=step.cwd,
                )
        except OSError as e:
            raise EngineInvocationError(f"Failed to start {cmd[0]}: {e}") from e

    def probe_duration(self, path: Path) -> float:
        """Duration in seconds, or 0.0 when it cannot be determined."""
        cmd = [
            str(self.ffprobe),
            "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            str(path),
        ]
        try:
            result = self._run(cmd)
        except EngineInvocationError as e:
            logger.warning("Could not probe duration of %s: %s", path, e)
            return 0.0
        return parse_duration(result.stdout)

    def has_audio_stream(self, path: Path) -> bool:
        # ffmpeg with no output exits non-zero but still lists the streams
        try:
            result = self.invoke(["-hide_banner", "-i", str(path)])
        except EngineInvocationError as e:
            logger.warning("Could not probe streams of %s: %s", path, e)
            return False
        return has_audio_marker(result.stderr)

    def probe_media(self, path: Path) -> MediaInfo:
        return MediaInfo(duration=self.probe_duration(path), has_audio=self.has_audio_stream(path))

    def extract_audio(self, input_path: Path, output_path: Path, sample_rate: int = 16000) -> Path:
        """Extract audio as mono WAV at the given sample rate (for Whisper)."""
        result = self.invoke([
            "-y", "-hide_banner", "-loglevel", "error",
            "-i", str(input_path),
            "-vn",
            "-acodec", "pcm_s16le",
            "-ar", str(sample_rate),
            "-ac", "1",
            str(output_path),
        ])
        if not result.ok:
            raise EngineInvocationError(f"Audio extraction failed: {result.diagnostic()}")
        return output_path


def parse_duration(stdout: str) -> float:
    """Parse ffprobe's single-line duration output; unknown -> 0.0."""
    for line in stdout.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            value = float(line)
        except ValueError:
            logger.warning("Unparsable duration from ffprobe: %r", line)
            return 0.0
        return value if value > 0 else 0.0
    return 0.0


def has_audio_marker(stderr: str) -> bool:
    return _AUDIO_STREAM.search(stderr) is not None
