"""Shared test fixtures."""

import subprocess
from pathlib import Path

import pytest

from clipstack.ffutil import Invocation
from clipstack.manifest import EngineConfig
from clipstack.models import Clip, MediaInfo, Timeline

FIXTURES_DIR = Path(__file__).parent / "fixtures"


class FakeProcess:
    """Stands in for the background screen-capture Popen."""

    def __init__(self, exits_on_quit: bool = True, returncode: int | None = None):
        self.exits_on_quit = exits_on_quit
        self.returncode = returncode
        self.stdin_data = b""
        self.killed = False
        self.stdin = self

    # stdin protocol
    def write(self, data: bytes) -> None:
        self.stdin_data += data

    def flush(self) -> None:
        pass

    def close(self) -> None:
        if self.exits_on_quit and b"q" in self.stdin_data:
            self.returncode = 0

    # Popen protocol
    def poll(self):
        return self.returncode

    def wait(self, timeout=None):
        if self.returncode is None:
            raise subprocess.TimeoutExpired("ffmpeg", timeout)
        return self.returncode

    def kill(self) -> None:
        self.killed = True
        self.returncode = -9

    def terminate(self) -> None:
        self.returncode = -15


class FakeFFmpeg:
    """Records steps instead of running ffmpeg; creates their output files."""

    def __init__(
        self,
        media: dict | None = None,
        fail_on: str | None = None,
        skip_output: str | None = None,
        watch: Path | None = None,
    ):
        self.media = media or {}
        self.watch = watch
        self.fail_on = fail_on
        self.skip_output = skip_output
        self.steps = []
        self.spawned = []
        self.process = FakeProcess()
        self.capture_log = b""
        self.existing_during_run: list[set[str]] = []
        self.missing_inputs: list[str] = []

    def run_step(self, step) -> Invocation:
        self.steps.append(step)
        if self.watch is not None:
            self.existing_during_run.append({p.name for p in self.watch.iterdir()})
        # Relative paths resolve against the step's cwd, as in a real child process.
        cwd = Path(step.cwd) if step.cwd is not None else Path.cwd()
        self.missing_inputs += [str(cwd / p) for p in step.inputs if not (cwd / p).exists()]
        if step.label == self.fail_on:
            return Invocation(1, stderr="Error while filtering: Invalid argument")
        if step.label != self.skip_output:
            (cwd / step.output).write_bytes(b"media")
        return Invocation(0)

    def spawn(self, step, log_path=None):
        self.spawned.append(step)
        if log_path is not None:
            log_path.write_bytes(self.capture_log)
        step.output.write_bytes(b"video")
        return self.process

    def probe_media(self, path: Path) -> MediaInfo:
        return self.media.get(Path(path), MediaInfo(duration=5.0, has_audio=True))

    def probe_duration(self, path: Path) -> float:
        if Path(path) in self.media:
            return self.media[Path(path)].duration
        return 5.0


@pytest.fixture
def sample_timeline_path() -> Path:
    return FIXTURES_DIR / "sample_timeline.json"


@pytest.fixture
def sample_srt_path() -> Path:
    return FIXTURES_DIR / "sample.srt"


@pytest.fixture
def ffmpeg_factory(engine_config):
    """Build a FakeFFmpeg that snapshots the export work directory."""
    def _make(**kwargs) -> FakeFFmpeg:
        return FakeFFmpeg(watch=engine_config.temp_dir, **kwargs)
    return _make


@pytest.fixture
def fake_ffmpeg(ffmpeg_factory) -> FakeFFmpeg:
    return ffmpeg_factory()


@pytest.fixture
def engine_config(tmp_path) -> EngineConfig:
    work = tmp_path / "work"
    work.mkdir()
    return EngineConfig(temp_dir=work, capture_warmup=0.0)


@pytest.fixture
def make_source(tmp_path):
    """Create an (empty) source file and return its path."""
    def _make(name: str) -> Path:
        path = tmp_path / name
        path.write_bytes(b"source")
        return path
    return _make


@pytest.fixture
def two_clip_timeline(make_source) -> Timeline:
    a, b = make_source("a.mp4"), make_source("b.mp4")
    return Timeline(
        clips=[
            Clip(source=a, duration=3.0, start_time=0.0),
            Clip(source=b, duration=2.0, start_time=3.0),
        ]
    )


@pytest.fixture
def make_process():
    return FakeProcess
