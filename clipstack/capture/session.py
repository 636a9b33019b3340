"""Screen + system-audio recording session.

A ``CaptureSessionManager`` owns at most one recording at a time. Screen video
is grabbed by a background ffmpeg process and audio by an
``AudioCaptureThread``; both start times are recorded so the audio can be
realigned against the video when the two are muxed on stop.
"""

import logging
import os
import shutil
import subprocess
import sys
import tempfile
import threading
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable

from clipstack.capture.audio import AudioCaptureThread, start_audio_capture
from clipstack.compiler import compile_capture_mux, compile_screen_capture
from clipstack.errors import (
    AudioDeviceError,
    CaptureBusyError,
    CaptureNotActiveError,
    EngineInvocationError,
    ExportError,
)
from clipstack.ffutil import FFmpeg
from clipstack.manifest import EngineConfig

logger = logging.getLogger(__name__)


class CaptureState(Enum):
    IDLE = "idle"
    STARTING = "starting"
    ACTIVE = "active"
    STOPPING = "stopping"


class StopState(Enum):
    RUNNING = "running"
    SIGNALED = "signaled"
    EXITED = "exited"
    KILLED = "killed"


class StopSequence:
    """Ask a capture process to quit, wait up to ``timeout``, then kill it.

    RUNNING -> SIGNALED -> EXITED, or SIGNALED -> KILLED on timeout. A process
    that already exited goes straight to EXITED.
    """

    def __init__(self, process: subprocess.Popen, timeout: float):
        self.process = process
        self.timeout = timeout
        self.state = StopState.RUNNING

    def signal(self) -> None:
        if self.process.poll() is not None:
            self.state = StopState.EXITED
            return
        try:
            # ffmpeg finalizes the container when it reads 'q' on stdin
            self.process.stdin.write(b"q")
            self.process.stdin.flush()
            self.process.stdin.close()
        except (AttributeError, OSError, ValueError):
            self.process.terminate()
        self.state = StopState.SIGNALED

    def wait(self) -> None:
        try:
            self.process.wait(timeout=self.timeout)
        except subprocess.TimeoutExpired:
            logger.warning("Capture process did not exit within %.1fs; killing it", self.timeout)
            self.process.kill()
            self.process.wait()
            self.state = StopState.KILLED
        else:
            self.state = StopState.EXITED

    def run(self) -> StopState:
        self.signal()
        if self.state is StopState.SIGNALED:
            self.wait()
        return self.state


def compute_offset(video_started: float, audio_started: float) -> float:
    """Seconds by which video started after audio (negative: before)."""
    return video_started - audio_started


@dataclass
class CaptureStatus:
    state: CaptureState
    output_path: Path | None = None
    audio_enabled: bool = False
    audio_error: str | None = None
    elapsed: float = 0.0

    @property
    def active(self) -> bool:
        return self.state is CaptureState.ACTIVE


@dataclass
class RecordingResult:
    output_path: Path
    offset: float | None = None
    muxed: bool = False
    mux_error: str | None = None
    audio_error: str | None = None
    stop_state: StopState = StopState.EXITED


@dataclass
class _Session:
    output_path: Path
    video_path: Path
    audio_path: Path
    log_path: Path
    process: subprocess.Popen
    video_started: float
    audio_thread: AudioCaptureThread | None = None
    audio_started: float | None = None
    audio_error: str | None = None


class CaptureSessionManager:
    """Owns the single screen+audio recording for an application."""

    def __init__(
        self,
        ffmpeg: FFmpeg,
        config: EngineConfig | None = None,
        audio_starter: Callable[..., AudioCaptureThread] = start_audio_capture,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        platform: str = sys.platform,
        display: str | None = None,
    ):
        self._ffmpeg = ffmpeg
        self._config = config or EngineConfig()
        self._audio_starter = audio_starter
        self._clock = clock
        self._sleep = sleep
        self._platform = platform
        self._display = display or os.environ.get("DISPLAY", ":0.0")
        self._lock = threading.Lock()
        self._state = CaptureState.IDLE
        self._session: _Session | None = None

    # -- queries ------------------------------------------------------------

    def status(self) -> CaptureStatus:
        with self._lock:
            session = self._session
            if session is None:
                return CaptureStatus(state=self._state)
            return CaptureStatus(
                state=self._state,
                output_path=session.output_path,
                audio_enabled=session.audio_thread is not None,
                audio_error=session.audio_error,
                elapsed=max(0.0, self._clock() - session.video_started),
            )

    def is_recording(self) -> bool:
        return self.status().active

    # -- transitions --------------------------------------------------------

    def start(self, output_path: str | Path) -> CaptureStatus:
        """Start recording to ``output_path``; raises CaptureBusyError if already recording."""
        with self._lock:
            if self._state is not CaptureState.IDLE:
                raise CaptureBusyError("Recording already in progress")
            self._state = CaptureState.STARTING

        try:
            session = self._begin(Path(output_path))
        except BaseException:
            with self._lock:
                self._state = CaptureState.IDLE
            raise

        with self._lock:
            self._session = session
            self._state = CaptureState.ACTIVE
        return self.status()

    def stop(self) -> RecordingResult:
        """Stop recording and produce the final file."""
        with self._lock:
            if self._state is not CaptureState.ACTIVE or self._session is None:
                raise CaptureNotActiveError("No recording in progress")
            session = self._session
            self._state = CaptureState.STOPPING

        try:
            return self._finish(session)
        finally:
            with self._lock:
                self._session = None
                self._state = CaptureState.IDLE

    # -- internals ----------------------------------------------------------

    def _temp_dir(self) -> Path:
        return Path(self._config.temp_dir or tempfile.gettempdir())

    def _begin(self, output_path: Path) -> _Session:
        token = uuid.uuid4().hex[:12]
        tmp = self._temp_dir()
        video_path = tmp / f"clipstack_{token}_video.mp4"
        audio_path = tmp / f"clipstack_{token}_audio.wav"
        log_path = tmp / f"clipstack_{token}_capture.log"

        step = compile_screen_capture(
            video_path, self._platform, self._config.capture_framerate, self._display
        )
        process = None
        try:
            process = self._ffmpeg.spawn(step, log_path=log_path)
            video_started = self._clock()
            logger.info("Screen capture started -> %s", video_path)
            return self._attach_audio(
                process, video_started, output_path, video_path, audio_path, log_path
            )
        except BaseException:
            if process is not None and process.poll() is None:
                process.kill()
                process.wait()
            video_path.unlink(missing_ok=True)
            log_path.unlink(missing_ok=True)
            raise

    def _attach_audio(
        self,
        process: subprocess.Popen,
        video_started: float,
        output_path: Path,
        video_path: Path,
        audio_path: Path,
        log_path: Path,
    ) -> _Session:
        # Let the grabber settle before audio starts, so audio never leads by
        # more than the measured offset
        self._sleep(self._config.capture_warmup)

        if process.poll() is not None:
            diagnostic = log_path.read_text(errors="replace") if log_path.exists() else ""
            raise EngineInvocationError(
                f"Screen capture exited early (rc={process.returncode}): {diagnostic.strip()}"
            )

        session = _Session(
            output_path=output_path,
            video_path=video_path,
            audio_path=audio_path,
            log_path=log_path,
            process=process,
            video_started=video_started,
        )
        try:
            thread = self._audio_starter(
                audio_path, poll_interval=self._config.audio_poll_interval, clock=self._clock
            )
        except AudioDeviceError as e:
            logger.warning("Audio capture unavailable, recording video only: %s", e)
            session.audio_error = str(e)
        else:
            session.audio_thread = thread
            session.audio_started = thread.started_at
        return session

    def _promote(self, video_path: Path, output_path: Path) -> None:
        if not video_path.exists():
            raise ExportError("Screen capture produced no video file", step="screen capture")
        output_path.unlink(missing_ok=True)
        shutil.move(str(video_path), str(output_path))

    def _finish(self, session: _Session) -> RecordingResult:
        stop_state = StopSequence(session.process, self._config.stop_timeout).run()
        audio_ready = session.audio_started is not None
        if session.audio_thread is not None:
            if not session.audio_thread.stop(timeout=self._config.audio_join_timeout):
                # The WAV header is only finalized once the thread exits.
                session.audio_error = (
                    f"Audio capture thread did not stop within {self._config.audio_join_timeout:.1f}s"
                )
                logger.warning("%s, keeping video-only recording", session.audio_error)
                audio_ready = False

        output = session.output_path
        try:
            if not audio_ready or not session.audio_path.exists():
                self._promote(session.video_path, output)
                logger.info("Saved video-only recording to %s", output)
                return RecordingResult(
                    output_path=output,
                    audio_error=session.audio_error,
                    stop_state=stop_state,
                )

            offset = compute_offset(session.video_started, session.audio_started)
            duration = self._ffmpeg.probe_duration(session.video_path)
            step = compile_capture_mux(session.video_path, session.audio_path, output, offset, duration)
            logger.info("Muxing recording (offset %.3fs, video %.3fs)", offset, duration)

            try:
                result = self._ffmpeg.run_step(step)
            except EngineInvocationError as e:
                error = str(e)
            else:
                if not result.ok:
                    error = result.diagnostic()
                elif not output.exists():
                    error = "mux reported success but produced no output file"
                else:
                    error = None

            if error is not None:
                logger.warning("Mux failed, keeping video-only recording: %s", error)
                self._promote(session.video_path, output)
                return RecordingResult(
                    output_path=output,
                    offset=offset,
                    mux_error=error,
                    stop_state=stop_state,
                )
            return RecordingResult(output_path=output, offset=offset, muxed=True, stop_state=stop_state)
        finally:
            session.video_path.unlink(missing_ok=True)
            session.audio_path.unlink(missing_ok=True)
            session.log_path.unlink(missing_ok=True)
