"""Exception types shared across ClipStack."""


class ClipStackError(Exception):
    pass


class ConfigurationError(ClipStackError, ValueError):
    """Raised before any ffmpeg call when a timeline or output is invalid."""
    pass


class FFmpegNotFoundError(ClipStackError, RuntimeError):
    pass


class EngineInvocationError(ClipStackError, RuntimeError):
    """The ffmpeg process could not be spawned at all."""
    pass


class ExportError(ClipStackError, RuntimeError):
    """A transcode step failed or produced no output file."""

    def __init__(self, message: str, step: str | None = None, diagnostic: str = ""):
        self.step = step
        self.diagnostic = diagnostic
        if diagnostic:
            message = f"{message}: {diagnostic}"
        super().__init__(message)


class CaptureBusyError(ClipStackError, RuntimeError):
    pass


class CaptureNotActiveError(ClipStackError, RuntimeError):
    pass


class AudioDeviceError(ClipStackError, RuntimeError):
    """No usable audio loopback device; capture continues video-only."""
    pass
