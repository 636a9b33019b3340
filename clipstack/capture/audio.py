"""System-audio loopback capture into a 16-bit PCM WAV file."""

import logging
import queue
import threading
import time
import wave
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import numpy as np

from clipstack.errors import AudioDeviceError

logger = logging.getLogger(__name__)

LOOPBACK_HINTS = ("loopback", "monitor", "stereo mix", "what u hear")
# Preference order when negotiating with the device
SAMPLE_FORMATS = ("float32", "int16", "uint8")


@dataclass
class AudioStreamInfo:
    samplerate: int
    channels: int
    dtype: str
    device: str = ""


def normalize_samples(block: np.ndarray) -> np.ndarray:
    """Map a block of device samples to float32 in [-1, 1]."""
    kind = block.dtype
    if kind in (np.float32, np.float64):
        out = block.astype(np.float32)
    elif kind == np.int16:
        out = block.astype(np.float32) / np.iinfo(np.int16).max
    elif kind == np.uint16:
        out = block.astype(np.float32) / np.iinfo(np.uint16).max * 2.0 - 1.0
    elif kind == np.uint8:
        out = (block.astype(np.float32) - 128.0) / 128.0
    else:
        raise ValueError(f"Unsupported sample format: {kind}")
    return np.clip(out, -1.0, 1.0)


def to_pcm16(samples: np.ndarray) -> bytes:
    clipped = np.clip(samples, -1.0, 1.0)
    return (clipped * np.iinfo(np.int16).max).astype("<i2").tobytes()


def find_loopback_device(devices: list[dict]) -> int | None:
    """Index of the first input device that looks like a loopback/monitor."""
    for index, device in enumerate(devices):
        if device.get("max_input_channels", 0) <= 0:
            continue
        name = str(device.get("name", "")).lower()
        if any(hint in name for hint in LOOPBACK_HINTS):
            return index
    return None


def negotiate_format(check: Callable[[str], None]) -> str:
    """First format in SAMPLE_FORMATS that ``check`` accepts (does not raise for)."""
    errors: list[str] = []
    for dtype in SAMPLE_FORMATS:
        try:
            check(dtype)
        except Exception as e:
            errors.append(f"{dtype}: {e}")
            continue
        return dtype
    raise AudioDeviceError("No supported sample format (" + "; ".join(errors) + ")")


def open_loopback_stream(callback):
    """Open the system loopback device via sounddevice. Not started."""
    try:
        import sounddevice as sd
    except OSError as e:
        # Raised when the PortAudio library itself is missing
        raise AudioDeviceError(f"Audio backend unavailable: {e}") from e

    try:
        devices = list(sd.query_devices())
        index = find_loopback_device(devices)
        if index is None:
            index = sd.default.device[0]
        if index is None or index < 0:
            raise AudioDeviceError("No loopback or default input device available")

        device = sd.query_devices(index)
        samplerate = int(device["default_samplerate"])
        channels = max(1, min(2, int(device["max_input_channels"])))
        dtype = negotiate_format(
            lambda dt: sd.check_input_settings(
                device=index, channels=channels, dtype=dt, samplerate=samplerate
            )
        )
        stream = sd.InputStream(
            device=index,
            channels=channels,
            samplerate=samplerate,
            dtype=dtype,
            callback=callback,
        )
    except sd.PortAudioError as e:
        raise AudioDeviceError(f"Failed to open audio device: {e}") from e

    logger.info("Audio device %s: %d Hz, %d ch, %s", device["name"], samplerate, channels, dtype)
    return stream, AudioStreamInfo(samplerate, channels, dtype, str(device["name"]))


class AudioCaptureThread(threading.Thread):
    """Pulls device blocks into a WAV file until stopped.

    Every poll interval either writes what the device delivered or, if nothing
    arrived, the same span of silence so the sample count tracks wall time.
    """

    def __init__(
        self,
        output_path: Path,
        opener=open_loopback_stream,
        poll_interval: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(name="audio-capture", daemon=True)
        self.output_path = Path(output_path)
        self.poll_interval = poll_interval
        self._opener = opener
        self._clock = clock
        self._blocks: queue.Queue = queue.Queue()
        self._stop_event = threading.Event()
        self._ready = threading.Event()
        self.error: AudioDeviceError | None = None
        self.info: AudioStreamInfo | None = None
        self.started_at: float | None = None
        self.silence_blocks = 0

    def _on_block(self, indata, frames, time_info, status) -> None:
        if status:
            logger.debug("Audio stream status: %s", status)
        self._blocks.put(indata.copy())

    def run(self) -> None:
        try:
            stream, info = self._opener(self._on_block)
        except AudioDeviceError as e:
            self.error = e
            self._ready.set()
            return
        try:
            stream.start()
        except Exception as e:
            stream.close()
            self.error = AudioDeviceError(f"Failed to start audio stream: {e}")
            self._ready.set()
            return

        self.info = info
        self.started_at = self._clock()
        self._ready.set()
        logger.info("Audio capture started -> %s", self.output_path)

        silence = np.zeros(int(info.samplerate * self.poll_interval) * info.channels, dtype=np.float32)
        try:
            with wave.open(str(self.output_path), "wb") as wav:
                wav.setnchannels(info.channels)
                wav.setsampwidth(2)
                wav.setframerate(info.samplerate)
                while not self._stop_event.is_set():
                    try:
                        block = self._blocks.get(timeout=self.poll_interval)
                    except queue.Empty:
                        wav.writeframes(to_pcm16(silence))
                        self.silence_blocks += 1
                        continue
                    wav.writeframes(to_pcm16(normalize_samples(block)))
                # Flush whatever arrived between the last poll and the stop signal.
                while True:
                    try:
                        block = self._blocks.get_nowait()
                    except queue.Empty:
                        break
                    wav.writeframes(to_pcm16(normalize_samples(block)))
        finally:
            stream.stop()
            stream.close()
            logger.info("Audio capture finished (%d silent blocks)", self.silence_blocks)

    def wait_ready(self, timeout: float | None = None) -> bool:
        return self._ready.wait(timeout)

    def stop(self, timeout: float | None = None) -> bool:
        """Signal cancellation and join. Returns False if the thread is still alive."""
        self._stop_event.set()
        if self.is_alive():
            self.join(timeout)
        return not self.is_alive()


def start_audio_capture(
    output_path: Path,
    opener=open_loopback_stream,
    poll_interval: float = 0.1,
    ready_timeout: float = 5.0,
    clock: Callable[[], float] = time.monotonic,
) -> AudioCaptureThread:
    """Start capturing; raises AudioDeviceError if the device cannot be opened."""
    thread = AudioCaptureThread(output_path, opener=opener, poll_interval=poll_interval, clock=clock)
    thread.start()
    if not thread.wait_ready(ready_timeout):
        thread.stop(timeout=0)
        raise AudioDeviceError("Timed out waiting for the audio device")
    if thread.error is not None:
        thread.join()
        raise thread.error
    return thread
