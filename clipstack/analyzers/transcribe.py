"""Speech-to-text for clips using OpenAI Whisper, producing subtitle cues."""

import logging
import tempfile
from pathlib import Path

from clipstack.ffutil import FFmpeg
from clipstack.models import SubtitleEntry
from clipstack.subtitles import write_srt

logger = logging.getLogger(__name__)


def transcribe(
    input_path: Path,
    ffmpeg: FFmpeg,
    model: str = "base",
    language: str | None = None,
) -> list[SubtitleEntry]:
    """Extract audio, run Whisper, and return timed subtitle entries."""
    import whisper

    with tempfile.TemporaryDirectory() as tmpdir:
        wav_path = Path(tmpdir) / "audio.wav"
        ffmpeg.extract_audio(input_path, wav_path)

        logger.info("Transcribing %s with Whisper model %r", input_path, model)
        whisper_model = whisper.load_model(model)
        result = whisper_model.transcribe(str(wav_path), language=language)

    entries: list[SubtitleEntry] = []
    for seg in result["segments"]:
        text = seg["text"].strip()
        if not text:
            continue
        entries.append(
            SubtitleEntry(index=len(entries) + 1, start=seg["start"], end=seg["end"], text=text)
        )
    return entries


def transcribe_to_srt(
    input_path: Path,
    output_path: Path,
    ffmpeg: FFmpeg,
    model: str = "base",
    language: str | None = None,
) -> Path:
    """Transcribe a clip and write the cues as an SRT file for burn-in."""
    return write_srt(transcribe(input_path, ffmpeg, model=model, language=language), output_path)
