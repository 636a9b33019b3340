"""Thin CLI entry point: renders timelines or drives a recording."""

import argparse
import logging
import sys
from pathlib import Path

from clipstack.errors import ClipStackError
from clipstack.ffutil import FFmpeg
from clipstack.manifest import EngineConfig, load_manifest
from clipstack.models import AudioMix, PipConfig


def _render(args: argparse.Namespace) -> int:
    from clipstack.engine import Exporter

    m = load_manifest(args.manifest)
    output = args.output or m.output
    exporter = Exporter(config=m.engine)
    exporter.ffmpeg.check()

    def on_progress(stage: str, frac: float) -> None:
        print(f"  [{frac:4.0%}] {stage}")

    try:
        result = exporter.submit(m.timeline, output, on_progress=on_progress).result()
    finally:
        exporter.shutdown()

    print()
    print(f"Done! Output: {result.output_path}")
    print(f"  Strategy: {result.strategy} ({result.steps_run} steps)")
    print(f"  Duration: {result.duration:.2f}s")
    return 0


def _composite(args: argparse.Namespace) -> int:
    from clipstack.engine import Exporter

    exporter = Exporter()
    exporter.ffmpeg.check()
    try:
        result = exporter.composite_pip(
            args.screen,
            args.webcam,
            args.output,
            pip=PipConfig(corner=args.corner, size=args.size, padding=args.padding),
            audio_mix=AudioMix(
                include_system_audio=not args.no_system_audio,
                include_mic_audio=not args.no_mic_audio,
                delay_offset=args.delay,
            ),
        )
    finally:
        exporter.shutdown()
    print(f"Done! Output: {result.output_path} ({result.duration:.2f}s)")
    return 0


def _record(args: argparse.Namespace) -> int:
    from clipstack.capture.session import CaptureSessionManager

    config = EngineConfig(capture_warmup=args.warmup)
    ffmpeg = FFmpeg()
    ffmpeg.check()
    manager = CaptureSessionManager(ffmpeg, config)
    status = manager.start(args.output)
    if not status.audio_enabled:
        print(f"Warning: recording without system audio ({status.audio_error})", file=sys.stderr)
    try:
        input("Recording... press Enter to stop. ")
    except (KeyboardInterrupt, EOFError):
        print()
    result = manager.stop()

    print(f"Saved: {result.output_path}")
    if result.offset is not None:
        print(f"  Audio offset: {result.offset:+.3f}s")
    if result.mux_error:
        print(f"  Warning: audio could not be muxed, video only ({result.mux_error})", file=sys.stderr)
    return 0


def _transcribe(args: argparse.Namespace) -> int:
    from clipstack.analyzers.transcribe import transcribe_to_srt

    output = args.output or args.video.with_suffix(".srt")
    transcribe_to_srt(args.video, output, FFmpeg(), model=args.model, language=args.language)
    print(f"Subtitles: {output}")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="clipstack",
        description="ClipStack: timeline rendering and synced screen recording.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command")

    render = sub.add_parser("render", help="Render a timeline manifest")
    render.add_argument("manifest", type=Path, help="Path to a JSON timeline manifest")
    render.add_argument("--output", "-o", type=Path, help="Override the manifest's output path")

    comp = sub.add_parser("composite", help="Overlay a webcam recording on a screen recording")
    comp.add_argument("screen", type=Path)
    comp.add_argument("webcam", type=Path)
    comp.add_argument("--output", "-o", type=Path, required=True)
    comp.add_argument("--corner", choices=["top-left", "top-right", "bottom-left", "bottom-right"], default="bottom-right")
    comp.add_argument("--size", choices=["small", "medium", "large"], default="small")
    comp.add_argument("--padding", type=int, default=20)
    comp.add_argument("--delay", type=float, default=0.0, help="System audio delay offset (seconds)")
    comp.add_argument("--no-system-audio", action="store_true")
    comp.add_argument("--no-mic-audio", action="store_true")

    rec = sub.add_parser("record", help="Record the screen with system audio")
    rec.add_argument("output", type=Path, help="Output video file")
    rec.add_argument("--warmup", type=float, default=0.5, help="Seconds between video and audio start")

    tr = sub.add_parser("transcribe", help="Generate subtitles for a clip with Whisper")
    tr.add_argument("video", type=Path)
    tr.add_argument("--output", "-o", type=Path)
    tr.add_argument("--model", type=str, default="base", help="Whisper model size")
    tr.add_argument("--language", type=str, default=None)

    serve = sub.add_parser("serve", help="Launch the web API")
    serve.add_argument("--port", type=int, default=8321, help="Port to listen on")
    serve.add_argument("--host", type=str, default="127.0.0.1", help="Host to bind to")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "serve":
        from clipstack.web import create_app
        app = create_app()
        print(f"ClipStack API: http://{args.host}:{args.port}")
        app.run(host=args.host, port=args.port, debug=False, threaded=True)
        return

    handlers = {
        "render": _render,
        "composite": _composite,
        "record": _record,
        "transcribe": _transcribe,
    }
    try:
        sys.exit(handlers[args.command](args))
    except (ClipStackError, ValueError, FileNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
