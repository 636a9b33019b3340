"""Compile a Timeline into an ordered list of ffmpeg transcode steps.

Everything here is a pure function of its arguments: media facts come in as
``MediaInfo`` values probed by the caller, subtitle text is passed in rather
than read, and files the steps need (concat lists, ASS scripts) are returned as
``ExportPlan.staged_files`` for the executor to write.
"""

import logging
from pathlib import Path

from clipstack import filtergraph as fg
from clipstack.filtergraph import FilterGraph, fmt_num, node
from clipstack.manifest import EngineConfig
from clipstack.models import (
    PIP_SIZES,
    Clip,
    ColorFilters,
    ExportPlan,
    MediaInfo,
    Timeline,
    TranscodeStep,
)
from clipstack.subtitles import escape_filter_path, is_filter_safe, srt_to_ass

logger = logging.getLogger(__name__)

BASE_ARGS = ("-y", "-hide_banner", "-loglevel", "error")
AUDIO_ARGS = ("-c:a", "aac", "-b:a", "192k", "-ar", "48000", "-ac", "2")
LAYER_FPS = 30


def video_args(preset: str, crf: int) -> list[str]:
    return ["-c:v", "libx264", "-preset", preset, "-crf", str(crf), "-pix_fmt", "yuv420p"]


# ---------------------------------------------------------------------------
# Color correction
# ---------------------------------------------------------------------------

def brightness_value(value: float) -> float:
    """[-100, 100] -> [-1, 1]"""
    return value / 100


def contrast_value(value: float) -> float:
    """[-100, 100] -> [0, 2]"""
    return 1 + value / 100


def saturation_value(value: float) -> float:
    """[-100, 100] -> [0, 2]"""
    return 1 + value / 100


def eq_filter(filters: ColorFilters | None) -> fg.Filter | None:
    if filters is None or filters.is_identity:
        return None
    options: dict[str, float] = {}
    if filters.brightness:
        options["brightness"] = brightness_value(filters.brightness)
    if filters.contrast:
        options["contrast"] = contrast_value(filters.contrast)
    if filters.saturation:
        options["saturation"] = saturation_value(filters.saturation)
    return node("eq", **options)


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------

def overlay_position(
    corner: str,
    base_width: int,
    base_height: int,
    width: int,
    height: int,
    padding: int = 20,
) -> tuple[int, int]:
    left = padding
    right = base_width - width - padding
    top = padding
    bottom = base_height - height - padding
    positions = {
        "top-left": (left, top),
        "top-right": (right, top),
        "bottom-left": (left, bottom),
        "bottom-right": (right, bottom),
    }
    if corner not in positions:
        raise ValueError(f"Unknown corner {corner!r}")
    return positions[corner]


def _input_args(clip: Clip) -> list[str]:
    return ["-ss", fmt_num(clip.trim_start), "-t", fmt_num(clip.duration), "-i", str(clip.source)]


def _info(media: dict[Path, MediaInfo], clip: Clip) -> MediaInfo:
    return media.get(clip.source, MediaInfo())


class _Subtitles:
    """Stages an ASS script beside the intermediates and references it by name.

    Steps that burn subtitles run with the staging directory as their working
    directory, so the filter only ever sees a bare ASCII file name.
    """

    def __init__(self, timeline: Timeline, text: str | None, workdir: Path, token: str):
        self.path: Path | None = None
        self.content = ""
        if timeline.subtitles is not None and text is not None:
            name = f"{token}_subs.ass"
            if not is_filter_safe(name):
                raise ValueError(f"Subtitle file name {name!r} cannot be used in a filter graph")
            self.path = workdir / name
            self.content = srt_to_ass(text, timeline.width, timeline.height)

    @property
    def enabled(self) -> bool:
        return self.path is not None

    def filter(self) -> fg.Filter | None:
        if self.path is None:
            return None
        return fg.subtitles(escape_filter_path(self.path.name))

    @property
    def cwd(self) -> Path | None:
        return self.path.parent if self.path is not None else None

    def stage(self, plan: ExportPlan) -> None:
        if self.path is not None:
            plan.staged_files[self.path] = self.content
            plan.temp_files.append(self.path)


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

def _compile_single(
    timeline: Timeline, clip: Clip, output: Path, subs: _Subtitles
) -> ExportPlan:
    graph = FilterGraph()
    graph.add([], [*fg.scale_to_fit(timeline.width, timeline.height), eq_filter(clip.filters), subs.filter()], [])
    text = graph.render()
    args = [
        *BASE_ARGS,
        *_input_args(clip),
        "-vf", text,
        *video_args(timeline.preset, timeline.crf),
        *AUDIO_ARGS,
        "-movflags", "+faststart",
        str(output),
    ]
    step = TranscodeStep(
        label="render",
        inputs=(clip.source,),
        output=output,
        args=tuple(args),
        filter_graph=text,
        cwd=subs.cwd,
    )
    plan = ExportPlan(strategy="single", steps=[step], output=output)
    subs.stage(plan)
    return plan


def _trim_step(
    timeline: Timeline, clip: Clip, info: MediaInfo, out: Path, index: int
) -> TranscodeStep:
    graph = FilterGraph()
    graph.add([], [*fg.scale_to_fit(timeline.width, timeline.height), node("fps", LAYER_FPS), eq_filter(clip.filters)], [])
    text = graph.render()
    args = [*BASE_ARGS, *_input_args(clip)]
    if info.has_audio:
        audio_map = "0:a:0"
    else:
        # Every concat part needs an audio stream for the demuxer to line up
        args += ["-f", "lavfi", "-t", fmt_num(clip.duration), "-i", "anullsrc=r=48000:cl=stereo"]
        audio_map = "1:a:0"
    args += [
        "-vf", text,
        "-map", "0:v:0",
        "-map", audio_map,
        *video_args(timeline.preset, timeline.crf),
        *AUDIO_ARGS,
        str(out),
    ]
    return TranscodeStep(
        label=f"trim clip {index}",
        inputs=(clip.source,),
        output=out,
        args=tuple(args),
        filter_graph=text,
    )


def concat_list(paths: list[Path]) -> str:
    lines = []
    for path in paths:
        escaped = str(path).replace("'", r"'\''")
        lines.append(f"file '{escaped}'")
    return "\n".join(lines) + "\n"


def _compile_concat(
    timeline: Timeline,
    clips: list[Clip],
    media: dict[Path, MediaInfo],
    output: Path,
    workdir: Path,
    token: str,
    subs: _Subtitles,
) -> ExportPlan:
    plan = ExportPlan(strategy="concat", steps=[], output=output)
    parts: list[Path] = []
    for i, clip in enumerate(clips):
        part = workdir / f"{token}_clip{i}.mp4"
        plan.steps.append(_trim_step(timeline, clip, _info(media, clip), part, i))
        plan.temp_files.append(part)
        parts.append(part)

    list_file = workdir / f"{token}_concat.txt"
    plan.staged_files[list_file] = concat_list(parts)
    plan.temp_files.append(list_file)

    reencode = subs.enabled or any(c.has_filters for c in clips)
    args = [*BASE_ARGS, "-f", "concat", "-safe", "0", "-i", str(list_file)]
    text = ""
    if reencode:
        sub_filter = subs.filter()
        if sub_filter is not None:
            text = FilterGraph().add([], [sub_filter], []).render()
            args += ["-vf", text]
        args += [*video_args(timeline.preset, timeline.crf), *AUDIO_ARGS]
    else:
        args += ["-c", "copy"]
    args += ["-movflags", "+faststart", str(output)]

    plan.steps.append(
        TranscodeStep(
            label="concat",
            inputs=tuple(parts),
            output=output,
            args=tuple(args),
            filter_graph=text,
            cwd=subs.cwd,
        )
    )
    subs.stage(plan)
    return plan


def _layer_step(
    label: str,
    clips: list[Clip],
    media: dict[Path, MediaInfo],
    size: tuple[int, int],
    duration: float,
    with_audio: bool,
    preset: str,
    crf: int,
    out: Path,
) -> tuple[TranscodeStep, bool]:
    """Place clips at their timeline offsets on a black canvas of ``size``."""
    width, height = size
    graph = FilterGraph()
    graph.add([], [fg.color_source(width, height, duration, LAYER_FPS)], "bg0")

    args = [*BASE_ARGS]
    current = "bg0"
    for i, clip in enumerate(clips):
        args += _input_args(clip)
        graph.add(
            f"{i}:v",
            [*fg.scale_to_fit(width, height), node("fps", LAYER_FPS), eq_filter(clip.filters), fg.shift(clip.start_time)],
            f"v{i}",
        )
        nxt = f"bg{i + 1}"
        graph.add([current, f"v{i}"], [fg.overlay(0, 0, enable=fg.between([(clip.start_time, clip.end_time)]))], nxt)
        current = nxt

    audio_inputs = [i for i, c in enumerate(clips) if _info(media, c).has_audio]
    has_audio = with_audio and bool(audio_inputs)
    if has_audio:
        graph.add([], fg.silence_source(duration), "asil")
        labels = ["asil"]
        for i in audio_inputs:
            graph.add(f"{i}:a", [node("asetpts", fg.Raw("PTS-STARTPTS")), fg.adelay(clips[i].start_time)], f"a{i}")
            labels.append(f"a{i}")
        graph.add(labels, [fg.amix(len(labels)), node("atrim", duration=duration)], "aout")

    text = graph.render()
    args += ["-filter_complex", text, "-map", f"[{current}]"]
    if has_audio:
        args += ["-map", "[aout]", *AUDIO_ARGS]
    args += [*video_args(preset, crf), "-t", fmt_num(duration), str(out)]

    step = TranscodeStep(
        label=label,
        inputs=tuple(c.source for c in clips),
        output=out,
        args=tuple(args),
        filter_graph=text,
    )
    return step, has_audio


def _mix_audio(
    graph: FilterGraph,
    timeline: Timeline,
    base_audio: bool,
    mic_input: int | None,
    clamp: float,
    latency_buffer: float,
) -> str | None:
    """System audio from the base layer, mic audio from the track-1 layer."""
    mix = timeline.audio_mix
    labels: list[str] = []

    if mix.include_system_audio and base_audio:
        delay = mix.delay_offset + latency_buffer
        if delay >= 0:
            shift = [fg.adelay(delay)]
        else:
            shift = fg.atrim(-delay, clamp)
        graph.add("0:a", [*shift, fg.apad(clamp)], "asys")
        labels.append("asys")

    if mix.include_mic_audio and mic_input is not None:
        graph.add(f"{mic_input}:a", [fg.apad(clamp)], "amic")
        labels.append("amic")

    if not labels:
        return None
    if len(labels) == 1:
        return labels[0]
    graph.add(labels, [fg.amix(len(labels))], "amix")
    return "amix"


def _compile_composite(
    timeline: Timeline,
    tracks: list[list[Clip]],
    media: dict[Path, MediaInfo],
    output: Path,
    workdir: Path,
    token: str,
    subs: _Subtitles,
    config: EngineConfig,
) -> ExportPlan:
    plan = ExportPlan(strategy="composite", steps=[], output=output)
    duration = timeline.duration
    mix = timeline.audio_mix

    base_path = workdir / f"{token}_base.mp4"
    base_step, base_audio = _layer_step(
        "base layer", tracks[0], media, (timeline.width, timeline.height), duration,
        True, timeline.preset, timeline.crf, base_path,
    )
    plan.steps.append(base_step)
    plan.temp_files.append(base_path)

    size = timeline.pip.dimensions if timeline.pip else PIP_SIZES["small"]
    padding = timeline.pip.padding if timeline.pip else 20

    layers: list[tuple[int, Path, bool]] = []
    for track in (1, 2):
        if not tracks[track]:
            continue
        want_audio = track == 1 and mix is not None and mix.include_mic_audio
        layer_path = workdir / f"{token}_layer{track}.mp4"
        step, layer_audio = _layer_step(
            f"overlay layer {track}", tracks[track], media, size, duration,
            want_audio, timeline.preset, timeline.crf, layer_path,
        )
        plan.steps.append(step)
        plan.temp_files.append(layer_path)
        layers.append((track, layer_path, layer_audio))

    graph = FilterGraph()
    current = "0:v"
    mic_input = None
    for j, (track, layer_path, layer_audio) in enumerate(layers, 1):
        x, y = overlay_position(timeline.corner_for(track), timeline.width, timeline.height, *size, padding)
        windows = [(c.start_time, c.end_time) for c in tracks[track]]
        graph.add([current, f"{j}:v"], [fg.overlay(x, y, enable=fg.between(windows))], f"ov{j}")
        current = f"ov{j}"
        if layer_audio:
            mic_input = j

    sub_filter = subs.filter()
    if sub_filter is not None:
        graph.add(current, [sub_filter], "vsub")
        current = "vsub"

    # The base track is the authoritative timeline when mixing captured audio
    clamp = duration
    audio_label = None
    if mix is not None:
        clamp = max(c.end_time for c in tracks[0])
        audio_label = _mix_audio(graph, timeline, base_audio, mic_input, clamp, config.webcam_latency_buffer)

    text = graph.render()
    args = [*BASE_ARGS, "-i", str(base_path)]
    for _, layer_path, _ in layers:
        args += ["-i", str(layer_path)]
    args += ["-filter_complex", text, "-map", f"[{current}]"]
    if mix is None:
        if base_audio:
            args += ["-map", "0:a:0", *AUDIO_ARGS]
    elif audio_label is not None:
        args += ["-map", f"[{audio_label}]", *AUDIO_ARGS]
    args += [
        *video_args(timeline.preset, timeline.crf),
        "-t", fmt_num(clamp),
        "-movflags", "+faststart",
        str(output),
    ]

    plan.steps.append(
        TranscodeStep(
            label="composite",
            inputs=(base_path, *(p for _, p, _ in layers)),
            output=output,
            args=tuple(args),
            filter_graph=text,
            cwd=subs.cwd,
        )
    )
    subs.stage(plan)
    return plan


def compile_timeline(
    timeline: Timeline,
    media: dict[Path, MediaInfo],
    output: Path,
    workdir: Path,
    subtitles_text: str | None = None,
    config: EngineConfig | None = None,
    token: str = "clipstack",
) -> ExportPlan:
    """Turn a timeline into an ordered ExportPlan.

    Args:
        timeline: Clips, geometry and overlay/subtitle options.
        media: Probed facts for every clip source.
        output: Final output file.
        workdir: Directory for intermediate files.
        subtitles_text: Contents of ``timeline.subtitles`` when set.
        config: Engine tunables (latency buffer for audio mixing).
        token: Unique prefix for intermediate file names.
    """
    config = config or EngineConfig()
    timeline.validate()
    tracks = timeline.tracks()
    subs = _Subtitles(timeline, subtitles_text, workdir, token)

    if timeline.has_overlays:
        plan = _compile_composite(timeline, tracks, media, output, workdir, token, subs, config)
    elif len(tracks[0]) == 1:
        plan = _compile_single(timeline, tracks[0][0], output, subs)
    else:
        plan = _compile_concat(timeline, tracks[0], media, output, workdir, token, subs)

    logger.debug("Compiled %s plan with %d steps", plan.strategy, len(plan.steps))
    return plan


# ---------------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------------

def screen_input_args(platform: str, framerate: int, display: str = ":0.0") -> list[str]:
    if platform == "win32":
        return ["-f", "gdigrab", "-framerate", str(framerate), "-i", "desktop"]
    if platform == "darwin":
        return ["-f", "avfoundation", "-framerate", str(framerate), "-capture_cursor", "1", "-i", "1:none"]
    return ["-f", "x11grab", "-framerate", str(framerate), "-i", display]


def compile_screen_capture(
    output: Path,
    platform: str,
    framerate: int = 30,
    display: str = ":0.0",
) -> TranscodeStep:
    """Background screen grab; stopped by writing 'q' to its stdin."""
    args = [
        *BASE_ARGS,
        *screen_input_args(platform, framerate, display),
        "-c:v", "libx264",
        "-preset", "ultrafast",
        "-crf", "23",
        "-pix_fmt", "yuv420p",
        str(output),
    ]
    return TranscodeStep(label="screen capture", inputs=(), output=output, args=tuple(args))


def offset_correction(offset: float) -> tuple[str, float]:
    """How to align captured audio given ``offset = video_start - audio_start``.

    A positive offset means audio started first: trim that much from its head.
    A negative offset means video started first: prepend that much silence.
    """
    if offset > 0:
        return "trim", offset
    if offset < 0:
        return "pad", -offset
    return "none", 0.0


def compile_capture_mux(
    video: Path,
    audio: Path,
    output: Path,
    offset: float,
    video_duration: float,
) -> TranscodeStep:
    """Copy the video, realign the audio and clamp to the video's duration."""
    action, amount = offset_correction(offset)
    filters: list[fg.Filter] = []
    if action == "trim":
        filters += [node("atrim", start=amount), node("asetpts", fg.Raw("PTS-STARTPTS"))]
    elif action == "pad":
        filters.append(fg.adelay(amount))
    filters.append(fg.apad(video_duration) if video_duration > 0 else node("apad"))

    text = FilterGraph().add("1:a", filters, "aout").render()
    args = [
        *BASE_ARGS,
        "-i", str(video),
        "-i", str(audio),
        "-filter_complex", text,
        "-map", "0:v:0",
        "-map", "[aout]",
        "-c:v", "copy",
        *AUDIO_ARGS,
    ]
    if video_duration > 0:
        args += ["-t", fmt_num(video_duration)]
    else:
        args.append("-shortest")
    args.append(str(output))
    return TranscodeStep(
        label="capture mux",
        inputs=(video, audio),
        output=output,
        args=tuple(args),
        filter_graph=text,
    )
