"""Small typed builder for ffmpeg filter-graph programs.

Filters are values; chains wire labelled pads through a list of filters; a
graph renders its chains in insertion order, so the same input always produces
the same program text.
"""

from dataclasses import dataclass, field

_SPECIAL = set(",:;[]'=")


class Raw(str):
    """An option value that is already escaped and must be emitted as-is."""


def fmt_num(value: float) -> str:
    """Render a number without float noise (0.35000000000000003 -> 0.35)."""
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.6f}".rstrip("0").rstrip(".")


def _escape_value(value) -> str:
    if isinstance(value, Raw):
        return str(value)
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return fmt_num(value)
    text = str(value)
    if any(ch in _SPECIAL for ch in text):
        return "'" + text.replace("'", r"'\''") + "'"
    return text


@dataclass(frozen=True)
class Filter:
    """A single filter node: ``name=positional:key=value``."""

    name: str
    positional: tuple = ()
    options: tuple[tuple[str, object], ...] = ()

    def render(self) -> str:
        parts = [_escape_value(v) for v in self.positional]
        parts += [f"{k}={_escape_value(v)}" for k, v in self.options]
        if not parts:
            return self.name
        return f"{self.name}=" + ":".join(parts)


def node(name: str, *positional, **options) -> Filter:
    return Filter(name, tuple(positional), tuple(options.items()))


@dataclass(frozen=True)
class Chain:
    inputs: tuple[str, ...]
    filters: tuple[Filter, ...]
    outputs: tuple[str, ...]

    def render(self) -> str:
        pads_in = "".join(f"[{label}]" for label in self.inputs)
        pads_out = "".join(f"[{label}]" for label in self.outputs)
        return pads_in + ",".join(f.render() for f in self.filters) + pads_out


@dataclass
class FilterGraph:
    chains: list[Chain] = field(default_factory=list)

    def add(self, inputs, filters, outputs) -> "FilterGraph":
        if isinstance(inputs, str):
            inputs = [inputs]
        if isinstance(outputs, str):
            outputs = [outputs]
        filters = [f for f in filters if f is not None]
        if not filters:
            filters = [node("null")]
        self.chains.append(Chain(tuple(inputs), tuple(filters), tuple(outputs)))
        return self

    def render(self) -> str:
        return ";".join(chain.render() for chain in self.chains)

    def __bool__(self) -> bool:
        return bool(self.chains)


# ---------------------------------------------------------------------------
# Node helpers
# ---------------------------------------------------------------------------

def scale_to_fit(width: int, height: int) -> list[Filter]:
    """Letterbox into width x height keeping the aspect ratio."""
    return [
        node("scale", width, height, force_original_aspect_ratio="decrease"),
        node("pad", width, height, Raw("(ow-iw)/2"), Raw("(oh-ih)/2")),
        node("setsar", 1),
    ]


def atrim(start: float, duration: float) -> list[Filter]:
    return [node("atrim", start=start, duration=duration), node("asetpts", Raw("PTS-STARTPTS"))]


def shift(offset: float) -> Filter:
    """Move a zero-based video stream to start at ``offset`` seconds."""
    if offset == 0:
        return node("setpts", Raw("PTS-STARTPTS"))
    return node("setpts", Raw(f"PTS-STARTPTS+{fmt_num(offset)}/TB"))


def adelay(seconds: float) -> Filter:
    return node("adelay", delays=Raw(str(int(round(seconds * 1000)))), all=1)


def apad(whole_dur: float) -> Filter:
    return node("apad", whole_dur=whole_dur)


def amix(inputs: int) -> Filter:
    return node("amix", inputs=inputs, duration="first", dropout_transition=0, normalize=0)


def color_source(width: int, height: int, duration: float, rate: int = 30) -> Filter:
    return node("color", c="black", s=Raw(f"{width}x{height}"), d=duration, r=rate)


def silence_source(duration: float) -> list[Filter]:
    return [node("anullsrc", r=48000, cl="stereo"), node("atrim", duration=duration)]


def between(windows: list[tuple[float, float]]) -> str:
    """Time-window predicate for the ``enable`` timeline option."""
    return "+".join(f"between(t,{fmt_num(a)},{fmt_num(b)})" for a, b in windows)


def overlay(x: int, y: int, enable: str | None = None) -> Filter:
    options: dict[str, object] = {"x": x, "y": y}
    if enable:
        options["enable"] = enable
    return node("overlay", **options)


def subtitles(escaped_path: str) -> Filter:
    return node("subtitles", filename=Raw(escaped_path))
