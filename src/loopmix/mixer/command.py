"""Mix job synthesis: turns a track list into one ffmpeg filter graph.

Nothing here touches the filesystem or starts a process. A :class:`MixJob`
is a plain description that the engines in this package execute.

When every input's length is known, the longest speed-adjusted input sets
the master loop. Shorter inputs repeat to fill it, and the trailing
fade-out runs over an extra tail after the last repetition.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional, Sequence

from loopmix.constants import DEFAULT_MIX_FORMAT, VALID_MIX_FORMATS
from loopmix.errors import AudioError, AudioErrorKind
from loopmix.filters import (
    CODECS,
    atempo_chain,
    bitrate_for,
    format_number,
    is_valid_speed,
    is_valid_volume,
    ms_to_seconds,
    volume_to_gain,
)
from loopmix.models import MixerTrackInput, MixOptions
from loopmix.paths import uri_to_path

logger = logging.getLogger(__name__)

# Inputs within this many ms of the master loop are not repeated.
FILL_TOLERANCE_MS = 1.0


@dataclass(frozen=True)
class InputStage:
    """Per-track chain: optional trim, then tempo, then fill, then gain."""

    index: int
    uri: str
    speed: float
    volume: int
    start_ms: Optional[float] = None
    duration_ms: Optional[float] = None
    # Set when the input repeats to fill the master loop.
    fill_ms: Optional[float] = None
    segment_ms: Optional[float] = None
    sample_rate: int = 44100
    crossfade_ms: float = 0

    kind = "input"

    @property
    def label(self) -> str:
        return f"a{self.index}"

    @property
    def repeats(self) -> bool:
        return self.fill_ms is not None

    def filters(self) -> list[str]:
        chain = []
        trim = []
        if self.start_ms:
            trim.append(f"start={ms_to_seconds(self.start_ms)}")
        if self.duration_ms is not None:
            trim.append(f"duration={ms_to_seconds(self.duration_ms)}")
        if trim:
            chain.append("atrim=" + ":".join(trim))
            chain.append("asetpts=PTS-STARTPTS")
        chain.extend(atempo_chain(self.speed))
        if self.repeats:
            chain.extend(self._fill_filters())
        chain.append(f"volume={format_number(volume_to_gain(self.volume), 4)}")
        return chain

    def _fill_filters(self) -> list[str]:
        # aloop counts samples, so pin the rate before sizing the loop.
        chain = [f"aresample={self.sample_rate}"]
        if self.crossfade_ms > 0 and self.segment_ms > self.crossfade_ms * 2:
            d = ms_to_seconds(self.crossfade_ms)
            out_start = ms_to_seconds(self.segment_ms - self.crossfade_ms)
            chain.append(f"afade=t=in:st=0:d={d}")
            chain.append(f"afade=t=out:st={out_start}:d={d}")
        size = math.ceil(self.segment_ms * self.sample_rate / 1000)
        chain.append(f"aloop=loop=-1:size={size}")
        chain.append(f"atrim=duration={ms_to_seconds(self.fill_ms)}")
        return chain

    def render(self) -> str:
        return f"[{self.index}:a]{','.join(self.filters())}[{self.label}]"

    def length_ms(self, source_ms: float) -> float:
        """Output length of this stage for a source of *source_ms*."""
        if self.repeats:
            return self.fill_ms
        length = max(0.0, source_ms - (self.start_ms or 0))
        if self.duration_ms is not None:
            length = min(length, self.duration_ms) if source_ms > 0 else self.duration_ms
        return length / self.speed

    def known_length_ms(self, source_ms: float) -> Optional[float]:
        """Like :meth:`length_ms`, but None when the length cannot be known."""
        if source_ms <= 0 and self.duration_ms is None:
            return None
        return self.length_ms(source_ms)


@dataclass(frozen=True)
class MergeStage:
    sources: tuple[str, ...]
    normalize: bool = False
    label: str = "mix"

    kind = "merge"

    def render(self) -> str:
        inputs = "".join(f"[{s}]" for s in self.sources)
        return (
            f"{inputs}amix=inputs={len(self.sources)}:duration=longest"
            f":normalize={int(self.normalize)}[{self.label}]"
        )


@dataclass(frozen=True)
class LoopStage:
    """Repeat the merged signal *count* times back to back.

    With ``tail_ms`` set, enough extra repetitions follow to cover a tail of
    that length after the last one, and the result is cut to
    ``period_ms * count + tail_ms``.
    """

    count: int
    source: str
    label: str = "looped"
    tail_ms: float = 0
    period_ms: float = 0

    kind = "loop"

    @property
    def copies(self) -> int:
        if self.tail_ms > 0 and self.period_ms > 0:
            return self.count + math.ceil(self.tail_ms / self.period_ms)
        return self.count

    def render(self) -> str:
        n = self.copies
        copies = [f"[{self.label}{i}]" for i in range(n)]
        trim = ""
        if self.tail_ms > 0:
            total = self.period_ms * self.count + self.tail_ms
            trim = f",atrim=duration={ms_to_seconds(total)}"
        return (
            f"[{self.source}]asplit={n}{''.join(copies)};"
            f"{''.join(copies)}concat=n={n}:v=0:a=1{trim}[{self.label}]"
        )


@dataclass(frozen=True)
class FadeStage:
    direction: str  # "in" or "out"
    duration_ms: float
    source: str
    label: str
    start_ms: Optional[float] = None

    kind = "fade"

    def render(self) -> str:
        d = ms_to_seconds(self.duration_ms)
        if self.direction == "in":
            body = f"afade=t=in:st=0:d={d}"
        elif self.start_ms is not None:
            body = f"afade=t=out:st={ms_to_seconds(self.start_ms)}:d={d}"
        else:
            # Length unknown: fade in the reversed signal, then reverse back.
            body = f"areverse,afade=t=in:d={d},areverse"
        return f"[{self.source}]{body}[{self.label}]"


@dataclass(frozen=True)
class OutputTarget:
    format: str
    codec: str
    sample_rate: int
    channels: int
    bit_rate: Optional[int] = None  # kbps, None for PCM

    def args(self) -> list[str]:
        args = [
            "-c:a", self.codec,
            "-ar", str(self.sample_rate),
            "-ac", str(self.channels),
        ]
        if self.bit_rate is not None:
            args.extend(["-b:a", f"{self.bit_rate}k"])
        return args


@dataclass(frozen=True)
class MixJob:
    inputs: tuple[InputStage, ...]
    merge: MergeStage
    output: OutputTarget
    loop: Optional[LoopStage] = None
    fade_in: Optional[FadeStage] = None
    fade_out: Optional[FadeStage] = None
    master_ms: Optional[float] = None  # None when some input length is unknown

    def stages(self) -> list:
        """Filter stages in graph order."""
        stages = [*self.inputs, self.merge]
        for stage in (self.loop, self.fade_in, self.fade_out):
            if stage is not None:
                stages.append(stage)
        return stages

    @property
    def output_label(self) -> str:
        return self.stages()[-1].label

    @property
    def loop_count(self) -> int:
        return self.loop.count if self.loop is not None else 1

    @property
    def tail_ms(self) -> float:
        return self.loop.tail_ms if self.loop is not None else 0.0

    def filter_graph(self) -> str:
        return ";".join(stage.render() for stage in self.stages())

    def to_args(
        self, output_path: Path | str, binary: str = "ffmpeg", progress: bool = True
    ) -> list[str]:
        """Full ffmpeg argument list, binary first."""
        args = [binary, "-hide_banner", "-nostdin"]
        if progress:
            args.extend(["-progress", "pipe:1", "-nostats"])
        for stage in self.inputs:
            args.extend(["-i", str(uri_to_path(stage.uri))])
        args.extend(["-filter_complex", self.filter_graph()])
        args.extend(["-map", f"[{self.output_label}]"])
        args.extend(self.output.args())
        args.extend(["-y", str(output_path)])
        return args

    def estimate_duration_ms(self, source_durations: Sequence[float]) -> float:
        """Expected output length given each input's source length.

        Inputs with an unknown (zero) length and no duration clamp count as 0.
        A job built with a known master loop ignores *source_durations*.
        """
        if self.master_ms is not None:
            return self.master_ms * self.loop_count + self.tail_ms
        longest = 0.0
        for stage, source_ms in zip(self.inputs, source_durations):
            longest = max(longest, stage.length_ms(source_ms))
        return longest * self.loop_count


def _mixing_failed(message: str, user_message: str, **context) -> AudioError:
    return AudioError(AudioErrorKind.MIXING_FAILED, message, user_message, context or None)


def validate_tracks(tracks: Sequence[MixerTrackInput]) -> None:
    """Reject tracks that ffmpeg could not mix."""
    if not tracks:
        raise _mixing_failed(
            "No tracks provided for mixing",
            "Please select at least one track to mix",
        )
    for i, track in enumerate(tracks):
        if not track.uri:
            raise _mixing_failed(f"Track {i} has no URI", "A selected track has no audio file", index=i)
        if not is_valid_speed(track.speed):
            raise _mixing_failed(
                f"Track {i} speed must be between 0.05 and 2.50, got {track.speed}",
                "Invalid track speed",
                index=i,
            )
        if not is_valid_volume(track.volume):
            raise _mixing_failed(
                f"Track {i} volume must be between 0 and 100, got {track.volume}",
                "Invalid track volume",
                index=i,
            )
        if track.start_time_ms is not None and track.start_time_ms < 0:
            raise _mixing_failed(
                f"Track {i} start time cannot be negative, got {track.start_time_ms}",
                "Invalid track start time",
                index=i,
            )
        if track.duration_ms is not None and track.duration_ms <= 0:
            raise _mixing_failed(
                f"Track {i} duration must be positive, got {track.duration_ms}",
                "Invalid track duration",
                index=i,
            )


def resolve_format(fmt: Optional[str]) -> str:
    if fmt in VALID_MIX_FORMATS:
        return fmt
    if fmt is not None:
        logger.warning("Unsupported mix format %r, using %s", fmt, DEFAULT_MIX_FORMAT)
    return DEFAULT_MIX_FORMAT


def _master_loop_ms(
    inputs: Sequence[InputStage], source_durations: Optional[Sequence[float]]
) -> Optional[float]:
    """Longest speed-adjusted input, or None if any length is unknown."""
    if source_durations is None:
        source_durations = [0.0] * len(inputs)
    elif len(source_durations) != len(inputs):
        raise ValueError(
            f"Expected {len(inputs)} source durations, got {len(source_durations)}"
        )
    lengths = [stage.known_length_ms(src) for stage, src in zip(inputs, source_durations)]
    if any(length is None for length in lengths):
        return None
    master = max(lengths)
    return master if master > 0 else None


def build_mix_job(
    tracks: Sequence[MixerTrackInput],
    options: MixOptions,
    source_durations: Optional[Sequence[float]] = None,
) -> MixJob:
    """Describe how ffmpeg should mix *tracks*.

    Inputs keep the caller's order. The merged signal is repeated
    ``loop_count`` times, faded in once at the start, and faded out once at
    the very end. The fade-out uses ``fadeout_duration_ms`` when set, else
    ``fade_out_ms``.

    *source_durations* gives each track's file length in ms (0 if unknown).
    Once every input length is known, shorter inputs repeat to fill the
    master loop and the fade-out covers an added tail of its own length,
    so the output runs ``master * loop_count + fade-out``. Otherwise the
    fade-out covers the end of the output.
    """
    validate_tracks(tracks)
    if options.loop_count < 1:
        raise _mixing_failed(
            f"Loop count must be at least 1, got {options.loop_count}",
            "Invalid loop count",
        )
    if options.channels not in (1, 2):
        raise _mixing_failed(
            f"Channels must be 1 or 2, got {options.channels}",
            "Invalid output settings",
        )
    if options.crossfade_ms < 0:
        raise _mixing_failed(
            f"Crossfade cannot be negative, got {options.crossfade_ms}",
            "Invalid crossfade",
        )

    inputs = tuple(
        InputStage(
            index=i,
            uri=track.uri,
            speed=track.speed,
            volume=track.volume,
            start_ms=track.start_time_ms,
            duration_ms=track.duration_ms,
        )
        for i, track in enumerate(tracks)
    )
    master_ms = _master_loop_ms(inputs, source_durations)
    if master_ms is not None:
        sources = source_durations or [0.0] * len(inputs)
        filled = []
        for stage, source_ms in zip(inputs, sources):
            length = stage.length_ms(source_ms)
            if 0 < length < master_ms - FILL_TOLERANCE_MS:
                stage = replace(
                    stage,
                    fill_ms=master_ms,
                    segment_ms=length,
                    sample_rate=options.sample_rate,
                    crossfade_ms=options.crossfade_ms,
                )
            filled.append(stage)
        inputs = tuple(filled)
    else:
        logger.debug("Input lengths unknown, inputs will not repeat")

    merge = MergeStage(tuple(stage.label for stage in inputs), normalize=options.normalize)
    last = merge.label

    fade_out_ms = options.fadeout_duration_ms or options.fade_out_ms
    tail_ms = fade_out_ms if master_ms is not None else 0

    loop = None
    if options.loop_count > 1 or tail_ms > 0:
        loop = LoopStage(options.loop_count, last, tail_ms=tail_ms, period_ms=master_ms or 0)
        last = loop.label

    fade_in = None
    if options.fade_in_ms > 0:
        fade_in = FadeStage("in", options.fade_in_ms, last, "fadein")
        last = fade_in.label

    fade_out = None
    if fade_out_ms > 0:
        start_ms = master_ms * options.loop_count if master_ms is not None else None
        fade_out = FadeStage("out", fade_out_ms, last, "fadeout", start_ms)

    fmt = resolve_format(options.format)
    bit_rate = None
    if fmt != "wav":
        bit_rate = options.bit_rate or bitrate_for(fmt, options.quality)
    output = OutputTarget(
        format=fmt,
        codec=CODECS[fmt],
        sample_rate=options.sample_rate,
        channels=options.channels,
        bit_rate=bit_rate,
    )
    return MixJob(
        inputs=inputs,
        merge=merge,
        output=output,
        loop=loop,
        fade_in=fade_in,
        fade_out=fade_out,
        master_ms=master_ms,
    )
