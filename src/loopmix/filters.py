"""Filter parameter math shared by the ffmpeg mixer and the ffplay player."""

from __future__ import annotations

import math

from loopmix.constants import MAX_SPEED, MAX_VOLUME, MIN_SPEED, MIN_VOLUME

# atempo accepts factors in this range per instance; larger changes are chained.
ATEMPO_MIN = 0.5
ATEMPO_MAX = 2.0
# Tempo factors closer to 1.0 than this are treated as unity.
ATEMPO_EPSILON = 1e-4

CODECS = {
    "mp3": "libmp3lame",
    "m4a": "aac",
    "wav": "pcm_s16le",
}

# kbps per format and quality preset. WAV entries are informational only.
BITRATES = {
    "mp3": {"low": 96, "medium": 128, "high": 192},
    "m4a": {"low": 96, "medium": 128, "high": 192},
    "wav": {"low": 705, "medium": 1411, "high": 1411},
}


def is_valid_speed(speed: float) -> bool:
    return MIN_SPEED <= speed <= MAX_SPEED


def is_valid_volume(volume: float) -> bool:
    return MIN_VOLUME <= volume <= MAX_VOLUME


def atempo_chain(speed: float) -> list[str]:
    """Build the atempo stages that change tempo by *speed* without changing pitch.

    Factors outside atempo's 0.5-2.0 window are reached by chaining, e.g.
    0.25 -> ["atempo=0.5", "atempo=0.5"]. Speed 1.0 needs no stage.
    """
    if speed <= 0:
        raise ValueError(f"speed must be positive, got {speed}")

    stages: list[str] = []
    remaining = speed
    while abs(remaining - 1.0) > ATEMPO_EPSILON:
        if remaining > ATEMPO_MAX:
            stages.append(f"atempo={format_number(ATEMPO_MAX)}")
            remaining /= ATEMPO_MAX
        elif remaining < ATEMPO_MIN:
            stages.append(f"atempo={format_number(ATEMPO_MIN)}")
            remaining /= ATEMPO_MIN
        else:
            stages.append(f"atempo={format_number(remaining, 4)}")
            break
    return stages


def volume_to_gain(volume: float) -> float:
    """Map a 0-100 volume to a linear gain on a logarithmic curve.

    ``gain = 1 - log(100 - v) / log(100)``, so 0 is silence and 100 is unity.
    """
    if volume <= MIN_VOLUME:
        return 0.0
    if volume >= MAX_VOLUME:
        return 1.0
    gain = 1 - math.log(MAX_VOLUME - volume) / math.log(MAX_VOLUME)
    return max(0.0, min(1.0, gain))


def bitrate_for(fmt: str, quality: str) -> int:
    """Bit rate in kbps for a mix format and quality preset."""
    table = BITRATES.get(fmt, BITRATES["mp3"])
    return table.get(quality, table["high"])


def format_number(value: float, places: int = 3) -> str:
    """Compact decimal for filter arguments: 2.0 -> '2', 0.125 -> '0.125'."""
    text = f"{value:.{places}f}".rstrip("0").rstrip(".")
    return text or "0"


def ms_to_seconds(ms: float) -> str:
    return format_number(ms / 1000)
