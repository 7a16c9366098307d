"""Parsing of command-line track specs and time offsets."""

from __future__ import annotations

import re

from loopmix.filters import is_valid_speed, is_valid_volume
from loopmix.models import MixerTrackInput

_TIME_RE = re.compile(
    r"^(?:(\d+)h)?(?:(\d+)m(?!s))?(?:(\d+(?:\.\d+)?)s)?(?:(\d+)ms)?$", re.IGNORECASE
)

_KEYS = ("speed", "volume", "start", "duration")


def parse_time_ms(s: str) -> float:
    """Parse '1.5s', '500ms', '1m30s' or a bare number of seconds into ms.

    Raises ValueError on invalid input.
    """
    s = s.strip()
    if not s:
        raise ValueError("Empty time string")

    try:
        seconds = float(s)
    except ValueError:
        pass
    else:
        if seconds < 0:
            raise ValueError(f"Time cannot be negative: {s!r}")
        return seconds * 1000

    m = _TIME_RE.match(s)
    if not m or not any(m.groups()):
        raise ValueError(f"Invalid time: {s!r}")

    hours = int(m.group(1) or 0)
    minutes = int(m.group(2) or 0)
    seconds = float(m.group(3) or 0)
    millis = int(m.group(4) or 0)
    return (hours * 3600 + minutes * 60 + seconds) * 1000 + millis


def parse_track_spec(spec: str) -> MixerTrackInput:
    """Parse ``PATH[,speed=X][,volume=N][,start=T][,duration=T]``.

    Examples:
      drums.wav
      vocals.m4a,speed=0.8,volume=60
      bass.mp3,start=2s,duration=8s

    Raises ValueError on invalid input.
    """
    path, *options = spec.split(",")
    path = path.strip()
    if not path:
        raise ValueError(f"Missing file path in track spec: {spec!r}")

    track = MixerTrackInput(uri=path)
    for option in options:
        key, sep, value = option.partition("=")
        key = key.strip().lower()
        value = value.strip()
        if not sep or key not in _KEYS:
            raise ValueError(
                f"Invalid track option {option!r}. Use one of: {', '.join(_KEYS)}"
            )
        if key == "speed":
            track.speed = float(value)
            if not is_valid_speed(track.speed):
                raise ValueError(f"Speed must be between 0.05 and 2.50, got {value}")
        elif key == "volume":
            track.volume = int(value)
            if not is_valid_volume(track.volume):
                raise ValueError(f"Volume must be between 0 and 100, got {value}")
        elif key == "start":
            track.start_time_ms = parse_time_ms(value)
        else:
            track.duration_ms = parse_time_ms(value)
            if track.duration_ms <= 0:
                raise ValueError(f"Duration must be positive: {value!r}")
    return track
