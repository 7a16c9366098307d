"""Data types shared by the recorder, player and mixer layers."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from loopmix.constants import DEFAULT_SPEED, DEFAULT_VOLUME


@dataclass
class Track:
    """One recorded or imported clip with its own speed and volume."""
    name: str
    uri: str
    duration_ms: int = 0
    speed: float = DEFAULT_SPEED
    volume: int = DEFAULT_VOLUME
    is_playing: bool = False
    selected: bool = True
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_mixer_input(self) -> MixerTrackInput:
        return MixerTrackInput(uri=self.uri, speed=self.speed, volume=self.volume)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "uri": self.uri,
            "duration_ms": self.duration_ms,
            "speed": self.speed,
            "volume": self.volume,
            "selected": self.selected,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class MixerTrackInput:
    """Per-mix view of a track. Times are in milliseconds."""
    uri: str
    speed: float = DEFAULT_SPEED
    volume: int = DEFAULT_VOLUME
    start_time_ms: Optional[float] = None
    duration_ms: Optional[float] = None


@dataclass
class MixProgress:
    ratio: float  # 0.0 - 1.0
    elapsed_ms: float
    estimated_total_ms: float


@dataclass
class MixOptions:
    """What to mix and how to encode it.

    ``loop_count`` repeats the whole merged track set. Inputs shorter than
    the longest one repeat to fill it. The trailing fade-out
    (``fadeout_duration_ms``, falling back to ``fade_out_ms``) is applied
    once, after every repetition.
    """
    tracks: list[MixerTrackInput] = field(default_factory=list)
    format: Optional[str] = None
    quality: str = "high"
    sample_rate: int = 44100
    bit_rate: Optional[int] = None  # kbps; None picks from quality
    channels: int = 2
    normalize: bool = False
    fade_in_ms: float = 0
    fade_out_ms: float = 0
    loop_count: int = 1
    fadeout_duration_ms: float = 0
    crossfade_ms: float = 0  # dip at the seams of repeated inputs
    output_path: Optional[str] = None
    on_progress: Optional[Callable[[MixProgress], None]] = None


@dataclass
class MixResult:
    output_uri: str
    actual_format: str


@dataclass
class RecordingOptions:
    format: str = "wav"
    quality: str = "high"
    sample_rate: int = 44100
    bit_rate: Optional[int] = None
    channels: int = 1
    max_duration_ms: float = 0  # 0 = unbounded


@dataclass
class PlaybackOptions:
    loop: Optional[bool] = None
    speed: Optional[float] = None
    volume: Optional[int] = None
    preserve_pitch: bool = True
