"""Configuration loading, saving, and management."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import tomli_w

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from loopmix.constants import (
    DEFAULT_BIT_RATE,
    DEFAULT_CHANNELS,
    DEFAULT_LOOPING,
    DEFAULT_MAX_CONCURRENT_PLAYERS,
    DEFAULT_MIX_FORMAT,
    DEFAULT_QUALITY,
    DEFAULT_RECORDING_FORMAT,
    DEFAULT_RUNTIME,
    DEFAULT_SAMPLE_RATE,
    DEFAULT_SPEED,
    DEFAULT_VOLUME,
    MAX_SPEED,
    MIN_BIT_RATE,
    MIN_SAMPLE_RATE,
    MIN_SPEED,
    VALID_FORMATS,
    VALID_MIX_FORMATS,
    VALID_QUALITIES,
    VALID_RUNTIMES,
)


@dataclass
class RecordingDefaults:
    format: str = DEFAULT_RECORDING_FORMAT
    quality: str = DEFAULT_QUALITY
    sample_rate: int = DEFAULT_SAMPLE_RATE
    channels: int = 1
    bit_rate: int = DEFAULT_BIT_RATE
    max_duration_ms: int = 0


@dataclass
class PlaybackDefaults:
    speed: float = DEFAULT_SPEED
    volume: int = DEFAULT_VOLUME
    loop: bool = DEFAULT_LOOPING


@dataclass
class MixingDefaults:
    format: str = DEFAULT_MIX_FORMAT
    quality: str = DEFAULT_QUALITY
    sample_rate: int = DEFAULT_SAMPLE_RATE
    bit_rate: int = 0  # 0 = derive from quality
    channels: int = DEFAULT_CHANNELS
    normalize: bool = False
    loop_count: int = 1
    fadeout_duration_ms: int = 0
    crossfade_ms: int = 0
    ffmpeg_path: str = ""
    ffplay_path: str = ""
    max_concurrent_players: int = DEFAULT_MAX_CONCURRENT_PLAYERS


@dataclass
class StorageDefaults:
    data_dir: str = ""


@dataclass
class RuntimeDefaults:
    name: str = ""  # empty = detect


@dataclass
class LoopmixConfig:
    recording: RecordingDefaults = field(default_factory=RecordingDefaults)
    playback: PlaybackDefaults = field(default_factory=PlaybackDefaults)
    mixing: MixingDefaults = field(default_factory=MixingDefaults)
    storage: StorageDefaults = field(default_factory=StorageDefaults)
    runtime: RuntimeDefaults = field(default_factory=RuntimeDefaults)

    @classmethod
    def load(cls, config_path: Path | None = None) -> LoopmixConfig:
        """Load config from TOML file, falling back to defaults for missing keys."""
        config = cls()
        if config_path is None or not config_path.exists():
            return config

        with open(config_path, "rb") as f:
            data = tomllib.load(f)

        for section_field in fields(config):
            section = getattr(config, section_field.name)
            for k, v in data.get(section_field.name, {}).items():
                if hasattr(section, k):
                    setattr(section, k, v)

        return config

    def save(self, config_path: Path) -> None:
        """Write current config to TOML file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        data = self._to_dict()
        with open(config_path, "wb") as f:
            tomli_w.dump(data, f)

    def get(self, key: str) -> Any:
        """Get a config value by dotted key (e.g., 'mixing.format')."""
        obj, name = self._resolve(key)
        return getattr(obj, name)

    def set(self, key: str, value: Any) -> None:
        """Set a config value by dotted key."""
        obj, name = self._resolve(key)

        # Coerce value to match the field type
        current = getattr(obj, name)
        coerced = _coerce_value(value, current, key)
        _validate_value(key, coerced)
        setattr(obj, name, coerced)

    def _resolve(self, key: str) -> tuple[Any, str]:
        section, _, name = key.partition(".")
        if not name:
            raise KeyError(f"Invalid key format: {key!r}. Use 'section.key' (e.g., 'mixing.format')")
        obj = getattr(self, section, None)
        if obj is None or section not in {f.name for f in fields(self)}:
            raise KeyError(f"Unknown config section: {section!r}")
        if not hasattr(obj, name):
            raise KeyError(f"Unknown config key: {key!r}")
        return obj, name

    def _to_dict(self) -> dict:
        """Convert config to a nested dict for TOML serialization."""
        result = {}
        for section_field in fields(self):
            section_obj = getattr(self, section_field.name)
            section_dict = {}
            for f in fields(section_obj):
                section_dict[f.name] = getattr(section_obj, f.name)
            result[section_field.name] = section_dict
        return result


def _coerce_value(value: Any, current: Any, key: str) -> Any:
    """Coerce a string value to match the type of the current value."""
    if isinstance(value, str) and not isinstance(current, str):
        if isinstance(current, bool):
            if value.lower() in ("true", "1", "yes"):
                return True
            elif value.lower() in ("false", "0", "no"):
                return False
            raise ValueError(f"Cannot convert {value!r} to bool for key {key!r}")
        if isinstance(current, int):
            return int(value)
        if isinstance(current, float):
            return float(value)
    return value


def _validate_value(key: str, value: Any) -> None:
    """Validate a config value."""
    if key == "recording.format" and value not in VALID_FORMATS:
        raise ValueError(f"Invalid format: {value!r}. Choose from: {', '.join(VALID_FORMATS)}")
    if key == "mixing.format" and value not in VALID_MIX_FORMATS:
        raise ValueError(f"Invalid format: {value!r}. Choose from: {', '.join(VALID_MIX_FORMATS)}")
    if key in ("recording.quality", "mixing.quality") and value not in VALID_QUALITIES:
        raise ValueError(f"Invalid quality: {value!r}. Choose from: {', '.join(VALID_QUALITIES)}")
    if key == "runtime.name" and value and value not in VALID_RUNTIMES:
        raise ValueError(f"Invalid runtime: {value!r}. Choose from: {', '.join(VALID_RUNTIMES)}")
    if key in ("recording.sample_rate", "mixing.sample_rate") and value < MIN_SAMPLE_RATE:
        raise ValueError(f"sample_rate must be at least {MIN_SAMPLE_RATE}, got {value}")
    if key in ("recording.channels", "mixing.channels") and value not in (1, 2):
        raise ValueError(f"channels must be 1 or 2, got {value}")
    if key == "recording.bit_rate" and value < MIN_BIT_RATE:
        raise ValueError(f"bit_rate must be at least {MIN_BIT_RATE}, got {value}")
    if key == "mixing.bit_rate" and value != 0 and value < MIN_BIT_RATE:
        raise ValueError(f"bit_rate must be 0 or at least {MIN_BIT_RATE}, got {value}")
    if key == "recording.max_duration_ms" and value < 0:
        raise ValueError(f"max_duration_ms must be >= 0, got {value}")
    if key == "playback.speed" and not (MIN_SPEED <= value <= MAX_SPEED):
        raise ValueError(f"speed must be {MIN_SPEED}-{MAX_SPEED}, got {value}")
    if key == "playback.volume" and not (0 <= value <= 100):
        raise ValueError(f"volume must be 0-100, got {value}")
    if key == "mixing.loop_count" and value < 1:
        raise ValueError(f"loop_count must be >= 1, got {value}")
    if key == "mixing.fadeout_duration_ms" and value < 0:
        raise ValueError(f"fadeout_duration_ms must be >= 0, got {value}")
    if key == "mixing.crossfade_ms" and value < 0:
        raise ValueError(f"crossfade_ms must be >= 0, got {value}")
    if key == "mixing.max_concurrent_players" and value < 1:
        raise ValueError(f"max_concurrent_players must be >= 1, got {value}")
