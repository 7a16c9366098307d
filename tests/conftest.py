"""Shared test fixtures."""

import wave
from pathlib import Path

import numpy as np
import pytest

from loopmix.paths import ensure_dirs


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Keep every test away from the real data dir and runtime selection."""
    monkeypatch.delenv("LOOPMIX_RUNTIME", raising=False)
    monkeypatch.setenv("LOOPMIX_DATA_DIR", str(tmp_path / "data"))


@pytest.fixture
def tmp_data_dir(tmp_path):
    """Create a temporary loopmix data directory structure."""
    data_dir = tmp_path / "data"
    ensure_dirs(data_dir)
    return data_dir


def generate_silence_wav(path: Path, duration: float = 2.0, sample_rate: int = 44100):
    """Generate a WAV file with silence."""
    samples = np.zeros(int(duration * sample_rate), dtype=np.int16)
    with wave.open(str(path), "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(samples.tobytes())


def generate_tone_wav(path: Path, freq: float = 440.0, duration: float = 2.0, sample_rate: int = 44100):
    """Generate a WAV file with a sine tone."""
    t = np.linspace(0, duration, int(duration * sample_rate), endpoint=False)
    samples = (np.sin(2 * np.pi * freq * t) * 16000).astype(np.int16)
    with wave.open(str(path), "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(samples.tobytes())


@pytest.fixture
def silence_wav(tmp_path):
    path = tmp_path / "silence.wav"
    generate_silence_wav(path, duration=2.0)
    return path


@pytest.fixture
def tone_wav(tmp_path):
    path = tmp_path / "tone.wav"
    generate_tone_wav(path, duration=1.0)
    return path
