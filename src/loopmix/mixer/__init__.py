"""Audio mixing module."""

from loopmix.mixer.command import MixJob, build_mix_job, validate_tracks
from loopmix.mixer.mock_engine import MockMixEngine
from loopmix.mixer.service import EngineResult, MixEngine, Mixer, MixSession

__all__ = [
    "EngineResult",
    "MixEngine",
    "MixJob",
    "MixSession",
    "Mixer",
    "MockMixEngine",
    "build_mix_job",
    "validate_tracks",
]
