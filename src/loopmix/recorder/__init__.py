"""Audio recording module."""

from loopmix.recorder.base import (
    Recorder,
    RecorderBackend,
    RecorderState,
    validate_recording_options,
)
from loopmix.recorder.mock_recorder import MockRecorderBackend

__all__ = [
    "Recorder",
    "RecorderBackend",
    "RecorderState",
    "MockRecorderBackend",
    "validate_recording_options",
]
