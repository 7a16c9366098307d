"""Mock recorder backend for testing without audio hardware."""

from __future__ import annotations

import tempfile
import wave
from datetime import datetime
from pathlib import Path

import numpy as np

from loopmix.models import RecordingOptions
from loopmix.recorder.base import RecorderBackend


def recording_filename(extension: str = "wav") -> str:
    """Timestamp-based name: recording-YYYYMMDD-HHMMSS-ffffff.<ext>."""
    return f"recording-{datetime.now().strftime('%Y%m%d-%H%M%S-%f')}.{extension}"


class MockRecorderBackend(RecorderBackend):
    """Writes pre-loaded audio (or silence) as a WAV file when stopped."""

    def __init__(
        self,
        output_dir: Path | None = None,
        audio_data: np.ndarray | None = None,
        duration: float = 2.0,
        permission: bool = True,
    ):
        """Initialize with audio data or generate silence.

        Args:
            output_dir: Where finished recordings go. Defaults to a temp dir.
            audio_data: Pre-loaded PCM data (int16). If None, generates silence.
            duration: Duration in seconds if generating silence.
            permission: Result returned by ``check_permission``.
        """
        self._output_dir = output_dir or Path(tempfile.gettempdir()) / "loopmix-mock"
        self._audio_data = audio_data
        self._default_duration = duration
        self.permission = permission
        self._options: RecordingOptions | None = None
        self._recording = False
        self.cleaned_up = False

    async def check_permission(self) -> bool:
        return self.permission

    async def start(self, options: RecordingOptions) -> None:
        if self._recording:
            raise RuntimeError("Already recording")
        self._options = options
        self._recording = True

    async def stop(self) -> str:
        if not self._recording:
            raise RuntimeError("Not recording")
        self._recording = False

        options = self._options
        if self._audio_data is not None:
            audio = self._audio_data
        else:
            num_samples = int(self._default_duration * options.sample_rate)
            audio = np.zeros(num_samples * options.channels, dtype=np.int16)

        self._output_dir.mkdir(parents=True, exist_ok=True)
        output_path = self._output_dir / recording_filename()
        with wave.open(str(output_path), "wb") as wf:
            wf.setnchannels(options.channels)
            wf.setsampwidth(2)
            wf.setframerate(options.sample_rate)
            wf.writeframes(audio.tobytes())
        return str(output_path)

    async def cancel(self) -> None:
        self._recording = False

    async def cleanup(self) -> None:
        self._recording = False
        self.cleaned_up = True
