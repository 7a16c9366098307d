"""Desktop recorder backend using sounddevice (PortAudio)."""

from __future__ import annotations

import logging
import threading
import wave
from pathlib import Path

from loopmix.models import RecordingOptions
from loopmix.recorder.base import RecorderBackend
from loopmix.recorder.mock_recorder import recording_filename

logger = logging.getLogger(__name__)


class SounddeviceRecorderBackend(RecorderBackend):
    """Records from the default input device to a 16-bit WAV file.

    Capture always writes WAV; other requested formats are produced later by
    the mixer when exporting.
    """

    def __init__(self, output_dir: Path, device: int | str | None = None):
        self._output_dir = output_dir
        self._device = device
        self._stream = None
        self._wav_file: wave.Wave_write | None = None
        self._output_path: Path | None = None
        self._frames_written = 0
        self._lock = threading.Lock()

    async def check_permission(self) -> bool:
        """Desktop systems grant access per device; report whether one is usable."""
        import sounddevice as sd

        try:
            sd.check_input_settings(device=self._device)
        except Exception as exc:
            logger.info("No usable input device: %s", exc)
            return False
        return True

    async def start(self, options: RecordingOptions) -> None:
        import sounddevice as sd

        if self._stream is not None:
            raise RuntimeError("Already recording")

        if options.format != "wav":
            logger.info("Capturing %s request as WAV", options.format)

        self._output_dir.mkdir(parents=True, exist_ok=True)
        self._output_path = self._output_dir / recording_filename()
        self._frames_written = 0

        self._wav_file = wave.open(str(self._output_path), "wb")
        self._wav_file.setnchannels(options.channels)
        self._wav_file.setsampwidth(2)  # 16-bit = 2 bytes
        self._wav_file.setframerate(options.sample_rate)

        def callback(indata, frames, time_info, status):
            if status:
                logger.debug("Input stream status: %s", status)
            with self._lock:
                if self._wav_file is not None:
                    self._wav_file.writeframes(indata.tobytes())
                    self._frames_written += frames

        try:
            self._stream = sd.InputStream(
                samplerate=options.sample_rate,
                channels=options.channels,
                dtype="int16",
                device=self._device,
                callback=callback,
            )
            self._stream.start()
        except Exception:
            self._close_wav()
            self._output_path.unlink(missing_ok=True)
            self._stream = None
            raise

    async def stop(self) -> str:
        if self._stream is None:
            raise RuntimeError("Not recording")
        self._close_stream()
        self._close_wav()
        logger.debug("Wrote %d frames to %s", self._frames_written, self._output_path)
        return str(self._output_path)

    async def cancel(self) -> None:
        self._close_stream()
        self._close_wav()
        if self._output_path is not None:
            self._output_path.unlink(missing_ok=True)
            self._output_path = None

    async def cleanup(self) -> None:
        await self.cancel()

    def _close_stream(self) -> None:
        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None

    def _close_wav(self) -> None:
        with self._lock:
            if self._wav_file is not None:
                self._wav_file.close()
                self._wav_file = None
