"""Recorder contract: backend hook interface plus the shared state machine."""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

from loopmix.constants import MIN_BIT_RATE, MIN_SAMPLE_RATE, VALID_FORMATS
from loopmix.errors import AudioError, AudioErrorKind, wrap
from loopmix.models import RecordingOptions

logger = logging.getLogger(__name__)


class RecorderState(str, enum.Enum):
    IDLE = "idle"
    RECORDING = "recording"


class RecorderBackend(ABC):
    """Platform capture engine. Only :class:`Recorder` calls these hooks."""

    @abstractmethod
    async def check_permission(self) -> bool:
        """Whether capture is allowed. Denial is False, not an exception."""
        ...

    @abstractmethod
    async def start(self, options: RecordingOptions) -> None:
        """Begin capturing."""
        ...

    @abstractmethod
    async def stop(self) -> str:
        """Finalize the capture and return its URI."""
        ...

    @abstractmethod
    async def cancel(self) -> None:
        """Stop capturing and discard the output."""
        ...

    @abstractmethod
    async def cleanup(self) -> None:
        """Release device handles and temporary files."""
        ...


def validate_recording_options(options: RecordingOptions) -> None:
    if options.format not in VALID_FORMATS:
        raise AudioError(
            AudioErrorKind.INVALID_FORMAT,
            f"Unsupported recording format: {options.format!r}",
        )
    if options.sample_rate < MIN_SAMPLE_RATE:
        raise AudioError(
            AudioErrorKind.RECORDING_FAILED,
            f"Sample rate must be at least {MIN_SAMPLE_RATE} Hz, got {options.sample_rate}",
            "Invalid recording settings",
        )
    if options.bit_rate is not None and options.bit_rate < MIN_BIT_RATE:
        raise AudioError(
            AudioErrorKind.RECORDING_FAILED,
            f"Bit rate must be at least {MIN_BIT_RATE} kbps, got {options.bit_rate}",
            "Invalid recording settings",
        )
    if options.channels not in (1, 2):
        raise AudioError(
            AudioErrorKind.RECORDING_FAILED,
            f"Channels must be 1 (mono) or 2 (stereo), got {options.channels}",
            "Invalid recording settings",
        )
    if options.max_duration_ms is not None and options.max_duration_ms < 0:
        raise AudioError(
            AudioErrorKind.RECORDING_FAILED,
            f"Max duration cannot be negative, got {options.max_duration_ms}",
            "Invalid recording settings",
        )


class Recorder:
    """State machine and validation around a :class:`RecorderBackend`.

    States are ``idle -> recording -> idle``. Misuse (start while recording,
    stop while idle) fails fast with RECORDING_FAILED. Any exception raised
    by the backend is re-raised as an :class:`AudioError`.

    If ``RecordingOptions.max_duration_ms`` is positive a one-shot timer stops
    the recording automatically; ``on_auto_stop`` then receives the URI.
    """

    def __init__(
        self,
        backend: RecorderBackend,
        on_auto_stop: Optional[Callable[[str], None]] = None,
    ):
        self._backend = backend
        self.on_auto_stop = on_auto_stop
        self._state = RecorderState.IDLE
        self._starting = False
        self._started_at: Optional[float] = None
        self._options: Optional[RecordingOptions] = None
        self._auto_stop_handle: Optional[asyncio.TimerHandle] = None
        self._auto_stop_task: Optional[asyncio.Task] = None
        self._last_duration_ms: float = 0.0
        self._last_uri: Optional[str] = None

    @property
    def backend(self) -> RecorderBackend:
        return self._backend

    @property
    def state(self) -> RecorderState:
        return self._state

    @property
    def last_uri(self) -> Optional[str]:
        """URI of the most recent finished recording."""
        return self._last_uri

    def is_recording(self) -> bool:
        return self._state is RecorderState.RECORDING

    async def check_permission(self) -> bool:
        try:
            return bool(await self._backend.check_permission())
        except Exception as exc:
            raise wrap(
                exc, AudioErrorKind.PERMISSION_DENIED, "Permission request failed"
            ) from exc

    async def start(self, options: Optional[RecordingOptions] = None) -> None:
        if self._state is RecorderState.RECORDING or self._starting:
            raise AudioError(
                AudioErrorKind.RECORDING_FAILED,
                "Cannot start recording: already recording",
                "Recording is already in progress",
            )
        options = options or RecordingOptions()
        validate_recording_options(options)

        self._starting = True
        try:
            if not await self.check_permission():
                raise AudioError(
                    AudioErrorKind.PERMISSION_DENIED,
                    "Microphone permission denied",
                    context={"options": options},
                )
            await self._backend.start(options)
        except AudioError:
            raise
        except Exception as exc:
            raise wrap(
                exc, AudioErrorKind.RECORDING_FAILED, "Failed to start recording",
                options=options,
            ) from exc
        finally:
            self._starting = False

        self._state = RecorderState.RECORDING
        self._options = options
        self._started_at = time.monotonic()
        if options.max_duration_ms and options.max_duration_ms > 0:
            self._arm_auto_stop(options.max_duration_ms)
        logger.info("Recording started (%s, %d Hz)", options.format, options.sample_rate)

    async def stop(self) -> str:
        """Finish the recording and return the backend's URI for it."""
        self._require_recording("stop")
        self._disarm_auto_stop()
        elapsed = self.get_recording_duration()
        self._reset()

        try:
            uri = await self._backend.stop()
        except AudioError:
            raise
        except Exception as exc:
            raise wrap(exc, AudioErrorKind.RECORDING_FAILED, "Failed to stop recording") from exc

        self._last_duration_ms = elapsed
        self._last_uri = uri
        logger.info("Recording stopped after %.0fms: %s", elapsed, uri)
        return uri

    async def cancel(self) -> None:
        """Stop recording and discard whatever was captured."""
        self._require_recording("cancel")
        self._disarm_auto_stop()
        self._reset()

        try:
            await self._backend.cancel()
        except AudioError:
            raise
        except Exception as exc:
            raise wrap(exc, AudioErrorKind.RECORDING_FAILED, "Failed to cancel recording") from exc
        logger.info("Recording cancelled")

    async def cleanup(self) -> None:
        """Release everything. Safe to call in any state, any number of times."""
        self._disarm_auto_stop()
        was_recording = self.is_recording()
        self._reset()
        try:
            if was_recording:
                await self._backend.cancel()
            await self._backend.cleanup()
        except Exception:
            logger.warning("Error during recorder cleanup", exc_info=True)

    def get_recording_duration(self) -> float:
        """Milliseconds since the current recording started, 0 when idle."""
        if self._state is not RecorderState.RECORDING or self._started_at is None:
            return 0.0
        return (time.monotonic() - self._started_at) * 1000

    def get_duration(self) -> float:
        """Length in milliseconds of the last finished recording."""
        return self._last_duration_ms

    # -- internal --

    def _require_recording(self, action: str) -> None:
        if self._state is not RecorderState.RECORDING:
            raise AudioError(
                AudioErrorKind.RECORDING_FAILED,
                f"Cannot {action} recording: not recording",
                "No recording in progress",
            )

    def _reset(self) -> None:
        self._state = RecorderState.IDLE
        self._started_at = None
        self._options = None

    def _arm_auto_stop(self, max_duration_ms: float) -> None:
        loop = asyncio.get_running_loop()
        self._auto_stop_handle = loop.call_later(
            max_duration_ms / 1000, self._fire_auto_stop
        )

    def _disarm_auto_stop(self) -> None:
        if self._auto_stop_handle is not None:
            self._auto_stop_handle.cancel()
            self._auto_stop_handle = None

    def _fire_auto_stop(self) -> None:
        self._auto_stop_handle = None
        self._auto_stop_task = asyncio.ensure_future(self._auto_stop())

    async def _auto_stop(self) -> None:
        if not self.is_recording():
            return
        logger.info("Max duration reached, stopping recording")
        try:
            uri = await self.stop()
        except AudioError as exc:
            # Nobody awaits the timer, so the failure can only be reported.
            logger.error("Auto-stop failed: %s", exc)
            return
        if self.on_auto_stop is not None:
            self.on_auto_stop(uri)
