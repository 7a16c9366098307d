"""Player contract: backend hook interface plus the shared state machine."""

from __future__ import annotations

import enum
import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

from loopmix.constants import (
    DEFAULT_LOOPING,
    DEFAULT_SPEED,
    DEFAULT_VOLUME,
    MAX_SPEED,
    MAX_VOLUME,
    MIN_SPEED,
    MIN_VOLUME,
)
from loopmix.errors import AudioError, AudioErrorKind, wrap
from loopmix.filters import is_valid_speed, is_valid_volume
from loopmix.models import PlaybackOptions

logger = logging.getLogger(__name__)


class PlayerState(str, enum.Enum):
    UNLOADED = "unloaded"
    LOADED = "loaded"
    PLAYING = "playing"
    PAUSED = "paused"


class PlayerBackend(ABC):
    """Platform playback engine. Only :class:`Player` calls these hooks.

    Positions and durations are milliseconds. A backend that detects the end
    of playback calls :meth:`notify_complete`.
    """

    completion_callback: Optional[Callable[[], None]] = None

    @abstractmethod
    async def load(self, uri: str, options: PlaybackOptions) -> None: ...

    @abstractmethod
    async def play(self) -> None: ...

    @abstractmethod
    async def pause(self) -> None: ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop playback and rewind to 0."""
        ...

    @abstractmethod
    async def set_speed(self, speed: float) -> None: ...

    @abstractmethod
    async def set_volume(self, volume: int) -> None: ...

    @abstractmethod
    async def set_looping(self, loop: bool) -> None: ...

    @abstractmethod
    async def set_position(self, position_ms: float) -> None: ...

    @abstractmethod
    async def get_duration(self) -> float: ...

    @abstractmethod
    async def get_position(self) -> float: ...

    @abstractmethod
    async def unload(self) -> None: ...

    def notify_complete(self) -> None:
        if self.completion_callback is not None:
            self.completion_callback()


def check_speed(speed: float) -> None:
    if not is_valid_speed(speed):
        raise AudioError(
            AudioErrorKind.PLAYBACK_FAILED,
            f"Speed must be between {MIN_SPEED:.2f} and {MAX_SPEED:.2f}, got {speed}",
            "Invalid playback speed",
        )


def check_volume(volume: float) -> None:
    if not is_valid_volume(volume):
        raise AudioError(
            AudioErrorKind.PLAYBACK_FAILED,
            f"Volume must be between {MIN_VOLUME} and {MAX_VOLUME}, got {volume}",
            "Invalid volume level",
        )


def check_position(position_ms: float) -> None:
    if position_ms < 0:
        raise AudioError(
            AudioErrorKind.PLAYBACK_FAILED,
            f"Position cannot be negative, got {position_ms}",
            "Invalid position",
        )


class Player:
    """State machine and validation around a :class:`PlayerBackend`.

    States are ``unloaded -> loaded -> {playing, paused} -> unloaded``.
    Speed, volume, looping and position set while unloaded are remembered
    and pushed to the backend on the next load. Pause and stop while
    unloaded are no-ops that never touch the backend.
    """

    def __init__(self, backend: PlayerBackend):
        self._backend = backend
        self._backend.completion_callback = self._handle_complete
        self._state = PlayerState.UNLOADED
        self._uri: Optional[str] = None
        self._speed: float = DEFAULT_SPEED
        self._volume: int = DEFAULT_VOLUME
        self._looping: bool = DEFAULT_LOOPING
        self._pending_position: Optional[float] = None
        self.on_complete: Optional[Callable[[], None]] = None

    @property
    def backend(self) -> PlayerBackend:
        return self._backend

    @property
    def state(self) -> PlayerState:
        return self._state

    @property
    def uri(self) -> Optional[str]:
        return self._uri

    @property
    def speed(self) -> float:
        return self._speed

    @property
    def volume(self) -> int:
        return self._volume

    @property
    def looping(self) -> bool:
        return self._looping

    def is_loaded(self) -> bool:
        return self._state is not PlayerState.UNLOADED

    def is_playing(self) -> bool:
        return self._state is PlayerState.PLAYING

    async def load(self, uri: str, options: Optional[PlaybackOptions] = None) -> None:
        if not uri:
            raise AudioError(
                AudioErrorKind.FILE_NOT_FOUND,
                "Invalid URI provided",
                "Invalid audio file",
            )
        options = options or PlaybackOptions()
        if options.speed is not None:
            check_speed(options.speed)
        if options.volume is not None:
            check_volume(options.volume)

        if self.is_loaded():
            await self.unload()

        await self._call("load audio", self._backend.load(uri, options), uri=uri)
        self._uri = uri
        self._state = PlayerState.LOADED

        speed = options.speed if options.speed is not None else self._speed
        volume = options.volume if options.volume is not None else self._volume
        looping = options.loop if options.loop is not None else self._looping
        try:
            await self.set_speed(speed)
            await self.set_volume(volume)
            await self.set_looping(looping)
            if self._pending_position:
                await self.set_position(self._pending_position)
        except AudioError:
            await self.unload()
            raise
        self._pending_position = None
        logger.debug("Loaded %s", uri)

    async def play(self) -> None:
        if not self.is_loaded():
            raise AudioError(
                AudioErrorKind.PLAYBACK_FAILED,
                "Cannot play: no audio loaded",
                "Please load an audio file first",
            )
        if self._state is PlayerState.PLAYING:
            return
        await self._call("play audio", self._backend.play())
        self._state = PlayerState.PLAYING

    async def pause(self) -> None:
        if not self.is_loaded():
            return
        await self._call("pause audio", self._backend.pause())
        self._state = PlayerState.PAUSED

    async def stop(self) -> None:
        if not self.is_loaded():
            return
        await self._call("stop audio", self._backend.stop())
        self._state = PlayerState.LOADED

    async def set_speed(self, speed: float) -> None:
        check_speed(speed)
        if self.is_loaded():
            await self._call("set speed", self._backend.set_speed(speed), speed=speed)
        self._speed = speed

    async def set_volume(self, volume: int) -> None:
        check_volume(volume)
        if self.is_loaded():
            await self._call("set volume", self._backend.set_volume(volume), volume=volume)
        self._volume = volume

    async def set_looping(self, loop: bool) -> None:
        if self.is_loaded():
            await self._call("set looping", self._backend.set_looping(loop), loop=loop)
        self._looping = loop

    async def set_position(self, position_ms: float) -> None:
        """Seek. Negative values are rejected even while unloaded."""
        check_position(position_ms)
        if not self.is_loaded():
            self._pending_position = position_ms
            return
        duration = await self.get_duration()
        if duration > 0 and position_ms > duration:
            position_ms = duration
        await self._call(
            "set position", self._backend.set_position(position_ms), position=position_ms
        )

    async def get_duration(self) -> float:
        if not self.is_loaded():
            return 0.0
        return await self._call("get duration", self._backend.get_duration())

    async def get_position(self) -> float:
        if not self.is_loaded():
            return 0.0
        return await self._call("get position", self._backend.get_position())

    async def unload(self) -> None:
        if not self.is_loaded():
            return
        try:
            if self._state is PlayerState.PLAYING:
                await self.stop()
            await self._call("unload audio", self._backend.unload())
        finally:
            self._uri = None
            self._state = PlayerState.UNLOADED

    # -- internal --

    async def _call(self, action: str, awaitable, **context):
        try:
            return await awaitable
        except AudioError:
            raise
        except Exception as exc:
            context.setdefault("uri", self._uri)
            raise wrap(
                exc, AudioErrorKind.PLAYBACK_FAILED, f"Failed to {action}", **context
            ) from exc

    def _handle_complete(self) -> None:
        if self._state is PlayerState.PLAYING:
            self._state = PlayerState.LOADED
        if self.on_complete is not None:
            self.on_complete()
