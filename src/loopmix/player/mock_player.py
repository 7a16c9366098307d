"""Mock player backend driven by a simulated clock."""

from __future__ import annotations

import time
from typing import Callable

from loopmix.models import PlaybackOptions
from loopmix.player.base import PlayerBackend


class MockPlayerBackend(PlayerBackend):
    """Pretends to play a clip of fixed length; records every hook call."""

    def __init__(
        self,
        duration_ms: float = 5000.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.duration_ms = duration_ms
        self._clock = clock
        self.calls: list[str] = []
        self.uri: str | None = None
        self.speed = 1.0
        self.volume = 100
        self.looping = False
        self._offset_ms = 0.0
        self._started_at: float | None = None

    async def load(self, uri: str, options: PlaybackOptions) -> None:
        self.calls.append("load")
        self.uri = uri
        self._offset_ms = 0.0
        self._started_at = None

    async def play(self) -> None:
        self.calls.append("play")
        self._started_at = self._clock()

    async def pause(self) -> None:
        self.calls.append("pause")
        self._offset_ms = self._current_position()
        self._started_at = None

    async def stop(self) -> None:
        self.calls.append("stop")
        self._offset_ms = 0.0
        self._started_at = None

    async def set_speed(self, speed: float) -> None:
        self.calls.append("set_speed")
        self._rebase()
        self.speed = speed

    async def set_volume(self, volume: int) -> None:
        self.calls.append("set_volume")
        self.volume = volume

    async def set_looping(self, loop: bool) -> None:
        self.calls.append("set_looping")
        self.looping = loop

    async def set_position(self, position_ms: float) -> None:
        self.calls.append("set_position")
        self._offset_ms = position_ms
        if self._started_at is not None:
            self._started_at = self._clock()

    async def get_duration(self) -> float:
        return self.duration_ms

    async def get_position(self) -> float:
        position = self._current_position()
        if self._started_at is not None and not self.looping and position >= self.duration_ms:
            self._offset_ms = self.duration_ms
            self._started_at = None
            self.notify_complete()
        return position

    async def unload(self) -> None:
        self.calls.append("unload")
        self.uri = None
        self._started_at = None
        self._offset_ms = 0.0

    def _rebase(self) -> None:
        if self._started_at is not None:
            self._offset_ms = self._current_position()
            self._started_at = self._clock()

    def _current_position(self) -> float:
        position = self._offset_ms
        if self._started_at is not None:
            position += (self._clock() - self._started_at) * 1000 * self.speed
        if self.looping and self.duration_ms > 0:
            return position % self.duration_ms
        return min(position, self.duration_ms)
