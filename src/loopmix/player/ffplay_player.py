"""Desktop player backend driving an ffplay subprocess.

ffplay cannot change tempo or gain on a running process, so every settings
change while playing restarts it at the current position. Position is
tracked locally from the wall clock.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import subprocess
import time
from pathlib import Path

from loopmix.errors import AudioError, AudioErrorKind
from loopmix.files import probe_duration_ms
from loopmix.filters import atempo_chain, format_number, ms_to_seconds, volume_to_gain
from loopmix.models import PlaybackOptions
from loopmix.paths import uri_to_path
from loopmix.player.base import PlayerBackend

logger = logging.getLogger(__name__)


def find_ffplay(configured: str = "") -> Path | None:
    if configured and Path(configured).exists():
        return Path(configured)
    found = shutil.which("ffplay")
    return Path(found) if found else None


class FfplayPlayerBackend(PlayerBackend):
    def __init__(self, binary: str = ""):
        self._configured_binary = binary
        self._binary: Path | None = None
        self._process: subprocess.Popen | None = None
        self._path: Path | None = None
        self._duration_ms = 0.0
        self._speed = 1.0
        self._volume = 100
        self._looping = False
        self._offset_ms = 0.0
        self._started_at: float | None = None

    def build_command(self) -> list[str]:
        """ffplay arguments for the current file, settings and position."""
        filters = atempo_chain(self._speed)
        filters.append(f"volume={format_number(volume_to_gain(self._volume), 4)}")
        cmd = [
            str(self._binary or "ffplay"),
            "-nodisp",
            "-autoexit",
            "-loglevel", "error",
            "-ss", ms_to_seconds(self._offset_ms),
            "-af", ",".join(filters),
        ]
        if self._looping:
            cmd.extend(["-loop", "0"])
        cmd.append(str(self._path))
        return cmd

    async def load(self, uri: str, options: PlaybackOptions) -> None:
        path = uri_to_path(uri)
        if not path.exists():
            raise AudioError(
                AudioErrorKind.FILE_NOT_FOUND,
                f"Audio file does not exist: {path}",
                context={"uri": uri},
            )
        self._binary = find_ffplay(self._configured_binary)
        if self._binary is None:
            raise AudioError(
                AudioErrorKind.RESOURCE_UNAVAILABLE,
                "ffplay not found on PATH",
                "Audio playback requires ffplay (part of ffmpeg). Please install it.",
            )
        self._path = path
        self._duration_ms = await asyncio.to_thread(probe_duration_ms, path)
        self._offset_ms = 0.0
        self._started_at = None

    async def play(self) -> None:
        self._spawn()

    async def pause(self) -> None:
        self._offset_ms = self._current_position()
        self._started_at = None
        await self._terminate()

    async def stop(self) -> None:
        await self._terminate()
        self._offset_ms = 0.0
        self._started_at = None

    async def set_speed(self, speed: float) -> None:
        await self._apply(lambda: setattr(self, "_speed", speed))

    async def set_volume(self, volume: int) -> None:
        await self._apply(lambda: setattr(self, "_volume", volume))

    async def set_looping(self, loop: bool) -> None:
        await self._apply(lambda: setattr(self, "_looping", loop))

    async def set_position(self, position_ms: float) -> None:
        await self._apply(lambda: setattr(self, "_offset_ms", position_ms), keep_position=False)

    async def get_duration(self) -> float:
        return self._duration_ms

    async def get_position(self) -> float:
        position = self._current_position()
        if self._started_at is not None and self._process is not None:
            if self._process.poll() is not None and not self._looping:
                self._process = None
                self._started_at = None
                self._offset_ms = self._duration_ms
                self.notify_complete()
                return self._duration_ms
        return position

    async def unload(self) -> None:
        await self._terminate()
        self._path = None
        self._started_at = None
        self._offset_ms = 0.0

    # -- internal --

    async def _apply(self, change, keep_position: bool = True) -> None:
        playing = self._started_at is not None
        if playing:
            if keep_position:
                self._offset_ms = self._current_position()
            await self._terminate()
        change()
        if playing:
            self._spawn()

    def _spawn(self) -> None:
        cmd = self.build_command()
        logger.debug("Starting ffplay: %s", " ".join(cmd))
        self._process = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
        )
        self._started_at = time.monotonic()

    async def _terminate(self) -> None:
        proc = self._process
        if proc is None:
            return
        self._process = None
        if proc.poll() is None:
            proc.terminate()
            try:
                await asyncio.to_thread(proc.wait, timeout=2)
            except subprocess.TimeoutExpired:
                proc.kill()
                await asyncio.to_thread(proc.wait)
        if proc.stderr is not None:
            proc.stderr.close()

    def _current_position(self) -> float:
        position = self._offset_ms
        if self._started_at is not None:
            position += (time.monotonic() - self._started_at) * 1000 * self._speed
        if self._looping and self._duration_ms > 0:
            return position % self._duration_ms
        if self._duration_ms > 0:
            return min(position, self._duration_ms)
        return position
