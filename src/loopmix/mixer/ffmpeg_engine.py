"""Mix engine that runs the ffmpeg CLI as a subprocess.

Progress comes from ``-progress pipe:1`` on stdout. Input durations are
read from the ``Duration:`` lines ffmpeg prints to stderr while opening its
inputs, which gives the expected total once every input has reported.
"""

from __future__ import annotations

import asyncio
import logging
import re
import shlex
import shutil
from collections import deque
from pathlib import Path
from typing import Optional

from loopmix.errors import AudioError, AudioErrorKind
from loopmix.mixer.command import MixJob
from loopmix.mixer.service import EngineResult, MixEngine, MixSession, StatsCallback

logger = logging.getLogger(__name__)

# Lines of engine output kept for error context.
OUTPUT_TAIL = 200
ABORT_TIMEOUT = 3.0

_DURATION_RE = re.compile(r"Duration:\s*(?:N/A|(\d+):(\d+):(\d+(?:\.\d+)?))")


def find_ffmpeg(configured: str = "") -> Optional[Path]:
    if configured and Path(configured).exists():
        return Path(configured)
    found = shutil.which("ffmpeg")
    return Path(found) if found else None


def parse_duration_line(line: str) -> Optional[float]:
    """Milliseconds from an ffmpeg ``Duration: HH:MM:SS.ss`` line.

    Returns 0.0 for ``Duration: N/A`` and None for other lines.
    """
    match = _DURATION_RE.search(line)
    if match is None:
        return None
    if match.group(1) is None:
        return 0.0
    hours, minutes, seconds = int(match.group(1)), int(match.group(2)), float(match.group(3))
    return (hours * 3600 + minutes * 60 + seconds) * 1000


def parse_progress_line(line: str) -> Optional[float]:
    """Milliseconds of output written, from a ``-progress`` key=value line."""
    key, sep, value = line.strip().partition("=")
    # out_time_ms is microseconds too, despite its name.
    if not sep or key not in ("out_time_us", "out_time_ms"):
        return None
    try:
        return int(value) / 1000
    except ValueError:
        return None


class FfmpegMixEngine(MixEngine):
    def __init__(self, binary: str = ""):
        self._configured_binary = binary
        self._binary: Optional[Path] = None

    async def prepare(self) -> None:
        self._binary = find_ffmpeg(self._configured_binary)
        if self._binary is None:
            raise AudioError(
                AudioErrorKind.RESOURCE_UNAVAILABLE,
                "ffmpeg not found on PATH",
                "Audio mixing requires ffmpeg. Please install it.",
            )
        logger.debug("Using ffmpeg at %s", self._binary)

    def is_ready(self) -> bool:
        return self._binary is not None

    async def run(
        self,
        job: MixJob,
        output_path: Path,
        session: MixSession,
        on_stats: StatsCallback,
    ) -> EngineResult:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        cmd = job.to_args(output_path, binary=str(self._binary or "ffmpeg"))
        logger.debug("Running ffmpeg: %s", shlex.join(cmd))

        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        session.handle = proc
        if session.cancel_requested:
            # Cancelled while the process was starting.
            proc.terminate()

        stdout_tail: deque[str] = deque(maxlen=OUTPUT_TAIL)
        stderr_tail: deque[str] = deque(maxlen=OUTPUT_TAIL)
        durations: list[float] = []
        total_ms = 0.0

        async def read_stderr():
            nonlocal total_ms
            async for raw in proc.stderr:
                line = raw.decode(errors="replace").rstrip()
                stderr_tail.append(line)
                if len(durations) >= len(job.inputs):
                    continue
                duration = parse_duration_line(line)
                if duration is not None:
                    durations.append(duration)
                    if len(durations) == len(job.inputs):
                        total_ms = job.estimate_duration_ms(durations)

        async def read_stdout():
            async for raw in proc.stdout:
                line = raw.decode(errors="replace").rstrip()
                stdout_tail.append(line)
                time_ms = parse_progress_line(line)
                if time_ms is not None:
                    on_stats(time_ms, total_ms)

        try:
            await asyncio.gather(read_stdout(), read_stderr())
            returncode = await proc.wait()
        except BaseException:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise

        return EngineResult(returncode, "\n".join(stdout_tail), "\n".join(stderr_tail))

    async def abort(self, session: MixSession) -> None:
        proc = session.handle
        if proc is None or proc.returncode is not None:
            return
        proc.terminate()
        try:
            await asyncio.wait_for(proc.wait(), timeout=ABORT_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning("ffmpeg did not exit after terminate, killing it")
            proc.kill()
