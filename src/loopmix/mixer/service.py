"""Mixer: runs synthesized mix jobs on a pluggable engine."""

from __future__ import annotations

import asyncio
import logging
import tempfile
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

from loopmix.constants import PROGRESS_INTERVAL
from loopmix.errors import AudioError, AudioErrorKind, wrap
from loopmix.files import probe_duration_ms
from loopmix.mixer.command import MixJob, build_mix_job, validate_tracks
from loopmix.models import MixerTrackInput, MixOptions, MixProgress, MixResult
from loopmix.paths import uri_to_path

logger = logging.getLogger(__name__)

# Rough per-track processing cost used before a job has started.
ESTIMATED_MS_PER_TRACK = 1000


@dataclass
class MixSession:
    """One in-flight mix. ``handle`` is whatever the engine needs to abort it."""

    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    cancel_requested: bool = False
    handle: Any = None


@dataclass
class EngineResult:
    returncode: int
    stdout: str = ""
    stderr: str = ""


StatsCallback = Callable[[float, float], None]


class MixEngine(ABC):
    """External transcoder that executes a :class:`MixJob`."""

    @abstractmethod
    async def prepare(self) -> None:
        """Locate or load the engine. Raise if it cannot be used."""
        ...

    @abstractmethod
    def is_ready(self) -> bool: ...

    @abstractmethod
    async def run(
        self,
        job: MixJob,
        output_path: Path,
        session: MixSession,
        on_stats: StatsCallback,
    ) -> EngineResult:
        """Execute *job*, writing *output_path*.

        ``on_stats(time_ms, total_ms)`` reports how much output has been
        produced and, once known, the expected total (0 while unknown).
        """
        ...

    @abstractmethod
    async def abort(self, session: MixSession) -> None:
        """Ask the engine to stop *session*. ``run`` then returns non-zero."""
        ...

    async def probe_duration_ms(self, uri: str) -> float:
        """Source length of *uri* in ms, 0.0 when unknown."""
        return await asyncio.to_thread(probe_duration_ms, uri_to_path(uri))

    async def close(self) -> None:
        pass


class _ProgressReporter:
    def __init__(
        self,
        callback: Optional[Callable[[MixProgress], None]],
        interval: float,
        clock: Callable[[], float],
    ):
        self._callback = callback
        self._interval = interval
        self._clock = clock
        self._last_emit: Optional[float] = None
        self._time_ms = 0.0
        self._total_ms = 0.0

    def update(self, time_ms: float, total_ms: float) -> None:
        self._time_ms = max(self._time_ms, time_ms)
        if total_ms > 0:
            self._total_ms = total_ms
        if self._callback is None:
            return
        now = self._clock()
        if self._last_emit is not None and now - self._last_emit < self._interval:
            return
        self._last_emit = now
        ratio = min(self._time_ms / self._total_ms, 1.0) if self._total_ms > 0 else 0.0
        self._callback(MixProgress(ratio, self._time_ms, self._total_ms))

    def finish(self) -> None:
        if self._callback is None:
            return
        total = self._total_ms or self._time_ms
        self._callback(MixProgress(1.0, max(self._time_ms, total), total))


def _cancelled(session: MixSession) -> AudioError:
    logger.info("Mix session %s cancelled", session.id)
    return AudioError(
        AudioErrorKind.MIXING_FAILED,
        "Mix cancelled",
        "Mixing was cancelled",
        context={"cancelled": True, "session": session.id},
    )


class Mixer:
    """Owns at most one mix session at a time.

    A second :meth:`mix` while one is running is rejected with
    MIXING_FAILED. :meth:`cancel` is cooperative: if the engine finishes
    before it notices, the mix completes normally. A cancel that lands
    before the engine starts always wins.
    """

    def __init__(
        self,
        engine: MixEngine,
        output_dir: Optional[Path] = None,
        progress_interval: float = PROGRESS_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._engine = engine
        self._output_dir = output_dir or Path(tempfile.gettempdir()) / "loopmix-mixes"
        self._progress_interval = progress_interval
        self._clock = clock
        self._ready = False
        self._session: Optional[MixSession] = None

    @property
    def engine(self) -> MixEngine:
        return self._engine

    async def load(self, on_progress: Optional[Callable[[float], None]] = None) -> None:
        try:
            await self._engine.prepare()
        except Exception as exc:
            raise wrap(
                exc, AudioErrorKind.RESOURCE_UNAVAILABLE, "Failed to load mixing engine"
            ) from exc
        self._ready = True
        logger.info("Mixing engine ready")
        if on_progress is not None:
            on_progress(1.0)

    def is_ready(self) -> bool:
        return self._ready and self._engine.is_ready()

    def is_mixing(self) -> bool:
        return self._session is not None

    async def mix(self, options: MixOptions) -> MixResult:
        if not options.tracks:
            raise AudioError(
                AudioErrorKind.MIXING_FAILED,
                "No tracks provided for mixing",
                "Please select at least one track to mix",
            )
        if self._session is not None:
            raise AudioError(
                AudioErrorKind.MIXING_FAILED,
                f"A mix is already in progress (session {self._session.id})",
                "Please wait for the current mix to finish",
            )

        session = MixSession()
        self._session = session
        try:
            validate_tracks(options.tracks)
            if not self.is_ready():
                await self.load()
            durations = [await self._engine.probe_duration_ms(t.uri) for t in options.tracks]
            job = build_mix_job(options.tracks, options, durations)
            output_path = self._output_path(options, job.output.format)
            reporter = _ProgressReporter(options.on_progress, self._progress_interval, self._clock)

            logger.info(
                "Mixing %d tracks to %s (session %s)", len(job.inputs), output_path, session.id
            )
            if session.cancel_requested:
                raise _cancelled(session)
            try:
                result = await self._engine.run(job, output_path, session, reporter.update)
            except Exception as exc:
                raise wrap(
                    exc, AudioErrorKind.MIXING_FAILED, "Failed to mix audio",
                    "Audio mixing encountered an error", tracks=len(job.inputs),
                ) from exc

            if result.returncode != 0 and session.cancel_requested:
                raise _cancelled(session)
            if result.returncode != 0:
                logger.error("Mix engine exited with status %d", result.returncode)
                raise AudioError(
                    AudioErrorKind.MIXING_FAILED,
                    f"Mix engine exited with status {result.returncode}",
                    "Audio mixing encountered an error",
                    context={
                        "returncode": result.returncode,
                        "stdout": result.stdout,
                        "stderr": result.stderr,
                    },
                )
            if not output_path.exists():
                raise AudioError(
                    AudioErrorKind.MIXING_FAILED,
                    f"Output file was not created: {output_path}",
                    "Mixed audio file not found",
                    context={"stdout": result.stdout, "stderr": result.stderr},
                )

            reporter.finish()
            logger.info("Mix complete: %s", output_path)
            return MixResult(output_uri=str(output_path), actual_format=job.output.format)
        finally:
            self._session = None

    async def cancel(self) -> None:
        """Abort the running mix, if any."""
        session = self._session
        if session is None:
            return
        session.cancel_requested = True
        logger.info("Cancelling mix session %s", session.id)
        try:
            await self._engine.abort(session)
        except Exception as exc:
            raise wrap(exc, AudioErrorKind.MIXING_FAILED, "Failed to cancel mix") from exc

    async def cleanup(self) -> None:
        await self.cancel()
        await self._engine.close()
        self._ready = False

    def validate_tracks(self, tracks: Sequence[MixerTrackInput]) -> None:
        validate_tracks(tracks)

    def estimate_mixing_duration(self, tracks: Sequence[MixerTrackInput]) -> int:
        """Rough wall-clock cost of mixing *tracks*, in milliseconds."""
        return len(tracks) * ESTIMATED_MS_PER_TRACK

    def _output_path(self, options: MixOptions, fmt: str) -> Path:
        if options.output_path:
            return Path(options.output_path)
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
        return self._output_dir / f"mix-{stamp}.{fmt}"
