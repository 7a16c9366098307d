"""Mock mix engine for testing without ffmpeg."""

from __future__ import annotations

import asyncio
import wave
from pathlib import Path
from typing import Optional

import numpy as np

from loopmix.mixer.command import MixJob
from loopmix.mixer.service import EngineResult, MixEngine, MixSession, StatsCallback


class MockMixEngine(MixEngine):
    """Fakes progress in steps, then writes a short silent WAV.

    The output always holds WAV data whatever its extension.
    """

    def __init__(
        self,
        source_duration_ms: float = 4000.0,
        steps: int = 5,
        step_delay: float = 0.0,
        returncode: int = 0,
        write_output: bool = True,
        ready: bool = True,
    ):
        """Configure the simulated run.

        Args:
            source_duration_ms: Pretend length of every input.
            steps: Number of progress reports before finishing.
            step_delay: Seconds slept between reports.
            returncode: Exit status to report. Non-zero skips the output.
            write_output: False simulates success without an output file.
            ready: False makes ``prepare`` fail.
        """
        self.source_duration_ms = source_duration_ms
        self.steps = steps
        self.step_delay = step_delay
        self.returncode = returncode
        self.write_output = write_output
        self._can_prepare = ready
        self._ready = False
        self.jobs: list[MixJob] = []
        self.aborted: list[str] = []
        self.closed = False

    async def prepare(self) -> None:
        if not self._can_prepare:
            raise RuntimeError("mock engine unavailable")
        self._ready = True

    def is_ready(self) -> bool:
        return self._ready

    async def run(
        self,
        job: MixJob,
        output_path: Path,
        session: MixSession,
        on_stats: StatsCallback,
    ) -> EngineResult:
        self.jobs.append(job)
        session.handle = self
        total_ms = job.estimate_duration_ms([self.source_duration_ms] * len(job.inputs))

        for step in range(1, self.steps + 1):
            await asyncio.sleep(self.step_delay)
            if session.cancel_requested:
                return EngineResult(255, "", "Exiting normally, received signal 15.")
            on_stats(total_ms * step / self.steps, total_ms)

        if self.returncode != 0:
            return EngineResult(self.returncode, "progress=end", "mock engine failure")
        if self.write_output:
            self._write_silence(output_path, job, min(total_ms, 1000.0))
        return EngineResult(0, "progress=end", "")

    async def probe_duration_ms(self, uri: str) -> float:
        return self.source_duration_ms

    async def abort(self, session: MixSession) -> None:
        self.aborted.append(session.id)

    async def close(self) -> None:
        self.closed = True

    @staticmethod
    def _write_silence(path: Path, job: MixJob, duration_ms: float) -> Optional[Path]:
        path.parent.mkdir(parents=True, exist_ok=True)
        rate = job.output.sample_rate
        channels = job.output.channels
        samples = np.zeros(int(rate * duration_ms / 1000) * channels, dtype=np.int16)
        with wave.open(str(path), "wb") as wf:
            wf.setnchannels(channels)
            wf.setsampwidth(2)
            wf.setframerate(rate)
            wf.writeframes(samples.tobytes())
        return path
