"""File management for recordings, imports and mix output."""

from __future__ import annotations

import asyncio
import logging
import random
import shutil
import subprocess
import time
import wave
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from loopmix.constants import AUDIO_EXTENSIONS
from loopmix.errors import AudioError, AudioErrorKind, wrap
from loopmix.paths import (
    ensure_dirs,
    get_exports_dir,
    get_imports_dir,
    get_mixes_dir,
    get_recordings_dir,
    get_temp_dir,
    uri_to_path,
)

logger = logging.getLogger(__name__)


@dataclass
class FileInfo:
    uri: str
    size: int
    created_at: float  # epoch seconds
    modified_at: float
    extension: str
    readable: bool = True
    writable: bool = True


def probe_duration_ms(path: Path, ffprobe: Optional[str] = None) -> float:
    """Length of an audio file in milliseconds, or 0.0 when unknown.

    WAV headers are read directly; anything else goes through ffprobe when
    it is installed.
    """
    if path.suffix.lower() == ".wav":
        try:
            with wave.open(str(path), "rb") as wf:
                return wf.getnframes() / wf.getframerate() * 1000
        except (wave.Error, EOFError, OSError, ZeroDivisionError):
            pass

    binary = ffprobe or shutil.which("ffprobe")
    if not binary:
        return 0.0
    cmd = [
        binary,
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        str(path),
    ]
    try:
        proc = subprocess.run(cmd, capture_output=True, text=True, timeout=30)
    except (OSError, subprocess.TimeoutExpired):
        return 0.0
    if proc.returncode != 0:
        return 0.0
    try:
        return float(proc.stdout.strip()) * 1000
    except ValueError:
        return 0.0


def _file_not_found(uri: str) -> AudioError:
    return AudioError(
        AudioErrorKind.FILE_NOT_FOUND,
        f"File not found: {uri}",
        context={"uri": uri},
    )


class FileManager(ABC):
    """Storage for audio files owned by the application."""

    @abstractmethod
    async def save_audio_file(self, data: bytes, filename: str, fmt: str) -> str:
        """Write *data* as ``filename.fmt`` and return its URI."""
        ...

    @abstractmethod
    async def delete_audio_file(self, uri: str) -> bool:
        """Delete a file. False if it did not exist."""
        ...

    @abstractmethod
    async def copy_to_app_storage(self, source_uri: str, filename: str) -> str:
        """Import an external file; returns the new URI."""
        ...

    @abstractmethod
    async def export_to_external_storage(self, uri: str, filename: str) -> str: ...

    @abstractmethod
    async def file_exists(self, uri: str) -> bool: ...

    @abstractmethod
    async def get_file_info(self, uri: str) -> FileInfo: ...

    @abstractmethod
    async def list_audio_files(self) -> list[str]: ...

    @abstractmethod
    async def get_available_space(self) -> int: ...

    @abstractmethod
    async def cleanup_temp_files(self) -> int:
        """Remove temporary files; returns how many were removed."""
        ...

    @abstractmethod
    async def probe_duration_ms(self, uri: str) -> float: ...

    async def get_file_size(self, uri: str) -> int:
        return (await self.get_file_info(uri)).size

    def generate_unique_filename(self, prefix: str = "audio", fmt: str = "mp3") -> str:
        """``<prefix>-<epoch ms>-<random>.<fmt>``"""
        return f"{prefix}-{int(time.time() * 1000)}-{random.randint(0, 999):03d}.{fmt}"


class LocalFileManager(FileManager):
    """Files under the loopmix data directory."""

    def __init__(self, data_dir: Path):
        self.data_dir = data_dir
        ensure_dirs(data_dir)
        self.recordings_dir = get_recordings_dir(data_dir)
        self.imports_dir = get_imports_dir(data_dir)
        self.mixes_dir = get_mixes_dir(data_dir)
        self.exports_dir = get_exports_dir(data_dir)
        self.temp_dir = get_temp_dir(data_dir)

    async def save_audio_file(self, data: bytes, filename: str, fmt: str) -> str:
        dest = self.imports_dir / f"{filename}.{fmt}"
        try:
            dest.write_bytes(data)
        except OSError as exc:
            raise wrap(exc, AudioErrorKind.RESOURCE_UNAVAILABLE, "Failed to save audio file") from exc
        return str(dest)

    async def delete_audio_file(self, uri: str) -> bool:
        path = uri_to_path(uri)
        if not path.exists():
            return False
        try:
            path.unlink()
        except OSError as exc:
            raise wrap(
                exc, AudioErrorKind.RESOURCE_UNAVAILABLE, "Failed to delete audio file", uri=uri
            ) from exc
        logger.info("Deleted %s", path)
        return True

    async def copy_to_app_storage(self, source_uri: str, filename: str) -> str:
        """Copy an external audio file into the imports directory."""
        source = uri_to_path(source_uri)
        if not source.is_file():
            raise _file_not_found(source_uri)
        if source.suffix.lower() not in AUDIO_EXTENSIONS:
            raise AudioError(
                AudioErrorKind.INVALID_FORMAT,
                f"Unsupported audio file type: {source.suffix or '(none)'}",
                context={"uri": source_uri},
            )
        name = filename if Path(filename).suffix else f"{filename}{source.suffix}"
        dest = self.imports_dir / name
        try:
            shutil.copy2(source, dest)
        except OSError as exc:
            raise wrap(exc, AudioErrorKind.RESOURCE_UNAVAILABLE, "Failed to import file") from exc
        logger.info("Imported %s -> %s", source, dest)
        return str(dest)

    async def export_to_external_storage(self, uri: str, filename: str) -> str:
        source = uri_to_path(uri)
        if not source.is_file():
            raise _file_not_found(uri)
        name = filename if Path(filename).suffix else f"{filename}{source.suffix}"
        dest = self.exports_dir / name
        try:
            shutil.copy2(source, dest)
        except OSError as exc:
            raise wrap(exc, AudioErrorKind.RESOURCE_UNAVAILABLE, "Failed to export file") from exc
        return str(dest)

    async def file_exists(self, uri: str) -> bool:
        return uri_to_path(uri).is_file()

    async def get_file_info(self, uri: str) -> FileInfo:
        path = uri_to_path(uri)
        try:
            st = path.stat()
        except FileNotFoundError:
            raise _file_not_found(uri) from None
        return FileInfo(
            uri=uri,
            size=st.st_size,
            created_at=st.st_ctime,
            modified_at=st.st_mtime,
            extension=path.suffix.lstrip("."),
        )

    async def list_audio_files(self) -> list[str]:
        found = []
        try:
            for directory in (self.recordings_dir, self.imports_dir, self.mixes_dir):
                for path in sorted(directory.iterdir()):
                    if path.is_file() and path.suffix.lower() in AUDIO_EXTENSIONS:
                        found.append(str(path))
        except OSError as exc:
            raise wrap(
                exc, AudioErrorKind.RESOURCE_UNAVAILABLE, "Failed to list audio files"
            ) from exc
        return found

    async def get_available_space(self) -> int:
        return shutil.disk_usage(self.data_dir).free

    async def cleanup_temp_files(self) -> int:
        removed = 0
        try:
            for path in self.temp_dir.iterdir():
                if path.is_file():
                    path.unlink(missing_ok=True)
                    removed += 1
        except OSError as exc:
            raise wrap(
                exc, AudioErrorKind.RESOURCE_UNAVAILABLE, "Failed to clean up temporary files"
            ) from exc
        if removed:
            logger.info("Removed %d temporary files", removed)
        return removed

    async def probe_duration_ms(self, uri: str) -> float:
        return await asyncio.to_thread(probe_duration_ms, uri_to_path(uri))


@dataclass
class _MemoryFile:
    data: bytes
    created_at: float
    modified_at: float


class InMemoryFileManager(FileManager):
    """Dictionary-backed storage for tests and the mock runtime."""

    SCHEME = "memory://"

    def __init__(self, durations: Optional[dict[str, float]] = None):
        self.files: dict[str, _MemoryFile] = {}
        self.durations = dict(durations or {})

    def add(self, uri: str, data: bytes = b"", duration_ms: float = 0.0) -> str:
        now = time.time()
        self.files[uri] = _MemoryFile(data, now, now)
        self.durations[uri] = duration_ms
        return uri

    async def save_audio_file(self, data: bytes, filename: str, fmt: str) -> str:
        return self.add(f"{self.SCHEME}audio/{filename}.{fmt}", data)

    async def delete_audio_file(self, uri: str) -> bool:
        self.durations.pop(uri, None)
        return self.files.pop(uri, None) is not None

    async def copy_to_app_storage(self, source_uri: str, filename: str) -> str:
        source = self.files.get(source_uri)
        if source is None:
            raise _file_not_found(source_uri)
        suffix = Path(source_uri).suffix
        name = filename if Path(filename).suffix else f"{filename}{suffix}"
        dest = self.add(
            f"{self.SCHEME}audio/{name}", source.data, self.durations.get(source_uri, 0.0)
        )
        return dest

    async def export_to_external_storage(self, uri: str, filename: str) -> str:
        source = self.files.get(uri)
        if source is None:
            raise _file_not_found(uri)
        return self.add(f"{self.SCHEME}external/{filename}", source.data)

    async def file_exists(self, uri: str) -> bool:
        return uri in self.files

    async def get_file_info(self, uri: str) -> FileInfo:
        entry = self.files.get(uri)
        if entry is None:
            raise _file_not_found(uri)
        return FileInfo(
            uri=uri,
            size=len(entry.data),
            created_at=entry.created_at,
            modified_at=entry.modified_at,
            extension=Path(uri).suffix.lstrip("."),
        )

    async def list_audio_files(self) -> list[str]:
        return sorted(
            uri for uri in self.files
            if uri.startswith(f"{self.SCHEME}audio/") and "/temp-" not in uri
        )

    async def get_available_space(self) -> int:
        return 10 * 1024 ** 3

    async def cleanup_temp_files(self) -> int:
        temp = [uri for uri in self.files if "/temp-" in uri]
        for uri in temp:
            del self.files[uri]
        return len(temp)

    async def probe_duration_ms(self, uri: str) -> float:
        return self.durations.get(uri, 0.0)
